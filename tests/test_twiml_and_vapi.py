"""Tests for TwiML rendering and Vapi payload handling."""

from __future__ import annotations

import pytest

from src.services.twiml import (
    Hangup,
    Message,
    Record,
    Say,
    build_response,
    escape_xml,
    message_response,
    say_and_hangup,
)
from src.services.vapi import (
    UNKNOWN_TOOL_CALL_ID,
    build_assistant_config,
    call_id,
    customer_phone,
    extract_tool_call,
    message_type,
    system_prompt,
    tool_error,
    tool_result,
)

# ---------------------------------------------------------------------------
# TwiML
# ---------------------------------------------------------------------------


class TestTwiml:
    def test_escape_ampersand_first(self) -> None:
        assert escape_xml("a & <b> \"c\" 'd'") == "a &amp; &lt;b&gt; &quot;c&quot; &apos;d&apos;"
        assert escape_xml("&lt;") == "&amp;lt;"

    def test_say_and_hangup(self) -> None:
        xml = say_and_hangup("Terima kasih & sampai jumpa")
        assert xml.startswith('<?xml version="1.0" encoding="UTF-8"?>')
        assert '<Say voice="Google.id-ID-Wavenet-A" language="id-ID">' in xml
        assert "Terima kasih &amp; sampai jumpa" in xml
        assert xml.index("<Say") < xml.index("<Hangup />")

    def test_record(self) -> None:
        xml = build_response(Record(action="/api/v1/voice/process?a=1&b=2", max_length=90))
        assert 'maxLength="90"' in xml
        assert 'action="/api/v1/voice/process?a=1&amp;b=2"' in xml
        assert 'playBeep="true"' in xml

    def test_message(self) -> None:
        assert "<Message>Status &lt;OK&gt;</Message>" in message_response("Status <OK>")

    def test_verb_order_is_kept(self) -> None:
        xml = build_response(Say("a"), Message("b"), Hangup())
        assert xml.index("<Say") < xml.index("<Message>") < xml.index("<Hangup")


# ---------------------------------------------------------------------------
# Tool-call extraction
# ---------------------------------------------------------------------------


class TestExtractToolCall:
    def test_tool_call_list_openai_style(self) -> None:
        payload = {
            "message": {
                "type": "tool-calls",
                "toolCallList": [
                    {
                        "id": "call_1",
                        "type": "function",
                        "function": {"name": "validateAddress", "arguments": '{"address": "Jl. Dago"}'},
                    }
                ],
            }
        }
        call = extract_tool_call(payload)
        assert call is not None
        assert (call.tool_call_id, call.name, call.params) == ("call_1", "validateAddress", {"address": "Jl. Dago"})

    def test_tool_call_list_vapi_style(self) -> None:
        payload = {"message": {"toolCallList": [{"id": "c2", "name": "createTicket", "parameters": {"category": "INFRA"}}]}}
        call = extract_tool_call(payload)
        assert call.name == "createTicket"
        assert call.params == {"category": "INFRA"}

    def test_legacy_function_call(self) -> None:
        payload = {"message": {"functionCall": {"name": "logEmergency", "parameters": {"location": "Cicadas"}}}}
        call = extract_tool_call(payload)
        assert call.name == "logEmergency"
        assert call.tool_call_id == UNKNOWN_TOOL_CALL_ID

    def test_tool_with_tool_call_list(self) -> None:
        payload = {
            "message": {
                "toolWithToolCallList": [
                    {
                        "type": "function",
                        "toolCall": {"id": "c3", "function": {"name": "validateAddress", "arguments": {"address": "PVJ"}}},
                    }
                ]
            }
        }
        call = extract_tool_call(payload)
        assert call.tool_call_id == "c3"
        assert call.params == {"address": "PVJ"}

    def test_messages_array_and_root_level(self) -> None:
        nested = {"messages": [{"role": "user"}, {"toolCalls": [{"id": "c4", "function": {"name": "endCall"}}]}]}
        assert extract_tool_call(nested).tool_call_id == "c4"

        root = {"tool_calls": [{"id": "c5", "function": {"name": "createTicket", "arguments": "{}"}}]}
        assert extract_tool_call(root).name == "createTicket"

    def test_content_array(self) -> None:
        payload = {"message": {"content": [{"type": "text"}, {"type": "tool_call", "id": "c6", "name": "validateAddress"}]}}
        assert extract_tool_call(payload).tool_call_id == "c6"

    def test_malformed_arguments_become_empty(self) -> None:
        payload = {"message": {"toolCallList": [{"id": "c7", "function": {"name": "createTicket", "arguments": "{oops"}}]}}
        assert extract_tool_call(payload).params == {}

    @pytest.mark.parametrize(
        "payload",
        [{}, {"message": {"type": "status-update", "status": "ended"}}, {"message": "text"}],
    )
    def test_no_tool_call(self, payload: dict) -> None:
        assert extract_tool_call(payload) is None


class TestPayloadAccessors:
    def test_call_metadata(self) -> None:
        payload = {
            "message": {
                "type": "assistant-request",
                "call": {"id": "call-xyz", "customer": {"number": "+6285155347701"}},
            }
        }
        assert message_type(payload) == "assistant-request"
        assert customer_phone(payload) == "+6285155347701"
        assert call_id(payload) == "call-xyz"

    def test_missing_metadata(self) -> None:
        assert message_type({}) is None
        assert customer_phone({"message": {"call": {}}}) is None
        assert call_id({"message": None}) is None


# ---------------------------------------------------------------------------
# Responses and assistant config
# ---------------------------------------------------------------------------


class TestResponses:
    def test_tool_result(self) -> None:
        body = tool_result("c1", "createTicket", "Tercatat", ticketId="SP-20251203-0001")
        assert body == {
            "results": [
                {"toolCallId": "c1", "name": "createTicket", "result": "Tercatat", "ticketId": "SP-20251203-0001"}
            ]
        }

    def test_tool_error_without_name(self) -> None:
        assert tool_error("unknown", None, "gagal") == {"results": [{"toolCallId": "unknown", "error": "gagal"}]}

    def test_assistant_config(self) -> None:
        config = build_assistant_config(
            "https://satupintu.test/api/v1/vapi/webhook",
            customer_phone="+6285155347701",
            transfer_number="+62112",
        )
        assert config["server"]["url"] == "https://satupintu.test/api/v1/vapi/webhook"
        tool_names = [t["function"]["name"] for t in config["model"]["tools"] if t["type"] == "function"]
        assert tool_names == ["createTicket", "logEmergency", "validateAddress"]
        transfer = next(t for t in config["model"]["tools"] if t["type"] == "transferCall")
        assert transfer["destinations"][0]["number"] == "+62112"
        assert "+6285155347701" in config["model"]["messages"][0]["content"]

    def test_system_prompt_without_caller(self) -> None:
        assert "(tidak terdeteksi)" in system_prompt(None)
