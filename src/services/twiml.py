"""Minimal TwiML documents for the telephony and SMS webhooks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

XML_DECLARATION: Final[str] = '<?xml version="1.0" encoding="UTF-8"?>'
DEFAULT_VOICE: Final[str] = "Google.id-ID-Wavenet-A"
DEFAULT_LANGUAGE: Final[str] = "id-ID"

_ENTITIES: Final[tuple[tuple[str, str], ...]] = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&apos;"),
)


def escape_xml(text: str) -> str:
    """Escape the five predefined XML entities (``&`` first)."""
    for raw, entity in _ENTITIES:
        text = text.replace(raw, entity)
    return text


@dataclass(frozen=True, slots=True)
class Say:
    text: str
    voice: str = DEFAULT_VOICE
    language: str = DEFAULT_LANGUAGE

    def render(self) -> str:
        return (
            f'<Say voice="{escape_xml(self.voice)}" language="{escape_xml(self.language)}">'
            f"{escape_xml(self.text)}</Say>"
        )


@dataclass(frozen=True, slots=True)
class Record:
    action: str
    max_length: int = 120
    play_beep: bool = True

    def render(self) -> str:
        beep = "true" if self.play_beep else "false"
        return (
            f'<Record maxLength="{self.max_length}" action="{escape_xml(self.action)}" '
            f'playBeep="{beep}" />'
        )


@dataclass(frozen=True, slots=True)
class Hangup:
    def render(self) -> str:
        return "<Hangup />"


@dataclass(frozen=True, slots=True)
class Message:
    text: str

    def render(self) -> str:
        return f"<Message>{escape_xml(self.text)}</Message>"


Verb = Say | Record | Hangup | Message


def build_response(*verbs: Verb) -> str:
    """Render *verbs* in order inside a ``<Response>`` document."""
    body = "".join(f"\n  {verb.render()}" for verb in verbs)
    return f"{XML_DECLARATION}\n<Response>{body}\n</Response>"


def message_response(text: str) -> str:
    return build_response(Message(text))


def say_and_hangup(text: str) -> str:
    return build_response(Say(text), Hangup())
