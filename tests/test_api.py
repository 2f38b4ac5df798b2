"""HTTP-level tests for the v1 API.

The application lifespan is not run: each test builds a fresh app and
wires in-memory services onto ``app.state`` so no credentials or network
access are needed.
"""

from __future__ import annotations

import random
from datetime import datetime
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient

from config.settings import settings
from src.main import create_app
from src.middleware.auth import create_access_token
from src.models.address import Landmark
from src.models.enums import NotificationChannel, TicketCategory
from src.models.staff import StaffPrincipal, StaffScope
from src.services.address import AddressResolver
from src.services.cache import CacheManager
from src.services.classifier import ComplaintClassifier
from src.services.geocoding import BoundingBox
from src.services.notifications import MockChannel, NotificationDispatcher
from src.services.rating import RatingService
from src.services.sms_commands import SmsCommandService
from src.services.store import InMemoryTicketStore
from src.services.tickets import TicketService
from src.services.voice_agent import VoiceAgentService

CALLER = "+6285155347701"
PHOTO = "https://abc.supabase.co/storage/v1/object/public/photos/after.jpg"

PVJ = Landmark(
    name="Paris Van Java (PVJ)",
    aliases=("pvj", "paris van java"),
    address="Jl. Sukajadi No. 131-139, Bandung",
    lat=-6.8893,
    lng=107.5962,
    category="mall",
)

ADMIN = StaffPrincipal(agency_id="admin", agency_name="Admin SatuPintu", scope=StaffScope.ALL_AGENCIES)
PUPR = StaffPrincipal(
    agency_id="public_works",
    agency_name="Dinas PUPR",
    categories=[TicketCategory.INFRASTRUCTURE],
)
DLH = StaffPrincipal(
    agency_id="environment",
    agency_name="Dinas Lingkungan Hidup",
    categories=[TicketCategory.SANITATION],
)


def bearer(principal: StaffPrincipal) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(principal)}"}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def services() -> SimpleNamespace:
    store = InMemoryTicketStore()
    whatsapp = MockChannel(NotificationChannel.WHATSAPP)
    sms = MockChannel(NotificationChannel.SMS)
    dispatcher = NotificationDispatcher(
        store,
        {NotificationChannel.WHATSAPP: whatsapp, NotificationChannel.SMS: sms},
        retry_wait_max=0,
    )
    cache = CacheManager(namespace="test:")
    resolver = AddressResolver(BoundingBox(-6.97, -6.85, 107.55, 107.70), landmarks=(PVJ,))
    tickets = TicketService(
        store,
        dispatcher,
        settings.track_url,
        resolver=resolver,
        cache=cache,
        rng=random.Random(11),
    )
    rating = RatingService(store, dispatcher, cache=cache, otp_factory=lambda: "424242")
    return SimpleNamespace(
        store=store,
        whatsapp=whatsapp,
        sms=sms,
        dispatcher=dispatcher,
        cache=cache,
        address_resolver=resolver,
        tickets=tickets,
        rating=rating,
        voice_agent=VoiceAgentService(tickets, ComplaintClassifier(None), resolver=resolver),
        sms_commands=SmsCommandService(tickets, dispatcher),
    )


@pytest.fixture
def client(services: SimpleNamespace) -> TestClient:
    app = create_app()
    for name in (
        "store",
        "dispatcher",
        "cache",
        "address_resolver",
        "tickets",
        "rating",
        "voice_agent",
        "sms_commands",
    ):
        setattr(app.state, name, getattr(services, name))
    return TestClient(app, raise_server_exceptions=False)


def create_ticket(client: TestClient, **overrides) -> dict:
    body = {
        "category": "INFRA",
        "description": "Jalan berlubang besar di depan mall",
        "reporterName": "Budi Santoso",
        "reporterPhone": "0851-5534-7701",
        "address": "depan PVJ",
    }
    body.update(overrides)
    response = client.post("/api/v1/tickets", json=body)
    assert response.status_code == 201, response.text
    return response.json()["data"]


def resolve_ticket(client: TestClient, ticket_id: str) -> None:
    response = client.patch(
        f"/api/v1/tickets/{ticket_id}",
        json={"status": "RESOLVED", "photoAfter": PHOTO},
        headers=bearer(ADMIN),
    )
    assert response.status_code == 200, response.text


# ---------------------------------------------------------------------------
# Health and root
# ---------------------------------------------------------------------------


class TestHealth:
    def test_liveness(self, client: TestClient) -> None:
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_readiness(self, client: TestClient) -> None:
        body = client.get("/api/v1/health/ready").json()
        assert body["status"] == "ready"
        assert body["checks"]["cache"] == "ok"
        assert body["checks"]["llm"] == "not_configured"

    def test_readiness_without_services(self) -> None:
        body = TestClient(create_app()).get("/api/v1/health/ready").json()
        assert body["status"] == "degraded"
        assert body["checks"]["tickets"] == "not_initialised"

    def test_root_lists_endpoints(self, client: TestClient) -> None:
        assert client.get("/").json()["endpoints"]["track"] == "/api/v1/track/{ticket_id}"


# ---------------------------------------------------------------------------
# Ticket creation (internal)
# ---------------------------------------------------------------------------


class TestCreateTicket:
    def test_created(self, client: TestClient, services: SimpleNamespace) -> None:
        data = create_ticket(client)
        ticket = data["ticket"]

        assert ticket["category"] == "INFRASTRUCTURE"
        assert ticket["assigned_dinas"] == ["public_works"]
        assert ticket["reporter_phone"] == CALLER
        assert ticket["status"] == "PENDING"
        assert "rating_otp" not in ticket
        assert "rating_otp_expires_at" not in ticket
        assert data["trackUrl"].endswith(f"/track/{ticket['id']}")
        assert data["addressValidated"] is True
        assert data["notificationSent"] is True
        assert len(services.whatsapp.sent) == 1

    def test_location_alias(self, client: TestClient) -> None:
        body = {
            "category": "SANITATION",
            "description": "Sampah menumpuk",
            "reporterName": "Siti",
            "reporterPhone": CALLER,
            "location": "Jl. Kosambi",
        }
        response = client.post("/api/v1/tickets", json=body)
        assert response.status_code == 201
        assert response.json()["data"]["addressValidated"] is False

    def test_invalid_category(self, client: TestClient) -> None:
        response = client.post("/api/v1/tickets", json={"category": "PIZZA"})
        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "error": "Kategori laporan tidak valid",
            "code": "INVALID_CATEGORY",
        }

    def test_missing_fields(self, client: TestClient) -> None:
        response = client.post("/api/v1/tickets", json={"category": "INFRA", "description": "x"})
        assert response.status_code == 400
        assert response.json()["code"] == "MISSING_FIELDS"

    def test_invalid_phone(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/tickets",
            json={
                "category": "INFRA",
                "description": "x",
                "reporterName": "Budi",
                "reporterPhone": "12",
                "address": "PVJ",
            },
        )
        assert response.json()["code"] == "INVALID_PHONE"

    def test_body_validation_error_envelope(self, client: TestClient) -> None:
        response = client.post("/api/v1/tickets", json={"description": "no category"})
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "VALIDATION_ERROR"
        assert body["error"].startswith("category")

    def test_api_key_enforced(self, client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "internal_api_key", "s3cret")

        assert client.post("/api/v1/tickets", json={"category": "INFRA"}).json()["code"] == (
            "INVALID_API_KEY"
        )
        response = client.post(
            "/api/v1/tickets",
            json={
                "category": "INFRA",
                "description": "Lampu jalan mati",
                "reporterName": "Budi",
                "reporterPhone": CALLER,
                "address": "PVJ",
            },
            headers={"X-API-Key": "s3cret"},
        )
        assert response.status_code == 201

    def test_unconfigured_key_refused_in_production(
        self, client: TestClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings, "internal_api_key", "")
        monkeypatch.setattr(settings, "env", "production")

        response = client.post("/api/v1/tickets", json={"category": "INFRA"})
        assert response.status_code == 503
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "INTERNAL_AUTH_NOT_CONFIGURED"


# ---------------------------------------------------------------------------
# Staff endpoints
# ---------------------------------------------------------------------------


class TestStaffTickets:
    def test_list_requires_token(self, client: TestClient) -> None:
        response = client.get("/api/v1/tickets")
        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"

    def test_bad_token(self, client: TestClient) -> None:
        response = client.get("/api/v1/tickets", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_list_is_scoped_to_agency(self, client: TestClient) -> None:
        create_ticket(client)
        create_ticket(client, category="SANITATION", description="Sampah")

        admin = client.get("/api/v1/tickets", headers=bearer(ADMIN)).json()["data"]
        assert admin["pagination"]["total"] == 2

        pupr = client.get("/api/v1/tickets", headers=bearer(PUPR)).json()["data"]
        assert pupr["pagination"] == {"page": 1, "limit": 10, "total": 1, "totalPages": 1}
        assert pupr["tickets"][0]["category"] == "INFRASTRUCTURE"

    def test_token_from_cookie(self, client: TestClient) -> None:
        client.cookies.set(settings.auth_cookie_name, create_access_token(ADMIN))
        assert client.get("/api/v1/tickets").status_code == 200

    def test_list_rejects_oversized_page(self, client: TestClient) -> None:
        response = client.get("/api/v1/tickets?limit=500", headers=bearer(ADMIN))
        assert response.status_code == 400

    def test_detail_with_timeline(self, client: TestClient) -> None:
        ticket_id = create_ticket(client)["ticket"]["id"]
        response = client.get(f"/api/v1/tickets/{ticket_id.lower()}", headers=bearer(PUPR))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["id"] == ticket_id
        assert data["timeline"][0]["action"] == "CREATED"

    def test_detail_other_agency_forbidden(self, client: TestClient) -> None:
        ticket_id = create_ticket(client)["ticket"]["id"]
        response = client.get(f"/api/v1/tickets/{ticket_id}", headers=bearer(DLH))
        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"

    def test_detail_not_found(self, client: TestClient) -> None:
        response = client.get("/api/v1/tickets/SP-20990101-0001", headers=bearer(ADMIN))
        assert response.status_code == 404

    def test_patch_status(self, client: TestClient) -> None:
        ticket_id = create_ticket(client)["ticket"]["id"]
        response = client.patch(
            f"/api/v1/tickets/{ticket_id}",
            json={"status": "IN_PROGRESS", "note": "Tim berangkat"},
            headers=bearer(PUPR),
        )
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "IN_PROGRESS"

        detail = client.get(f"/api/v1/tickets/{ticket_id}", headers=bearer(PUPR)).json()["data"]
        assert detail["status"] == "IN_PROGRESS", "cached detail is invalidated on update"
        assert detail["timeline"][0]["message"] == "Status diubah ke Dalam Proses. Tim berangkat"

    def test_resolve_requires_photo(self, client: TestClient) -> None:
        ticket_id = create_ticket(client)["ticket"]["id"]
        response = client.patch(
            f"/api/v1/tickets/{ticket_id}", json={"status": "RESOLVED"}, headers=bearer(ADMIN)
        )
        assert response.status_code == 400
        assert response.json()["code"] == "PHOTO_REQUIRED"

    def test_patch_without_changes(self, client: TestClient) -> None:
        ticket_id = create_ticket(client)["ticket"]["id"]
        response = client.patch(f"/api/v1/tickets/{ticket_id}", json={}, headers=bearer(ADMIN))
        assert response.json()["code"] == "NO_CHANGES"

    def test_patch_other_agency_forbidden(self, client: TestClient) -> None:
        ticket_id = create_ticket(client)["ticket"]["id"]
        response = client.patch(
            f"/api/v1/tickets/{ticket_id}", json={"status": "IN_PROGRESS"}, headers=bearer(DLH)
        )
        assert response.status_code == 403

    def test_map(self, client: TestClient) -> None:
        create_ticket(client)
        create_ticket(client, address="Jl. Kosambi, Bandung")
        points = client.get("/api/v1/tickets/map", headers=bearer(ADMIN)).json()["data"]["tickets"]
        assert len(points) == 1
        assert points[0]["lat"] == pytest.approx(-6.8893)

    @pytest.mark.parametrize(
        ("params", "expected"),
        [
            ({"from": "2020-01-01"}, 1),
            ({"to": "2020-01-01T00:00:00"}, 0),
            ({"to": "2099-01-01T00:00:00"}, 1),
            ({"from": "2099-01-01T00:00:00+07:00"}, 0),
            ({"from": "2020-01-01T00:00:00Z", "to": "2099-01-01"}, 1),
        ],
    )
    def test_map_date_filters(self, client: TestClient, params: dict, expected: int) -> None:
        create_ticket(client)
        response = client.get("/api/v1/tickets/map", params=params, headers=bearer(ADMIN))
        assert response.status_code == 200, response.text
        assert len(response.json()["data"]["tickets"]) == expected

    def test_map_date_only_to_includes_that_whole_day(self, client: TestClient) -> None:
        create_ticket(client)
        today = datetime.now(ZoneInfo(settings.timezone)).date().isoformat()
        response = client.get("/api/v1/tickets/map", params={"to": today}, headers=bearer(ADMIN))
        assert len(response.json()["data"]["tickets"]) == 1

    def test_map_rejects_malformed_date(self, client: TestClient) -> None:
        response = client.get("/api/v1/tickets/map?from=kemarin", headers=bearer(ADMIN))
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_DATE"


class TestAuthMe:
    def test_me(self, client: TestClient) -> None:
        data = client.get("/api/v1/auth/me", headers=bearer(PUPR)).json()["data"]
        assert data == {
            "agencyId": "public_works",
            "agencyName": "Dinas PUPR",
            "categories": ["INFRASTRUCTURE"],
            "scope": "agency",
        }

    def test_expired_or_foreign_token(self, client: TestClient) -> None:
        token = create_access_token(ADMIN, secret="another-secret")
        response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401


# ---------------------------------------------------------------------------
# Public tracking and rating
# ---------------------------------------------------------------------------


class TestTracking:
    def test_public_view(self, client: TestClient) -> None:
        ticket_id = create_ticket(client)["ticket"]["id"]
        response = client.get(f"/api/v1/track/{ticket_id.lower()}")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["id"] == ticket_id
        assert data["categoryText"] == "Infrastruktur"
        assert data["statusText"] == "Menunggu"
        assert data["assignedTo"] == ["Dinas PUPR"]
        assert "reporterPhone" not in data and "reporter_phone" not in data
        assert data["timeline"][0]["action"] == "CREATED"

    def test_unknown(self, client: TestClient) -> None:
        response = client.get("/api/v1/track/SP-20990101-0001")
        assert response.status_code == 404
        assert response.json()["success"] is False


class TestRating:
    def test_otp_and_rate(self, client: TestClient, services: SimpleNamespace) -> None:
        ticket_id = create_ticket(client)["ticket"]["id"]
        resolve_ticket(client, ticket_id)

        otp = client.post(f"/api/v1/tickets/{ticket_id}/request-otp")
        assert otp.status_code == 200
        body = otp.json()
        assert body["data"]["maskedPhone"] == "+62851****701"
        assert body["data"]["delivered"] is True
        assert body["expiresAt"] == body["data"]["expiresAt"]
        assert "424242" in services.sms.sent[-1].body

        rated = client.post(
            f"/api/v1/tickets/{ticket_id}/rate",
            json={"rating": 5, "otp": "424242", "feedback": "Mantap"},
        )
        assert rated.status_code == 200
        assert rated.json()["data"]["rating"] == 5
        assert rated.json()["data"]["ratedAt"] is not None

        view = client.get(f"/api/v1/track/{ticket_id}").json()["data"]
        assert view["rating"] == 5
        assert view["feedback"] == "Mantap"

    def test_staff_detail_hides_issued_otp(self, client: TestClient) -> None:
        ticket_id = create_ticket(client)["ticket"]["id"]
        resolve_ticket(client, ticket_id)
        assert client.post(f"/api/v1/tickets/{ticket_id}/request-otp").status_code == 200

        detail = client.get(f"/api/v1/tickets/{ticket_id}", headers=bearer(ADMIN)).json()["data"]
        assert detail["id"] == ticket_id
        assert "rating_otp" not in detail
        assert "rating_otp_expires_at" not in detail

    def test_otp_before_resolution(self, client: TestClient) -> None:
        ticket_id = create_ticket(client)["ticket"]["id"]
        response = client.post(f"/api/v1/tickets/{ticket_id}/request-otp")
        assert response.status_code == 400
        assert response.json()["code"] == "NOT_RESOLVED"

    def test_otp_cooldown(self, client: TestClient) -> None:
        ticket_id = create_ticket(client)["ticket"]["id"]
        resolve_ticket(client, ticket_id)
        client.post(f"/api/v1/tickets/{ticket_id}/request-otp")

        response = client.post(f"/api/v1/tickets/{ticket_id}/request-otp")
        assert response.status_code == 429
        assert response.json()["code"] == "COOLDOWN"
        assert response.json()["waitSeconds"] > 0

    def test_wrong_otp(self, client: TestClient) -> None:
        ticket_id = create_ticket(client)["ticket"]["id"]
        resolve_ticket(client, ticket_id)
        client.post(f"/api/v1/tickets/{ticket_id}/request-otp")
        response = client.post(f"/api/v1/tickets/{ticket_id}/rate", json={"rating": 4, "otp": "000000"})
        assert response.json()["code"] == "INVALID_OTP"

    def test_rating_bucket_is_rate_limited(self, client: TestClient) -> None:
        codes = [
            client.post("/api/v1/tickets/SP-20990101-0001/rate", json={"rating": 5}).status_code
            for _ in range(settings.otp_rate_limit_per_minute + 1)
        ]
        assert codes[-1] == 429
        assert 429 not in codes[:-1]

    def test_spoofed_forwarded_for_shares_one_bucket(self, client: TestClient) -> None:
        codes = [
            client.post(
                "/api/v1/tickets/SP-20990101-0001/rate",
                json={"rating": 5},
                headers={"X-Forwarded-For": f"10.0.0.{n}"},
            ).status_code
            for n in range(settings.otp_rate_limit_per_minute + 1)
        ]
        assert codes[-1] == 429


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


class TestDashboard:
    def test_stats_scoped(self, client: TestClient) -> None:
        create_ticket(client)
        create_ticket(client, category="SANITATION", description="Sampah")

        assert client.get("/api/v1/stats", headers=bearer(ADMIN)).json()["data"]["total"] == 2
        assert client.get("/api/v1/stats", headers=bearer(DLH)).json()["data"]["total"] == 1

    def test_stats_requires_token(self, client: TestClient) -> None:
        assert client.get("/api/v1/stats").status_code == 401

    def test_analytics(self, client: TestClient) -> None:
        create_ticket(client)
        data = client.get("/api/v1/analytics?days=7", headers=bearer(ADMIN)).json()["data"]
        assert data["summary"]["total"] == 1
        assert data["categoryData"] == [{"name": "INFRASTRUCTURE", "value": 1}]


# ---------------------------------------------------------------------------
# Address validation
# ---------------------------------------------------------------------------


class TestAddressValidation:
    def test_landmark(self, client: TestClient) -> None:
        body = client.post("/api/v1/address/validate", json={"address": "depan PVJ"}).json()
        assert body["data"]["lat"] == pytest.approx(-6.8893)
        assert body["degraded"] is None

    def test_fallback_is_flagged(self, client: TestClient) -> None:
        body = client.post("/api/v1/address/validate", json={"address": "Jl. Dago, Bandung"}).json()
        assert body["degraded"] == "GEOCODER_UNAVAILABLE"
        assert body["data"]["needs_clarification"] is True

    def test_empty_address(self, client: TestClient) -> None:
        assert client.post("/api/v1/address/validate", json={"address": ""}).status_code == 400


# ---------------------------------------------------------------------------
# Intake webhooks
# ---------------------------------------------------------------------------


class TestVapiWebhook:
    def test_get_health(self, client: TestClient) -> None:
        assert client.get("/api/v1/vapi/webhook").json()["status"] == "ok"

    def test_assistant_request(self, client: TestClient) -> None:
        payload = {"message": {"type": "assistant-request", "call": {"customer": {"number": CALLER}}}}
        assistant = client.post("/api/v1/vapi/webhook", json=payload).json()["assistant"]
        assert assistant["server"]["url"].endswith("/api/v1/vapi/webhook")

    def test_status_update_acknowledged(self, client: TestClient) -> None:
        payload = {"message": {"type": "status-update", "status": "in-progress"}}
        assert client.post("/api/v1/vapi/webhook", json=payload).json() == {"result": "OK"}

    def test_tool_call_creates_ticket(self, client: TestClient, services: SimpleNamespace) -> None:
        payload = {
            "message": {
                "type": "tool-calls",
                "call": {"id": "vapi-call-1", "customer": {"number": CALLER}},
                "toolCallList": [
                    {
                        "id": "tc_1",
                        "function": {
                            "name": "createTicket",
                            "arguments": {
                                "category": "INFRA",
                                "description": "Jalan rusak",
                                "reporterName": "Budi",
                                "address": "PVJ",
                            },
                        },
                    }
                ],
            }
        }
        response = client.post("/api/v1/vapi/webhook", json=payload)
        assert response.status_code == 200
        result = response.json()["results"][0]
        assert result["toolCallId"] == "tc_1"
        assert result["ticketId"].startswith("SP-")

    def test_malformed_body_still_answers(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/vapi/webhook", content=b"not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 200
        assert "error" in response.json()["results"][0]

    def test_secret_enforced(self, client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "vapi_webhook_secret", "hush")
        payload = {"message": {"type": "status-update"}}
        assert client.post("/api/v1/vapi/webhook", json=payload).status_code == 401
        ok = client.post("/api/v1/vapi/webhook", json=payload, headers={"x-vapi-secret": "hush"})
        assert ok.status_code == 200


class TestTwilioWebhooks:
    def test_sms_check_command(self, client: TestClient) -> None:
        ticket_id = create_ticket(client)["ticket"]["id"]
        response = client.post("/api/v1/sms/incoming", data={"From": CALLER, "Body": f"CEK {ticket_id}"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/xml")
        assert f"Status {ticket_id}" in response.text

    def test_sms_unknown_command(self, client: TestClient) -> None:
        response = client.post("/api/v1/sms/incoming", data={"From": CALLER, "Body": "halo"})
        assert "perintah tidak dikenali" in response.text

    def test_voice_incoming(self, client: TestClient) -> None:
        response = client.post("/api/v1/voice/incoming")
        assert "<Record" in response.text
        assert 'action="/api/v1/voice/process"' in response.text

    def test_voice_process_without_recording(self, client: TestClient) -> None:
        response = client.post("/api/v1/voice/process", data={"From": CALLER, "CallSid": "CA1"})
        assert response.status_code == 200
        assert "kesulitan memproses" in response.text

    def test_voice_process_transcription(self, client: TestClient, services: SimpleNamespace) -> None:
        response = client.post(
            "/api/v1/voice/process",
            data={
                "From": CALLER,
                "CallSid": "CA2",
                "RecordingUrl": "https://api.twilio.com/rec/RE1",
                "TranscriptionText": "jalan berlubang di dago",
            },
        )
        assert "nomor tiket" in response.text
        assert len(services.sms.sent) == 1

    def test_services_missing(self) -> None:
        client = TestClient(create_app())
        response = client.post("/api/v1/voice/incoming")
        assert response.status_code == 200
        assert "<Hangup />" in response.text
