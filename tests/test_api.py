"""HTTP tests for the fulfillment API.

The app is driven in-process through httpx's ASGI transport against an
in-memory database and stub gateways wired by conftest.
"""

import json
from urllib.parse import urlparse

import pytest
from sqlalchemy import select

from conftest import dinner_body, success_event
from convention_fulfillment.delivery.errors import DeliveryError, ErrorType
from convention_fulfillment.models import DinnerReservation

pytestmark = pytest.mark.asyncio


async def book_dinner(client, **overrides):
    response = await client.post("/api/v1/booking/dinner", json=dinner_body(2, **overrides))
    assert response.status_code == 200, response.text
    return response.json()["data"]["paymentReference"]


async def send_webhook(client, gateway, body: bytes, signature: str | None = None):
    return await client.post(
        "/api/v1/webhook/payment",
        content=body,
        headers={
            "content-type": "application/json",
            "x-paystack-signature": signature if signature is not None else gateway.sign(body),
        },
    )


async def fetch_record(session_factory, reference):
    async with session_factory() as session:
        result = await session.execute(
            select(DinnerReservation).where(DinnerReservation.payment_reference == reference)
        )
        return result.scalar_one()


async def paid_booking(client, gateway):
    reference = await book_dinner(client)
    response = await send_webhook(client, gateway, success_event(reference))
    assert response.status_code == 200, response.text
    return reference


class TestHealthEndpoints:
    """Tests for health and metrics endpoints."""

    async def test_health_check(self, client):
        """Test health endpoint returns healthy status."""
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "healthy"
        assert data["payments"] == "stub"
        assert data["messaging"] == "stub"
        assert "timestamp" in data

    async def test_readiness_check(self, client):
        response = await client.get("/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    async def test_liveness_check(self, client):
        response = await client.get("/live")
        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    async def test_metrics_after_payment(self, client, gateway):
        """Confirmed payments show up in the Prometheus text."""
        await paid_booking(client, gateway)

        text_response = await client.get("/metrics")
        json_response = await client.get("/metrics", params={"format": "json"})

        assert text_response.status_code == 200
        assert 'fulfillment_payments_confirmed_total{kind="dinner"} 1' in text_response.text
        names = {c["name"] for c in json_response.json()["counters"]}
        assert "fulfillment_receipts_delivered_total" in names

    async def test_metrics_rejects_unknown_format(self, client):
        response = await client.get("/metrics", params={"format": "xml"})
        assert response.status_code == 400


class TestBookingEndpoints:
    """Tests for booking creation and lookup."""

    async def test_create_dinner_booking(self, client, gateway, session_factory):
        """A valid request returns a checkout link and stores a pending record."""
        response = await client.post("/api/v1/booking/dinner", json=dinner_body(2))

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert data["totalAmount"] == 150
        assert data["paymentLink"].startswith("https://checkout.stub.local/")
        assert data["paymentReference"].startswith("DINNER_")

        record = await fetch_record(session_factory, data["paymentReference"])
        assert record.status == "pending"

    async def test_missing_fields(self, client):
        """Missing required fields are a 400 naming the fields."""
        body = dinner_body(2)
        del body["phoneNumber"]

        response = await client.post("/api/v1/booking/dinner", json=body)

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["message"].startswith("Please provide all required fields")

    async def test_malformed_number_is_a_400(self, client):
        response = await client.post(
            "/api/v1/booking/dinner", json=dinner_body(2, numberOfGuests="--5")
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Number of guests must be between 1 and 10"

    async def test_guest_errors_are_listed(self, client):
        body = dinner_body(2)
        body["guestDetails"][1]["name"] = ""

        response = await client.post("/api/v1/booking/dinner", json=body)

        assert response.status_code == 400
        assert response.json()["errors"] == ["Guest 2: Name is required"]

    async def test_unknown_kind(self, client):
        response = await client.post("/api/v1/booking/raffle", json=dinner_body())

        assert response.status_code == 404
        assert response.json()["message"] == "Unknown service type: raffle"

    async def test_gateway_failure(self, client, gateway, session_factory):
        """No checkout link means a 500 and a failed record."""
        gateway.fail_initialize = True

        response = await client.post("/api/v1/booking/dinner", json=dinner_body())

        assert response.status_code == 500
        assert response.json()["message"] == "Failed to initialize payment"
        async with session_factory() as session:
            records = (await session.execute(select(DinnerReservation))).scalars().all()
        assert [r.status for r in records] == ["failed"]

    async def test_list_and_get(self, client, gateway):
        reference = await paid_booking(client, gateway)
        await book_dinner(client, email="bola@example.com", phoneNumber="+2348099999999")

        listed = await client.get("/api/v1/booking/dinner", params={"confirmed": "true"})
        single = await client.get(f"/api/v1/booking/dinner/{reference}")
        missing = await client.get("/api/v1/booking/dinner/DINNER_1_2340000000000")

        assert listed.status_code == 200
        page = listed.json()
        assert [r["paymentReference"] for r in page["data"]] == [reference]
        assert page["pagination"]["totalItems"] == 1
        assert single.json()["data"]["confirmed"] is True
        assert len(single.json()["data"]["qrCodes"]) == 2
        assert missing.status_code == 404


class TestPaymentWebhook:
    """Tests for the signed payment webhook."""

    async def test_confirms_and_delivers(self, client, gateway, messenger, session_factory):
        """A signed charge.success confirms the booking and sends the receipt."""
        reference = await book_dinner(client)

        response = await send_webhook(client, gateway, success_event(reference))

        assert response.status_code == 200
        body = response.json()
        assert body["action"] == "confirmed"
        assert body["qrCodesIssued"] == 2
        assert body["delivery"]["whatsappSent"] is True
        record = await fetch_record(session_factory, reference)
        assert record.status == "confirmed"
        assert record.delivery_status == "sent"
        assert messenger.calls["document"] == 1

    async def test_bad_signature(self, client, gateway, session_factory):
        reference = await book_dinner(client)

        response = await send_webhook(client, gateway, success_event(reference), "forged")

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid signature"
        record = await fetch_record(session_factory, reference)
        assert record.status == "pending"

    async def test_unverifiable_event_is_redelivered(self, client, gateway, session_factory):
        """A status-less event the gateway cannot confirm asks for a retry."""
        reference = await book_dinner(client)
        body = json.dumps(
            {"event": "charge.success", "data": {"reference": reference}}
        ).encode("utf-8")
        checkout = gateway.initialized.pop(reference)

        first = await send_webhook(client, gateway, body)

        assert first.status_code == 503
        assert first.json()["message"] == "Payment verification unavailable"
        assert (await fetch_record(session_factory, reference)).status == "pending"

        gateway.initialized[reference] = checkout
        gateway.mark_paid(reference)
        retry = await send_webhook(client, gateway, body)

        assert retry.status_code == 200
        assert retry.json()["action"] == "confirmed"

    async def test_missing_reference(self, client, gateway):
        body = b'{"event": "charge.success", "data": {}}'

        response = await send_webhook(client, gateway, body)

        assert response.status_code == 400
        assert response.json()["message"] == "Failed!"

    async def test_duplicate_delivery_is_idempotent(self, client, gateway, messenger):
        """The gateway retrying a webhook issues nothing new."""
        reference = await book_dinner(client)
        body = success_event(reference)

        first = await send_webhook(client, gateway, body)
        second = await send_webhook(client, gateway, body)

        assert first.json()["action"] == "confirmed"
        assert second.status_code == 200
        assert second.json()["action"] == "duplicate"
        assert second.json()["processed"] is False
        assert messenger.calls["document"] == 1

    async def test_delivery_failure_still_acknowledged(
        self, client, gateway, messenger, session_factory
    ):
        """WhatsApp being down does not make the gateway retry."""
        reference = await book_dinner(client)
        messenger.text_failures = [
            DeliveryError(ErrorType.AUTHENTICATION_FAILED, "bad key", status_code=401)
        ]

        response = await send_webhook(client, gateway, success_event(reference))

        assert response.status_code == 200
        assert response.json()["delivery"]["success"] is False
        record = await fetch_record(session_factory, reference)
        assert record.status == "confirmed"
        assert record.delivery_status == "failed"

    async def test_unknown_reference_is_acknowledged(self, client, gateway):
        body = success_event("DINNER_1735000000000_2340000000000")

        response = await send_webhook(client, gateway, body)

        assert response.status_code == 200
        assert response.json()["action"] == "not_found"


class TestReceiptEndpoints:
    """Tests for download, secure links and re-delivery."""

    async def test_download_pdf(self, client, gateway):
        reference = await paid_booking(client, gateway)

        response = await client.get("/api/v1/receipt/download", params={"ref": reference})

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.headers["cache-control"] == "public, max-age=3600"
        assert response.headers["x-content-type-options"] == "nosniff"
        assert f"GOSA_2025_dinner_{reference}.pdf" in response.headers["content-disposition"]
        assert response.content.startswith(b"%PDF")

    async def test_download_unconfirmed(self, client):
        reference = await book_dinner(client)

        response = await client.get("/api/v1/receipt/download", params={"ref": reference})

        assert response.status_code == 400
        assert response.json()["message"] == "Payment not confirmed"
        assert response.json()["error"] == "PAYMENT_NOT_CONFIRMED"

    async def test_download_unknown(self, client):
        response = await client.get(
            "/api/v1/receipt/download", params={"ref": "DINNER_1735000000000_2340000000000"}
        )

        assert response.status_code == 404
        assert response.json()["message"] == "Payment record not found"

    async def test_download_rate_limited(self, client, gateway):
        """Per-IP limit returns 429 with Retry-After."""
        reference = await paid_booking(client, gateway)
        params = {"ref": reference, "format": "html"}
        headers = {"x-forwarded-for": "198.51.100.20"}

        for _ in range(5):
            ok = await client.get("/api/v1/receipt/download", params=params, headers=headers)
            assert ok.status_code == 200

        response = await client.get("/api/v1/receipt/download", params=params, headers=headers)

        assert response.status_code == 429
        body = response.json()
        assert body["error"] == "RATE_LIMIT_EXCEEDED"
        assert body["message"].startswith("Too many requests. Please try again in ")
        assert response.headers["retry-after"] == str(body["retryAfter"])

    async def test_secure_link_download(self, client, gateway):
        """Token links work once per quota unit and are private."""
        reference = await paid_booking(client, gateway)

        link = await client.post(
            "/api/v1/receipt/secure-link",
            json={"paymentReference": reference, "maxDownloads": 1},
        )
        assert link.status_code == 200
        data = link.json()["data"]
        assert data["maxDownloads"] == 1
        url = urlparse(data["secureURL"])
        assert url.netloc == "convention.test"

        first = await client.get(f"{url.path}?{url.query}")
        second = await client.get(f"{url.path}?{url.query}")

        assert first.status_code == 200
        assert first.headers["x-downloads-remaining"] == "0"
        assert "private" in first.headers["cache-control"]
        assert second.status_code == 429
        assert second.json()["message"] == "Maximum download limit reached"

    async def test_secure_link_validation(self, client):
        response = await client.post(
            "/api/v1/receipt/secure-link",
            json={"paymentReference": "DINNER_1735000000000_2348012345678", "expiresIn": 5},
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid request body"

    async def test_stats_and_revoke(self, client, gateway, fulfillment):
        """Revoking invalidates tokens issued before it."""
        reference = await paid_booking(client, gateway)
        token = fulfillment.downloads.generate_token(reference)
        await client.get("/api/v1/receipt/download", params={"ref": reference, "token": token})

        stats = await client.get("/api/v1/receipt/stats", params={"ref": reference})
        revoked = await client.post(
            "/api/v1/receipt/revoke", json={"paymentReference": reference}
        )
        after = await client.get(
            "/api/v1/receipt/download", params={"ref": reference, "token": token}
        )

        assert stats.json()["data"]["successfulDownloads"] == 1
        assert revoked.json() == {"success": True, "message": "Download tokens revoked"}
        assert after.status_code == 401
        assert after.json()["error"] == "INVALID_TOKEN"

    async def test_stats_invalid_reference(self, client):
        response = await client.get("/api/v1/receipt/stats", params={"ref": "nope"})
        assert response.status_code == 400

    async def test_resend(self, client, gateway, messenger):
        reference = await paid_booking(client, gateway)

        response = await client.post(
            "/api/v1/receipt/resend", json={"paymentReference": reference}
        )

        assert response.status_code == 200
        assert response.json()["message"] == "Receipt sent successfully"
        assert messenger.calls["document"] == 2

    async def test_resend_failure_is_502(self, client, gateway, messenger):
        reference = await paid_booking(client, gateway)
        messenger.text_failures = [
            DeliveryError(ErrorType.AUTHENTICATION_FAILED, "bad key", status_code=401)
        ]

        response = await client.post(
            "/api/v1/receipt/resend", json={"paymentReference": reference}
        )

        assert response.status_code == 502
        assert response.json()["success"] is False

    async def test_resend_unconfirmed(self, client):
        reference = await book_dinner(client)

        response = await client.post(
            "/api/v1/receipt/resend", json={"paymentReference": reference}
        )

        assert response.status_code == 400


class TestQREndpoints:
    """Tests for QR validation and admin regeneration."""

    async def test_validate_issued_code(self, client, gateway, session_factory):
        reference = await paid_booking(client, gateway)
        record = await fetch_record(session_factory, reference)

        response = await client.post(
            "/api/v1/qr/validate", json={"qrData": record.qr_codes[0]["code"]}
        )

        body = response.json()
        assert response.status_code == 200
        assert body["valid"] is True
        assert body["data"]["type"] == "dinner"
        assert body["data"]["metadata"]["paymentReference"] == reference

    async def test_validate_garbage(self, client):
        response = await client.post("/api/v1/qr/validate", json={"qrData": "hello"})

        assert response.json() == {
            "success": False,
            "valid": False,
            "data": None,
            "error": "Invalid QR code format",
        }

    async def test_validate_requires_data(self, client):
        response = await client.post("/api/v1/qr/validate", json={})
        assert response.status_code == 400
        assert response.json()["message"] == "qrData is required"

    async def test_regenerate_and_history(self, client, gateway, session_factory):
        """Admin regeneration swaps codes and leaves an audit row per seat."""
        reference = await paid_booking(client, gateway)
        old = await fetch_record(session_factory, reference)

        response = await client.post(
            "/api/v1/admin/qr/regenerate",
            json={
                "serviceType": "dinner",
                "serviceId": reference,
                "adminId": "admin-1",
                "reason": "Guest lost phone",
            },
        )
        history = await client.get("/api/v1/admin/qr/history", params={"serviceId": reference})

        assert response.status_code == 200
        body = response.json()
        assert body["oldQRCode"] == old.qr_codes[0]["code"]
        assert body["newQRCode"] != body["oldQRCode"]
        rows = history.json()["data"]
        assert len(rows) == 2
        assert rows[0]["regeneratedBy"] == "admin-1"
        assert rows[0]["serviceId"] == reference

        fresh = await client.post("/api/v1/qr/validate", json={"qrData": body["newQRCode"]})
        assert fresh.json()["valid"] is True

    async def test_regenerate_requires_admin(self, client):
        response = await client.post(
            "/api/v1/admin/qr/regenerate",
            json={"serviceType": "dinner", "serviceId": "DINNER_1_2340000000000"},
        )
        assert response.status_code == 400
        assert response.json()["message"] == "adminId is required"

    async def test_regenerate_not_found(self, client):
        response = await client.post(
            "/api/v1/admin/qr/regenerate",
            json={
                "serviceType": "dinner",
                "serviceId": "DINNER_1_2340000000000",
                "adminId": "admin-1",
            },
        )
        assert response.status_code == 404

    async def test_regenerate_unconfirmed(self, client):
        reference = await book_dinner(client)

        response = await client.post(
            "/api/v1/admin/qr/regenerate",
            json={"serviceType": "dinner", "serviceId": reference, "adminId": "admin-1"},
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Payment not confirmed"

    async def test_history_requires_service_id(self, client):
        response = await client.get("/api/v1/admin/qr/history")
        assert response.status_code == 400
        assert response.json()["message"] == "serviceId is required"
