"""Tests for fulfillment domain events, the emitter and metrics."""

import json
from datetime import datetime, timezone
from uuid import UUID, uuid4

from convention_fulfillment.events import (
    BookingCreated,
    DownloadRejected,
    DownloadServed,
    EventCategory,
    EventEmitter,
    EventMetadata,
    PaymentConfirmed,
    QRCodesIssued,
    ReceiptDelivered,
    ReceiptDeliveryFailed,
)
from convention_fulfillment.metrics import MetricsRecorder

REF = "DINNER_1735000000000_2348012345678"


def make_metadata(**kwargs) -> EventMetadata:
    return EventMetadata.create(correlation_id=REF, **kwargs)


def confirmed(already: bool = False) -> PaymentConfirmed:
    return PaymentConfirmed(
        metadata=make_metadata(actor_type="webhook"),
        service_kind="dinner",
        payment_reference=REF,
        amount=150,
        already_confirmed=already,
    )


class TestEventMetadata:
    """Test event metadata creation."""

    def test_create_generates_ids(self):
        """Metadata gets an id and timestamp automatically."""
        metadata = EventMetadata.create(actor_type="admin", actor_id="admin-1")

        assert isinstance(metadata.event_id, UUID)
        assert metadata.timestamp.tzinfo is not None
        assert metadata.actor_type == "admin"
        assert metadata.source_service == "fulfillment"
        # Without a payment reference a fresh correlation id is used
        assert UUID(metadata.correlation_id)


class TestDomainEvents:
    """Test event types."""

    def test_type_and_category(self):
        """Events route by class name and category."""
        event = confirmed()

        assert event.event_type == "PaymentConfirmed"
        assert event.category == EventCategory.PAYMENT

    def test_serialization(self):
        """UUIDs and datetimes become strings."""
        user_id = uuid4()
        event = BookingCreated(
            metadata=make_metadata(),
            service_kind="dinner",
            payment_reference=REF,
            user_id=user_id,
            amount=150,
            seats=2,
        )

        data = json.loads(event.to_json())

        assert data["event_type"] == "BookingCreated"
        assert data["category"] == "booking"
        assert data["user_id"] == str(user_id)
        assert data["metadata"]["correlation_id"] == REF

    def test_qr_event_category(self):
        event = QRCodesIssued(
            metadata=make_metadata(),
            service_kind="dinner",
            payment_reference=REF,
            count=2,
            valid_until=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )
        assert event.category == EventCategory.QR
        assert event.to_dict()["valid_until"] == "2026-01-01T00:00:00+00:00"


class TestEventEmitter:
    """Test handler registration and dispatch."""

    def test_on_specific_type(self):
        emitter = EventEmitter()
        received = []
        emitter.on(PaymentConfirmed, received.append)

        emitter.emit(confirmed())
        emitter.emit(
            DownloadRejected(
                metadata=make_metadata(),
                payment_reference=REF,
                client_ip="1.1.1.1",
                reason="rate_limit",
                status_code=429,
                detail="Too many requests",
            )
        )

        assert len(received) == 1

    def test_on_category(self):
        emitter = EventEmitter()
        received = []
        emitter.on_category(EventCategory.DELIVERY, received.append)

        emitter.emit(confirmed())
        emitter.emit(
            ReceiptDelivered(
                metadata=make_metadata(),
                service_kind="dinner",
                payment_reference=REF,
                message_id="m1",
                fallback_used=False,
                retry_attempts=0,
                duration_ms=12,
            )
        )

        assert [e.event_type for e in received] == ["ReceiptDelivered"]

    def test_failing_handler_is_isolated(self):
        """One broken handler does not stop the others or the caller."""
        emitter = EventEmitter()
        received = []

        def broken(event):
            raise RuntimeError("handler bug")

        emitter.on_all(broken)
        emitter.on_all(received.append)

        errors = emitter.emit(confirmed())

        assert len(errors) == 1
        assert len(received) == 1

    def test_off(self):
        emitter = EventEmitter()
        received = []

        def handler(event):
            received.append(event)

        emitter.on_all(handler)
        emitter.off(handler)

        emitter.emit(confirmed())

        assert received == []

    def test_subscribe_to_several_types(self):
        emitter = EventEmitter()
        received = []
        emitter.on([PaymentConfirmed, ReceiptDelivered], received.append)

        emitter.emit(confirmed())
        emitter.emit(confirmed(already=True))

        assert len(received) == 2


class TestMetricsRecorder:
    """Test folding events into counters."""

    def test_confirmations_and_duplicates(self):
        """Duplicate webhooks are counted apart from confirmations."""
        recorder = MetricsRecorder()

        recorder(confirmed())
        recorder(confirmed(already=True))
        recorder(confirmed(already=True))

        assert recorder.value("fulfillment_payments_confirmed_total", kind="dinner") == 1
        assert recorder.value("fulfillment_webhook_duplicates_total", kind="dinner") == 2

    def test_delivery_and_download_metrics(self):
        recorder = MetricsRecorder()
        recorder(
            ReceiptDeliveryFailed(
                metadata=make_metadata(),
                service_kind="dinner",
                payment_reference=REF,
                error_type="FALLBACK_DELIVERY_FAILED",
                error="everything failed",
                pdf_generated=True,
                retry_attempts=4,
            )
        )
        for duration in (10, 30):
            recorder(
                DownloadServed(
                    metadata=make_metadata(),
                    payment_reference=REF,
                    client_ip="1.1.1.1",
                    output_format="pdf",
                    secure=False,
                    duration_ms=duration,
                    size_bytes=2048,
                )
            )

        snapshot = recorder.snapshot()
        gauges = {g.name: g.value for g in snapshot.gauges}

        assert (
            recorder.value(
                "fulfillment_receipts_failed_total",
                kind="dinner",
                error_type="FALLBACK_DELIVERY_FAILED",
            )
            == 1
        )
        assert recorder.value("fulfillment_downloads_served_total", format="pdf") == 2
        assert gauges["fulfillment_download_latency_ms_last"] == 30
        assert gauges["fulfillment_download_latency_ms_avg"] == 20

    def test_prometheus_export(self):
        recorder = MetricsRecorder()
        recorder(confirmed())

        text = recorder.snapshot().to_prometheus()

        assert "# TYPE fulfillment_payments_confirmed_total counter" in text
        assert 'fulfillment_payments_confirmed_total{kind="dinner"} 1' in text
        assert "# TYPE fulfillment_download_latency_ms_avg gauge" in text

    def test_json_export(self):
        recorder = MetricsRecorder()
        recorder(confirmed())

        data = json.loads(recorder.snapshot().to_json())

        assert data["counters"][0]["name"] == "fulfillment_payments_confirmed_total"
        assert data["counters"][0]["labels"] == {"kind": "dinner"}
