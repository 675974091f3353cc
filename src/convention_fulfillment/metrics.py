"""Fulfillment observability metrics.

Counters and gauges are folded in-process from domain events. The recorder
is registered on the emitter as a catch-all handler.

Metric Categories:
- Booking metrics: created, rejected by validation
- Payment metrics: confirmations, duplicate webhooks, failures
- QR metrics: issued, regenerated
- Delivery metrics: delivered, fallback used, failed
- Download metrics: served, rejected by reason, latency

Usage:
    recorder = MetricsRecorder()
    emitter.on_all(recorder)
    print(recorder.snapshot().to_prometheus())
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from convention_fulfillment.events.types import (
    BookingCreated,
    BookingValidationFailed,
    DomainEvent,
    DownloadRejected,
    DownloadServed,
    PaymentConfirmed,
    PaymentFailed,
    PaymentInitializationFailed,
    QRCodeRegenerated,
    QRCodesIssued,
    ReceiptDelivered,
    ReceiptDeliveryFailed,
    WebhookReferenceNotFound,
)


@dataclass
class Counter:
    """Running total of events with the same labels."""

    name: str
    value: int
    labels: dict[str, str] = field(default_factory=dict)
    help_text: str = ""


@dataclass
class Gauge:
    """Last observed value, such as a latency in milliseconds."""

    name: str
    value: float | int
    labels: dict[str, str] = field(default_factory=dict)
    help_text: str = ""


HELP_TEXT: dict[str, str] = {
    "fulfillment_bookings_created_total": "Pending bookings written with a checkout link",
    "fulfillment_bookings_rejected_total": "Booking requests rejected by validation",
    "fulfillment_payment_init_failed_total": "Gateway initialization failures",
    "fulfillment_payments_confirmed_total": "Records confirmed by webhook",
    "fulfillment_webhook_duplicates_total": "Webhooks for already-confirmed records",
    "fulfillment_payments_failed_total": "Charges reported failed by the gateway",
    "fulfillment_webhook_unknown_reference_total": "Webhooks with no matching record",
    "fulfillment_qr_codes_issued_total": "QR codes issued on confirmation",
    "fulfillment_qr_codes_regenerated_total": "QR codes replaced by an admin",
    "fulfillment_receipts_delivered_total": "Receipts delivered over WhatsApp",
    "fulfillment_receipts_fallback_total": "Deliveries that fell back to a link",
    "fulfillment_receipts_failed_total": "Deliveries where every path failed",
    "fulfillment_downloads_served_total": "Receipt downloads served",
    "fulfillment_downloads_rejected_total": "Receipt downloads refused",
    "fulfillment_download_latency_ms_last": "Latency of the most recent download",
    "fulfillment_download_latency_ms_avg": "Average download latency",
}


@dataclass
class FulfillmentMetrics:
    """Point-in-time collection of all fulfillment metrics."""

    counters: list[Counter]
    gauges: list[Gauge]
    collected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """Counters and gauges as plain lists for the JSON endpoint."""
        return {
            "collected_at": self.collected_at.isoformat(),
            "counters": [self._metric_to_dict(c) for c in self.counters],
            "gauges": [self._metric_to_dict(g) for g in self.gauges],
        }

    def _metric_to_dict(self, metric: Counter | Gauge) -> dict[str, Any]:
        return {
            "name": metric.name,
            "value": metric.value,
            "labels": metric.labels,
            "help": metric.help_text,
        }

    def to_json(self) -> str:
        """Pretty-printed JSON for the CLI."""
        return json.dumps(self.to_dict(), indent=2)

    def to_prometheus(self) -> str:
        """Text exposition format, one HELP and TYPE header per metric."""
        lines: list[str] = []
        described: set[str] = set()

        def emit(metric: Counter | Gauge) -> None:
            labels = ""
            if metric.labels:
                label_parts = [f'{k}="{v}"' for k, v in sorted(metric.labels.items())]
                labels = "{" + ",".join(label_parts) + "}"

            if metric.name not in described:
                if metric.help_text:
                    lines.append(f"# HELP {metric.name} {metric.help_text}")
                metric_type = "counter" if isinstance(metric, Counter) else "gauge"
                lines.append(f"# TYPE {metric.name} {metric_type}")
                described.add(metric.name)
            lines.append(f"{metric.name}{labels} {metric.value}")

        for counter in self.counters:
            emit(counter)
        for gauge in self.gauges:
            emit(gauge)

        return "\n".join(lines) + "\n"


class MetricsRecorder:
    """Event handler that folds domain events into counters and gauges."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: dict[tuple[str, tuple[tuple[str, str], ...]], int] = {}
        self._latency_total_ms = 0
        self._latency_samples = 0
        self._latency_last_ms = 0

    def __call__(self, event: DomainEvent) -> None:
        with self._lock:
            self._record(event)

    def _incr(self, name: str, amount: int = 1, **labels: str) -> None:
        key = (name, tuple(sorted(labels.items())))
        self._counts[key] = self._counts.get(key, 0) + amount

    def _record(self, event: DomainEvent) -> None:
        if isinstance(event, BookingCreated):
            self._incr("fulfillment_bookings_created_total", kind=event.service_kind)
        elif isinstance(event, BookingValidationFailed):
            self._incr("fulfillment_bookings_rejected_total", kind=event.service_kind)
        elif isinstance(event, PaymentInitializationFailed):
            self._incr("fulfillment_payment_init_failed_total", kind=event.service_kind)
        elif isinstance(event, PaymentConfirmed):
            if event.already_confirmed:
                self._incr("fulfillment_webhook_duplicates_total", kind=event.service_kind)
            else:
                self._incr("fulfillment_payments_confirmed_total", kind=event.service_kind)
        elif isinstance(event, PaymentFailed):
            self._incr("fulfillment_payments_failed_total", kind=event.service_kind)
        elif isinstance(event, WebhookReferenceNotFound):
            self._incr("fulfillment_webhook_unknown_reference_total")
        elif isinstance(event, QRCodesIssued):
            self._incr(
                "fulfillment_qr_codes_issued_total", event.count, kind=event.service_kind
            )
        elif isinstance(event, QRCodeRegenerated):
            self._incr("fulfillment_qr_codes_regenerated_total", kind=event.service_kind)
        elif isinstance(event, ReceiptDelivered):
            self._incr("fulfillment_receipts_delivered_total", kind=event.service_kind)
            if event.fallback_used:
                self._incr("fulfillment_receipts_fallback_total", kind=event.service_kind)
        elif isinstance(event, ReceiptDeliveryFailed):
            self._incr(
                "fulfillment_receipts_failed_total",
                kind=event.service_kind,
                error_type=event.error_type,
            )
        elif isinstance(event, DownloadServed):
            self._incr("fulfillment_downloads_served_total", format=event.output_format)
            self._latency_last_ms = event.duration_ms
            self._latency_total_ms += event.duration_ms
            self._latency_samples += 1
        elif isinstance(event, DownloadRejected):
            self._incr("fulfillment_downloads_rejected_total", reason=event.reason)

    def value(self, name: str, **labels: str) -> int:
        """Current value of a counter; zero if never incremented."""
        with self._lock:
            return self._counts.get((name, tuple(sorted(labels.items()))), 0)

    def snapshot(self) -> FulfillmentMetrics:
        """Copy the current state into an exportable collection."""
        with self._lock:
            counters = [
                Counter(
                    name=name,
                    value=value,
                    labels=dict(labels),
                    help_text=HELP_TEXT.get(name, ""),
                )
                for (name, labels), value in sorted(self._counts.items())
            ]
            average = (
                self._latency_total_ms / self._latency_samples
                if self._latency_samples
                else 0
            )
            gauges = [
                Gauge(
                    name="fulfillment_download_latency_ms_last",
                    value=self._latency_last_ms,
                    help_text=HELP_TEXT["fulfillment_download_latency_ms_last"],
                ),
                Gauge(
                    name="fulfillment_download_latency_ms_avg",
                    value=round(average, 2),
                    help_text=HELP_TEXT["fulfillment_download_latency_ms_avg"],
                ),
            ]
        return FulfillmentMetrics(counters=counters, gauges=gauges)
