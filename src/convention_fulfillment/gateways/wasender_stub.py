"""In-memory messaging provider for local development and testing."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from convention_fulfillment.gateways.base import MessageResult
from convention_fulfillment.gateways.wasender import validate_phone_number


@dataclass
class SentMessage:
    """A message captured by the stub."""

    kind: str  # 'text' | 'document'
    to: str
    text: str
    document_url: str | None = None
    file_name: str | None = None


class StubMessagingProvider:
    """Stub messaging provider.

    Scripted failures are consumed in order: each call pops the next
    exception from the matching list and raises it, then calls succeed
    once the list is empty.
    """

    provider_name = "wasender_stub"

    def __init__(
        self,
        text_failures: list[Exception] | None = None,
        document_failures: list[Exception] | None = None,
    ):
        self.text_failures = list(text_failures or [])
        self.document_failures = list(document_failures or [])
        self.sent: list[SentMessage] = []
        self.calls: dict[str, int] = {"text": 0, "document": 0}

    def _message_id(self) -> str:
        return f"stub-{uuid.uuid4().hex[:10]}"

    async def send_text(self, *, to: str, text: str) -> MessageResult:
        self.calls["text"] += 1
        number = validate_phone_number(to)
        if self.text_failures:
            raise self.text_failures.pop(0)
        self.sent.append(SentMessage(kind="text", to=number, text=text))
        return MessageResult(message_id=self._message_id())

    async def send_document(
        self,
        *,
        to: str,
        text: str,
        document_url: str,
        file_name: str,
    ) -> MessageResult:
        self.calls["document"] += 1
        number = validate_phone_number(to)
        if self.document_failures:
            raise self.document_failures.pop(0)
        self.sent.append(
            SentMessage(
                kind="document",
                to=number,
                text=text,
                document_url=document_url,
                file_name=file_name,
            )
        )
        return MessageResult(message_id=self._message_id())

    def messages(self, kind: str | None = None) -> list[SentMessage]:
        return [m for m in self.sent if kind is None or m.kind == kind]

    def last(self) -> Any:
        return self.sent[-1] if self.sent else None
