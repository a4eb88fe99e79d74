from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import httpx


logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    status: str  # sent / queued / failed
    error: str | None = None


class DeliveryClient:
    """Hands a rendered message to the chat/SMS provider webhook. No retries, no receipts."""

    def __init__(self, *, webhook_url: str | None = None, timeout: float | None = None, http_client: httpx.Client | None = None) -> None:
        self._webhook_url = webhook_url
        self._timeout = timeout if timeout is not None else 10.0
        self._http_client = http_client

    @classmethod
    def from_env(cls) -> "DeliveryClient":
        return cls(
            webhook_url=os.getenv("DELIVERY_WEBHOOK_URL"),
            timeout=float(os.getenv("DELIVERY_TIMEOUT_SECONDS") or "10"),
        )

    def send(self, *, destination: str | None, text: str, channel: str) -> DeliveryResult:
        if not self._webhook_url:
            # picked up later by the channel service
            return DeliveryResult(status="queued")
        if not destination:
            return DeliveryResult(status="failed", error="missing destination")

        close_client = False
        client = self._http_client
        if client is None:
            client = httpx.Client(timeout=self._timeout)
            close_client = True

        try:
            response = client.post(
                self._webhook_url,
                json={"channel": channel, "to": destination, "text": text},
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("message dispatch failed", extra={"channel": channel, "error": str(exc)})
            return DeliveryResult(status="failed", error=str(exc) or exc.__class__.__name__)
        finally:
            if close_client:
                client.close()

        return DeliveryResult(status="sent")


def default_channel() -> str:
    return os.getenv("DELIVERY_DEFAULT_CHANNEL") or "whatsapp"
