"""Webhook delivery of invitation messages.

The receiving service (mail relay, chat bot, ...) gets a signed JSON body and
is responsible for the actual delivery.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import UTC, datetime

import httpx
import structlog

from spacegate.exceptions import NotificationError

logger = structlog.get_logger(__name__)

EVENT_TYPE = "invitation.created"


@dataclass
class WebhookConfig:
    url: str
    secret: str | None = None
    timeout_seconds: float = 10.0


class WebhookInvitationNotifier:
    """POSTs invitation messages to a webhook, HMAC-signed when a secret is set."""

    def __init__(self, config: WebhookConfig, client: httpx.AsyncClient | None = None) -> None:
        self.config = config
        self._client = client

    async def send_invitation_message(
        self, email: str, redeem_url: str, expires_at: datetime
    ) -> None:
        body = json.dumps(
            {
                "event_type": EVENT_TYPE,
                "timestamp": datetime.now(UTC).isoformat(),
                "payload": {
                    "email": email,
                    "redeem_url": redeem_url,
                    "expires_at": expires_at.isoformat(),
                },
            }
        )
        headers = {"Content-Type": "application/json", "User-Agent": "SpaceGate-Webhook/1.0"}
        if self.config.secret:
            headers["X-Webhook-Signature"] = f"sha256={sign(body.encode(), self.config.secret)}"

        try:
            if self._client is not None:
                response = await self._post(self._client, body, headers)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._post(client, body, headers)
        except httpx.TimeoutException as exc:
            logger.warning("webhook_timeout", url=self.config.url, event_type=EVENT_TYPE)
            msg = "Invitation webhook timed out"
            raise NotificationError(msg) from exc
        except httpx.RequestError as exc:
            logger.error("webhook_error", url=self.config.url, error=str(exc))
            msg = f"Invitation webhook failed: {exc}"
            raise NotificationError(msg) from exc

        logger.info(
            "webhook_sent",
            url=self.config.url,
            event_type=EVENT_TYPE,
            status_code=response.status_code,
            success=response.is_success,
        )
        if not response.is_success:
            msg = f"Invitation webhook returned HTTP {response.status_code}"
            raise NotificationError(msg)

    async def _post(
        self, client: httpx.AsyncClient, body: str, headers: dict[str, str]
    ) -> httpx.Response:
        return await client.post(
            self.config.url, content=body, headers=headers, timeout=self.config.timeout_seconds
        )


def sign(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature_header: str, secret: str) -> bool:
    """Check an ``X-Webhook-Signature`` header on the receiving side."""
    if not signature_header.startswith("sha256="):
        return False
    return hmac.compare_digest(sign(body, secret), signature_header.removeprefix("sha256="))
