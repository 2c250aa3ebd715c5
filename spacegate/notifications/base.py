"""Invitation delivery contract and the default logging notifier."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import structlog

if TYPE_CHECKING:
    from datetime import datetime

logger = structlog.get_logger(__name__)


class InvitationNotifier(Protocol):
    async def send_invitation_message(
        self, email: str, redeem_url: str, expires_at: datetime
    ) -> None:
        """Deliver the invitation. Raises NotificationError on failure."""
        ...


class LogInvitationNotifier:
    """Records that an invitation is ready without sending anything.

    Used in development and when no delivery channel is configured. The
    redeem URL carries the bearer token, so it is never logged.
    """

    async def send_invitation_message(
        self, email: str, redeem_url: str, expires_at: datetime
    ) -> None:
        logger.info("invitation_message_skipped", email=email, expires_at=expires_at.isoformat())
