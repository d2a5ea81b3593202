"""
Single-use anti-forgery tickets.

A ticket is issued to one user when a form is rendered and must accompany
the state-changing request that form submits. Tickets expire after a few
minutes and are deleted on their first successful validation, so a replayed
or foreign ticket always fails.
"""

import logging
import re
from datetime import timedelta

from .exceptions import CsrfRejected
from .records import CSRF_CODEC, guarded
from .store import KeyValueStore
from .types import CsrfTicket
from .utils import Clock, generate_token, mask_token, utc_now

logger = logging.getLogger(__name__)

CSRF_PREFIX = "csrf/"
TICKET_PATTERN = re.compile(r"^[A-Za-z0-9_-]{22,128}$")


class CsrfGuard:
    """Issues and redeems CSRF tickets scoped to a username."""

    def __init__(
        self,
        store: KeyValueStore,
        ttl_seconds: int = 600,
        token_bytes: int = 32,
        clock: Clock | None = None,
    ):
        if ttl_seconds <= 0:
            raise ValueError("CSRF ttl_seconds must be positive")
        if token_bytes < 16:
            raise ValueError("CSRF tokens need at least 16 bytes (128 bits) of entropy")

        self.store = store
        self.ttl = timedelta(seconds=ttl_seconds)
        self.token_bytes = token_bytes
        self._clock = clock or utc_now

    @staticmethod
    def key(username: str, token: str) -> str:
        return f"{CSRF_PREFIX}{username}/{token}"

    async def issue(self, username: str) -> str:
        """Create a ticket for ``username`` and return its token."""
        ticket = CsrfTicket(
            username=username,
            token=generate_token(self.token_bytes),
            expires_at=self._clock() + self.ttl,
        )
        await guarded(
            self.store.put(
                self.key(username, ticket.token),
                CSRF_CODEC.encode(ticket),
                ttl_seconds=self.ttl.total_seconds(),
            ),
            "save csrf ticket",
        )
        return ticket.token

    async def validate(self, username: str, token: str | None) -> bool:
        """
        Redeem a ticket.

        Returns:
            True exactly once for a live ticket issued to ``username``
        """
        if not token or not TICKET_PATTERN.match(token):
            return False

        key = self.key(username, token)
        raw = await guarded(self.store.get(key), "load csrf ticket")
        if raw is None:
            return False

        ticket = CSRF_CODEC.decode(raw)
        if ticket.username != username or ticket.token != token or ticket.consumed:
            return False

        if ticket.is_expired(self._clock()):
            await guarded(self.store.delete(key), "delete csrf ticket")
            return False

        # Only the request whose delete removed the ticket may use it
        return await guarded(self.store.delete(key), "delete csrf ticket")

    async def require(self, username: str, token: str | None) -> None:
        """
        Redeem a ticket or refuse the request.

        Raises:
            CsrfRejected: If the ticket is missing, expired, reused or foreign
        """
        if not await self.validate(username, token):
            logger.warning(f"CSRF ticket {mask_token(token)} rejected for {username!r}")
            raise CsrfRejected()
