"""
Cancellation Registry — user identity → recurring fetch registrations.

Repeat keys are a pure function of the user id, so registration is
idempotent and cancellation is an exact match (user "u1" never matches
the key of user "u10").
"""
from __future__ import annotations

from typing import Optional

import structlog

from job_queue.message_queue import (
    JobStore, Queues, RepeatRegistration, Stage, next_boundary_ms, now_ms,
)
from job_queue.payloads import FetchPayload, encode_payload
from models.schemas import User

logger = structlog.get_logger()

REPEAT_KEY_NAMESPACE = "fetch:user:"


def repeat_key_for(user_id: str) -> str:
    if not user_id:
        raise ValueError("user_id is required to derive a repeat key")
    return f"{REPEAT_KEY_NAMESPACE}{user_id}"


class CancellationRegistry:
    """Locates and removes the repeat registrations a user owns."""

    def __init__(self, store: JobStore, queue: str = Queues.FETCH):
        self.store = store
        self.queue = queue

    async def register(self, user: User, every_ms: int, immediately: bool = False,
                       now: Optional[int] = None) -> bool:
        """Returns True if a new registration was created, False if one already existed."""
        now = now if now is not None else now_ms()
        registration = RepeatRegistration(
            key=repeat_key_for(user.id),
            name=Stage.FETCH.value,
            user_id=user.id,
            every_ms=every_ms,
            payload=encode_payload(FetchPayload(user=user)),
            next_run_ms=now if immediately else next_boundary_ms(every_ms, now),
        )
        if await self.store.add_repeating(self.queue, registration):
            return True
        # Re-authentication: keep the single entry, carry the fresh credentials
        await self.store.refresh_repeating(self.queue, registration)
        return False

    async def keys_for(self, user_id: str) -> list[str]:
        key = repeat_key_for(user_id)
        return [r.key for r in await self.store.list_repeating(self.queue) if r.key == key]

    async def cancel(self, user_id: str) -> int:
        removed = 0
        for key in await self.keys_for(user_id):
            if await self.store.cancel_repeating(self.queue, key):
                removed += 1
        return removed
