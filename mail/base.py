"""
Mail client interface consumed by the pipeline.

Every method may raise MailClientError (transient network failure or an
invalid credential). The pipeline treats both the same way: as a failed
attempt of the current stage.
"""
from __future__ import annotations

import abc

from models.schemas import Email, MessageRef, User


class MailClient(abc.ABC):
    """Abstract base for mail providers."""

    @abc.abstractmethod
    async def list_unread(self, user: User, max_results: int = 10) -> list[MessageRef]:
        ...

    @abc.abstractmethod
    async def fetch_detail(self, user: User, ref: MessageRef) -> Email:
        ...

    @abc.abstractmethod
    async def send_reply(self, user: User, original: Email, reply_body: str) -> bool:
        ...

    @abc.abstractmethod
    async def mark_read(self, user: User, message_id: str) -> bool:
        ...

    async def close(self) -> None:
        """Release transport resources. Optional for implementations."""
        return None
