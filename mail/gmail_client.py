"""
Gmail REST client — unread listing, message detail, reply, mark-read.

Uses the caller's OAuth access token per request; the client never
refreshes credentials. A 401/403 surfaces as MailClientError like any
other failure.

API Docs: https://developers.google.com/gmail/api/reference/rest
"""
from __future__ import annotations

import base64
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import Any, Optional

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from config.settings import MailConfig
from core.errors import MailClientError
from mail.base import MailClient
from models.schemas import Attachment, Email, MessageRef, User

logger = structlog.get_logger()

UNREAD_LABEL = "UNREAD"


def _b64url_decode(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _split_addresses(value: str) -> list[str]:
    return [a.strip() for a in value.split(",") if a.strip()]


def _never_reached_gmail(exc: BaseException) -> bool:
    """Connection-level failures only; a request Gmail may have seen is not repeated."""
    return isinstance(exc, MailClientError) and isinstance(
        exc.__cause__, (httpx.ConnectError, httpx.ConnectTimeout),
    )


class GmailClient(MailClient):
    """Gmail v1 API client for the authenticated user's mailbox."""

    def __init__(self, config: MailConfig = None, transport: httpx.AsyncBaseTransport = None):
        self.config = config or MailConfig()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=httpx.Timeout(
                    self.config.timeout_seconds,
                    connect=self.config.connect_timeout_seconds,
                ),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    @retry(
        retry=retry_if_exception(_never_reached_gmail),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, max=2),
        reraise=True,
    )
    async def _request(self, user: User, method: str, path: str, **kwargs) -> dict[str, Any]:
        client = await self._get_client()
        headers = {"Authorization": f"Bearer {user.access_token}"}
        try:
            resp = await client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise MailClientError(f"gmail {method} {path} failed: {e}") from e

        if resp.status_code >= 400:
            logger.error("gmail_api_error",
                         status=resp.status_code,
                         body=resp.text[:500],
                         path=path,
                         user_id=user.id)
            raise MailClientError(
                f"gmail {method} {path} returned {resp.status_code}",
                status_code=resp.status_code,
            )
        try:
            return resp.json() if resp.content else {}
        except ValueError as e:
            raise MailClientError(f"gmail {method} {path} returned invalid JSON") from e

    # ── Listing / detail ────────────────────────────────────

    async def list_unread(self, user: User, max_results: int = 10) -> list[MessageRef]:
        data = await self._request(user, "GET", "/messages", params={"maxResults": max_results, "q": "is:unread"})
        refs = [MessageRef.model_validate(m) for m in data.get("messages") or []]
        logger.debug("gmail_unread_listed", user_id=user.id, count=len(refs))
        return refs

    async def fetch_detail(self, user: User, ref: MessageRef) -> Email:
        data = await self._request(user, "GET", f"/messages/{ref.id}", params={"format": "full"})
        try:
            return self.parse_message(data)
        except (KeyError, TypeError, ValueError) as e:
            raise MailClientError(f"gmail message {ref.id} could not be parsed: {e}") from e

    # ── Send / modify ───────────────────────────────────────

    async def send_reply(self, user: User, original: Email, reply_body: str) -> bool:
        raw = self.build_reply(user, original, reply_body)
        body: dict[str, Any] = {"raw": _b64url_encode(raw)}
        if original.thread_id:
            body["threadId"] = original.thread_id
        await self._request(user, "POST", "/messages/send", json=body)
        logger.info("gmail_reply_sent", user_id=user.id, email_id=original.id)
        return True

    async def mark_read(self, user: User, message_id: str) -> bool:
        await self._request(
            user, "POST", f"/messages/{message_id}/modify",
            json={"removeLabelIds": [UNREAD_LABEL]},
        )
        logger.info("gmail_marked_read", user_id=user.id, email_id=message_id)
        return True

    # ── Parsing ─────────────────────────────────────────────

    @classmethod
    def parse_message(cls, data: dict[str, Any]) -> Email:
        payload = data.get("payload") or {}
        headers = {h["name"].lower(): h["value"] for h in payload.get("headers", [])}
        labels = data.get("labelIds") or []
        internal_ms = int(data.get("internalDate") or 0)

        return Email(
            id=data["id"],
            thread_id=data.get("threadId"),
            sender=headers.get("from", ""),
            to=_split_addresses(headers.get("to", "")),
            cc=_split_addresses(headers.get("cc", "")),
            bcc=_split_addresses(headers.get("bcc", "")),
            subject=headers.get("subject", ""),
            body=cls.parse_body(payload),
            date=datetime.fromtimestamp(internal_ms / 1000, tz=timezone.utc),
            is_read=UNREAD_LABEL not in labels,
            labels=labels,
            attachments=cls.parse_attachments(payload),
        )

    @staticmethod
    def parse_body(payload: dict[str, Any]) -> str:
        """text/plain wins; text/html is the fallback."""
        data = (payload.get("body") or {}).get("data")
        if data:
            return _b64url_decode(data)

        html = ""
        for part in payload.get("parts") or []:
            part_data = (part.get("body") or {}).get("data")
            if not part_data:
                continue
            if part.get("mimeType") == "text/plain":
                return _b64url_decode(part_data)
            if part.get("mimeType") == "text/html" and not html:
                html = _b64url_decode(part_data)
        return html

    @staticmethod
    def parse_attachments(payload: dict[str, Any]) -> list[Attachment]:
        attachments: list[Attachment] = []

        def walk(part: dict[str, Any]):
            body = part.get("body") or {}
            if body.get("attachmentId") and (part.get("filename") or "").strip():
                attachments.append(Attachment(
                    id=body["attachmentId"],
                    filename=part["filename"],
                    content_type=part.get("mimeType", ""),
                    size=body.get("size", 0),
                ))
            for sub in part.get("parts") or []:
                walk(sub)

        for part in payload.get("parts") or []:
            walk(part)
        return attachments

    @staticmethod
    def build_reply(user: User, original: Email, reply_body: str) -> bytes:
        msg = EmailMessage()
        msg["From"] = user.email or (original.to[0] if original.to else "")
        msg["To"] = original.sender
        subject = original.subject
        msg["Subject"] = subject if subject.lower().startswith("re:") else f"Re: {subject}"
        msg["In-Reply-To"] = f"<{original.id}@mail.gmail.com>"
        msg["References"] = f"<{original.id}@mail.gmail.com>"

        quoted = "\n".join(f"> {line}" for line in original.body.split("\n"))
        msg.set_content(
            f"{reply_body}\n\n"
            f"On {original.date.isoformat()}, {original.sender} wrote:\n\n"
            f"{quoted}\n"
        )
        return msg.as_bytes()
