"""Tests for the Gmail REST client using httpx.MockTransport."""
import base64
import json

import httpx
import pytest

from config.settings import MailConfig
from core.errors import MailClientError
from mail.gmail_client import GmailClient
from models.schemas import MessageRef
from tests.fakes import make_email


def b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


FULL_MESSAGE = {
    "id": "m1",
    "threadId": "t1",
    "labelIds": ["UNREAD", "INBOX"],
    "internalDate": "1714555800000",
    "payload": {
        "mimeType": "multipart/mixed",
        "headers": [
            {"name": "From", "value": "Alice <alice@example.com>"},
            {"name": "To", "value": "u1@example.com, team@example.com"},
            {"name": "Cc", "value": "boss@example.com"},
            {"name": "Subject", "value": "Server is down"},
        ],
        "parts": [
            {"mimeType": "text/html", "body": {"data": b64("<p>Please help</p>")}},
            {"mimeType": "text/plain", "body": {"data": b64("Please help")}},
            {
                "mimeType": "multipart/related",
                "parts": [
                    {"mimeType": "application/pdf", "filename": "logs.pdf",
                     "body": {"attachmentId": "att-1", "size": 2048}},
                ],
            },
        ],
    },
}


def make_client(handler) -> GmailClient:
    return GmailClient(MailConfig(), transport=httpx.MockTransport(handler))


class TestListAndFetch:
    @pytest.mark.asyncio
    async def test_list_unread(self, user):
        seen = {}

        def handler(request: httpx.Request):
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"messages": [{"id": "m1", "threadId": "t1"}, {"id": "m2"}]})

        client = make_client(handler)
        refs = await client.list_unread(user, max_results=10)
        await client.close()

        assert refs == [MessageRef(id="m1", thread_id="t1"), MessageRef(id="m2")]
        assert seen["path"] == "/gmail/v1/users/me/messages"
        assert seen["params"] == {"maxResults": "10", "q": "is:unread"}
        assert seen["auth"] == "Bearer token-u1"

    @pytest.mark.asyncio
    async def test_empty_listing(self, user):
        client = make_client(lambda request: httpx.Response(200, json={"resultSizeEstimate": 0}))
        assert await client.list_unread(user) == []

    @pytest.mark.asyncio
    async def test_fetch_detail_parses_message(self, user):
        def handler(request: httpx.Request):
            assert request.url.path.endswith("/messages/m1")
            assert request.url.params["format"] == "full"
            return httpx.Response(200, json=FULL_MESSAGE)

        email = await make_client(handler).fetch_detail(user, MessageRef(id="m1"))

        assert email.id == "m1"
        assert email.thread_id == "t1"
        assert email.sender == "Alice <alice@example.com>"
        assert email.to == ["u1@example.com", "team@example.com"]
        assert email.cc == ["boss@example.com"]
        assert email.subject == "Server is down"
        assert email.body == "Please help"
        assert email.is_read is False
        assert email.date.year == 2024
        assert [(a.id, a.filename, a.size) for a in email.attachments] == [("att-1", "logs.pdf", 2048)]

    def test_html_body_fallback(self):
        payload = {"parts": [{"mimeType": "text/html", "body": {"data": b64("<b>hi</b>")}}]}
        assert GmailClient.parse_body(payload) == "<b>hi</b>"

    def test_single_part_body(self):
        assert GmailClient.parse_body({"body": {"data": b64("plain")}}) == "plain"

    @pytest.mark.asyncio
    async def test_unauthorized_raises(self, user):
        client = make_client(lambda request: httpx.Response(401, json={"error": "invalid_grant"}))
        with pytest.raises(MailClientError) as exc:
            await client.list_unread(user)
        assert exc.value.status_code == 401

    @pytest.mark.asyncio
    async def test_unparseable_detail_raises(self, user):
        client = make_client(lambda request: httpx.Response(200, json={"payload": {}}))
        with pytest.raises(MailClientError):
            await client.fetch_detail(user, MessageRef(id="m1"))


class TestSendAndModify:
    @pytest.mark.asyncio
    async def test_send_reply(self, user):
        sent = {}

        def handler(request: httpx.Request):
            sent["method"] = request.method
            sent["path"] = request.url.path
            sent["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "sent-1", "threadId": "thread-e1"})

        original = make_email("e1", subject="Quarterly numbers")
        assert await make_client(handler).send_reply(user, original, "Numbers attached.") is True

        assert sent["method"] == "POST"
        assert sent["path"].endswith("/messages/send")
        assert sent["body"]["threadId"] == "thread-e1"
        raw = base64.urlsafe_b64decode(sent["body"]["raw"] + "=" * (-len(sent["body"]["raw"]) % 4))
        text = raw.decode()
        assert "Subject: Re: Quarterly numbers" in text
        assert "In-Reply-To: <e1@mail.gmail.com>" in text
        assert "To: alice@example.com" in text
        assert "Numbers attached." in text
        assert "> Body of e1" in text

    def test_reply_subject_not_double_prefixed(self, user):
        original = make_email("e1", subject="Re: Lunch")
        assert b"Subject: Re: Lunch\n" in GmailClient.build_reply(user, original, "Sure")

    @pytest.mark.asyncio
    async def test_mark_read_removes_unread_label(self, user):
        seen = {}

        def handler(request: httpx.Request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "e1", "labelIds": ["INBOX"]})

        assert await make_client(handler).mark_read(user, "e1") is True
        assert seen["path"].endswith("/messages/e1/modify")
        assert seen["body"] == {"removeLabelIds": ["UNREAD"]}

    @pytest.mark.asyncio
    async def test_send_transport_error_raises(self, user):
        attempts = []

        def handler(request: httpx.Request):
            attempts.append(request.method)
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(MailClientError):
            await make_client(handler).send_reply(user, make_email("e1"), "hi")
        # connection refused on every attempt; the request is repeated, then surfaced
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_connect_error_is_retried_for_reads(self, user):
        attempts = []

        def handler(request: httpx.Request):
            attempts.append(request.method)
            if len(attempts) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"messages": [{"id": "m1"}]})

        refs = await make_client(handler).list_unread(user)

        assert [r.id for r in refs] == ["m1"]
        assert attempts == ["GET", "GET"]

    @pytest.mark.asyncio
    async def test_read_timeout_on_send_is_not_repeated(self, user):
        attempts = []

        def handler(request: httpx.Request):
            attempts.append(request.method)
            raise httpx.ReadTimeout("no response", request=request)

        with pytest.raises(MailClientError):
            await make_client(handler).send_reply(user, make_email("e1"), "hi")
        assert attempts == ["POST"]

    @pytest.mark.asyncio
    async def test_http_errors_are_not_retried(self, user):
        attempts = []

        def handler(request: httpx.Request):
            attempts.append(request.method)
            return httpx.Response(503, json={"error": "backend"})

        with pytest.raises(MailClientError) as exc:
            await make_client(handler).mark_read(user, "e1")
        assert exc.value.status_code == 503
        assert attempts == ["POST"]
