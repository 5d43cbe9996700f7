"""Tests for mailbox provider clients."""
import base64
import imaplib
import json

import httpx
import pytest

from aris.db.enums import EmailType
from aris.services.mail_clients import (
    FOLDER_INBOX,
    FOLDER_SENT,
    GmailMailClient,
    GraphMailClient,
    ImapMailClient,
    MailProviderAuthError,
    MailProviderError,
    MailSendNotSupportedError,
    make_preview,
    parse_rfc822,
)

RAW_MESSAGE = (
    b"From: Jane Buyer <Jane@Buyer.com>\r\n"
    b"To: sales@acme.com, Boss <boss@acme.com>\r\n"
    b"Subject: Quote request\r\n"
    b"Date: Mon, 06 Jan 2025 10:00:00 +0000\r\n"
    b"Message-ID: <abc123@buyer.com>\r\n"
    b"X-Priority: 1\r\n"
    b"Content-Type: text/plain; charset=utf-8\r\n"
    b"\r\n"
    b"Hello,\r\n\r\nplease   send a quote.\r\n"
)


class FakeImap:
    """Minimal stand-in for imaplib.IMAP4."""

    def __init__(self, messages: dict[bytes, bytes], password: str = "secret", folders=("INBOX", "Sent Items")):
        self.messages = messages
        self.password = password
        self.folders = folders
        self.logged_out = False

    def login(self, username, password):
        if password != self.password:
            raise imaplib.IMAP4.error("AUTHENTICATIONFAILED")
        return "OK", [b"Logged in"]

    def select(self, mailbox, readonly=False):
        if mailbox.strip('"') in self.folders:
            return "OK", [str(len(self.messages)).encode()]
        return "NO", [b"No such folder"]

    def uid(self, command, *args):
        if command == "search":
            return "OK", [b" ".join(sorted(self.messages))]
        uid = args[0]
        envelope = b"1 (UID " + uid + b" FLAGS (\\Seen) BODY[] {100}"
        return "OK", [(envelope, self.messages[uid]), b")"]

    def logout(self):
        self.logged_out = True
        return "BYE", [b""]


def _imap_client(fake: FakeImap, password: str = "secret") -> ImapMailClient:
    return ImapMailClient(
        host="imap.acme.com",
        port=993,
        security="ssl",
        username="sales@acme.com",
        password=password,
        imap_factory=lambda host, port, security: fake,
    )


def test_parse_rfc822_extracts_headers_and_body():
    message = parse_rfc822(RAW_MESSAGE, FOLDER_INBOX, uid=7, seen=True)

    assert message.message_id == "<abc123@buyer.com>"
    assert message.sender_email == "jane@buyer.com"
    assert message.sender_name == "Jane Buyer"
    assert message.recipients == ["sales@acme.com", "boss@acme.com"]
    assert message.subject == "Quote request"
    assert message.preview == "Hello, please send a quote."
    assert message.importance == "high"
    assert message.email_type == EmailType.RECEIVED
    assert message.imap_uid == 7
    assert message.is_read is True
    assert message.sent_at.year == 2025


def test_parse_rfc822_in_sent_folder_is_sent_type():
    message = parse_rfc822(RAW_MESSAGE, FOLDER_SENT)
    assert message.email_type == EmailType.SENT


def test_make_preview_strips_html():
    assert make_preview(None, "<p>Hi <b>there</b></p>") == "Hi there"


@pytest.mark.asyncio
async def test_imap_fetch_messages_newest_first():
    second = RAW_MESSAGE.replace(b"<abc123@buyer.com>", b"<def456@buyer.com>")
    fake = FakeImap({b"1": RAW_MESSAGE, b"2": second})

    messages = await _imap_client(fake).fetch_messages(FOLDER_INBOX, limit=10)

    assert [m.message_id for m in messages] == ["<def456@buyer.com>", "<abc123@buyer.com>"]
    assert [m.imap_uid for m in messages] == [2, 1]
    assert fake.logged_out


@pytest.mark.asyncio
async def test_imap_sent_folder_falls_back_through_candidates():
    fake = FakeImap({b"1": RAW_MESSAGE})
    messages = await _imap_client(fake).fetch_messages(FOLDER_SENT, limit=10)
    assert messages[0].email_type == EmailType.SENT


@pytest.mark.asyncio
async def test_imap_missing_folder_raises():
    fake = FakeImap({b"1": RAW_MESSAGE}, folders=("INBOX",))
    with pytest.raises(MailProviderError):
        await _imap_client(fake).fetch_messages(FOLDER_SENT, limit=10)


@pytest.mark.asyncio
async def test_imap_bad_password_is_auth_error():
    fake = FakeImap({})
    with pytest.raises(MailProviderAuthError):
        await _imap_client(fake, password="wrong").test_connection()


@pytest.mark.asyncio
async def test_imap_cannot_send():
    with pytest.raises(MailSendNotSupportedError):
        await _imap_client(FakeImap({})).send(["a@b.com"], "Hi", "Body")


@pytest.mark.asyncio
async def test_graph_follows_next_link():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        assert request.headers["Authorization"] == "Bearer token-1"
        if "page=2" in str(request.url):
            return httpx.Response(200, json={"value": [{"id": "m2", "subject": "Second"}]})
        return httpx.Response(200, json={
            "value": [{
                "id": "m1",
                "subject": "First",
                "from": {"emailAddress": {"address": "Jane@Buyer.com", "name": "Jane"}},
                "toRecipients": [{"emailAddress": {"address": "sales@acme.com"}}],
                "body": {"contentType": "html", "content": "<p>Hello</p>"},
                "receivedDateTime": "2025-01-06T10:00:00Z",
                "isRead": True,
            }],
            "@odata.nextLink": "https://graph.microsoft.com/v1.0/me/next?page=2",
        })

    client = GraphMailClient("token-1", transport=httpx.MockTransport(handler))
    messages = await client.fetch_messages(FOLDER_INBOX, limit=10)

    assert [m.message_id for m in messages] == ["m1", "m2"]
    assert messages[0].sender_email == "jane@buyer.com"
    assert messages[0].html_content == "<p>Hello</p>"
    assert messages[0].preview == "Hello"
    assert messages[0].received_at.tzinfo is not None
    assert messages[1].subject == "Second"
    assert "mailFolders/inbox" in calls[0]


@pytest.mark.asyncio
async def test_graph_unauthorized_maps_to_auth_error():
    client = GraphMailClient("expired", transport=httpx.MockTransport(lambda r: httpx.Response(401)))
    with pytest.raises(MailProviderAuthError):
        await client.test_connection()


@pytest.mark.asyncio
async def test_gmail_fetch_message_walks_parts():
    body = base64.urlsafe_b64encode(b"Plain body").decode().rstrip("=")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={
            "id": "g1",
            "threadId": "t1",
            "internalDate": "1736157600000",
            "labelIds": ["INBOX", "UNREAD"],
            "payload": {
                "mimeType": "multipart/mixed",
                "headers": [
                    {"name": "From", "value": "Jane <jane@buyer.com>"},
                    {"name": "To", "value": "sales@acme.com"},
                    {"name": "Subject", "value": "Specs"},
                ],
                "parts": [
                    {"mimeType": "text/plain", "body": {"data": body}},
                    {"mimeType": "application/pdf", "filename": "specs.pdf", "body": {"size": 2048}},
                ],
            },
        })

    client = GmailMailClient("token", transport=httpx.MockTransport(handler))
    message = await client.fetch_message("g1", FOLDER_INBOX)

    assert message.plain_content == "Plain body"
    assert message.is_read is False
    assert message.attachments == [{"name": "specs.pdf", "content_type": "application/pdf", "size": 2048}]
    assert message.has_attachments


@pytest.mark.asyncio
async def test_gmail_missing_message_returns_none():
    client = GmailMailClient("token", transport=httpx.MockTransport(lambda r: httpx.Response(404)))
    assert await client.fetch_message("gone", FOLDER_INBOX) is None


@pytest.mark.asyncio
async def test_gmail_send_encodes_raw_message():
    sent = {}

    def handler(request: httpx.Request) -> httpx.Response:
        sent.update(json.loads(request.content))
        return httpx.Response(200, json={"id": "sent-1"})

    client = GmailMailClient("token", transport=httpx.MockTransport(handler))
    message_id = await client.send(["jane@buyer.com"], "Hello", "Body text")

    raw = base64.urlsafe_b64decode(sent["raw"]).decode()
    assert message_id == "sent-1"
    assert "Subject: Hello" in raw
    assert "To: jane@buyer.com" in raw


@pytest.fixture
def no_backoff(monkeypatch):
    monkeypatch.setattr("aris.services.http_service.backoff_delay", lambda *args: 0)


def _refuse(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


@pytest.mark.asyncio
async def test_graph_unreachable_is_provider_error(no_backoff):
    client = GraphMailClient("token", transport=httpx.MockTransport(_refuse))
    with pytest.raises(MailProviderError) as exc_info:
        await client.fetch_messages(FOLDER_INBOX, limit=10)
    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


@pytest.mark.asyncio
async def test_gmail_timeout_on_send_is_provider_error(no_backoff):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    client = GmailMailClient("token", transport=httpx.MockTransport(handler))
    with pytest.raises(MailProviderError):
        await client.send(["jane@buyer.com"], "Hello", "Body text")


@pytest.mark.asyncio
async def test_gmail_unreachable_on_fetch_message_is_provider_error(no_backoff):
    client = GmailMailClient("token", transport=httpx.MockTransport(_refuse))
    with pytest.raises(MailProviderError):
        await client.fetch_message("g1", FOLDER_INBOX)


class DroppingImap(FakeImap):
    """Server that drops the connection once a fetch starts."""

    def uid(self, command, *args):
        if command == "fetch":
            raise imaplib.IMAP4.abort("socket error: EOF")
        return super().uid(command, *args)


@pytest.mark.asyncio
async def test_imap_dropped_connection_mid_fetch_is_provider_error():
    fake = DroppingImap({b"1": RAW_MESSAGE})
    with pytest.raises(MailProviderError) as exc_info:
        await _imap_client(fake).fetch_messages(FOLDER_INBOX, limit=10)
    assert not isinstance(exc_info.value, MailProviderAuthError)
    assert fake.logged_out


class ResettingImap(FakeImap):
    def select(self, mailbox, readonly=False):
        raise ConnectionResetError("connection reset by peer")


@pytest.mark.asyncio
async def test_imap_socket_error_on_select_is_provider_error():
    fake = ResettingImap({})
    with pytest.raises(MailProviderError):
        await _imap_client(fake).test_connection()
    with pytest.raises(MailProviderError):
        await _imap_client(fake).fetch_message("<abc123@buyer.com>", FOLDER_INBOX)
