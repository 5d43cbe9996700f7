"""Mailbox provider clients.

Each client turns a provider's messages into NormalizedMessage objects so the
sync service can index them without caring where they came from:

- GraphMailClient: Microsoft Graph (Outlook / Microsoft 365)
- GmailMailClient: Gmail REST API
- ImapMailClient: any IMAP server (imaplib, run in a worker thread)
"""

from __future__ import annotations

import base64
import email
import imaplib
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email import policy
from email.message import EmailMessage
from email.mime.text import MIMEText
from email.utils import getaddresses, parseaddr, parsedate_to_datetime
from typing import Any, Awaitable, Callable

import anyio
import httpx
import nh3

from aris.db.enums import EmailType, ImapSecurity
from aris.services.http_service import request_with_retries

logger = logging.getLogger(__name__)

FOLDER_INBOX = "INBOX"
FOLDER_SENT = "Sent"

# Request folder names -> stored folder_name
FOLDER_ALIASES = {
    "inbox": FOLDER_INBOX,
    "sent": FOLDER_SENT,
}

PREVIEW_LENGTH = 200
HTTP_TIMEOUT = 30.0


# =============================================================================
# Errors
# =============================================================================

class MailProviderError(Exception):
    """A mailbox provider call failed."""
    status_code = 502


class MailProviderAuthError(MailProviderError):
    """Credentials rejected; the user must reconnect the account."""
    status_code = 401

    def __init__(self, message: str = "Authentication with the mail provider failed. Please reconnect your account."):
        super().__init__(message)


class MailProviderPermissionError(MailProviderError):
    status_code = 403

    def __init__(self, message: str = "The mail provider denied access: insufficient permissions."):
        super().__init__(message)


class MailSendNotSupportedError(MailProviderError):
    status_code = 400

    def __init__(self):
        super().__init__("Sending is not supported for IMAP accounts")


def raise_for_provider_status(provider: str, response: httpx.Response) -> None:
    """Map provider HTTP failures onto the mail error hierarchy."""
    if response.status_code < 400:
        return
    if response.status_code == 401:
        raise MailProviderAuthError()
    if response.status_code == 403:
        raise MailProviderPermissionError()
    raise MailProviderError(f"{provider} API returned HTTP {response.status_code}")


async def provider_request(provider: str, request_fn: Callable[[], Awaitable[httpx.Response]]) -> httpx.Response:
    """request_with_retries, with transport failures raised as MailProviderError."""
    try:
        return await request_with_retries(request_fn)
    except httpx.RequestError as exc:
        raise MailProviderError(f"{provider} unreachable: {type(exc).__name__}") from exc


# =============================================================================
# Normalized message
# =============================================================================

@dataclass
class NormalizedMessage:
    message_id: str
    folder: str
    email_type: EmailType
    subject: str = "No Subject"
    thread_id: str | None = None
    imap_uid: int | None = None
    sender_email: str | None = None
    sender_name: str | None = None
    recipients: list[str] = field(default_factory=list)
    preview: str = ""
    plain_content: str | None = None
    html_content: str | None = None
    raw_content: str | None = None
    received_at: datetime | None = None
    sent_at: datetime | None = None
    is_read: bool = False
    importance: str = "normal"
    attachments: list[dict[str, Any]] = field(default_factory=list)

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachments)


def email_type_for_folder(folder: str) -> EmailType:
    return EmailType.SENT if folder == FOLDER_SENT else EmailType.RECEIVED


def make_preview(plain: str | None, html: str | None = None) -> str:
    """First PREVIEW_LENGTH chars of the text, whitespace collapsed."""
    text = plain or ""
    if not text and html:
        text = nh3.clean(html, tags=set())
    return re.sub(r"\s+", " ", text).strip()[:PREVIEW_LENGTH]


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


# =============================================================================
# Base client
# =============================================================================

class MailClient(ABC):
    provider: str = ""

    @abstractmethod
    async def fetch_messages(self, folder: str, limit: int) -> list[NormalizedMessage]:
        """Newest messages of a folder (FOLDER_INBOX or FOLDER_SENT)."""

    @abstractmethod
    async def fetch_message(self, message_id: str, folder: str) -> NormalizedMessage | None:
        """One message with full content, or None if it no longer exists."""

    @abstractmethod
    async def test_connection(self) -> str:
        """Return the mailbox address; raise MailProviderError on failure."""

    @abstractmethod
    async def send(self, to: list[str], subject: str, body: str) -> str | None:
        """Send a plain-text message; returns the provider message id if known."""


# =============================================================================
# Microsoft Graph
# =============================================================================

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
GRAPH_FOLDERS = {FOLDER_INBOX: "inbox", FOLDER_SENT: "sentitems"}
GRAPH_PAGE_SIZE = 50
GRAPH_SELECT = (
    "id,internetMessageId,conversationId,subject,bodyPreview,body,from,"
    "toRecipients,receivedDateTime,sentDateTime,isRead,hasAttachments,importance"
)


class GraphMailClient(MailClient):
    provider = "microsoft"

    def __init__(self, access_token: str, transport: httpx.AsyncBaseTransport | None = None):
        self.access_token = access_token
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=HTTP_TIMEOUT,
            transport=self.transport,
            headers={"Authorization": f"Bearer {self.access_token}"},
        )

    async def _get(self, client: httpx.AsyncClient, url: str, params: dict | None = None) -> dict:
        response = await provider_request("Microsoft Graph", lambda: client.get(url, params=params))
        raise_for_provider_status("Microsoft Graph", response)
        return response.json()

    def _normalize(self, item: dict, folder: str) -> NormalizedMessage:
        sender = (item.get("from") or {}).get("emailAddress") or {}
        body = item.get("body") or {}
        content_type = (body.get("contentType") or "").lower()
        html = body.get("content") if content_type == "html" else None
        plain = body.get("content") if content_type == "text" else None
        preview = item.get("bodyPreview") or make_preview(plain, html)
        return NormalizedMessage(
            message_id=item["id"],
            thread_id=item.get("conversationId"),
            folder=folder,
            email_type=email_type_for_folder(folder),
            subject=item.get("subject") or "No Subject",
            sender_email=(sender.get("address") or "").lower() or None,
            sender_name=sender.get("name"),
            recipients=[
                (r.get("emailAddress") or {}).get("address", "").lower()
                for r in item.get("toRecipients") or []
                if (r.get("emailAddress") or {}).get("address")
            ],
            preview=preview[:PREVIEW_LENGTH],
            plain_content=plain,
            html_content=html,
            received_at=_parse_iso(item.get("receivedDateTime")),
            sent_at=_parse_iso(item.get("sentDateTime")),
            is_read=bool(item.get("isRead")),
            importance=(item.get("importance") or "normal").lower(),
            attachments=[{"pending": True}] if item.get("hasAttachments") else [],
        )

    async def fetch_messages(self, folder: str, limit: int) -> list[NormalizedMessage]:
        messages: list[NormalizedMessage] = []
        url: str | None = f"{GRAPH_BASE_URL}/me/mailFolders/{GRAPH_FOLDERS[folder]}/messages"
        params: dict | None = {
            "$top": min(GRAPH_PAGE_SIZE, limit),
            "$select": GRAPH_SELECT,
            "$orderby": "receivedDateTime desc",
        }
        async with self._client() as client:
            while url and len(messages) < limit:
                data = await self._get(client, url, params)
                for item in data.get("value", []):
                    messages.append(self._normalize(item, folder))
                # nextLink already carries the query string
                url = data.get("@odata.nextLink")
                params = None
        return messages[:limit]

    async def fetch_message(self, message_id: str, folder: str) -> NormalizedMessage | None:
        async with self._client() as client:
            response = await provider_request(
                "Microsoft Graph", lambda: client.get(f"{GRAPH_BASE_URL}/me/messages/{message_id}")
            )
            if response.status_code == 404:
                return None
            raise_for_provider_status("Microsoft Graph", response)
            data = response.json()
            message = self._normalize(data, folder)
            if data.get("hasAttachments"):
                attachments = await self._get(
                    client,
                    f"{GRAPH_BASE_URL}/me/messages/{message_id}/attachments",
                    {"$select": "name,contentType,size"},
                )
                message.attachments = [
                    {"name": a.get("name"), "content_type": a.get("contentType"), "size": a.get("size")}
                    for a in attachments.get("value", [])
                ]
        return message

    async def test_connection(self) -> str:
        async with self._client() as client:
            data = await self._get(client, f"{GRAPH_BASE_URL}/me")
        return data.get("mail") or data.get("userPrincipalName") or ""

    async def send(self, to: list[str], subject: str, body: str) -> str | None:
        payload = {
            "message": {
                "subject": subject,
                "body": {"contentType": "Text", "content": body},
                "toRecipients": [{"emailAddress": {"address": addr}} for addr in to],
            },
            "saveToSentItems": True,
        }
        async with self._client() as client:
            response = await provider_request(
                "Microsoft Graph", lambda: client.post(f"{GRAPH_BASE_URL}/me/sendMail", json=payload)
            )
        raise_for_provider_status("Microsoft Graph", response)
        return None


# =============================================================================
# Gmail
# =============================================================================

GMAIL_BASE_URL = "https://gmail.googleapis.com/gmail/v1/users/me"
GMAIL_QUERIES = {FOLDER_INBOX: "in:inbox", FOLDER_SENT: "in:sent"}
GMAIL_PAGE_SIZE = 100


def _b64url_decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _walk_gmail_parts(part: dict, out: dict) -> None:
    mime_type = part.get("mimeType", "")
    filename = part.get("filename")
    body = part.get("body") or {}
    if filename:
        out["attachments"].append({
            "name": filename,
            "content_type": mime_type,
            "size": body.get("size", 0),
        })
    elif mime_type == "text/plain" and body.get("data") and out["plain"] is None:
        out["plain"] = _b64url_decode(body["data"]).decode("utf-8", errors="replace")
    elif mime_type == "text/html" and body.get("data") and out["html"] is None:
        out["html"] = _b64url_decode(body["data"]).decode("utf-8", errors="replace")
    for child in part.get("parts") or []:
        _walk_gmail_parts(child, out)


class GmailMailClient(MailClient):
    provider = "google"

    def __init__(self, access_token: str, transport: httpx.AsyncBaseTransport | None = None):
        self.access_token = access_token
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=HTTP_TIMEOUT,
            transport=self.transport,
            headers={"Authorization": f"Bearer {self.access_token}"},
        )

    async def _get(self, client: httpx.AsyncClient, url: str, params: dict | None = None) -> dict:
        response = await provider_request("Gmail", lambda: client.get(url, params=params))
        raise_for_provider_status("Gmail", response)
        return response.json()

    def _normalize(self, data: dict, folder: str) -> NormalizedMessage:
        payload = data.get("payload") or {}
        headers = {h["name"].lower(): h["value"] for h in payload.get("headers", [])}
        parts: dict[str, Any] = {"plain": None, "html": None, "attachments": []}
        _walk_gmail_parts(payload, parts)

        sender_name, sender_email = parseaddr(headers.get("from", ""))
        received_at = None
        if data.get("internalDate"):
            received_at = datetime.fromtimestamp(int(data["internalDate"]) / 1000, tz=timezone.utc)
        sent_at = None
        if headers.get("date"):
            try:
                sent_at = parsedate_to_datetime(headers["date"])
            except (TypeError, ValueError):
                sent_at = None

        labels = data.get("labelIds") or []
        return NormalizedMessage(
            message_id=data["id"],
            thread_id=data.get("threadId"),
            folder=folder,
            email_type=email_type_for_folder(folder),
            subject=headers.get("subject") or "No Subject",
            sender_email=sender_email.lower() or None,
            sender_name=sender_name or None,
            recipients=[addr.lower() for _, addr in getaddresses([headers.get("to", "")]) if addr],
            preview=make_preview(parts["plain"], parts["html"]) or (data.get("snippet") or "")[:PREVIEW_LENGTH],
            plain_content=parts["plain"],
            html_content=parts["html"],
            received_at=received_at,
            sent_at=sent_at,
            is_read="UNREAD" not in labels,
            importance="high" if "IMPORTANT" in labels else "normal",
            attachments=parts["attachments"],
        )

    async def fetch_messages(self, folder: str, limit: int) -> list[NormalizedMessage]:
        ids: list[str] = []
        page_token: str | None = None
        async with self._client() as client:
            while len(ids) < limit:
                params = {"q": GMAIL_QUERIES[folder], "maxResults": min(GMAIL_PAGE_SIZE, limit - len(ids))}
                if page_token:
                    params["pageToken"] = page_token
                data = await self._get(client, f"{GMAIL_BASE_URL}/messages", params)
                ids.extend(m["id"] for m in data.get("messages", []))
                page_token = data.get("nextPageToken")
                if not page_token:
                    break

            messages = []
            for message_id in ids[:limit]:
                data = await self._get(client, f"{GMAIL_BASE_URL}/messages/{message_id}", {"format": "full"})
                messages.append(self._normalize(data, folder))
        return messages

    async def fetch_message(self, message_id: str, folder: str) -> NormalizedMessage | None:
        async with self._client() as client:
            response = await provider_request(
                "Gmail", lambda: client.get(f"{GMAIL_BASE_URL}/messages/{message_id}", params={"format": "full"})
            )
        if response.status_code == 404:
            return None
        raise_for_provider_status("Gmail", response)
        return self._normalize(response.json(), folder)

    async def test_connection(self) -> str:
        async with self._client() as client:
            data = await self._get(client, f"{GMAIL_BASE_URL}/profile")
        return data.get("emailAddress", "")

    async def send(self, to: list[str], subject: str, body: str) -> str | None:
        msg = MIMEText(body)
        msg["To"] = ", ".join(to)
        msg["Subject"] = subject
        raw = base64.urlsafe_b64encode(msg.as_bytes()).decode()

        async with self._client() as client:
            response = await provider_request(
                "Gmail", lambda: client.post(f"{GMAIL_BASE_URL}/messages/send", json={"raw": raw})
            )
        raise_for_provider_status("Gmail", response)
        return response.json().get("id")


# =============================================================================
# IMAP
# =============================================================================

IMAP_SENT_CANDIDATES = ("Sent", "Sent Items", "Sent Messages", "INBOX.Sent", "[Gmail]/Sent Mail")
_UID_RE = re.compile(rb"UID (\d+)")


def parse_rfc822(raw: bytes, folder: str, uid: int | None = None, seen: bool = False) -> NormalizedMessage:
    """Parse a raw RFC 822 message into a NormalizedMessage."""
    msg: EmailMessage = email.message_from_bytes(raw, policy=policy.default)

    plain = html = None
    plain_part = msg.get_body(preferencelist=("plain",))
    if plain_part is not None:
        plain = plain_part.get_content()
    html_part = msg.get_body(preferencelist=("html",))
    if html_part is not None:
        html = html_part.get_content()

    attachments = [
        {
            "name": part.get_filename(),
            "content_type": part.get_content_type(),
            "size": len(part.get_payload(decode=True) or b""),
        }
        for part in msg.iter_attachments()
    ]

    sender_name, sender_email = parseaddr(str(msg.get("From", "")))
    sent_at = None
    if msg.get("Date"):
        try:
            sent_at = parsedate_to_datetime(str(msg["Date"]))
        except (TypeError, ValueError):
            sent_at = None
    if sent_at and sent_at.tzinfo is None:
        sent_at = sent_at.replace(tzinfo=timezone.utc)

    message_id = (str(msg.get("Message-ID", "")).strip()) or f"imap-{folder}-{uid}"
    priority = str(msg.get("X-Priority", "")).strip()

    return NormalizedMessage(
        message_id=message_id,
        thread_id=str(msg.get("In-Reply-To", "")).strip() or None,
        imap_uid=uid,
        folder=folder,
        email_type=email_type_for_folder(folder),
        subject=str(msg.get("Subject", "")).strip() or "No Subject",
        sender_email=sender_email.lower() or None,
        sender_name=sender_name or None,
        recipients=[addr.lower() for _, addr in getaddresses([str(msg.get("To", ""))]) if addr],
        preview=make_preview(plain, html),
        plain_content=plain,
        html_content=html,
        raw_content=raw.decode("utf-8", errors="replace"),
        received_at=sent_at,
        sent_at=sent_at,
        is_read=seen,
        importance="high" if priority.startswith(("1", "2")) else "normal",
        attachments=attachments,
    )


class ImapMailClient(MailClient):
    """
    IMAP client. imaplib is blocking, so every call runs in a worker thread.

    imap_factory(host, port, security) returns a connected (not logged in)
    IMAP4 object; tests pass a fake.
    """
    provider = "imap"

    def __init__(
        self,
        host: str,
        port: int,
        security: str,
        username: str,
        password: str,
        imap_factory: Callable[[str, int, str], Any] | None = None,
    ):
        self.host = host
        self.port = port
        self.security = security
        self.username = username
        self.password = password
        self.imap_factory = imap_factory or self._default_factory

    @staticmethod
    def _default_factory(host: str, port: int, security: str):
        if security == ImapSecurity.SSL.value:
            return imaplib.IMAP4_SSL(host, port, timeout=HTTP_TIMEOUT)
        conn = imaplib.IMAP4(host, port, timeout=HTTP_TIMEOUT)
        if security == ImapSecurity.STARTTLS.value:
            conn.starttls()
        return conn

    def _connect(self):
        try:
            conn = self.imap_factory(self.host, self.port, self.security)
        except OSError as exc:
            raise MailProviderError(f"Could not connect to IMAP server: {exc}") from exc
        try:
            conn.login(self.username, self.password)
        except imaplib.IMAP4.abort as exc:
            self._logout(conn)
            raise MailProviderError(f"IMAP connection dropped during login: {exc}") from exc
        except imaplib.IMAP4.error as exc:
            self._logout(conn)
            raise MailProviderAuthError() from exc
        except OSError as exc:
            self._logout(conn)
            raise MailProviderError(f"IMAP login failed: {type(exc).__name__}") from exc
        return conn

    @staticmethod
    def _logout(conn) -> None:
        try:
            conn.logout()
        except (imaplib.IMAP4.error, OSError) as exc:
            logger.debug("IMAP logout failed: %s", exc)

    def _select(self, conn, folder: str) -> None:
        candidates = (FOLDER_INBOX,) if folder == FOLDER_INBOX else IMAP_SENT_CANDIDATES
        for name in candidates:
            status, _ = conn.select(f'"{name}"', readonly=True)
            if status == "OK":
                return
        raise MailProviderError(f"IMAP folder not found: {folder}")

    def _fetch_uid(self, conn, uid: bytes, folder: str) -> NormalizedMessage | None:
        # BODY.PEEK[] leaves the \Seen flag untouched
        status, data = conn.uid("fetch", uid, "(UID FLAGS BODY.PEEK[])")
        if status != "OK" or not data or not isinstance(data[0], tuple):
            return None
        envelope, raw = data[0]
        seen = b"\\Seen" in envelope
        match = _UID_RE.search(envelope)
        uid_value = int(match.group(1)) if match else int(uid)
        return parse_rfc822(raw, folder, uid=uid_value, seen=seen)

    def _session(self, op: Callable[..., Any], *args):
        """Run op(conn, *args) on a logged-in connection, then log out."""
        conn = self._connect()
        try:
            return op(conn, *args)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise MailProviderError(f"IMAP session failed: {type(exc).__name__}") from exc
        finally:
            self._logout(conn)

    def _list_folder(self, conn, folder: str, limit: int) -> list[NormalizedMessage]:
        self._select(conn, folder)
        status, data = conn.uid("search", None, "ALL")
        if status != "OK":
            raise MailProviderError(f"IMAP search failed: {status}")
        uids = data[0].split() if data and data[0] else []
        messages = []
        # Newest first
        for uid in reversed(uids[-limit:] if limit else uids):
            message = self._fetch_uid(conn, uid, folder)
            if message:
                messages.append(message)
        return messages

    def _find_message(self, conn, message_id: str, folder: str) -> NormalizedMessage | None:
        self._select(conn, folder)
        status, data = conn.uid("search", None, "HEADER", "Message-ID", f'"{message_id}"')
        uids = data[0].split() if status == "OK" and data and data[0] else []
        if not uids:
            return None
        return self._fetch_uid(conn, uids[-1], folder)

    def _fetch_messages_sync(self, folder: str, limit: int) -> list[NormalizedMessage]:
        return self._session(self._list_folder, folder, limit)

    def _fetch_message_sync(self, message_id: str, folder: str) -> NormalizedMessage | None:
        return self._session(self._find_message, message_id, folder)

    def _test_sync(self) -> str:
        self._session(self._select, FOLDER_INBOX)
        return self.username

    async def fetch_messages(self, folder: str, limit: int) -> list[NormalizedMessage]:
        return await anyio.to_thread.run_sync(self._fetch_messages_sync, folder, limit)

    async def fetch_message(self, message_id: str, folder: str) -> NormalizedMessage | None:
        return await anyio.to_thread.run_sync(self._fetch_message_sync, message_id, folder)

    async def test_connection(self) -> str:
        return await anyio.to_thread.run_sync(self._test_sync)

    async def send(self, to: list[str], subject: str, body: str) -> str | None:
        raise MailSendNotSupportedError()
