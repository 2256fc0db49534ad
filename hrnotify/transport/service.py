"""Outbound email transports.

Both mailers satisfy the Mailer protocol and report failures as
TransportError with ``retryable`` set from the provider's answer: timeouts,
dropped connections, 4xx SMTP replies, HTTP 429 and 5xx are worth retrying;
refused addresses, 5xx SMTP replies and other HTTP 4xx are not.
"""

import logging
import re
import smtplib
import threading
import time
from collections.abc import Sequence
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate, make_msgid
from html import unescape
from typing import Protocol

import httpx
from cryptography.fernet import InvalidToken

from ..config import settings
from ..errors import TransportError
from .credentials import reveal

logger = logging.getLogger(__name__)

GRAPH_TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
GRAPH_SEND_URL = "https://graph.microsoft.com/v1.0/users/{sender}/sendMail"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
TOKEN_EXPIRY_MARGIN = 300  # seconds

_TAG_RE = re.compile(r"<[^>]+>")
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


class Mailer(Protocol):
    def send(self, to: Sequence[str], cc: Sequence[str], subject: str, body: str) -> None: ...


def html_to_text(body: str) -> str:
    """Plain-text alternative for an HTML body."""
    text = re.sub(r"(?is)<(head|style|script)[^>]*>.*?</\1>", "", body)
    text = re.sub(r"(?i)<br\s*/?>|</p>|</tr>|</h\d>", "\n", text)
    text = unescape(_TAG_RE.sub("", text))
    lines = [" ".join(line.split()) for line in text.splitlines()]
    return _BLANK_LINES_RE.sub("\n\n", "\n".join(lines)).strip()


# ── SMTP ───────────────────────────────────────────────────────────────


class SmtpMailer:
    """SMTP with STARTTLS."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        user: str = "",
        password: str = "",
        from_addr: str = "",
        from_name: str = "",
        timeout: float = 15.0,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_addr = from_addr or user
        self.from_name = from_name
        self.timeout = timeout

    def build_message(self, to: Sequence[str], cc: Sequence[str], subject: str, body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["From"] = formataddr((self.from_name, self.from_addr))
        msg["To"] = ", ".join(to)
        if cc:
            msg["Cc"] = ", ".join(cc)
        msg["Date"] = formatdate(localtime=True)
        domain = self.from_addr.split("@")[-1] if "@" in self.from_addr else "local"
        msg["Message-ID"] = make_msgid(domain=domain)
        msg["Subject"] = subject

        msg.attach(MIMEText(html_to_text(body), "plain", "utf-8"))
        msg.attach(MIMEText(body, "html", "utf-8"))
        return msg

    def send(self, to: Sequence[str], cc: Sequence[str], subject: str, body: str) -> None:
        if not to:
            raise TransportError("no primary recipients", retryable=False)
        msg = self.build_message(to, cc, subject, body)

        try:
            password = reveal(self.password)
        except InvalidToken:
            raise TransportError("SMTP password cannot be decrypted with SECRET_KEY", retryable=False) from None

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.ehlo()
                server.starttls()
                server.ehlo()
                if self.user:
                    server.login(self.user, password)
                refused = server.send_message(msg, to_addrs=[*to, *cc])
        except smtplib.SMTPRecipientsRefused as e:
            raise TransportError(f"all recipients refused: {sorted(e.recipients)}", retryable=False) from e
        except smtplib.SMTPAuthenticationError as e:
            raise TransportError(f"SMTP authentication failed ({e.smtp_code})", retryable=False) from e
        except smtplib.SMTPResponseException as e:
            detail = e.smtp_error.decode(errors="replace") if isinstance(e.smtp_error, bytes) else e.smtp_error
            raise TransportError(f"SMTP {e.smtp_code}: {detail}", retryable=e.smtp_code < 500) from e
        except (smtplib.SMTPException, OSError) as e:
            # Disconnects, timeouts and connection errors
            raise TransportError(f"SMTP connection failed: {e}", retryable=True) from e

        if refused:
            logger.warning("SMTP refused some recipients: %s", ", ".join(sorted(refused)))
        logger.info("Sent email via SMTP to=%d cc=%d subject=%r", len(to), len(cc), subject)


# ── Microsoft Graph ────────────────────────────────────────────────────


def _retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class GraphMailer:
    """Microsoft Graph ``sendMail`` with an app-only (client credentials) token.

    The token is cached until shortly before it expires and dropped on a 401.
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        sender: str,
        timeout: float = 15.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.sender = sender
        self._client = client or httpx.Client(timeout=timeout)
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._lock = threading.Lock()

    def close(self) -> None:
        self._client.close()

    def _post(self, url: str, **kwargs) -> httpx.Response:
        try:
            return self._client.post(url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransportError(f"Graph request timed out: {e}", retryable=True) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Graph request failed: {e}", retryable=True) from e

    def _access_token(self) -> str:
        with self._lock:
            if self._token and time.time() < self._token_expires_at:
                return self._token

            try:
                secret = reveal(self.client_secret)
            except InvalidToken:
                raise TransportError(
                    "Graph client secret cannot be decrypted with SECRET_KEY", retryable=False
                ) from None

            response = self._post(
                GRAPH_TOKEN_URL.format(tenant=self.tenant_id),
                data={
                    "client_id": self.client_id,
                    "client_secret": secret,
                    "scope": GRAPH_SCOPE,
                    "grant_type": "client_credentials",
                },
            )
            if response.status_code != 200:
                raise TransportError(
                    f"Graph token request failed: {response.status_code} {response.text[:200]}",
                    retryable=_retryable_status(response.status_code),
                )
            data = response.json()
            self._token = data["access_token"]
            self._token_expires_at = time.time() + int(data.get("expires_in", 3600)) - TOKEN_EXPIRY_MARGIN
            logger.debug("Graph access token refreshed")
            return self._token

    def send(self, to: Sequence[str], cc: Sequence[str], subject: str, body: str) -> None:
        if not to:
            raise TransportError("no primary recipients", retryable=False)
        message = {
            "message": {
                "subject": subject,
                "body": {"contentType": "HTML", "content": body},
                "toRecipients": [{"emailAddress": {"address": a}} for a in to],
                "ccRecipients": [{"emailAddress": {"address": a}} for a in cc],
            },
            "saveToSentItems": False,
        }
        response = self._post(
            GRAPH_SEND_URL.format(sender=self.sender),
            json=message,
            headers={"Authorization": f"Bearer {self._access_token()}"},
        )
        if response.status_code == 401:
            with self._lock:
                self._token = None
            raise TransportError("Graph rejected the access token", retryable=True)
        if response.status_code >= 400:
            raise TransportError(
                f"Graph sendMail failed: {response.status_code} {response.text[:200]}",
                retryable=_retryable_status(response.status_code),
            )
        logger.info("Sent email via Graph to=%d cc=%d subject=%r", len(to), len(cc), subject)


def create_mailer() -> Mailer:
    """Pick the configured transport; Graph wins when both are set."""
    if settings.graph_tenant_id and settings.graph_client_id and settings.graph_client_secret:
        logger.info("Using Microsoft Graph mail transport (sender=%s)", settings.mail_from)
        return GraphMailer(
            tenant_id=settings.graph_tenant_id,
            client_id=settings.graph_client_id,
            client_secret=settings.graph_client_secret,
            sender=settings.mail_from,
            timeout=settings.transport_timeout_seconds,
        )
    if settings.smtp_host:
        logger.info("Using SMTP mail transport (%s:%d)", settings.smtp_host, settings.smtp_port)
        return SmtpMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            from_addr=settings.mail_from,
            from_name=settings.mail_from_name,
            timeout=settings.transport_timeout_seconds,
        )
    raise RuntimeError("No mail transport configured. Set GRAPH_* or SMTP_* in .env")
