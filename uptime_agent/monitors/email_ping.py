"""Email ping monitor - sends a mail via SMTP and waits for the reply via IMAP.

The remote side is a "ping-pong" relay that answers every mail it receives.
A fresh UUID in the subject correlates one cycle's reply with its ping, so a
single mailbox can serve any number of cycles. Residual replies from earlier
cycles are removed before each send.
"""
import imaplib
import logging
import smtplib
import ssl
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.mime.text import MIMEText
from typing import Any, Callable, ClassVar, List

from ..exceptions import EvaluationError
from ..schemas import MonitorConfig
from .base import EvaluationResult, Monitor, MonitorStatus, optional, require

logger = logging.getLogger(__name__)

# Socket timeout for SMTP and IMAP connections
CONNECTION_TIMEOUT_SECONDS = 30

# Delay between IMAP searches while waiting for the response
POLL_INTERVAL_SECONDS = 1

SMTP_ERRORS = (smtplib.SMTPException, OSError)
IMAP_ERRORS = (imaplib.IMAP4.error, OSError, ValueError)


@dataclass(frozen=True)
class EmailData:
    """Main datapoints of a single ping email."""
    sender: str
    recipient: str
    subject: str
    body: str
    response_subject: str  # subject the reply is expected to carry


class _ResponseTimeout(Exception):
    def __init__(self, waited: int):
        super().__init__(f"timed out waiting for response after {waited} seconds")
        self.waited = waited


def _quote(value: str) -> str:
    """Quote a string for use as an IMAP search argument."""
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _describe(data: Any) -> str:
    """Render an imaplib response payload for error messages."""
    if isinstance(data, list):
        return " ".join(_describe(item) for item in data if item)
    if isinstance(data, bytes):
        return data.decode(errors="replace")
    return str(data)


@dataclass(frozen=True)
class EmailPingMonitor(Monitor):
    """Round trip check through an SMTP server, a ping-pong relay and an IMAP inbox.

    Ping is reported as whole seconds between starting the send and
    finding the response.
    """

    kind = "email_ping"

    # Protocol clients, replaceable in tests
    smtp_class: ClassVar[Callable[..., smtplib.SMTP]] = smtplib.SMTP
    imap_class: ClassVar[Callable[..., imaplib.IMAP4]] = imaplib.IMAP4

    smtp_host: str
    smtp_port: int
    smtp_sender_address: str
    smtp_recipient_address: str

    imap_host: str
    imap_port: int
    imap_username: str

    message_subject: str
    message_body: str
    response_subject: str

    timeout: int

    smtp_username: str = ""
    smtp_password: str = field(default="", repr=False)
    smtp_force_tls: bool = False
    imap_password: str = field(default="", repr=False)
    imap_force_tls: bool = False

    def evaluate(self) -> EvaluationResult:
        data = self.compose()
        logger.debug(
            f"Composed email for {self.name}: from={data.sender}, to={data.recipient}, "
            f"subject={data.subject!r}"
        )

        # Clear residual responses, e.g. from a cycle that timed out
        logger.debug("Cleaning old responses...")
        try:
            self.receive_email(data, wait=False)
        except EvaluationError as e:
            raise EvaluationError(f"error cleaning old responses: {e}") from e
        logger.debug("Cleaned old responses")

        start = time.monotonic()
        logger.debug("Sending email...")
        self.send_email(data)

        logger.debug("Waiting for response...")
        try:
            self.receive_email(data, wait=True)
        except _ResponseTimeout as e:
            logger.warning(f"Monitor {self.name}: {e}")
            return EvaluationResult(status=MonitorStatus.DOWN, message=str(e), ping=0)
        end = time.monotonic()

        return EvaluationResult(status=MonitorStatus.UP, message="OK", ping=int(end - start))

    def compose(self) -> EmailData:
        """Build the ping email with a fresh correlation token."""
        subject = self.message_subject.replace("{UUID}", str(uuid.uuid4()))
        sent_at = datetime.now(timezone.utc).isoformat(timespec="seconds")
        body = f"{self.message_body}\n\nThis is a test email sent at {sent_at}"
        return EmailData(
            sender=self.smtp_sender_address,
            recipient=self.smtp_recipient_address,
            subject=subject,
            body=body,
            response_subject=self.response_subject.replace("{ORIG_SUBJ}", subject),
        )

    # SMTP

    def send_email(self, data: EmailData) -> None:
        """Deliver the ping email. Raises EvaluationError on any failed step."""
        address = f"{self.smtp_host}:{self.smtp_port}"
        try:
            conn = self.smtp_class(self.smtp_host, self.smtp_port, timeout=CONNECTION_TIMEOUT_SECONDS)
        except SMTP_ERRORS as e:
            raise EvaluationError(f"failed to connect to SMTP server: {e}") from e
        logger.debug(f"SMTP connected to {address}")

        try:
            self._smtp_session(conn, data)
        finally:
            conn.close()
        logger.debug("SMTP email accepted")

    def _smtp_session(self, conn: smtplib.SMTP, data: EmailData) -> None:
        _smtp_step("SMTP EHLO failed", conn.ehlo)

        if conn.has_extn("starttls"):
            _smtp_step("failed to starttls", conn.starttls, context=ssl.create_default_context())
            _smtp_step("SMTP EHLO failed", conn.ehlo)
            logger.debug("SMTP STARTTLS completed")
        elif self.smtp_force_tls:
            raise EvaluationError("SMTP STARTTLS extension forced but no support")
        else:
            logger.debug("SMTP continuing with unencrypted connection!")

        if self.smtp_username:
            _smtp_step("SMTP authentication failed", conn.login, self.smtp_username, self.smtp_password)
            logger.debug("SMTP authenticated")

        code, resp = _smtp_step("failed to set the sender", conn.mail, data.sender)
        if code != 250:
            raise EvaluationError(f"failed to set the sender: {code} {_describe(resp)}")
        logger.debug(f"SMTP set MAIL FROM {data.sender}")

        code, resp = _smtp_step("failed to set the recipient", conn.rcpt, data.recipient)
        if code not in (250, 251):
            raise EvaluationError(f"failed to set the recipient: {code} {_describe(resp)}")
        logger.debug(f"SMTP set RCPT TO {data.recipient}")

        msg = MIMEText(data.body, "plain")
        msg["Subject"] = data.subject
        msg["From"] = data.sender
        msg["To"] = data.recipient

        code, resp = _smtp_step("failed to write email body", conn.data, msg.as_string())
        if code != 250:
            raise EvaluationError(f"failed to write email body: {code} {_describe(resp)}")
        logger.debug("SMTP wrote DATA")

        _smtp_step("failed to send email", conn.quit)

    # IMAP

    def receive_email(self, data: EmailData, wait: bool) -> bool:
        """Find responses matching `data` in the inbox and delete them.

        With `wait`, search again every second until a response arrives or
        `timeout` seconds have passed since the wait started. Without it,
        return right away; this is how residual responses are cleaned up
        before sending.

        Returns True if at least one response was found and deleted.
        """
        address = f"{self.imap_host}:{self.imap_port}"
        try:
            conn = self.imap_class(self.imap_host, self.imap_port, timeout=CONNECTION_TIMEOUT_SECONDS)
        except IMAP_ERRORS as e:
            raise EvaluationError(f"failed to connect to IMAP server: {e}") from e
        logger.debug(f"IMAP connected to {address}")

        try:
            return self._imap_session(conn, data, wait)
        except (EvaluationError, _ResponseTimeout):
            _abandon(conn)
            raise

    def _imap_session(self, conn: imaplib.IMAP4, data: EmailData, wait: bool) -> bool:
        if "STARTTLS" in conn.capabilities:
            _imap_step("failed to starttls", conn.starttls, ssl_context=ssl.create_default_context())
            logger.debug("IMAP STARTTLS completed")
        elif self.imap_force_tls:
            raise EvaluationError("IMAP STARTTLS capability forced but no support")
        else:
            logger.debug("IMAP continuing with unencrypted connection!")

        _imap_step("IMAP login failed", conn.login, self.imap_username, self.imap_password)
        logger.debug("IMAP authenticated")

        _imap_step("failed to select INBOX", conn.select, "INBOX")
        logger.debug("IMAP selected INBOX")

        uids = self._search(conn, data)

        wait_start = time.monotonic()
        while not uids and wait:
            waited = time.monotonic() - wait_start
            if waited > self.timeout:
                raise _ResponseTimeout(int(waited))
            logger.debug("IMAP no response found yet, sleeping...")
            time.sleep(POLL_INTERVAL_SECONDS)
            uids = self._search(conn, data)

        if not uids:
            logger.debug("IMAP no response found - not waiting")
        else:
            logger.debug(f"IMAP found {len(uids)} response(s)")
            if logger.isEnabledFor(logging.DEBUG):
                headers = _imap_step(
                    "failed to fetch the reply email",
                    conn.uid, "FETCH", uids[0], "(BODY.PEEK[HEADER.FIELDS (FROM SUBJECT)])",
                )
                logger.debug(f"IMAP reply email: {_describe(headers)}")

            _imap_step(
                "failed to set deleted flag",
                conn.uid, "STORE", ",".join(uids), "+FLAGS.SILENT", r"(\Deleted)",
            )
            _imap_step("failed to expunge messages", conn.expunge)
            logger.debug("IMAP deleted all responses in INBOX")

        try:
            conn.logout()
        except IMAP_ERRORS as e:
            raise EvaluationError(f"failed to log out of IMAP server: {e}") from e
        return bool(uids)

    def _search(self, conn: imaplib.IMAP4, data: EmailData) -> List[str]:
        """Return the UIDs of responses from the recipient with the expected subject.

        imaplib sends arguments as ASCII, so a non-ASCII subject goes out as a
        UTF-8 literal, which imaplib appends after the last argument.
        """
        if data.response_subject.isascii():
            criteria = ("FROM", _quote(data.recipient), "SUBJECT", _quote(data.response_subject))
        else:
            conn.literal = data.response_subject.encode("utf-8")
            criteria = ("CHARSET", "UTF-8", "FROM", _quote(data.recipient), "SUBJECT")
        result = _imap_step("failed to search for emails", conn.uid, "SEARCH", *criteria)
        if not result or not result[0]:
            return []
        return _describe(result[0]).split()

    @classmethod
    def from_config(cls, host_url: str, entry: MonitorConfig) -> "EmailPingMonitor":
        return cls(
            name=entry.name,
            host_url=host_url,
            key=entry.key,
            interval=entry.interval,
            smtp_host=require(entry, "smtp_host"),
            smtp_port=require(entry, "smtp_port"),
            smtp_sender_address=require(entry, "smtp_sender_address"),
            smtp_recipient_address=require(entry, "smtp_recipient_address"),
            smtp_username=optional(entry, "smtp_username"),
            smtp_password=optional(entry, "smtp_password"),
            smtp_force_tls=entry.smtp_force_tls,
            imap_host=require(entry, "imap_host"),
            imap_port=require(entry, "imap_port"),
            imap_username=require(entry, "imap_username"),
            imap_password=optional(entry, "imap_password"),
            imap_force_tls=entry.imap_force_tls,
            message_subject=require(entry, "message_subject"),
            message_body=require(entry, "message_body"),
            response_subject=require(entry, "response_subject"),
            timeout=require(entry, "timeout"),
        )


def _smtp_step(failure: str, command: Callable, *args, **kwargs):
    try:
        return command(*args, **kwargs)
    except SMTP_ERRORS as e:
        raise EvaluationError(f"{failure}: {e}") from e


def _imap_step(failure: str, command: Callable, *args, **kwargs):
    """Run an imaplib command, raising EvaluationError unless it returns OK."""
    try:
        typ, data = command(*args, **kwargs)
    except IMAP_ERRORS as e:
        raise EvaluationError(f"{failure}: {e}") from e
    if typ != "OK":
        raise EvaluationError(f"{failure}: {typ} {_describe(data)}")
    return data


def _abandon(conn: imaplib.IMAP4) -> None:
    """Log out after a failed session. The error that ended the session is what gets reported."""
    try:
        conn.logout()
    except IMAP_ERRORS as e:
        logger.debug(f"IMAP logout after failure also failed: {e}")
