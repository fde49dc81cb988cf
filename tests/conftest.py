from __future__ import annotations

import email
import email.header
import imaplib
from dataclasses import dataclass, field
from typing import Any

import pytest

from uptime_agent.monitors import email_ping
from uptime_agent.monitors.email_ping import EmailPingMonitor
from uptime_agent.schemas import MonitorConfig


def make_entry(**overrides: Any) -> MonitorConfig:
    values: dict[str, Any] = {
        "name": "test monitor",
        "type": "alive",
        "host": "kuma",
        "key": "key-1",
        "interval": 60,
    }
    values.update(overrides)
    return MonitorConfig(**values)


EMAIL_PARAMS: dict[str, Any] = {
    "type": "email_ping",
    "smtp_host": "smtp.example.com",
    "smtp_port": 587,
    "smtp_sender_address": "monitor@example.com",
    "smtp_recipient_address": "echo@pingpong.example.net",
    "smtp_username": "monitor@example.com",
    "smtp_password": "secret",
    "imap_host": "imap.example.com",
    "imap_port": 143,
    "imap_username": "monitor@example.com",
    "imap_password": "secret",
    "message_subject": "Ping {UUID}",
    "message_body": "Uptime check",
    "response_subject": "Re: {ORIG_SUBJ}",
    "timeout": 10,
}


class FakeTime:
    """Replaces the time module inside email_ping; sleeping advances the clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class Mail:
    sender: str
    subject: str
    deleted: bool = False


@dataclass
class FakeMailServer:
    """An SMTP relay, a ping-pong responder and an IMAP inbox in one."""

    auto_reply: bool = True
    reply_delay: int = 0  # empty searches after a send before the reply shows up
    reply_prefix: str = "Re: "

    smtp_extensions: tuple = ("starttls", "auth")
    smtp_connect_error: Exception | None = None
    smtp_login_error: Exception | None = None
    rcpt_code: int = 250

    imap_capabilities: tuple = ("IMAP4REV1", "STARTTLS")
    imap_connect_error: Exception | None = None
    imap_login_error: Exception | None = None

    inbox: dict[int, Mail] = field(default_factory=dict)
    sent: list = field(default_factory=list)
    events: list = field(default_factory=list)
    searches: list = field(default_factory=list)
    pending: list = field(default_factory=list)
    searches_since_send: int = 0
    next_uid: int = 1

    def deliver(self, sender: str, subject: str) -> int:
        uid = self.next_uid
        self.next_uid += 1
        self.inbox[uid] = Mail(sender=sender, subject=subject)
        return uid

    def matching(self, sender: str, subject: str) -> list[int]:
        return [
            uid for uid, mail in self.inbox.items()
            if not mail.deleted and mail.sender == sender and subject in mail.subject
        ]


def _unquote(value: str) -> str:
    if not value.startswith('"'):
        return value
    return value[1:-1].replace('\\"', '"').replace("\\\\", "\\")


class FakeSMTP:
    server: FakeMailServer

    def __init__(self, host: str, port: int, timeout: float | None = None) -> None:
        self.server.events.append("smtp-connect")
        if self.server.smtp_connect_error:
            raise self.server.smtp_connect_error

    def ehlo(self):
        return 250, b"hello"

    def has_extn(self, name: str) -> bool:
        return name.lower() in self.server.smtp_extensions

    def starttls(self, context=None):
        self.server.events.append("smtp-starttls")
        return 220, b"ready"

    def login(self, user: str, password: str):
        self.server.events.append("smtp-login")
        if self.server.smtp_login_error:
            raise self.server.smtp_login_error
        return 235, b"ok"

    def mail(self, sender: str):
        self.server.events.append("smtp-mail")
        return 250, b"ok"

    def rcpt(self, recipient: str):
        self.server.events.append("smtp-rcpt")
        return self.server.rcpt_code, b"rcpt"

    def data(self, msg: str):
        self.server.events.append("smtp-data")
        message = email.message_from_string(msg)
        self.server.sent.append(message)
        if self.server.auto_reply:
            subject = str(email.header.make_header(email.header.decode_header(message["Subject"])))
            self.server.pending.append((message["To"], self.server.reply_prefix + subject))
        self.server.searches_since_send = 0
        return 250, b"queued"

    def quit(self):
        self.server.events.append("smtp-quit")
        return 221, b"bye"

    def close(self) -> None:
        pass


class FakeIMAP:
    server: FakeMailServer

    def __init__(self, host: str, port: int, timeout: float | None = None) -> None:
        self.server.events.append("imap-connect")
        if self.server.imap_connect_error:
            raise self.server.imap_connect_error
        self.capabilities = self.server.imap_capabilities
        self.literal: bytes | None = None

    def starttls(self, ssl_context=None):
        self.server.events.append("imap-starttls")
        return "OK", [b"Begin TLS negotiation now"]

    def login(self, user: str, password: str):
        self.server.events.append("imap-login")
        if self.server.imap_login_error:
            raise self.server.imap_login_error
        return "OK", [b"LOGIN completed"]

    def select(self, mailbox: str = "INBOX"):
        return "OK", [str(len(self.server.inbox)).encode()]

    def uid(self, command: str, *args: str):
        if command == "SEARCH":
            self.server.events.append("imap-search")
            for arg in args:
                arg.encode("ascii")  # imaplib sends command arguments as ASCII
            self.server.searches.append(args)
            if args[0] == "CHARSET":
                charset, args = args[1], args[2:]
                if self.literal is not None:
                    args += (self.literal.decode(charset),)
                    self.literal = None
            criteria = dict(zip(args[::2], args[1::2]))
            if self.server.pending and self.server.searches_since_send >= self.server.reply_delay:
                for sender, subject in self.server.pending:
                    self.server.deliver(sender, subject)
                self.server.pending.clear()
            self.server.searches_since_send += 1
            uids = self.server.matching(_unquote(criteria["FROM"]), _unquote(criteria["SUBJECT"]))
            return "OK", [" ".join(str(uid) for uid in uids).encode()]
        if command == "STORE":
            self.server.events.append("imap-store")
            for uid in args[0].split(","):
                self.server.inbox[int(uid)].deleted = True
            return "OK", []
        if command == "FETCH":
            mail = self.server.inbox[int(args[0])]
            return "OK", [(b"1 (UID 1 BODY[...])", f"Subject: {mail.subject}".encode()), b")"]
        raise imaplib.IMAP4.error(f"unexpected command {command}")

    def expunge(self):
        self.server.events.append("imap-expunge")
        for uid in [uid for uid, mail in self.server.inbox.items() if mail.deleted]:
            del self.server.inbox[uid]
        return "OK", []

    def logout(self):
        self.server.events.append("imap-logout")
        return "BYE", [b"LOGOUT received"]


@pytest.fixture
def fake_time(monkeypatch: pytest.MonkeyPatch) -> FakeTime:
    clock = FakeTime()
    monkeypatch.setattr(email_ping, "time", clock)
    return clock


@pytest.fixture
def mail_server(monkeypatch: pytest.MonkeyPatch, fake_time: FakeTime) -> FakeMailServer:
    server = FakeMailServer()
    monkeypatch.setattr(EmailPingMonitor, "smtp_class", type("BoundSMTP", (FakeSMTP,), {"server": server}))
    monkeypatch.setattr(EmailPingMonitor, "imap_class", type("BoundIMAP", (FakeIMAP,), {"server": server}))
    return server


@pytest.fixture
def email_monitor() -> EmailPingMonitor:
    return EmailPingMonitor.from_config("https://h/", make_entry(**EMAIL_PARAMS))
