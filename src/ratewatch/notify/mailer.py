from __future__ import annotations

import asyncio
import os
import smtplib
import ssl
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Callable, Optional, Sequence

import structlog

from ratewatch.alerts.formatting import build_html, build_plain_text, build_subject
from ratewatch.errors import NotifyFailure
from ratewatch.utils.time import utc_now
from ratewatch.utils.types import Event

log = structlog.get_logger("mailer")


@dataclass(slots=True)
class EmailConfig:
    host: str
    user: str
    password: str
    notify_addresses: list[str] = field(default_factory=list)
    port: int = 465
    use_ssl: bool = True
    timeout_s: float = 15.0
    app_name: str = "RateWatch"
    self_url: Optional[str] = None
    display_tz: Optional[str] = None   # subject timestamp zone; None keeps UTC

    @property
    def sender(self) -> str:
        return f"{self.app_name} <{self.user}>"


def config_from_env() -> EmailConfig:
    """Build EmailConfig from SMTP_* env vars; raises ValueError if any required one is missing."""
    host = os.getenv("SMTP_HOST")
    user = os.getenv("SMTP_USER")
    password = os.getenv("SMTP_PASSWORD")
    addrs = [a.strip() for a in os.getenv("NOTIFY_ADDRESSES", "").split(",") if a.strip()]
    missing = [n for n, v in (("SMTP_HOST", host), ("SMTP_USER", user),
                              ("SMTP_PASSWORD", password), ("NOTIFY_ADDRESSES", addrs)) if not v]
    if missing:
        raise ValueError(f"missing email settings: {', '.join(missing)}")
    return EmailConfig(
        host=host,
        user=user,
        password=password,
        notify_addresses=addrs,
        port=int(os.getenv("SMTP_PORT", "465")),
        use_ssl=os.getenv("SMTP_SSL", "1").lower() in ("1", "true", "yes"),
        timeout_s=float(os.getenv("SMTP_TIMEOUT_S", "15")),
        app_name=os.getenv("APP_NAME", "RateWatch"),
        self_url=os.getenv("SELF_URL") or None,
        display_tz=os.getenv("DISPLAY_TZ") or None,
    )


class EmailNotifier:
    """
    Sends one multipart (plain text + HTML) email per batch of changes.
    smtplib is blocking, so delivery runs in a worker thread bounded by
    cfg.timeout_s. Failures raise NotifyFailure; there is no retry queue.
    """
    def __init__(self, cfg: EmailConfig, *, clock: Callable = utc_now):
        self.cfg = cfg
        self._clock = clock

    def build_message(self, changes: Sequence[Event]) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = build_subject(self.cfg.app_name, self._clock(), self.cfg.display_tz)
        msg["From"] = self.cfg.sender
        msg["To"] = ", ".join(self.cfg.notify_addresses)
        msg.attach(MIMEText(build_plain_text(changes), "plain", "utf-8"))
        msg.attach(MIMEText(build_html(changes, self.cfg.app_name, self.cfg.self_url), "html", "utf-8"))
        return msg

    def build_test_message(self) -> MIMEText:
        msg = MIMEText(f"Test from {self.cfg.app_name} application.", "plain", "utf-8")
        when = self._clock().strftime("%Y-%m-%d %H:%M")
        msg["Subject"] = f"{self.cfg.app_name}: Test @ {when}"
        msg["From"] = self.cfg.sender
        msg["To"] = ", ".join(self.cfg.notify_addresses)
        return msg

    async def send(self, changes: Sequence[Event]) -> None:
        if not changes:
            return
        log.info("email_sending", changes=len(changes), recipients=len(self.cfg.notify_addresses))
        await self._deliver(self.build_message(changes))
        log.info("email_sent", changes=len(changes))

    async def send_test(self) -> None:
        log.info("email_test_sending")
        await self._deliver(self.build_test_message())
        log.info("email_test_sent")

    async def _deliver(self, msg) -> None:
        try:
            await asyncio.wait_for(asyncio.to_thread(self._send_sync, msg), timeout=self.cfg.timeout_s)
        except asyncio.TimeoutError as e:
            raise NotifyFailure(f"smtp send timed out after {self.cfg.timeout_s}s") from e
        except (smtplib.SMTPException, OSError) as e:
            raise NotifyFailure(f"smtp send failed: {e}") from e

    def _send_sync(self, msg) -> None:
        if self.cfg.use_ssl:
            ctx = ssl.create_default_context()
            server = smtplib.SMTP_SSL(self.cfg.host, self.cfg.port, timeout=self.cfg.timeout_s, context=ctx)
        else:
            server = smtplib.SMTP(self.cfg.host, self.cfg.port, timeout=self.cfg.timeout_s)
        with server:
            if not self.cfg.use_ssl:
                server.starttls(context=ssl.create_default_context())
            server.login(self.cfg.user, self.cfg.password)
            server.send_message(msg, from_addr=self.cfg.user, to_addrs=self.cfg.notify_addresses)
