import smtplib
import time
from datetime import datetime, timezone

import pytest

import ratewatch.notify.mailer as mailer
from ratewatch.alerts.formatting import describe_change
from ratewatch.errors import NotifyFailure
from ratewatch.notify.mailer import EmailConfig, EmailNotifier, config_from_env
from ratewatch.utils.types import Event

T0 = datetime(2024, 3, 1, 9, 5, tzinfo=timezone.utc)


class _FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None, context=None, fail_login=False, slow=0.0):
        self.host, self.port, self.timeout = host, port, timeout
        self.sent = []
        self.logged_in = None
        self.fail_login = fail_login
        self.slow = slow
        _FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def login(self, user, password):
        if self.slow:
            time.sleep(self.slow)
        if self.fail_login:
            raise smtplib.SMTPAuthenticationError(535, b"bad credentials")
        self.logged_in = (user, password)

    def send_message(self, msg, from_addr=None, to_addrs=None):
        self.sent.append((msg, from_addr, list(to_addrs)))


@pytest.fixture
def fake_smtp(monkeypatch):
    _FakeSMTP.instances = []
    opts = {}

    def _factory(host, port, timeout=None, context=None):
        return _FakeSMTP(host, port, timeout, context, **opts)

    monkeypatch.setattr(mailer.smtplib, "SMTP_SSL", _factory)
    return opts


def cfg(**kw):
    base = dict(host="smtp.example", user="bot@example", password="pw",
                notify_addresses=["a@example", "b@example"], app_name="RateWatch", timeout_s=1.0)
    base.update(kw)
    return EmailConfig(**base)


def change():
    return Event("X", "Prime", 4.0, 6.0, describe_change("Prime", "X", 4.0, 6.0), T0)


@pytest.mark.asyncio
async def test_send_builds_multipart_and_delivers(fake_smtp):
    n = EmailNotifier(cfg(), clock=lambda: T0)
    await n.send([change()])

    smtp = _FakeSMTP.instances[0]
    assert smtp.logged_in == ("bot@example", "pw")
    msg, from_addr, to_addrs = smtp.sent[0]
    assert from_addr == "bot@example"
    assert to_addrs == ["a@example", "b@example"]
    assert msg["Subject"] == "RateWatch: Currency Exchange Change(s) @ 2024-03-01 09:05"
    assert msg["From"] == "RateWatch <bot@example>"
    kinds = [p.get_content_type() for p in msg.get_payload()]
    assert kinds == ["text/plain", "text/html"]
    assert "Prime (X) changed rate from 4 to 6." in msg.get_payload()[0].get_payload(decode=True).decode()


@pytest.mark.asyncio
async def test_empty_changes_send_nothing(fake_smtp):
    await EmailNotifier(cfg()).send([])
    assert _FakeSMTP.instances == []


@pytest.mark.asyncio
async def test_smtp_error_is_notify_failure(fake_smtp):
    fake_smtp["fail_login"] = True
    with pytest.raises(NotifyFailure):
        await EmailNotifier(cfg()).send([change()])


@pytest.mark.asyncio
async def test_slow_smtp_times_out(fake_smtp):
    fake_smtp["slow"] = 0.5
    with pytest.raises(NotifyFailure):
        await EmailNotifier(cfg(timeout_s=0.05)).send([change()])


@pytest.mark.asyncio
async def test_send_test_message(fake_smtp):
    await EmailNotifier(cfg(), clock=lambda: T0).send_test()
    msg, _, _ = _FakeSMTP.instances[0].sent[0]
    assert msg["Subject"] == "RateWatch: Test @ 2024-03-01 09:05"
    assert "Test from RateWatch application." in msg.get_payload(decode=True).decode()


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("SMTP_HOST", "smtp.example")
    monkeypatch.setenv("SMTP_USER", "bot@example")
    monkeypatch.setenv("SMTP_PASSWORD", "pw")
    monkeypatch.setenv("NOTIFY_ADDRESSES", "a@example, b@example,")
    c = config_from_env()
    assert c.notify_addresses == ["a@example", "b@example"]
    assert c.port == 465 and c.use_ssl is True


def test_config_from_env_missing(monkeypatch):
    for k in ("SMTP_HOST", "SMTP_USER", "SMTP_PASSWORD", "NOTIFY_ADDRESSES"):
        monkeypatch.delenv(k, raising=False)
    with pytest.raises(ValueError):
        config_from_env()
