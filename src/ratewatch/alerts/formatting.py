from __future__ import annotations

import html
from datetime import datetime
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from ratewatch.utils.types import Event

DISPLAY_DATE_FORMAT = "%Y-%m-%d %H:%M"


def fmt_value(v: Optional[float]) -> str:
    if v is None:
        return "unknown"
    f = float(v)
    return str(int(f)) if f.is_integer() else repr(f)


def describe_change(rate_name: str, rate_id: str, old: Optional[float], new: float) -> str:
    return f"{rate_name} ({rate_id}) changed rate from {fmt_value(old)} to {fmt_value(new)}."


def format_event_line(evt: Event) -> str:
    """One-line console rendering of an event."""
    ts = evt.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
    return f"[{evt.rate_id}] {ts} {evt.description}"


def build_subject(app_name: str, when: datetime, tz_name: Optional[str] = None) -> str:
    if tz_name:
        when = when.astimezone(ZoneInfo(tz_name))
    return f"{app_name}: Currency Exchange Change(s) @ {when.strftime(DISPLAY_DATE_FORMAT)}"


def build_plain_text(changes: Sequence[Event]) -> str:
    lines = ["Notification", "", "Changes in currency exchange rates have been detected.", ""]
    lines.extend(f" • {c.description}" for c in changes)
    return "\n".join(lines) + "\n"


def build_html(changes: Sequence[Event], app_name: str, self_url: Optional[str] = None) -> str:
    rows = "".join(
        "<tr>"
        f"<td>{html.escape(c.rate_name)}</td>"
        f"<td>{html.escape(c.rate_id)}</td>"
        f"<td>{html.escape(fmt_value(c.old_value))}</td>"
        f"<td>{html.escape(fmt_value(c.new_value))}</td>"
        "</tr>"
        for c in changes
    )
    link = (
        f'<p><a href="{html.escape(self_url, quote=True)}">{html.escape(app_name)}</a></p>'
        if self_url else ""
    )
    return (
        "<html><body>"
        f"<h2>{html.escape(app_name)}: Notification</h2>"
        "<p>Changes in currency exchange rates have been detected.</p>"
        "<table>"
        "<tr><th>Name</th><th>Id</th><th>Old rate</th><th>New rate</th></tr>"
        f"{rows}"
        "</table>"
        f"{link}"
        "</body></html>"
    )
