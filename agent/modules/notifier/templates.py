"""Markdown message bodies for the operator's standard alerts."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

SEVERITY_EMOJI: dict[str, str] = {
    "low": "ℹ️",
    "medium": "⚠️",
    "high": "🚨",
    "critical": "💀",
}


def _money(value: float | int | None) -> str:
    return f"${(value or 0):,.2f}"


def _stamp(now: datetime | None) -> str:
    return (now or datetime.now(timezone.utc)).strftime("%Y-%m-%d %H:%M UTC")


def wager_update(amount: float, game: str, status: str, now: datetime | None = None) -> str:
    return (
        "🎯 *Wager Update*\n\n"
        f"💰 *Amount:* {_money(amount)}\n"
        f"🎮 *Game:* {game}\n"
        f"📊 *Status:* {status}\n\n"
        f"⏰ *Updated:* {_stamp(now)}"
    )


def balance_change(
    old_balance: float, new_balance: float, reason: str, now: datetime | None = None
) -> str:
    trend = "📈" if new_balance > old_balance else "📉"
    return (
        "💰 *Balance Update*\n\n"
        f"📈 *Previous:* {_money(old_balance)}\n"
        f"📊 *Current:* {_money(new_balance)}\n"
        f"{trend} *Change:* {_money(abs(new_balance - old_balance))}\n\n"
        f"💡 *Reason:* {reason}\n"
        f"⏰ *Updated:* {_stamp(now)}"
    )


def system_alert(title: str, message: str, severity: str = "medium", now: datetime | None = None) -> str:
    if severity not in SEVERITY_EMOJI:
        raise ValueError(f"Unknown severity: {severity}")
    return (
        f"{SEVERITY_EMOJI[severity]} *{title}*\n\n"
        f"{message}\n\n"
        f"🚨 *Severity:* {severity.upper()}\n"
        f"⏰ *Time:* {_stamp(now)}"
    )


def weekly_report(stats: dict[str, Any], now: datetime | None = None) -> str:
    win_rate = stats.get("win_rate")
    win_rate_text = f"{win_rate * 100:.1f}%" if win_rate else "0%"
    return (
        "📊 *Weekly Report*\n\n"
        f"💰 *Total Wagers:* {_money(stats.get('total_wagers'))}\n"
        f"🏆 *Total Wins:* {_money(stats.get('total_wins'))}\n"
        f"📈 *Win Rate:* {win_rate_text}\n"
        f"💵 *Commission:* {_money(stats.get('commission'))}\n\n"
        "📅 *Period:* Last 7 days\n"
        f"⏰ *Generated:* {_stamp(now)}"
    )


TEMPLATES: dict[str, Callable[..., str]] = {
    "wager_update": wager_update,
    "balance_change": balance_change,
    "system_alert": system_alert,
    "weekly_report": weekly_report,
}


def render(name: str, **kwargs: Any) -> str:
    """Render a named template; raises KeyError for unknown names."""
    try:
        template = TEMPLATES[name]
    except KeyError:
        raise KeyError(f"Unknown template: {name}") from None
    return template(**kwargs)
