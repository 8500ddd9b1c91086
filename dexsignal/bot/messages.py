from __future__ import annotations

import math
from typing import Optional

from dexsignal.core.interfaces import Buttons
from dexsignal.market.models import PairCandidate
from dexsignal.scanner.filters import FilterPolicy
from dexsignal.trading.exit_rules import ExitReason, ExitRules
from dexsignal.trading.position import PositionSnapshot


_MD_SPECIAL = ("_", "*", "`", "[")


def md(text) -> str:
    """Escape untrusted text (token symbols, URLs, error strings) for parse_mode=Markdown."""
    out = str(text)
    for ch in _MD_SPECIAL:
        out = out.replace(ch, "\\" + ch)
    return out


def fmt_usd(n) -> str:
    try:
        x = float(n or 0)
    except (TypeError, ValueError):
        return "n/a"
    if not math.isfinite(x):
        return "n/a"
    if x >= 1_000_000:
        return f"{x / 1_000_000:.2f}M"
    if x >= 1_000:
        return f"{x / 1_000:.1f}k"
    return f"{x:.0f}"


def scan_toggle_row(enabled: bool) -> list:
    if enabled:
        return [("PAUSE SCAN", "pause")]
    return [("RESUME SCAN", "resume")]


# ---------- scanner ----------

def signal_text(c: PairCandidate, now_ms: int, mode: str) -> str:
    age = c.age_minutes(now_ms) or 0.0
    return (
        "🚨 *SIGNAL* (Dexscreener)\n"
        f"*Pair:* {md(c.symbol)}\n"
        f"*Liquidity:* ${fmt_usd(c.liquidity_usd)}\n"
        f"*Volume (5m):* ${fmt_usd(c.volume_m5_usd)}\n"
        f"*Age:* {age:.1f} min\n"
        f"*Mcap/FDV:* ${fmt_usd(c.market_cap_usd)}\n"
        f"*Address:* `{c.pair_id}`\n"
        f"*Link:* {md(c.url) if c.url else 'n/a'}\n"
        "\n"
        f"Mode: *{mode}*"
    )


def signal_buttons(c: PairCandidate, buy_amount: float, enabled: bool) -> Buttons:
    return [
        [(f"BUY {buy_amount:g} SOL", f"buy|{c.pair_id}")],
        [("SKIP", f"skip|{c.pair_id}")],
        scan_toggle_row(enabled),
    ]


def filters_text(policy: FilterPolicy) -> str:
    return (
        f"• Liq ≥ ${fmt_usd(policy.min_liquidity)}\n"
        f"• Vol(5m) ≥ ${fmt_usd(policy.min_volume)}\n"
        f"• Age ≤ {policy.max_age_minutes:g} min\n"
        f"• Mcap ≤ ${fmt_usd(policy.max_market_cap)}"
    )


def nothing_found_text(policy: FilterPolicy) -> str:
    return "ℹ️ Nothing matched the filters:\n" + filters_text(policy)


# ---------- position ----------

def rules_text(rules: ExitRules) -> str:
    return (
        "Rules:\n"
        f"• TP1: x{rules.tp1_multiplier:g} → sell {rules.tp1_sell_percent:g}%\n"
        f"• TP2: x{rules.tp2_multiplier:g} OR trailing -{rules.trailing_stop_percent:g}% "
        f"OR breakeven OR time {rules.time_stop_minutes:g}m\n"
        f"• Min sell out: {rules.min_sell_out:g} SOL"
    )


def position_text(snap: PositionSnapshot, rules: ExitRules, mode: str) -> str:
    lines = [
        f"📍 *OPEN POSITION* ({mode})",
        f"*Pair:* {md(snap.symbol)}",
        f"*Multiple:* x{snap.multiple:.2f}  (ATH x{snap.ath_multiple:.2f})",
        f"*PnL:* {snap.pnl_pct:.1f}%",
        f"*Sold:* {snap.sold_pct:g}%   *Remaining:* {snap.remaining_pct:g}%",
        f"*Expected out (after est. fees):* {snap.expected_out:.4f} SOL",
        f"*Time:* {snap.elapsed_min:.1f} min",
    ]
    if snap.trailing_active:
        lines.append(f"*Trailing floor:* x{snap.trailing_floor_multiple:.2f}")
    return "\n".join(lines) + "\n\n" + rules_text(rules)


def position_buttons(snap: PositionSnapshot, rules: ExitRules, enabled: bool) -> Buttons:
    rows: Buttons = []
    if not snap.tp1_done:
        rows.append(
            [(f"SELL {rules.tp1_sell_percent:g}% @{rules.tp1_multiplier:g}x", "sell_tp1")]
        )
    rows.append([("SELL ALL", "sell_all")])
    rows.append([("PANIC SELL", "panic")])
    rows.append(scan_toggle_row(enabled))
    return rows


def opened_text(snap: PositionSnapshot, mode: str) -> str:
    return (
        f"🧪 {mode} BUY ({snap.spent:g} SOL)\n"
        f"Pair: {md(snap.symbol)} `{snap.pair_id}`\n"
        "\n"
        "Position opened. Tracking PnL and running exit rules."
    )


def tp1_text(snap: PositionSnapshot, rules: ExitRules, manual: bool = False) -> str:
    if manual:
        return (
            f"✅ Manual TP1: SOLD {snap.sold_pct:g}%. "
            f"Remaining {snap.remaining_pct:g}%."
        )
    return (
        f"🟢 TP1 hit x{rules.tp1_multiplier:g} → SOLD {snap.sold_pct:g}%\n"
        f"Remaining {snap.remaining_pct:g}% managed by TP2/trailing/breakeven/time."
    )


def exit_text(reason: str, snap: PositionSnapshot, rules: ExitRules) -> str:
    if reason == ExitReason.TIME_STOP.value:
        head = f"⏱️ Time stop {rules.time_stop_minutes:g}m → SELL ALL"
    elif reason == ExitReason.TP2.value:
        head = f"🚀 TP2 hit x{rules.tp2_multiplier:g} → SELL ALL remaining"
    elif reason == ExitReason.TRAILING_STOP.value:
        head = (
            f"🟠 Trailing stop hit (floor x{snap.trailing_floor_multiple:.2f}) → SELL ALL"
        )
    elif reason == ExitReason.BREAKEVEN.value:
        head = "🟡 Breakeven zone reached → SELL ALL remaining"
    elif reason == ExitReason.PANIC.value:
        head = "🔴 PANIC SELL → closed position"
    elif reason == ExitReason.SELL_ALL.value:
        head = "✅ SELL ALL → closed position"
    else:
        head = "✅ Closed position (manual)"
    return (
        f"{head}\n"
        f"Exit x{snap.multiple:.2f}, est. out {snap.expected_out:.4f} SOL"
    )


def closed_ack(reason: Optional[str]) -> str:
    if reason is None:
        return "No position."
    return f"✅ Position closed ({reason})."


# ---------- commands ----------

def start_text(mode: str, enabled: bool) -> str:
    return (
        f"🤖 Bot started in *{mode}* mode.\n"
        f"Scan: *{'ON' if enabled else 'OFF'}*\n"
        "Commands: /scan /pause /resume /status /panic /close"
    )


def status_text(
    mode: str,
    enabled: bool,
    interval_sec: int,
    policy: FilterPolicy,
    snap: Optional[PositionSnapshot],
    rules: ExitRules,
) -> str:
    text = (
        "📊 *Status*\n"
        f"Mode: *{mode}*\n"
        f"Scan: *{'ON' if enabled else 'OFF'}*\n"
        f"Interval: {interval_sec}s\n"
        f"Open position: *{'YES' if snap else 'NO'}*\n"
        "\n"
        "Filters:\n" + filters_text(policy)
    )
    if snap is not None:
        text += "\n\n" + position_text(snap, rules, mode)
    return text


SCAN_ON = "▶️ Scan ON"
SCAN_OFF = "⏸️ Scan OFF"
SCANNING = "🔎 Scanning Dexscreener..."
SKIPPED = "⏭️ Skipped."
NO_POSITION = "ℹ️ No open position."
HELP = "Commands: /start /scan /pause /resume /status /panic /close"


def scan_error_text(err: Exception) -> str:
    return f"❌ Scan error: {md(err)}"
