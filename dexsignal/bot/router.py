from __future__ import annotations

import logging

from dexsignal.bot import messages
from dexsignal.bot.telegram import ChatNotifier, Inbound, InboundCallback, InboundText
from dexsignal.core.errors import DataSourceError, InvalidCommandState
from dexsignal.persistence.audit import Audit, record
from dexsignal.scanner.scanner import Scanner
from dexsignal.trading.exit_rules import ExitReason
from dexsignal.trading.position_manager import PositionManager

log = logging.getLogger("dexsignal.router")

_BLOCKED_SCAN_TEXT = {
    "no_chat": "ℹ️ Send /start first.",
    "paused": "ℹ️ Scan is paused. /resume to enable.",
    "position_open": "ℹ️ A position is open, no new signals until it closes.",
    "cooldown": "ℹ️ Cooldown after the last signal, try again shortly.",
}


class CommandRouter:
    """Maps chat commands and button presses onto Scanner / PositionManager."""

    def __init__(
        self,
        scanner: Scanner,
        positions: PositionManager,
        notifier: ChatNotifier,
        *,
        mode: str = "TEST",
        scan_interval_sec: int = 20,
        audit: Audit | None = None,
    ):
        self.scanner = scanner
        self.positions = positions
        self.notifier = notifier
        self.mode = mode
        self.scan_interval_sec = scan_interval_sec
        self.audit = audit

    def handle(self, inbound: Inbound) -> None:
        if isinstance(inbound, InboundText):
            self.handle_text(inbound.chat_id, inbound.text)
        elif isinstance(inbound, InboundCallback):
            self.handle_callback(inbound.chat_id, inbound.data, inbound.callback_id)

    # ---------- text commands ----------

    def handle_text(self, chat_id: int, text: str) -> None:
        # "/status@MyBot extra" -> "/status"
        parts = (text or "").split()
        cmd = parts[0].split("@", 1)[0].lower() if parts else ""
        reply = self.notifier.reply

        if cmd == "/start":
            self.notifier.bind(chat_id)
            reply(chat_id, messages.start_text(self.mode, self.scanner.enabled))
            return

        if cmd == "/scan":
            self._forced_scan(chat_id)
            return

        if cmd == "/pause":
            self.scanner.set_enabled(False)
            reply(chat_id, messages.SCAN_OFF)
            return

        if cmd == "/resume":
            self.scanner.set_enabled(True)
            reply(chat_id, messages.SCAN_ON)
            return

        if cmd == "/status":
            reply(
                chat_id,
                messages.status_text(
                    self.mode,
                    self.scanner.enabled,
                    self.scan_interval_sec,
                    self.scanner.policy,
                    self.positions.describe(),
                    self.positions.rules,
                ),
            )
            return

        if cmd == "/panic":
            self._force_close(chat_id, ExitReason.PANIC.value)
            return

        if cmd == "/close":
            self._force_close(chat_id, ExitReason.MANUAL_CLOSE.value)
            return

        if cmd.startswith("/"):
            reply(chat_id, messages.HELP)

    # ---------- button presses ----------

    def handle_callback(self, chat_id: int, data: str, callback_id: str = "") -> None:
        self.notifier.ack(callback_id)
        reply = self.notifier.reply

        if data == "pause":
            self.scanner.set_enabled(False)
            reply(chat_id, messages.SCAN_OFF)
            return

        if data == "resume":
            self.scanner.set_enabled(True)
            reply(chat_id, messages.SCAN_ON)
            return

        if data.startswith("skip|"):
            log.info("signal skipped %s", data.split("|", 1)[1])
            reply(chat_id, messages.SKIPPED)
            return

        try:
            if data.startswith("buy|"):
                self._buy(chat_id, data.split("|", 1)[1])
                return

            if data == "sell_tp1":
                snap = self.positions.manual_tp1()
                reply(chat_id, messages.tp1_text(snap, self.positions.rules, manual=True))
                self.push_position_update()
                return

            if data in ("sell_all", "panic"):
                snap = self.positions.sell_all(data)
                reply(chat_id, messages.exit_text(data, snap, self.positions.rules))
                return

        except InvalidCommandState as e:
            log.info("rejected %s: %s", data, e)
            reply(chat_id, str(e))
            return

        log.warning("unknown callback data: %r", data)

    # ---------- helpers ----------

    def push_position_update(self) -> None:
        self.positions.push_update()

    def _buy(self, chat_id: int, pair_id: str) -> None:
        self.positions.open_signaled(pair_id)
        snap = self.positions.describe()
        self.notifier.reply(chat_id, messages.opened_text(snap, self.mode))
        self.push_position_update()

    def _force_close(self, chat_id: int, reason: str) -> None:
        try:
            snap = self.positions.sell_all(reason)
        except InvalidCommandState as e:
            self.notifier.reply(chat_id, str(e))
            return
        self.notifier.reply(chat_id, messages.exit_text(reason, snap, self.positions.rules))

    def _forced_scan(self, chat_id: int) -> None:
        blocked = self.scanner.blocked_reason()
        if blocked is not None:
            self.notifier.reply(chat_id, _BLOCKED_SCAN_TEXT[blocked])
            return

        self.notifier.reply(chat_id, messages.SCANNING)
        try:
            self.scanner.scan_once(notify_if_empty=True)
        except DataSourceError as e:
            log.warning("forced scan failed: %s", e)
            record(self.audit, "SCAN_ERROR", action="FORCED", details={"error": str(e)})
            self.notifier.reply(chat_id, messages.scan_error_text(e))
