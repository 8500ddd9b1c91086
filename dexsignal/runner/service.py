from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from dexsignal.bot.router import CommandRouter
from dexsignal.bot.telegram import ChatNotifier, TelegramClient, parse_update
from dexsignal.core.config import Settings
from dexsignal.core.errors import DataSourceError, TransportError
from dexsignal.core.interfaces import CandidateSource, RandomSource
from dexsignal.market.dexscreener import DexscreenerClient
from dexsignal.ops.context import cycle
from dexsignal.persistence.audit import Audit, record
from dexsignal.runner.models import AppState
from dexsignal.scanner.dedup import DedupRegistry
from dexsignal.scanner.filters import FilterPolicy
from dexsignal.scanner.scanner import Scanner
from dexsignal.trading.exit_rules import ExitEngine, ExitRules
from dexsignal.trading.position_manager import PositionManager
from dexsignal.trading.simulator import PriceSimulator

log = logging.getLogger("dexsignal.service")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class LoopStats:
    interval_sec: float
    cycles: int = 0
    errors: int = 0
    last_run_at: Optional[str] = None
    last_error: Optional[str] = None


class BotService:
    """
    Three periodic drivers on one event loop: inbound poll, scan, price/exit tick.

    Blocking HTTP runs in worker threads, but every unit of work that touches
    AppState holds `self._lock`, so units never overlap. Each driver swallows
    and logs its own failures so the other two keep running.
    """

    def __init__(
        self,
        *,
        state: AppState,
        scanner: Scanner,
        positions: PositionManager,
        router: CommandRouter,
        telegram: TelegramClient,
        audit: Optional[Audit] = None,
        scan_interval_sec: float = 20,
        tick_interval_sec: float = 3.0,
        poll_interval_sec: float = 2.5,
        poll_timeout_sec: int = 30,
    ):
        self.state = state
        self.scanner = scanner
        self.positions = positions
        self.router = router
        self.telegram = telegram
        self.audit = audit
        self.poll_timeout_sec = poll_timeout_sec

        self.stats: Dict[str, LoopStats] = {
            "poll": LoopStats(poll_interval_sec),
            "scan": LoopStats(scan_interval_sec),
            "tick": LoopStats(tick_interval_sec),
        }
        self.running = False
        self.started_at: Optional[str] = None
        self._offset = 0
        self._lock = asyncio.Lock()
        self._tasks: Dict[str, asyncio.Task] = {}

    @classmethod
    def from_settings(
        cls,
        s: Settings,
        *,
        audit: Optional[Audit] = None,
        source: Optional[CandidateSource] = None,
        rng: Optional[RandomSource] = None,
    ) -> "BotService":
        state = AppState(
            enabled=s.SCAN_ENABLED,
            registry=DedupRegistry(ttl_ms=int(s.DEDUP_TTL_MIN * 60_000)),
        )
        telegram = TelegramClient(s.TELEGRAM_BOT_TOKEN, s.TELEGRAM_API_BASE_URL)
        notifier = ChatNotifier(telegram, state)

        scanner = Scanner(
            state,
            source or DexscreenerClient(s.DEXSCREENER_BASE_URL, s.DEXSCREENER_QUERY),
            FilterPolicy.from_settings(s),
            notifier,
            mode=s.BOT_MODE,
            buy_amount=s.BUY_AMOUNT_SOL,
            cooldown_sec=s.SIGNAL_COOLDOWN_SEC,
            audit=audit,
        )
        positions = PositionManager(
            state,
            ExitEngine(ExitRules.from_settings(s)),
            notifier,
            spend_amount=s.BUY_AMOUNT_SOL,
            mode=s.BOT_MODE,
            simulator=PriceSimulator(rng or random.Random()),
            audit=audit,
        )
        router = CommandRouter(
            scanner,
            positions,
            notifier,
            mode=s.BOT_MODE,
            scan_interval_sec=s.SCAN_INTERVAL_SEC,
            audit=audit,
        )
        return cls(
            state=state,
            scanner=scanner,
            positions=positions,
            router=router,
            telegram=telegram,
            audit=audit,
            scan_interval_sec=s.SCAN_INTERVAL_SEC,
            tick_interval_sec=s.SIM_TICK_SEC,
            poll_interval_sec=s.TELEGRAM_POLL_INTERVAL_SEC,
            poll_timeout_sec=s.TELEGRAM_POLL_TIMEOUT_SEC,
        )

    # ---------- units of work ----------

    async def _run_unit(self, name: str, fn: Callable[..., Any], *args: Any) -> Any:
        st = self.stats[name]
        with cycle(name):
            try:
                async with self._lock:
                    result = await asyncio.to_thread(fn, *args)
                st.cycles += 1
                st.last_run_at = _utc_now_iso()
                return result
            except DataSourceError as e:
                st.errors += 1
                st.last_error = str(e)
                log.warning("%s: data source error: %s", name, e)
                record(self.audit, "SCAN_ERROR", action="PERIODIC", details={"error": str(e)})
            except Exception as e:
                st.errors += 1
                st.last_error = f"{type(e).__name__}: {e}"
                log.exception("%s unit failed", name)
        return None

    async def run_exclusive(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run one state-touching call from outside the loops (ops API). Errors propagate."""
        async with self._lock:
            return await asyncio.to_thread(fn, *args)

    async def poll_once(self) -> int:
        """Fetch one batch of updates (outside the lock) and handle them in order."""
        try:
            updates = await asyncio.to_thread(
                self.telegram.get_updates, self._offset, self.poll_timeout_sec
            )
        except TransportError as e:
            st = self.stats["poll"]
            st.errors += 1
            st.last_error = str(e)
            log.warning("getUpdates failed: %s", e)
            return 0

        handled = 0
        for raw in updates:
            update_id = int(raw.get("update_id", 0) or 0)
            self._offset = max(self._offset, update_id + 1)
            inbound = parse_update(raw)
            if inbound is None:
                continue
            await self._run_unit("poll", self.router.handle, inbound)
            handled += 1
        return handled

    async def scan_tick(self) -> None:
        await self._run_unit("scan", self.scanner.scan_once, False)

    async def sim_tick(self) -> None:
        await self._run_unit("tick", self.positions.tick)

    # ---------- lifecycle ----------

    async def _loop(self, name: str, unit: Callable[[], Any]) -> None:
        interval = self.stats[name].interval_sec
        while self.running:
            try:
                await unit()
            except asyncio.CancelledError:
                raise
            except Exception:
                # units already swallow their errors; this guards the loop itself
                log.exception("%s loop iteration failed", name)
            await asyncio.sleep(interval)

    def start(self) -> None:
        if self.running:
            return
        self.running = True
        self.started_at = _utc_now_iso()
        self._tasks = {
            "poll": asyncio.create_task(self._loop("poll", self.poll_once)),
            "scan": asyncio.create_task(self._loop("scan", self.scan_tick)),
            "tick": asyncio.create_task(self._loop("tick", self.sim_tick)),
        }
        log.info("bot service started")

    async def stop(self) -> None:
        self.running = False
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
        for task in self._tasks.values():
            try:
                await task
            except asyncio.CancelledError:
                # expected when we cancel the background loop
                pass
        self._tasks = {}
        log.info("bot service stopped")

    def status(self) -> Dict[str, Any]:
        snap = self.positions.describe()
        return {
            "running": self.running,
            "started_at": self.started_at,
            "scan_enabled": self.state.enabled,
            "chat_bound": self.state.chat_id is not None,
            "signals_seen": len(self.state.registry),
            "loops": {k: asdict(v) for k, v in self.stats.items()},
            "position": snap.to_dict() if snap else None,
        }
