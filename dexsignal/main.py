import logging
import uuid
from typing import Optional

from fastapi import FastAPI, HTTPException, Query

from dexsignal.core.config import settings
from dexsignal.core.errors import DataSourceError
from dexsignal.ops.context import cycle, set_run_id
from dexsignal.persistence.audit import Audit
from dexsignal.persistence.db import DB
from dexsignal.runner.service import BotService
from dexsignal.trading.exit_rules import ExitReason

log = logging.getLogger("dexsignal.main")

app = FastAPI(title="DexSignal Bot")
bot_service: Optional[BotService] = None
audit: Optional[Audit] = None
CURRENT_RUN_ID: Optional[str] = None

SENSITIVE_KEYS = {"TELEGRAM_BOT_TOKEN"}


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(level)
        return
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def safe_config_snapshot() -> dict:
    snap = settings.model_dump()
    for k in SENSITIVE_KEYS:
        if k in snap:
            snap[k] = "***"
    return snap


def get_audit() -> Optional[Audit]:
    global audit
    if audit is None and settings.AUDIT_ENABLED:
        audit = Audit(DB(settings.AUDIT_DB_PATH), settings.AUDIT_JSONL_PATH)
    return audit


def get_service() -> BotService:
    global bot_service
    if bot_service is None:
        bot_service = BotService.from_settings(settings, audit=get_audit())
    return bot_service


@app.on_event("startup")
async def _startup():
    """Fail-fast config validation, then start the three periodic drivers."""
    global CURRENT_RUN_ID

    configure_logging(settings.LOG_LEVEL)
    try:
        for w in settings.validate_runtime():
            log.warning("[CONFIG WARNING] %s", w)
    except Exception as e:
        # Fail-closed: crash the service rather than running with a bad config
        log.error("%s", e)
        raise

    CURRENT_RUN_ID = str(uuid.uuid4())
    set_run_id(CURRENT_RUN_ID)

    a = get_audit()
    if a is not None:
        a.start_run(
            CURRENT_RUN_ID,
            settings.BOT_MODE,
            settings.SCAN_INTERVAL_SEC,
            safe_config_snapshot(),
        )

    get_service().start()
    log.info("[RUN] started run_id=%s mode=%s", CURRENT_RUN_ID, settings.BOT_MODE)


@app.on_event("shutdown")
async def _shutdown():
    if bot_service is not None:
        await bot_service.stop()
    if audit is not None and CURRENT_RUN_ID:
        audit.stop_run(CURRENT_RUN_ID)
        log.info("[RUN] stopped run_id=%s", CURRENT_RUN_ID)


@app.get("/")
def root():
    return {"name": "dexsignal", "mode": settings.BOT_MODE, "run_id": CURRENT_RUN_ID}


@app.get("/bot/status")
async def bot_status():
    svc = get_service()
    return await svc.run_exclusive(svc.status)


@app.post("/bot/scan")
async def bot_scan():
    svc = get_service()
    blocked = svc.scanner.blocked_reason()
    if blocked is not None:
        return {"status": "skipped", "reason": blocked, "signal": None}

    with cycle("api-scan"):
        try:
            c = await svc.run_exclusive(svc.scanner.scan_once, True)
        except DataSourceError as e:
            raise HTTPException(status_code=502, detail=str(e))

    return {
        "status": "ok",
        "signal": None if c is None else {"pair_id": c.pair_id, "symbol": c.symbol, "url": c.url},
    }


@app.post("/bot/pause")
async def bot_pause():
    svc = get_service()
    await svc.run_exclusive(svc.scanner.set_enabled, False)
    return {"scan_enabled": svc.state.enabled}


@app.post("/bot/resume")
async def bot_resume():
    svc = get_service()
    await svc.run_exclusive(svc.scanner.set_enabled, True)
    return {"scan_enabled": svc.state.enabled}


@app.post("/bot/close")
async def bot_close():
    svc = get_service()
    result = await svc.run_exclusive(svc.positions.close, ExitReason.MANUAL_CLOSE.value)
    return {"result": result}


@app.get("/logs/events/tail")
def logs_events_tail(limit: int = Query(50, ge=1, le=500)):
    a = get_audit()
    if a is None:
        return {"enabled": False, "events": []}
    return {"enabled": True, "events": a.tail(limit)}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("dexsignal.main:app", host="0.0.0.0", port=8000)
