import logging
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from autotrader.core.config import settings
from autotrader.core.errors import ExternalUnavailable
from autotrader.exchange.notify import LogNotifier, WebhookNotifier
from autotrader.exchange.paper import PaperBroker
from autotrader.exchange.yahoo.client import YahooChartClient
from autotrader.runner.orchestrator import TradingOrchestrator

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger("autotrader.api")

app = FastAPI(title="Autotrader")
engine_instance: Optional[TradingOrchestrator] = None


@app.on_event("startup")
async def _startup_validate_config():
    """Fail-fast config validation at startup."""
    warnings = settings.validate_runtime()
    for w in warnings:
        log.warning("[CONFIG WARNING] %s", w)
    if settings.EXECUTION_MODE == "live":
        # no live broker adapter is wired in; refuse rather than paper-trade silently
        raise ValueError("EXECUTION_MODE=live requires a live broker adapter")


def get_engine() -> TradingOrchestrator:
    global engine_instance

    if engine_instance is None:
        notifier = (
            WebhookNotifier(settings.NOTIFY_WEBHOOK_URL, timeout=settings.HTTP_TIMEOUT_SECONDS)
            if settings.NOTIFY_WEBHOOK_URL
            else LogNotifier()
        )
        engine_instance = TradingOrchestrator(
            broker=PaperBroker(data_dir=settings.DATA_DIR),
            market_data=YahooChartClient(settings.CHART_BASE_URL, timeout=settings.HTTP_TIMEOUT_SECONDS),
            notifier=notifier,
            app_settings=settings,
        )
    return engine_instance


# =========================
# Request bodies
# =========================
class CycleRequest(BaseModel):
    tickers: List[Dict[str, Any]] = Field(default_factory=list)
    positions: Optional[List[Dict[str, Any]]] = None


class ManualBuyRequest(BaseModel):
    symbol: str
    price: float
    reason: str = "Manual buy"
    skip_delay: bool = False


class ManualSellRequest(BaseModel):
    symbol: str
    price: float
    qty: float
    reason: str = "Manual sell"


# =========================
# Endpoints
# =========================
@app.get("/health")
def health():
    engine = get_engine()
    return {
        "status": "ok",
        "execution_mode": settings.EXECUTION_MODE,
        "enabled": engine.get_config().enabled,
        "benchmark": engine.gate.symbol,
    }


@app.get("/trading/status")
def trading_status():
    return get_engine().status()


@app.post("/trading/enable")
def trading_enable():
    cfg = get_engine().set_enabled(True)
    return {"enabled": cfg.enabled}


@app.post("/trading/disable")
def trading_disable():
    cfg = get_engine().set_enabled(False)
    return {"enabled": cfg.enabled}


@app.patch("/trading/config")
def trading_config_update(changes: Dict[str, Any] = Body(...)):
    try:
        cfg = get_engine().update_config(**changes)
    except ValueError as e:
        # pydantic ValidationError is a ValueError
        raise HTTPException(status_code=422, detail=str(e))
    return cfg.model_dump()


@app.post("/trading/cycle")
def trading_cycle(req: CycleRequest):
    result = get_engine().run_cycle(req.tickers, req.positions)
    return result.to_dict()


@app.post("/trading/buy")
def trading_manual_buy(req: ManualBuyRequest):
    return get_engine().manual_buy(req.symbol, req.price, req.reason, skip_delay=req.skip_delay)


@app.post("/trading/sell")
def trading_manual_sell(req: ManualSellRequest):
    return get_engine().manual_sell(req.symbol, req.price, req.qty, req.reason)


@app.get("/trading/pending")
def trading_pending():
    pending = get_engine().pending_buys()
    return {"count": len(pending), "pending": pending}


@app.delete("/trading/pending/{symbol}")
def trading_pending_cancel(symbol: str):
    if not get_engine().cancel_pending_buy(symbol):
        raise HTTPException(status_code=404, detail=f"No pending buy for {symbol.upper()}")
    return {"cancelled": symbol.upper()}


@app.post("/trading/stops/apply")
def trading_stops_apply():
    try:
        return get_engine().apply_trailing_stops()
    except ExternalUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))


@app.get("/trading/next")
def trading_next_evaluation():
    return get_engine().next_evaluation()


@app.get("/trading/audit/tail")
def audit_tail(n: int = Query(50, ge=1, le=1000)):
    engine = get_engine()
    return {"events": engine.audit.tail(n)}
