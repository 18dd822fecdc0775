import asyncio
import functools
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, HTTPException, Request

from tokensale_app.engine import TokenSaleEngine
from tokensale_app.errors import (
    DuplicateReferenceError,
    InputRejectedError,
    RunInProgressError,
    StoreUnavailableError,
)
from tokensale_app.schemas import DividendRequest, SettlementRequest
from tokensale_app.services.contributions import from_payload, record_contribution
from tokensale_app.services.pricing import pool_stats, price_snapshot, whale_audit
from tokensale_app.services.reconciliation import reconcile
from tokensale_app.services.schedule import compute_pool_release_table, compute_release_schedule
from tokensale_app.utils.json_safety import sanitize


router = APIRouter()
admin_router = APIRouter(prefix="/admin")


def _engine(request: Request) -> TokenSaleEngine:
    return request.app.state.engine


async def _run_blocking(func, *args):
    # Engines block on the payment network; keep them off the event loop.
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, functools.partial(func, *args))
    except InputRejectedError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except (DuplicateReferenceError, RunInProgressError) as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=500, detail=f"Financial pipeline offline: {exc}")


def _report(result):
    if not result.success:
        raise HTTPException(status_code=500, detail=f"Engine failure: {result.error}")
    return sanitize(result)


# ── Public routes ──

@router.post("/payments/contribution")
async def api_contribution(request: Request, payload: Dict[str, Any] = Body(...)):
    engine = _engine(request)
    try:
        contribution = from_payload(payload)
    except InputRejectedError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    receipt = await _run_blocking(record_contribution, engine.store, contribution, engine.config)
    return sanitize(receipt)


@router.get("/ipo/stats")
async def api_ipo_stats(request: Request, address: Optional[str] = None):
    engine = _engine(request)
    stats = await _run_blocking(pool_stats, engine.store, engine.config, address)
    return sanitize(stats)


@router.get("/price")
async def api_price(request: Request):
    engine = _engine(request)
    snapshot = await _run_blocking(price_snapshot, engine.store, engine.config)
    return sanitize(snapshot)


@router.get("/vesting/schedule")
async def api_vesting_schedule(request: Request, address: Optional[str] = None):
    engine = _engine(request)
    if address:
        account = engine.store.get_account(address)
        if account is None:
            raise HTTPException(status_code=404, detail=f"Unknown pioneer: {address}")
        return sanitize(compute_release_schedule(account, engine.config))
    return sanitize(compute_pool_release_table(engine.store.find_accounts(), engine.config))


@router.get("/health")
async def health():
    return {"status": "ok"}


# ── Privileged routes (session required, see main.py) ──

@admin_router.post("/settlement")
async def api_run_settlement(request: Request, data: Optional[SettlementRequest] = None):
    engine = _engine(request)
    final_pool = data.final_pool if data else None
    result = await _run_blocking(engine.settlement.run, final_pool)
    return _report(result)


@admin_router.post("/vesting")
async def api_run_vesting(request: Request):
    engine = _engine(request)
    result = await _run_blocking(engine.vesting.run)
    return _report(result)


@admin_router.post("/dividends")
async def api_run_dividends(request: Request, data: DividendRequest):
    engine = _engine(request)
    result = await _run_blocking(engine.dividends.run, data.total_pot)
    return _report(result)


@admin_router.get("/status")
async def api_status(request: Request):
    engine = _engine(request)
    return {
        "status": "operational",
        "pioneers": engine.store.count_accounts(),
        "pool": engine.store.sum_contributed(),
        "runs_in_progress": [
            job for job in ("settlement", "vesting", "dividend") if engine.run_lock.is_held(job)
        ],
    }


@admin_router.get("/reconciliation")
async def api_reconciliation(request: Request):
    engine = _engine(request)
    report = await _run_blocking(reconcile, engine.store, engine.config)
    return sanitize(report)


@admin_router.get("/whales")
async def api_whale_audit(request: Request):
    engine = _engine(request)
    accounts = engine.store.find_accounts()
    report = whale_audit(accounts, engine.store.sum_contributed(), engine.config)
    return sanitize(report)


router.include_router(admin_router)
