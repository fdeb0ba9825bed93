from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Callable, Generator

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlmodel import Session

from reward_node.audit import ProofStep
from reward_node.config.runtime import RuntimeSettings
from reward_node.db import create_session, notify
from reward_node.db.pg_notify import EPOCH_CLOSED_CHANNEL
from reward_node.entities.distribution import (
    Allocation,
    AllocationPlan,
    DistributionResult,
    TransferResult,
    TreasuryStatus,
)
from reward_node.entities.epoch import Epoch, EpochStatus
from reward_node.errors import (
    ActiveEpochExists,
    AllocationNotFound,
    BalanceUnavailable,
    DistributionNotFound,
    EpochNotClosed,
    EpochNotFound,
    InvalidEpochTransition,
    NoParticipants,
    RewardNodeError,
)
from reward_node.middleware.auth import configure_auth
from reward_node.services.distribution import DistributionEngine
from reward_node.services.epochs import DEFAULT_BASE_ALLOCATION, DEFAULT_POOL, EpochService
from reward_node.wiring import build_engine, build_epoch_service

logger = logging.getLogger(__name__)

app = FastAPI(title="Reward Node API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

SETTINGS = RuntimeSettings.from_env()

# API key auth, active when API_KEY is set
configure_auth(app)

_ERROR_STATUS: dict[type[RewardNodeError], int] = {
    EpochNotFound: status.HTTP_404_NOT_FOUND,
    DistributionNotFound: status.HTTP_404_NOT_FOUND,
    AllocationNotFound: status.HTTP_404_NOT_FOUND,
    BalanceUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    EpochNotClosed: status.HTTP_409_CONFLICT,
    InvalidEpochTransition: status.HTTP_409_CONFLICT,
    ActiveEpochExists: status.HTTP_409_CONFLICT,
    NoParticipants: status.HTTP_409_CONFLICT,
}


@app.exception_handler(RewardNodeError)
async def handle_reward_node_error(request: Request, exc: RewardNodeError) -> JSONResponse:
    code = next(
        (code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content={"detail": str(exc)})


# ── dependencies ──


def get_db_session() -> Generator[Session, Any, None]:
    with create_session() as session:
        yield session


def get_epoch_service(
    session_db: Annotated[Session, Depends(get_db_session)]
) -> EpochService:
    return build_epoch_service(session_db)


def get_distribution_engine(
    session_db: Annotated[Session, Depends(get_db_session)]
) -> DistributionEngine:
    return build_engine(session_db, SETTINGS)


def _notify_epoch_closed(epoch_id: str) -> None:
    try:
        notify(EPOCH_CLOSED_CHANNEL, payload=epoch_id)
    except Exception as exc:
        logger.warning("could not notify %s for epoch %s: %s", EPOCH_CLOSED_CHANNEL, epoch_id, exc)


def get_close_notifier() -> Callable[[str], None]:
    return _notify_epoch_closed


# ── serializers ──


def _amount(value: Decimal) -> str:
    return format(value, "f")


def _epoch_to_dict(epoch: Epoch) -> dict[str, Any]:
    return {
        "id": epoch.id,
        "name": epoch.name,
        "sequence": epoch.sequence,
        "pool": _amount(epoch.pool),
        "base_allocation": _amount(epoch.base_allocation),
        "start_at": epoch.start_at.isoformat(),
        "end_at": epoch.end_at.isoformat(),
        "status": epoch.status,
        "distributed": epoch.distributed,
        "distribution_timestamp": (
            epoch.distribution_timestamp.isoformat() if epoch.distribution_timestamp else None
        ),
        "version": epoch.version,
    }


def _allocation_to_dict(allocation: Allocation) -> dict[str, Any]:
    return {
        "scanner_id": allocation.scanner_id,
        "name": allocation.name,
        "wallet_address": allocation.wallet_address,
        "rank": allocation.rank,
        "amount": _amount(allocation.amount),
        "weight": _amount(allocation.weight),
        "win_rate": allocation.win_rate,
        "total_calls": allocation.total_calls,
        "avg_return": allocation.avg_return,
    }


def _transfer_to_dict(transfer: TransferResult) -> dict[str, Any]:
    return {
        "recipient_id": transfer.recipient_id,
        "recipient_address": transfer.recipient_address,
        "amount": _amount(transfer.amount),
        "status": transfer.status,
        "tx_reference": transfer.tx_reference,
        "error": transfer.error,
        "skip_reason": transfer.skip_reason,
        "attempts": transfer.attempts,
        "epoch_id": transfer.epoch_id,
        "run_id": transfer.run_id,
        "created_at": transfer.created_at.isoformat(),
    }


def _result_to_dict(result: DistributionResult) -> dict[str, Any]:
    return {
        "run_id": result.run_id,
        "epoch_id": result.epoch_id,
        "kind": result.kind,
        "status": result.status,
        "abort_reason": result.abort_reason,
        "capped": result.capped,
        "total_allocated": _amount(result.total_allocated),
        "total_transferred": _amount(result.total_transferred),
        "succeeded": result.succeeded,
        "failed": result.failed,
        "skipped": result.skipped,
        "allocation_root": result.allocation_root,
        "detail": result.detail,
        "started_at": result.started_at.isoformat(),
        "finished_at": result.finished_at.isoformat() if result.finished_at else None,
        "allocations": [_allocation_to_dict(a) for a in result.allocations],
        "results": [_transfer_to_dict(r) for r in result.results],
    }


def _plan_to_dict(epoch_id: str, plan: AllocationPlan) -> dict[str, Any]:
    return {
        "epoch_id": epoch_id,
        "pool": _amount(plan.pool),
        "target": _amount(plan.target),
        "total": _amount(plan.total),
        "residual": _amount(plan.residual),
        "capped": plan.capped,
        "allocations": [_allocation_to_dict(a) for a in plan.allocations],
    }


def _treasury_to_dict(treasury: TreasuryStatus) -> dict[str, Any]:
    return {
        "account": treasury.account,
        "total_balance": _amount(treasury.total_balance),
        "allocated": _amount(treasury.allocated),
        "available": _amount(treasury.available),
        "distributed": _amount(treasury.distributed),
        "updated_at": treasury.updated_at.isoformat(),
    }


def _step_to_dict(step: ProofStep) -> dict[str, str]:
    return {"hash": step.hash, "position": step.position}


# ── health & treasury ──


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/treasury/status")
def get_treasury_status(
    engine: Annotated[DistributionEngine, Depends(get_distribution_engine)],
) -> dict[str, Any]:
    return _treasury_to_dict(engine.get_treasury_status())


# ── epochs ──


class CreateEpochRequest(BaseModel):
    name: str = Field(min_length=1)
    start_at: datetime
    end_at: datetime
    pool: Decimal = Field(default=DEFAULT_POOL, ge=0)
    base_allocation: Decimal = Field(default=DEFAULT_BASE_ALLOCATION, gt=0)


@app.get("/epochs")
def list_epochs(
    epochs: Annotated[EpochService, Depends(get_epoch_service)],
    epoch_status: Annotated[EpochStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> list[dict[str, Any]]:
    return [_epoch_to_dict(e) for e in epochs.list_epochs(limit=limit, status=epoch_status)]


@app.get("/epochs/active")
def get_active_epoch(
    epochs: Annotated[EpochService, Depends(get_epoch_service)],
) -> dict[str, Any]:
    epoch = epochs.get_active()
    if epoch is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active epoch")
    return _epoch_to_dict(epoch)


@app.get("/epochs/{epoch_id}")
def get_epoch(
    epoch_id: str,
    epochs: Annotated[EpochService, Depends(get_epoch_service)],
) -> dict[str, Any]:
    return _epoch_to_dict(epochs.get(epoch_id))


@app.post("/epochs", status_code=status.HTTP_201_CREATED)
def create_epoch(
    body: CreateEpochRequest,
    epochs: Annotated[EpochService, Depends(get_epoch_service)],
) -> dict[str, Any]:
    try:
        epoch = epochs.create(
            name=body.name,
            start_at=body.start_at,
            end_at=body.end_at,
            pool=body.pool,
            base_allocation=body.base_allocation,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    return _epoch_to_dict(epoch)


@app.post("/epochs/{epoch_id}/activate")
def activate_epoch(
    epoch_id: str,
    epochs: Annotated[EpochService, Depends(get_epoch_service)],
) -> dict[str, Any]:
    return _epoch_to_dict(epochs.activate(epoch_id))


@app.post("/epochs/{epoch_id}/close")
def close_epoch(
    epoch_id: str,
    epochs: Annotated[EpochService, Depends(get_epoch_service)],
    notify_closed: Annotated[Callable[[str], None], Depends(get_close_notifier)],
) -> dict[str, Any]:
    epoch = epochs.close(epoch_id)
    notify_closed(epoch.id)
    return _epoch_to_dict(epoch)


# ── allocations & distribution ──


@app.get("/epochs/{epoch_id}/allocations")
def preview_allocations(
    epoch_id: str,
    engine: Annotated[DistributionEngine, Depends(get_distribution_engine)],
) -> dict[str, Any]:
    """Allocations the epoch would pay right now. Nothing is reserved or sent."""
    return _plan_to_dict(epoch_id, engine.preview(epoch_id))


@app.post("/epochs/{epoch_id}/distribute")
async def distribute_epoch(
    epoch_id: str,
    engine: Annotated[DistributionEngine, Depends(get_distribution_engine)],
) -> dict[str, Any]:
    result = await engine.distribute(epoch_id)
    logger.info("distribute epoch=%s via API → %s", epoch_id, result.status)
    return _result_to_dict(result)


@app.post("/epochs/{epoch_id}/retry-failed")
async def retry_failed_transfers(
    epoch_id: str,
    engine: Annotated[DistributionEngine, Depends(get_distribution_engine)],
) -> dict[str, Any]:
    return _result_to_dict(await engine.retry_failed(epoch_id))


@app.get("/epochs/{epoch_id}/distribution")
def get_distribution(
    epoch_id: str,
    engine: Annotated[DistributionEngine, Depends(get_distribution_engine)],
) -> dict[str, Any]:
    return _result_to_dict(engine.get_distribution_history(epoch_id))


@app.get("/epochs/{epoch_id}/distribution/runs")
def get_distribution_runs(
    epoch_id: str,
    engine: Annotated[DistributionEngine, Depends(get_distribution_engine)],
) -> list[dict[str, Any]]:
    """Every recorded run for the epoch, including discarded and retry runs."""
    return [_result_to_dict(r) for r in engine.list_runs(epoch_id)]


@app.get("/epochs/{epoch_id}/distribution/proof/{scanner_id}")
def get_allocation_proof(
    epoch_id: str,
    scanner_id: str,
    engine: Annotated[DistributionEngine, Depends(get_distribution_engine)],
) -> dict[str, Any]:
    proof = engine.allocation_proof(epoch_id, scanner_id)
    return {
        "epoch_id": proof.epoch_id,
        "scanner_id": proof.scanner_id,
        "leaf_hash": proof.leaf_hash,
        "allocation_root": proof.allocation_root,
        "path": [_step_to_dict(step) for step in proof.path],
    }


@app.get("/scanners/{scanner_id}/allocations")
def get_scanner_allocations(
    scanner_id: str,
    engine: Annotated[DistributionEngine, Depends(get_distribution_engine)],
) -> dict[str, Any]:
    history = engine.recipient_history(scanner_id)
    return {
        "scanner_id": history.scanner_id,
        "total_earned": _amount(history.total_earned),
        "results": [_transfer_to_dict(r) for r in history.results],
    }


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        force=True,
    )
    logger.info("reward node report worker bootstrap")
    uvicorn.run(app, host="0.0.0.0", port=8000)
