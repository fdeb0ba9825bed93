from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from reward_node.db.tables import DistributionRunRow, EpochRow, TransferResultRow
from reward_node.entities.distribution import (
    AbortReason,
    Allocation,
    DistributionResult,
    RunKind,
    RunStatus,
    TransferResult,
    TransferStatus,
)
from reward_node.entities.epoch import Epoch, EpochStatus
from reward_node.errors import (
    ActiveEpochExists,
    DistributionConflict,
    EpochNotFound,
    InvalidEpochTransition,
)
from reward_node.services.interfaces.distribution_repository import DistributionRepository
from reward_node.services.interfaces.epoch_repository import EpochRepository


class DBEpochRepository(EpochRepository):
    def __init__(self, session: Session):
        self._session = session

    def rollback(self) -> None:
        self._session.rollback()

    def get(self, epoch_id: str) -> Epoch | None:
        row = self._session.get(EpochRow, epoch_id)
        return self._row_to_domain(row) if row else None

    def save(self, epoch: Epoch) -> None:
        """Insert an epoch or update its descriptive fields.

        Status and the distributed flag are only changed through
        ``transition`` and ``mark_distributed``.
        """
        existing = self._session.get(EpochRow, epoch.id)
        row = self._domain_to_row(epoch)

        if existing is None:
            self._session.add(row)
        else:
            existing.name = row.name
            existing.sequence = row.sequence
            existing.pool = row.pool
            existing.base_allocation = row.base_allocation
            existing.start_at = row.start_at
            existing.end_at = row.end_at
            existing.updated_at = datetime.now(timezone.utc)

        self._session.commit()

    def find(
        self,
        *,
        status: EpochStatus | None = None,
        distributed: bool | None = None,
        limit: int | None = None,
    ) -> list[Epoch]:
        stmt = select(EpochRow)
        if status is not None:
            stmt = stmt.where(EpochRow.status == str(status))
        if distributed is not None:
            stmt = stmt.where(EpochRow.distributed == distributed)
        stmt = stmt.order_by(EpochRow.sequence.desc())
        if limit is not None:
            stmt = stmt.limit(max(1, int(limit)))
        rows = self._session.exec(stmt).all()
        return [self._row_to_domain(row) for row in rows]

    def get_active(self) -> Epoch | None:
        row = self._session.exec(
            select(EpochRow).where(EpochRow.status == str(EpochStatus.ACTIVE))
        ).first()
        return self._row_to_domain(row) if row else None

    def next_sequence(self) -> int:
        latest = self._session.exec(select(func.max(EpochRow.sequence))).one()
        return int(latest or 0) + 1

    def transition(self, epoch_id: str, from_status: EpochStatus, to_status: EpochStatus) -> Epoch:
        stmt = (
            update(EpochRow)
            .where(EpochRow.id == epoch_id, EpochRow.status == str(from_status))
            .values(
                status=str(to_status),
                version=EpochRow.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = self._session.exec(stmt)
            if result.rowcount != 1:
                self._session.rollback()
                current = self.get(epoch_id)
                if current is None:
                    raise EpochNotFound(epoch_id)
                raise InvalidEpochTransition(epoch_id, current.status, to_status)
            self._session.commit()
        except IntegrityError:
            self._session.rollback()
            active = self.get_active()
            raise ActiveEpochExists(active.id if active else None)

        return self.get(epoch_id)

    def mark_distributed(self, epoch_id: str, timestamp: datetime) -> Epoch:
        stmt = (
            update(EpochRow)
            .where(EpochRow.id == epoch_id, EpochRow.distributed == False)  # noqa: E712
            .values(
                distributed=True,
                distribution_timestamp=_ensure_utc(timestamp),
                version=EpochRow.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        result = self._session.exec(stmt)
        if result.rowcount != 1:
            self._session.rollback()
            if self._session.get(EpochRow, epoch_id) is None:
                raise EpochNotFound(epoch_id)
            raise DistributionConflict(epoch_id)
        self._session.commit()
        return self.get(epoch_id)

    @staticmethod
    def _row_to_domain(row: EpochRow) -> Epoch:
        return Epoch(
            id=row.id,
            name=row.name,
            sequence=row.sequence,
            pool=Decimal(row.pool),
            base_allocation=Decimal(row.base_allocation),
            start_at=_ensure_utc(row.start_at),
            end_at=_ensure_utc(row.end_at),
            status=EpochStatus(row.status),
            distributed=bool(row.distributed),
            distribution_timestamp=(
                _ensure_utc(row.distribution_timestamp) if row.distribution_timestamp else None
            ),
            version=row.version,
            created_at=_ensure_utc(row.created_at),
            updated_at=_ensure_utc(row.updated_at),
        )

    @staticmethod
    def _domain_to_row(epoch: Epoch) -> EpochRow:
        return EpochRow(
            id=epoch.id,
            name=epoch.name,
            sequence=epoch.sequence,
            pool=epoch.pool,
            base_allocation=epoch.base_allocation,
            start_at=_ensure_utc(epoch.start_at),
            end_at=_ensure_utc(epoch.end_at),
            status=str(epoch.status),
            distributed=epoch.distributed,
            distribution_timestamp=epoch.distribution_timestamp,
            version=epoch.version,
            created_at=epoch.created_at,
            updated_at=datetime.now(timezone.utc),
        )


class DBDistributionRepository(DistributionRepository):
    def __init__(self, session: Session):
        self._session = session

    def rollback(self) -> None:
        self._session.rollback()

    def append(self, result: DistributionResult) -> None:
        self._session.add(DistributionRunRow(
            id=result.run_id,
            epoch_id=result.epoch_id,
            kind=str(result.kind),
            status=str(result.status),
            abort_reason=str(result.abort_reason) if result.abort_reason else None,
            capped=result.capped,
            total_allocated=result.total_allocated,
            allocation_root=result.allocation_root,
            allocations_jsonb=[allocation_to_json(a) for a in result.allocations],
            detail=result.detail,
            started_at=result.started_at,
            finished_at=result.finished_at,
        ))
        # Flush the run first so the results' foreign key resolves.
        self._session.flush()
        for position, transfer in enumerate(result.results):
            self._session.add(TransferResultRow(
                id=str(uuid.uuid4()),
                run_id=result.run_id,
                epoch_id=result.epoch_id,
                recipient_id=transfer.recipient_id,
                recipient_address=transfer.recipient_address,
                position=position,
                amount=transfer.amount,
                status=str(transfer.status),
                tx_reference=transfer.tx_reference,
                error=transfer.error,
                attempts=transfer.attempts,
                skip_reason=transfer.skip_reason,
                created_at=transfer.created_at,
            ))
        self._session.commit()

    def find_runs(self, epoch_id: str) -> list[DistributionResult]:
        runs = self._session.exec(
            select(DistributionRunRow)
            .where(DistributionRunRow.epoch_id == epoch_id)
            .order_by(DistributionRunRow.started_at.asc())
        ).all()
        if not runs:
            return []

        results = self._session.exec(
            select(TransferResultRow)
            .where(TransferResultRow.epoch_id == epoch_id)
            .order_by(TransferResultRow.position.asc())
        ).all()
        by_run: dict[str, list[TransferResult]] = {}
        for row in results:
            by_run.setdefault(row.run_id, []).append(self._result_row_to_domain(row))

        return [
            DistributionResult(
                run_id=run.id,
                epoch_id=run.epoch_id,
                kind=RunKind(run.kind),
                status=RunStatus(run.status),
                abort_reason=AbortReason(run.abort_reason) if run.abort_reason else None,
                allocations=[allocation_from_json(a) for a in run.allocations_jsonb or []],
                results=by_run.get(run.id, []),
                capped=bool(run.capped),
                total_allocated=Decimal(run.total_allocated),
                allocation_root=run.allocation_root,
                detail=run.detail,
                started_at=_ensure_utc(run.started_at),
                finished_at=_ensure_utc(run.finished_at) if run.finished_at else None,
            )
            for run in runs
        ]

    def paid_recipients(self, epoch_id: str) -> set[str]:
        rows = self._session.exec(
            select(TransferResultRow.recipient_id)
            .where(
                TransferResultRow.epoch_id == epoch_id,
                TransferResultRow.status == str(TransferStatus.SUCCESS),
            )
            .distinct()
        ).all()
        return set(rows)

    def find_results(self, *, recipient_id: str) -> list[TransferResult]:
        rows = self._session.exec(
            select(TransferResultRow)
            .where(TransferResultRow.recipient_id == recipient_id)
            .order_by(TransferResultRow.created_at.desc())
        ).all()
        return [self._result_row_to_domain(row) for row in rows]

    def total_distributed(self) -> Decimal:
        total = self._session.exec(
            select(func.sum(TransferResultRow.amount))
            .where(TransferResultRow.status == str(TransferStatus.SUCCESS))
        ).one()
        return Decimal(str(total)) if total is not None else Decimal("0")

    @staticmethod
    def _result_row_to_domain(row: TransferResultRow) -> TransferResult:
        return TransferResult(
            recipient_id=row.recipient_id,
            recipient_address=row.recipient_address,
            amount=Decimal(row.amount),
            status=TransferStatus(row.status),
            tx_reference=row.tx_reference,
            error=row.error,
            attempts=row.attempts,
            skip_reason=row.skip_reason,
            epoch_id=row.epoch_id,
            run_id=row.run_id,
            created_at=_ensure_utc(row.created_at),
        )


def allocation_to_json(allocation: Allocation) -> dict[str, Any]:
    return {
        "scanner_id": allocation.scanner_id,
        "name": allocation.name,
        "wallet_address": allocation.wallet_address,
        "rank": allocation.rank,
        "amount": format(allocation.amount, "f"),
        "weight": format(allocation.weight, "f"),
        "win_rate": allocation.win_rate,
        "total_calls": allocation.total_calls,
        "avg_return": allocation.avg_return,
    }


def allocation_from_json(payload: dict[str, Any]) -> Allocation:
    return Allocation(
        scanner_id=payload["scanner_id"],
        name=payload.get("name") or payload["scanner_id"],
        wallet_address=payload["wallet_address"],
        rank=int(payload["rank"]),
        amount=Decimal(payload["amount"]),
        weight=Decimal(payload.get("weight", "0")),
        win_rate=float(payload.get("win_rate", 0.0)),
        total_calls=int(payload.get("total_calls", 0)),
        avg_return=float(payload.get("avg_return", 0.0)),
    )


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
