"""Allocation calculator: harmonic rank weighting of an epoch pool.

Rank ``r`` (1-based) receives a raw weight ``base_allocation / r``. Each
scanner is paid ``target * w(r) / sum(w)`` rounded down to the token's
minimum unit, and the rounding remainder is credited to rank 1 so the
target is always allocated exactly.

``target`` is the epoch pool, unless the caller passes an ``available``
balance below the pool; the plan is then scaled down to that balance and
flagged ``capped``.
"""
from __future__ import annotations

import logging
from decimal import ROUND_DOWN, Decimal, localcontext

from reward_node.entities.distribution import Allocation, AllocationPlan
from reward_node.entities.scanner import ScannerPerformance

DEFAULT_TOKEN_DECIMALS = 6  # USDC


def token_quantum(decimals: int) -> Decimal:
    """Smallest representable amount of a token with ``decimals`` places."""
    return Decimal(1).scaleb(-decimals)


def floor_to_unit(amount: Decimal, quantum: Decimal) -> Decimal:
    return amount.quantize(quantum, rounding=ROUND_DOWN)


class AllocationCalculator:
    def __init__(self, token_decimals: int = DEFAULT_TOKEN_DECIMALS):
        if token_decimals < 0:
            raise ValueError("token_decimals must be >= 0")
        self.token_decimals = token_decimals
        self.quantum = token_quantum(token_decimals)
        self.logger = logging.getLogger(__name__)

    def calculate(
        self,
        ranked: list[ScannerPerformance],
        pool: Decimal,
        base_allocation: Decimal,
        available: Decimal | None = None,
    ) -> AllocationPlan:
        pool = Decimal(pool)
        base_allocation = Decimal(base_allocation)
        if pool < 0:
            raise ValueError(f"pool must be >= 0, got {pool}")
        if base_allocation <= 0:
            raise ValueError(f"base_allocation must be > 0, got {base_allocation}")
        if not ranked:
            raise ValueError("cannot allocate to an empty ranking")

        target = floor_to_unit(pool, self.quantum)
        capped = False
        if available is not None and Decimal(available) < target:
            target = floor_to_unit(max(Decimal(available), Decimal("0")), self.quantum)
            capped = True
            self.logger.warning(
                "allocation capped: pool=%s available=%s", pool, available,
            )

        with localcontext() as ctx:
            ctx.prec = 50
            weights = [base_allocation / Decimal(rank) for rank in range(1, len(ranked) + 1)]
            weight_sum = sum(weights, Decimal("0"))
            amounts = [floor_to_unit(target * w / weight_sum, self.quantum) for w in weights]

        residual = target - sum(amounts, Decimal("0"))
        amounts[0] += residual

        allocations = [
            Allocation(
                scanner_id=perf.scanner_id,
                name=perf.name,
                wallet_address=perf.wallet_address,
                rank=rank,
                amount=amount,
                weight=weight,
                win_rate=perf.win_rate,
                total_calls=perf.total_calls,
                avg_return=perf.avg_return,
            )
            for rank, (perf, weight, amount) in enumerate(zip(ranked, weights, amounts), start=1)
        ]

        total = sum((a.amount for a in allocations), Decimal("0"))
        return AllocationPlan(
            allocations=allocations,
            pool=pool,
            target=target,
            total=total,
            residual=residual,
            capped=capped,
        )
