"""Canonical hashing for allocations and Merkle tree nodes."""
from __future__ import annotations

import hashlib
import json
from decimal import Decimal


def canonical_allocation_hash(
    epoch_id: str,
    scanner_id: str,
    wallet_address: str,
    rank: int,
    amount: Decimal,
) -> str:
    """Deterministic SHA-256 of one allocation.

    Sorted-key JSON without whitespace; the amount is its plain decimal
    string so any implementation can reproduce the hash.
    """
    payload = {
        "epoch_id": epoch_id,
        "scanner_id": scanner_id,
        "wallet_address": wallet_address,
        "rank": rank,
        "amount": format(Decimal(amount), "f"),
    }
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def sha256_concat(left: str, right: str) -> str:
    """Hash two hex-encoded hashes together: SHA-256(left + right)."""
    return hashlib.sha256((left + right).encode("utf-8")).hexdigest()
