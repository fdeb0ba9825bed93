"""Merkle tamper evidence for distribution allocations."""
from __future__ import annotations

from reward_node.audit.hasher import canonical_allocation_hash, sha256_concat
from reward_node.audit.tree import ProofStep, build_levels, generate_proof, merkle_root, verify_proof
from reward_node.entities.distribution import Allocation


def allocation_leaves(epoch_id: str, allocations: list[Allocation]) -> list[str]:
    """Leaf hashes in rank order."""
    ordered = sorted(allocations, key=lambda a: a.rank)
    return [
        canonical_allocation_hash(epoch_id, a.scanner_id, a.wallet_address, a.rank, a.amount)
        for a in ordered
    ]


def allocation_root(epoch_id: str, allocations: list[Allocation]) -> str | None:
    return merkle_root(allocation_leaves(epoch_id, allocations))


__all__ = [
    "ProofStep",
    "allocation_leaves",
    "allocation_root",
    "build_levels",
    "canonical_allocation_hash",
    "generate_proof",
    "merkle_root",
    "sha256_concat",
    "verify_proof",
]
