"""Binary Merkle tree over allocation hashes."""
from __future__ import annotations

from dataclasses import dataclass

from reward_node.audit.hasher import sha256_concat


@dataclass(frozen=True)
class ProofStep:
    hash: str
    position: str  # "left" or "right": where the sibling sits


def build_levels(leaves: list[str]) -> list[list[str]]:
    """Return every level of the tree, leaves first and the root last.

    Odd levels are padded by pairing the last hash with itself.
    """
    if not leaves:
        return []
    levels = [list(leaves)]
    while len(levels[-1]) > 1:
        current = levels[-1]
        if len(current) % 2 == 1:
            current = current + [current[-1]]
        levels.append([
            sha256_concat(current[i], current[i + 1]) for i in range(0, len(current), 2)
        ])
    return levels


def merkle_root(leaves: list[str]) -> str | None:
    levels = build_levels(leaves)
    return levels[-1][0] if levels else None


def generate_proof(leaves: list[str], index: int) -> list[ProofStep]:
    if not 0 <= index < len(leaves):
        raise IndexError(f"leaf index {index} out of range for {len(leaves)} leaves")

    path: list[ProofStep] = []
    for level in build_levels(leaves)[:-1]:
        if index % 2 == 0:
            sibling = level[index + 1] if index + 1 < len(level) else level[index]
            path.append(ProofStep(hash=sibling, position="right"))
        else:
            path.append(ProofStep(hash=level[index - 1], position="left"))
        index //= 2
    return path


def verify_proof(leaf_hash: str, proof: list[ProofStep], expected_root: str) -> bool:
    current = leaf_hash
    for step in proof:
        if step.position == "right":
            current = sha256_concat(current, step.hash)
        else:
            current = sha256_concat(step.hash, current)
    return current == expected_root
