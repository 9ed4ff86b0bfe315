"""Greedy token-budget selection and context rendering.

Selection is first-fit by rank: walk the ranked list once, include an
entity when it still fits, otherwise skip it and keep looking at later
(possibly smaller) ones.  The result depends only on rank order and the
budget.  Entities are never truncated mid-snippet; they fit whole or are
dropped (the slicer is the only place code is reduced).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List

from .models import BudgetResult, RankedResult, estimate_tokens

__all__ = [
    "BudgetStats",
    "budget_stats",
    "estimate_tokens",
    "estimate_total_tokens",
    "format_context",
    "format_entity",
    "select_within_budget",
]


def select_within_budget(ranked: Iterable[RankedResult], max_tokens: int) -> BudgetResult:
    """Select results in rank order while their token sum stays within budget.

    A non-positive budget selects nothing.
    """
    budget = max(max_tokens, 0)
    selected: List[RankedResult] = []
    total = 0
    dropped = 0
    for result in ranked:
        tokens = result.tokens
        if total + tokens <= budget:
            selected.append(result)
            total += tokens
        else:
            dropped += 1
    return BudgetResult(selected=selected, total_tokens=total, dropped_count=dropped)


def estimate_total_tokens(ranked: Iterable[RankedResult]) -> int:
    return sum(result.tokens for result in ranked)


def format_entity(result: RankedResult) -> str:
    parts = [f"// File: {result.entity.file}"]
    if result.entity.doc:
        parts.append(f"/** {result.entity.doc} */")
    parts.append(result.code)
    return "\n".join(parts)


def format_context(selected: Iterable[RankedResult]) -> str:
    """Render selected results as one prompt-ready context string."""
    return "\n\n".join(format_entity(result) for result in selected)


@dataclass(frozen=True)
class BudgetStats:
    budget: int
    used: int
    available: int
    utilization: int


def budget_stats(budget: int, used: int) -> BudgetStats:
    return BudgetStats(
        budget=budget,
        used=used,
        available=max(budget - used, 0),
        utilization=round(used / budget * 100) if budget > 0 else 0,
    )
