"""Token budget allocation across context categories.

The total budget is split into fixed per-category sub-budgets; within each
category items are taken greedily by priority, truncated when allowed, and
otherwise dropped.  Budget tables are validated when the allocator is
built, so :meth:`BudgetAllocator.allocate` never raises.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import BudgetValidationError
from .tokens import GenericTokenEstimator, TokenEstimator

logger = logging.getLogger(__name__)

CONTEXT_CATEGORIES: Tuple[str, ...] = (
    "task",
    "changed",
    "impacted",
    "contract",
    "architecture",
    "decision",
)

# Category minimums only apply from this total upwards; smaller budgets
# shrink proportionally instead.
MIN_TOKENS_THRESHOLD = 10000
# Truncating into less room than this is not worth it.
MIN_TRUNCATION_ROOM = 100
PERCENTAGE_TOLERANCE = 1e-9


@dataclass(frozen=True)
class CategoryBudget:
    category: str
    percentage: float
    min_tokens: int
    max_tokens: int


@dataclass(frozen=True)
class ContextItem:
    """One candidate piece of content for the pack."""
    category: str
    content: str
    tokens: int
    priority: float
    path: Optional[str] = None
    truncatable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AllocationResult:
    allocated: List[ContextItem]
    dropped: List[ContextItem]
    total_tokens: int
    budget_used: Dict[str, int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allocated": [i.to_dict() for i in self.allocated],
            "dropped": [i.to_dict() for i in self.dropped],
            "totalTokens": self.total_tokens,
            "budgetUsed": dict(self.budget_used),
        }


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_finite_number(value: Any) -> bool:
    return _is_number(value) and math.isfinite(value)


def validate_budgets(budgets: Sequence[CategoryBudget]) -> None:
    """Raise :class:`BudgetValidationError` if *budgets* is not a usable table."""
    seen = set()
    total = 0.0

    for budget in budgets:
        name = budget.category
        if name in seen:
            raise BudgetValidationError(f"Duplicate budget category: {name}")
        seen.add(name)

        if not _is_finite_number(budget.percentage) or not 0 <= budget.percentage <= 1:
            raise BudgetValidationError(f"Invalid percentage for {name}: {budget.percentage!r}")
        if not _is_finite_number(budget.min_tokens) or budget.min_tokens < 0:
            raise BudgetValidationError(f"Invalid min_tokens for {name}: {budget.min_tokens!r}")
        if not _is_finite_number(budget.max_tokens) or budget.max_tokens < 0:
            raise BudgetValidationError(f"Invalid max_tokens for {name}: {budget.max_tokens!r}")
        if budget.min_tokens > budget.max_tokens:
            raise BudgetValidationError(
                f"min_tokens > max_tokens for {name}: {budget.min_tokens} > {budget.max_tokens}"
            )
        total += budget.percentage

    if abs(total - 1.0) > PERCENTAGE_TOLERANCE:
        raise BudgetValidationError(f"Budget percentages must sum to 1.0 (got {total})")


DEFAULT_BUDGETS: Tuple[CategoryBudget, ...] = (
    CategoryBudget("task", 0.05, 200, 2000),
    CategoryBudget("changed", 0.40, 5000, 50000),
    CategoryBudget("impacted", 0.25, 3000, 30000),
    CategoryBudget("contract", 0.15, 2000, 20000),
    CategoryBudget("architecture", 0.10, 1000, 10000),
    CategoryBudget("decision", 0.05, 500, 5000),
)

validate_budgets(DEFAULT_BUDGETS)


class BudgetAllocator:
    """Fit context items into a total token budget.

    Args:
        total_budget: Finite, positive token budget.
        budgets: Category table; defaults to :data:`DEFAULT_BUDGETS`.
        estimator: Used only to truncate items; generic by default.

    Raises:
        BudgetValidationError: If the budget or the table is invalid.
    """

    def __init__(
        self,
        total_budget: float,
        budgets: Sequence[CategoryBudget] = DEFAULT_BUDGETS,
        estimator: Optional[TokenEstimator] = None,
    ) -> None:
        if not _is_finite_number(total_budget) or total_budget <= 0:
            raise BudgetValidationError(
                f"Invalid total budget: {total_budget!r}. Must be a positive number."
            )
        if budgets is not DEFAULT_BUDGETS:
            budgets = tuple(budgets)
            validate_budgets(budgets)

        self.total_budget = total_budget
        self.budgets = budgets
        self.estimator = estimator or GenericTokenEstimator()

    def category_budgets(self) -> Dict[str, int]:
        """Token budget per configured category."""
        result: Dict[str, int] = {}
        for budget in self.budgets:
            tokens = min(math.floor(self.total_budget * budget.percentage), budget.max_tokens)
            if self.total_budget >= MIN_TOKENS_THRESHOLD:
                tokens = max(budget.min_tokens, tokens)
            result[budget.category] = int(tokens)
        return result

    def allocate(self, items: Iterable[ContextItem]) -> AllocationResult:
        limits = self.category_budgets()
        budget_used: Dict[str, int] = {b.category: 0 for b in self.budgets}
        allocated: List[ContextItem] = []
        dropped: List[ContextItem] = []

        by_category: Dict[str, List[ContextItem]] = {}
        for item in items:
            by_category.setdefault(item.category, []).append(item)

        for category, category_items in by_category.items():
            remaining = limits.get(category, 0)
            budget_used.setdefault(category, 0)

            ordered = sorted(category_items, key=lambda i: (-i.priority, i.path or ""))
            for item in ordered:
                if item.tokens <= remaining:
                    allocated.append(item)
                    remaining -= item.tokens
                    budget_used[category] += item.tokens
                elif item.truncatable and remaining > MIN_TRUNCATION_ROOM:
                    truncated = self._truncate(item, remaining)
                    allocated.append(truncated)
                    budget_used[category] += truncated.tokens
                    remaining = 0
                else:
                    dropped.append(item)

        # stable: equal priorities keep category order
        allocated.sort(key=lambda i: -i.priority)

        if dropped:
            logger.debug("Dropped %d context items over budget", len(dropped))

        return AllocationResult(
            allocated=allocated,
            dropped=dropped,
            total_tokens=sum(budget_used.values()),
            budget_used=budget_used,
        )

    def _truncate(self, item: ContextItem, max_tokens: int) -> ContextItem:
        limit = max_tokens
        content = self.estimator.truncate_to_fit(item.content, limit)
        tokens = self.estimator.estimate_text(content)
        # approximate estimators may overshoot; shrink until the real count fits
        while tokens > max_tokens and limit > 0:
            limit -= tokens - max_tokens
            content = self.estimator.truncate_to_fit(item.content, limit)
            tokens = self.estimator.estimate_text(content)
        return replace(item, content=content, tokens=tokens, truncatable=False)
