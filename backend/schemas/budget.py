"""
schemas/budget.py
-----------------
Dataclass definitions for the budget-constrained item allocator
(food-selection sub-flow).

All money amounts are in the catalog's currency unit (config-free; the
allocator never converts).
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Optional

import config


@dataclass(frozen=True)
class BudgetItem:
    """
    One selectable item (menu item, ticket, etc.).

    popularity: 0-100; None falls back to 50 when valuing the item
    category:   Breakfast | Lunch | Dinner | Drinks | Snacks | Dessert | ...
    """
    item_id: str
    name: str
    price: float
    category: str = "Other"
    popularity: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id":    self.item_id,
            "name":       self.name,
            "price":      self.price,
            "category":   self.category,
            "popularity": self.popularity,
        }


@dataclass
class BudgetConstraints:
    """Optional allocation constraints; defaults come from config.py."""
    min_items_per_person: int = config.BUDGET_MIN_ITEMS_PER_PERSON
    max_items_per_person: int = config.BUDGET_MAX_ITEMS_PER_PERSON
    allowed_categories: list[str] = field(default_factory=list)   # empty = all
    denied_categories: list[str] = field(default_factory=list)
    category_cap_divisor: int = config.BUDGET_CATEGORY_CAP_DIVISOR
    relax_utilization: float = config.BUDGET_RELAX_UTILIZATION
    stop_utilization: float = config.BUDGET_STOP_UTILIZATION


@dataclass
class BudgetAllocation:
    """
    Output of BudgetAllocator.allocate_budget().

    utilization:    total_cost / budget × 100
    value_score:    mean item value, capped at 100
    diversity_score: category-count spread + evenness, [0, 100]
    """
    selected: list[BudgetItem] = field(default_factory=list)
    total_cost: float = 0.0
    remaining: float = 0.0
    utilization: float = 0.0
    value_score: float = 0.0
    diversity_score: float = 0.0
    advisories: list[str] = field(default_factory=list)
    reason_code: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "selected":        [i.to_dict() for i in self.selected],
            "total_cost":      round(self.total_cost, 2),
            "remaining":       round(self.remaining, 2),
            "utilization":     round(self.utilization, 1),
            "value_score":     round(self.value_score, 1),
            "diversity_score": round(self.diversity_score, 1),
            "advisories":      list(self.advisories),
            "reason_code":     self.reason_code,
        }
