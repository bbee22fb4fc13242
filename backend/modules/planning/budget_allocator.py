"""
modules/planning/budget_allocator.py
--------------------------------------
Deterministic, budget-constrained item allocator (food-selection sub-flow).

Per item:
  value(item)      = 0.5 × popularity + max(0, 30 − price / 50) + category bonus
                     (Lunch/Dinner +20, Breakfast +15, Drinks +10)
  efficiency(item) = popularity / max(1, price)          (popularity None → 50)

allocate_budget():
  1. Drop denied categories; keep only allowed ones when an allow list is set.
  2. Sort by efficiency desc (ties by item_id) and add greedily while
       running cost + price ≤ budget,
       count < max_per_person × group,
       per-category count < ceil(target / divisor), relaxed up to 1.5× that
       ceiling while utilization < relax_utilization.
     target = floor((min_per_person + max_per_person) / 2) × group.
  3. Stop once utilization ≥ stop_utilization, or once utilization ≥
     relax_utilization with the target count reached.
  4. Below min_per_person × group: backfill cheapest affordable leftovers
     (category caps are not re-applied here).

optimize_selection():
  Trim an over-budget manual selection keeping highest-value items first,
  then backfill unused candidates by value until nothing else fits.

Never raises for infeasible input: an empty pool or non-positive budget
returns an empty allocation with a BUDGET_INFEASIBLE advisory.
"""

from __future__ import annotations
import logging
import math
from collections import Counter
from typing import Optional

from modules.errors import ReasonCode
from schemas.budget import BudgetAllocation, BudgetConstraints, BudgetItem

logger = logging.getLogger(__name__)

_DEFAULT_POPULARITY: float = 50.0
_CATEGORY_BONUS: dict[str, float] = {
    "Lunch":     20,
    "Dinner":    20,
    "Breakfast": 15,
    "Drinks":    10,
}
_RELAXED_CAP_FACTOR: float = 1.5
_MAX_CATEGORIES: int = 5          # Breakfast, Lunch, Dinner, Snacks, Drinks
_MAIN_MEALS: tuple[str, ...] = ("Lunch", "Dinner")


def item_value(item: BudgetItem) -> float:
    popularity = item.popularity if item.popularity is not None else _DEFAULT_POPULARITY
    return popularity * 0.5 + max(0.0, 30 - item.price / 50) + _CATEGORY_BONUS.get(item.category, 0)


def item_efficiency(item: BudgetItem) -> float:
    popularity = item.popularity if item.popularity is not None else _DEFAULT_POPULARITY
    return popularity / max(1.0, item.price)


def diversity_score(items: list[BudgetItem]) -> float:
    """Category spread (up to 70) plus evenness of the per-category counts (up to 30)."""
    if not items:
        return 0.0
    counts = Counter(i.category for i in items)
    mean = len(items) / len(counts)
    variance = sum((c - mean) ** 2 for c in counts.values()) / len(counts)
    return min(100.0, len(counts) / _MAX_CATEGORIES * 70 + max(0.0, 30 - variance * 5))


class BudgetAllocator:
    """Pure allocator; safe to share across requests."""

    def allocate_budget(
        self,
        items: list[BudgetItem],
        budget: float,
        group_size: int = 1,
        constraints: Optional[BudgetConstraints] = None,
    ) -> BudgetAllocation:
        c = constraints or BudgetConstraints()
        group_size = max(1, group_size)

        eligible = self._eligible(items, c)
        if not eligible or budget <= 0:
            logger.info("Budget allocation infeasible: %d eligible items, budget %.2f", len(eligible), budget)
            return BudgetAllocation(
                remaining  = max(0.0, budget),
                advisories = ["No items fit the given budget and constraints."],
                reason_code = ReasonCode.BUDGET_INFEASIBLE.value,
            )

        selected = self._select(eligible, budget, group_size, c)
        total = sum(i.price for i in selected)
        allocation = BudgetAllocation(
            selected        = selected,
            total_cost      = total,
            remaining       = budget - total,
            utilization     = total / budget * 100,
            value_score     = min(100.0, sum(item_value(i) for i in selected) / len(selected)) if selected else 0.0,
            diversity_score = diversity_score(selected),
            advisories      = self._advisories(selected, budget, total, group_size),
        )
        if not selected:
            allocation.reason_code = ReasonCode.BUDGET_INFEASIBLE.value
        return allocation

    def optimize_selection(
        self,
        selected: list[BudgetItem],
        candidates: list[BudgetItem],
        budget: float,
    ) -> list[BudgetItem]:
        if sum(i.price for i in selected) <= budget:
            return list(selected)

        by_value = sorted(selected, key=lambda i: (-item_value(i), i.item_id))
        kept: list[BudgetItem] = []
        total = 0.0
        for item in by_value:
            if total + item.price <= budget:
                kept.append(item)
                total += item.price

        kept_ids = {i.item_id for i in kept}
        for item in sorted(candidates, key=lambda i: (-item_value(i), i.item_id)):
            if item.item_id not in kept_ids and total + item.price <= budget:
                kept.append(item)
                kept_ids.add(item.item_id)
                total += item.price
        return kept

    # ── internals ─────────────────────────────────────────────────────────

    @staticmethod
    def _eligible(items: list[BudgetItem], c: BudgetConstraints) -> list[BudgetItem]:
        allowed = set(c.allowed_categories)
        denied = set(c.denied_categories)
        return [
            i for i in items
            if i.category not in denied and (not allowed or i.category in allowed)
        ]

    @staticmethod
    def _select(
        items: list[BudgetItem],
        budget: float,
        group_size: int,
        c: BudgetConstraints,
    ) -> list[BudgetItem]:
        ranked = sorted(items, key=lambda i: (-item_efficiency(i), i.item_id))
        target = ((c.min_items_per_person + c.max_items_per_person) // 2) * group_size
        max_items = c.max_items_per_person * group_size
        min_items = c.min_items_per_person * group_size
        cap = math.ceil(target / max(1, c.category_cap_divisor))

        selected: list[BudgetItem] = []
        cost = 0.0
        per_category: Counter = Counter()

        for item in ranked:
            utilization = cost / budget
            if utilization >= c.stop_utilization or len(selected) >= max_items:
                break
            if cost + item.price > budget:
                continue
            count = per_category[item.category]
            if count >= cap:
                relaxed = utilization < c.relax_utilization and count < cap * _RELAXED_CAP_FACTOR
                if not relaxed:
                    continue

            selected.append(item)
            cost += item.price
            per_category[item.category] += 1
            if len(selected) >= target and cost / budget >= c.relax_utilization:
                break

        if len(selected) < min_items:
            chosen = {i.item_id for i in selected}
            for item in sorted(items, key=lambda i: (i.price, i.item_id)):
                if len(selected) >= min_items:
                    break
                if item.item_id not in chosen and cost + item.price <= budget:
                    selected.append(item)
                    chosen.add(item.item_id)
                    cost += item.price
        return selected

    @staticmethod
    def _advisories(selected: list[BudgetItem], budget: float, spent: float, group_size: int) -> list[str]:
        out: list[str] = []
        utilization = spent / budget * 100
        remaining = budget - spent

        if utilization < 60:
            out.append(f"You're only using {utilization:.0f}% of your budget. Consider adding more items or drinks.")
        elif utilization > 95:
            out.append(f"Great budget utilization at {utilization:.0f}%!")
        else:
            out.append(f"Good budget management with {remaining:.0f} remaining for adjustments.")

        categories = {i.category for i in selected}
        if not categories.intersection(_MAIN_MEALS) and remaining > 200:
            out.append("Consider adding a main meal for a more complete dining experience.")
        if "Drinks" not in categories and remaining > 100:
            out.append("Add drinks to complement your meal.")

        per_person = len(selected) / group_size
        if per_person < 2:
            out.append("Consider adding more items to ensure everyone has enough options.")
        elif per_person > 4:
            out.append("You have plenty of variety! Make sure you can finish everything.")
        return out
