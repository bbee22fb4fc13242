"""
api/routes/budget.py
--------------------
POST /v1/budget/allocate   pick items for a group within a budget
POST /v1/budget/optimize   trim an over-budget selection, backfilling by value
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

import config
from modules.planning.budget_allocator import BudgetAllocator
from schemas.budget import BudgetConstraints, BudgetItem

router = APIRouter()

_allocator = BudgetAllocator()


# ── Request schemas ────────────────────────────────────────────────────────────

class ItemIn(BaseModel):
    item_id: str = Field(..., min_length=1)
    name: str = ""
    price: float = Field(..., ge=0)
    category: str = "Other"
    popularity: Optional[float] = Field(None, ge=0, le=100)

    def to_item(self) -> BudgetItem:
        return BudgetItem(
            item_id    = self.item_id,
            name       = self.name or self.item_id,
            price      = self.price,
            category   = self.category,
            popularity = self.popularity,
        )


class ConstraintsIn(BaseModel):
    min_items_per_person: int = Field(config.BUDGET_MIN_ITEMS_PER_PERSON, ge=0)
    max_items_per_person: int = Field(config.BUDGET_MAX_ITEMS_PER_PERSON, ge=1)
    allowed_categories: list[str] = Field(default_factory=list)
    denied_categories: list[str] = Field(default_factory=list)


class AllocateRequest(BaseModel):
    items: list[ItemIn]
    budget: float
    group_size: int = Field(1, ge=1)
    constraints: Optional[ConstraintsIn] = None


class OptimizeRequest(BaseModel):
    selected: list[ItemIn]
    candidates: list[ItemIn] = Field(default_factory=list)
    budget: float = Field(..., ge=0)


# ── Endpoints ──────────────────────────────────────────────────────────────────

@router.post("/allocate", summary="Allocate a budget across items")
def allocate(req: AllocateRequest) -> dict:
    constraints = None
    if req.constraints is not None:
        constraints = BudgetConstraints(**req.constraints.model_dump())
    allocation = _allocator.allocate_budget(
        [i.to_item() for i in req.items], req.budget, req.group_size, constraints,
    )
    return allocation.to_dict()


@router.post("/optimize", summary="Fit an existing selection under the budget")
def optimize(req: OptimizeRequest) -> dict:
    kept = _allocator.optimize_selection(
        [i.to_item() for i in req.selected], [i.to_item() for i in req.candidates], req.budget,
    )
    return {
        "selected":   [i.to_dict() for i in kept],
        "total_cost": round(sum(i.price for i in kept), 2),
    }
