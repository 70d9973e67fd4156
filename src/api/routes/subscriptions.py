"""Subscription plan catalog — public, read-only."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from src.api.deps import get_billing_store
from src.api.models.schemas import PlanOut
from src.core.interfaces import BillingStore

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.get("/plans", response_model=list[PlanOut])
async def list_plans(billing: BillingStore = Depends(get_billing_store)) -> list[PlanOut]:
    """Active plans, cheapest first."""
    plans = await billing.list_active_plans()
    return [
        PlanOut(
            id=p.id,
            name=p.name,
            description=p.description,
            monthly_token_limit=p.monthly_token_limit,
            price_cents=p.price_cents,
        )
        for p in plans
    ]
