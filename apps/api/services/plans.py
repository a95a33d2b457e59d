"""Plan definitions for the subscription + metered credits model."""

from __future__ import annotations

from typing import Any, Dict, Literal, Optional


PlanTier = Literal["starter", "growth", "scale"]
UsageType = Literal["image", "text"]

PLANS: Dict[str, Dict[str, Any]] = {
    "starter": {
        "name": "Starter",
        "price_monthly_cents": 2900,
        "image_credits": 50,
        "text_credits": 100,
        "overage_image_cents": 50,
        "overage_text_cents": 10,
    },
    "growth": {
        "name": "Growth",
        "price_monthly_cents": 7900,
        "image_credits": 200,
        "text_credits": 500,
        "overage_image_cents": 40,
        "overage_text_cents": 8,
    },
    "scale": {
        "name": "Scale",
        "price_monthly_cents": 19900,
        "image_credits": 600,
        "text_credits": 1500,
        "overage_image_cents": 30,
        "overage_text_cents": 5,
    },
}


def get_plan(tier: Optional[str]) -> Optional[Dict[str, Any]]:
    if not tier:
        return None
    return PLANS.get(str(tier).strip().lower())


def overage_rate_cents(tier: str, usage_type: UsageType) -> int:
    plan = PLANS[tier]
    return int(plan["overage_image_cents"] if usage_type == "image" else plan["overage_text_cents"])


def calculate_overage_cost(tier: str, usage_type: UsageType, count: int) -> int:
    """Overage cost in cents for ``count`` units beyond the included allotment."""
    return overage_rate_cents(tier, usage_type) * max(int(count), 0)
