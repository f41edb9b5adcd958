"""Caller-facing view of the subscription-tier quota."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from gigbook.apps.api.perf.limits.tiered import get_tier_limits
from gigbook.apps.api.state import get_services, tier_limit

router = APIRouter(prefix="/usage", tags=["usage"], dependencies=[Depends(tier_limit)])


@router.get("")
async def usage(request: Request) -> dict[str, Any]:
    tiered = get_services(request).tiered
    user_key = tiered.user_key_for(request)
    tier = tiered.resolve_tier(user_key)
    return {
        "tier": tier.value,
        "limits": get_tier_limits(tier).to_dict(),
        "used_this_minute": tiered.current_count(user_key),
        "remaining_this_minute": tiered.remaining(user_key),
        "upgrade": tiered.upgrade_recommendation(user_key),
    }
