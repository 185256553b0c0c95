"""
Subscription plan lookup.

Billing is external; this layer only consumes a per-plan policy table
(attachment size cap, revision retention count) looked up by owner id.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from config import Settings
from sqlite_db import SQLiteDatabase

logger = logging.getLogger(__name__)

FALLBACK_PLAN = "free"

# Subscription states that still entitle the user to their plan
ENTITLED_STATUSES = ("active", "trialing")


@dataclass(frozen=True)
class PlanPolicy:
    plan: str
    attachment_size_mb: int
    revision_retention_count: int

    @property
    def attachment_size_bytes(self) -> int:
        return self.attachment_size_mb * 1024 * 1024


class PlanService(ABC):
    """Resolves the policy that applies to an owner."""

    @abstractmethod
    async def get_policy(self, owner_id: str) -> PlanPolicy:
        pass


class SubscriptionPlanService(PlanService):
    """Reads the owner's subscription row and maps it through settings.plan_limits.

    Missing, lapsed or unknown subscriptions fall back to the free plan.
    """

    def __init__(self, db: SQLiteDatabase, settings: Settings):
        self._subscriptions = db[settings.subscriptions_collection]
        self._settings = settings

    def policy_for(self, plan: Optional[str]) -> PlanPolicy:
        limits = self._settings.plan_limits
        if plan not in limits:
            if plan:
                logger.warning(f"Unknown plan '{plan}', using {FALLBACK_PLAN} limits")
            plan = FALLBACK_PLAN
        row = limits[plan]
        return PlanPolicy(
            plan=plan,
            attachment_size_mb=row.attachmentSizeMB,
            revision_retention_count=row.revisionRetentionCount,
        )

    async def get_policy(self, owner_id: str) -> PlanPolicy:
        sub = await self._subscriptions.find_one(
            {"userId": owner_id, "status": {"$in": list(ENTITLED_STATUSES)}},
            sort=[("updatedAt", -1)],
        )
        return self.policy_for(sub.get("plan") if sub else None)
