"""
Tier Feature Flags

Read-only gate consulted before paying-tier work (subscriber question
library, enrichment, PRD generation).
"""

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict

from sqlalchemy.orm import Session

from ..database import repository

logger = logging.getLogger(__name__)


class Tier(str, Enum):
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    AGENCY = "agency"

    @property
    def rank(self) -> int:
        return TIER_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> "Tier":
        """Unknown or empty values fall back to FREE."""
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.FREE


TIER_RANK = {Tier.FREE: 0, Tier.STARTER: 1, Tier.PRO: 2, Tier.AGENCY: 3}


@dataclass(frozen=True)
class FeatureFlags:
    tier: Tier
    is_subscriber: bool = False
    blur_competitors: bool = True
    show_all_competitors: bool = False
    editable_prompts: bool = False
    custom_question_limit: int = 0
    show_action_plans: bool = False
    show_prd_tasks: bool = False
    geo_enhanced_prompts: bool = True
    unlimited_scans: bool = False
    export_reports: bool = False
    multi_domain: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["tier"] = self.tier.value
        return data


def get_feature_flags(tier: Any = Tier.FREE) -> FeatureFlags:
    tier = Tier.parse(tier.value if isinstance(tier, Tier) else tier)

    if tier == Tier.FREE:
        return FeatureFlags(tier=tier)

    paid = dict(
        is_subscriber=True,
        blur_competitors=False,
        show_all_competitors=True,
        editable_prompts=True,
        show_action_plans=True,
    )

    if tier == Tier.STARTER:
        return FeatureFlags(tier=tier, custom_question_limit=10, **paid)

    return FeatureFlags(
        tier=tier,
        custom_question_limit=20,
        show_prd_tasks=True,
        unlimited_scans=True,
        export_reports=True,
        multi_domain=tier == Tier.AGENCY,
        **paid,
    )


def get_user_tier(db: Session, lead_id) -> Tier:
    """
    Highest active domain-subscription tier, else the lead's own tier,
    else FREE.
    """
    tiers = [Tier.parse(t) for t in repository.get_active_subscription_tiers(db, lead_id)]
    paid = [t for t in tiers if t != Tier.FREE]
    if paid:
        return max(paid, key=lambda t: t.rank)

    lead = repository.get_lead(db, lead_id)
    if lead is None:
        return Tier.FREE
    return Tier.parse(lead.tier or "free")


def get_feature_flags_for_lead(db: Session, lead_id) -> FeatureFlags:
    return get_feature_flags(get_user_tier(db, lead_id))
