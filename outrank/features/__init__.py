"""Subscription tier gates."""

from .flags import FeatureFlags, Tier, get_feature_flags, get_feature_flags_for_lead, get_user_tier

__all__ = ["FeatureFlags", "Tier", "get_feature_flags", "get_feature_flags_for_lead", "get_user_tier"]
