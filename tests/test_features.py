"""
Test Suite: Tier Feature Flags
"""

from uuid import uuid4

from outrank.database import DomainSubscription, Lead
from outrank.features import Tier, get_feature_flags, get_feature_flags_for_lead, get_user_tier


class TestTier:
    def test_parse(self):
        assert Tier.parse("PRO") == Tier.PRO
        assert Tier.parse("agency") == Tier.AGENCY

    def test_unknown_values_are_free(self):
        assert Tier.parse("enterprise") == Tier.FREE
        assert Tier.parse(None) == Tier.FREE
        assert Tier.parse("") == Tier.FREE

    def test_rank(self):
        assert Tier.FREE.rank < Tier.STARTER.rank < Tier.PRO.rank < Tier.AGENCY.rank


class TestFeatureFlags:
    """Test per-tier gates."""

    def test_free(self):
        flags = get_feature_flags("free")

        assert flags.is_subscriber is False
        assert flags.blur_competitors is True
        assert flags.custom_question_limit == 0
        assert flags.show_action_plans is False

    def test_starter(self):
        flags = get_feature_flags(Tier.STARTER)

        assert flags.is_subscriber is True
        assert flags.custom_question_limit == 10
        assert flags.show_action_plans is True
        assert flags.show_prd_tasks is False

    def test_pro(self):
        flags = get_feature_flags("pro")

        assert flags.show_prd_tasks is True
        assert flags.custom_question_limit == 20
        assert flags.multi_domain is False

    def test_agency(self):
        flags = get_feature_flags("agency")

        assert flags.multi_domain is True
        assert flags.show_prd_tasks is True

    def test_to_dict(self):
        assert get_feature_flags("pro").to_dict()["tier"] == "pro"


class TestUserTier:
    """Test resolving a lead's effective tier."""

    def test_free_lead(self, db, free_lead):
        assert get_user_tier(db, free_lead.id) == Tier.FREE

    def test_active_subscription(self, db, pro_lead):
        lead, _ = pro_lead

        assert get_user_tier(db, lead.id) == Tier.PRO
        assert get_feature_flags_for_lead(db, lead.id).show_prd_tasks is True

    def test_highest_subscription_wins(self, db, pro_lead):
        lead, _ = pro_lead
        db.add(DomainSubscription(lead_id=lead.id, domain="second.com", tier="agency", status="active"))
        db.add(DomainSubscription(lead_id=lead.id, domain="third.com", tier="starter", status="active"))
        db.commit()

        assert get_user_tier(db, lead.id) == Tier.AGENCY

    def test_inactive_subscription_ignored(self, db, free_lead):
        db.add(DomainSubscription(lead_id=free_lead.id, domain="acme.com", tier="pro", status="canceled"))
        db.commit()

        assert get_user_tier(db, free_lead.id) == Tier.FREE

    def test_lead_tier_fallback(self, db):
        lead = Lead(email="legacy@acme.com", tier="starter")
        db.add(lead)
        db.commit()

        assert get_user_tier(db, lead.id) == Tier.STARTER

    def test_unknown_lead(self, db):
        assert get_user_tier(db, uuid4()) == Tier.FREE
