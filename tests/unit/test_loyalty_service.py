"""
Unit tests for the loyalty eligibility rule.
"""

from decimal import Decimal

from pdv.models import DiscountType
from pdv.services.loyalty_service import LoyaltyPolicy, evaluate_loyalty


class TestEvaluateLoyalty:
    """Threshold 50.00, 10% below 100.00 and 15% from 100.00 up."""

    def test_below_threshold_earns_nothing(self):
        # 50.00 cart with a 10% coupon settles at 45.00
        assert evaluate_loyalty(Decimal('45.00'), customer_id=1) is None

    def test_threshold_is_inclusive(self):
        offer = evaluate_loyalty(Decimal('50.00'), customer_id=1)

        assert offer is not None
        assert offer.discount_type == DiscountType.PERCENTAGE
        assert offer.discount_value == Decimal('10')
        assert offer.expiry_days == 30

    def test_high_tier(self):
        offer = evaluate_loyalty(Decimal('100.00'), customer_id=1)
        assert offer.discount_value == Decimal('15')
        assert offer.min_purchase == Decimal('50.00')

    def test_just_below_high_tier(self):
        offer = evaluate_loyalty(Decimal('99.99'), customer_id=1)
        assert offer.discount_value == Decimal('10')
        assert offer.min_purchase == Decimal('30.00')

    def test_requires_customer(self):
        assert evaluate_loyalty(Decimal('500.00'), customer_id=None) is None

    def test_disabled_policy(self):
        policy = LoyaltyPolicy(enabled=False)
        assert evaluate_loyalty(Decimal('500.00'), customer_id=1, policy=policy) is None

    def test_accepts_string_totals(self):
        offer = evaluate_loyalty('75.50', customer_id=3)
        assert offer.total == Decimal('75.50')
        assert offer.to_dict()['discount_value'] == '10'


class TestLoyaltyPolicy:

    def test_defaults(self):
        policy = LoyaltyPolicy()
        assert policy.threshold_amount == Decimal('50.00')
        assert policy.code_prefix == 'FIDELIDADE'

    def test_from_config(self):
        policy = LoyaltyPolicy.from_config({
            'LOYALTY_THRESHOLD': '80',
            'LOYALTY_REWARD_KIND': 'FIXED',
            'LOYALTY_LOW_VALUE': '5',
            'LOYALTY_HIGH_VALUE': '8',
            'LOYALTY_EXPIRY_DAYS': '15',
        })

        assert policy.threshold_amount == Decimal('80')
        assert policy.reward_kind == DiscountType.FIXED
        assert policy.reward_value(Decimal('120')) == Decimal('8')
        assert policy.expiry_days == 15
        # Unset keys keep their defaults
        assert policy.high_tier_amount == Decimal('100.00')

    def test_min_purchase_follows_reward_tier(self):
        policy = LoyaltyPolicy()
        assert policy.min_purchase_for(Decimal('10')) == Decimal('30.00')
        assert policy.min_purchase_for('15') == Decimal('50.00')

    def test_high_min_purchase_from_config(self):
        policy = LoyaltyPolicy.from_config({'LOYALTY_HIGH_MIN_PURCHASE': '70'})
        assert policy.min_purchase_for(Decimal('15')) == Decimal('70')
