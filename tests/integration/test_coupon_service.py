"""
Integration tests for coupon selection, consumption and management.
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from pdv.exceptions import CouponUnavailableError, ValidationError, NotFoundError, BusinessLogicError
from pdv.models import Coupon, DiscountType
from pdv.services import coupon_service


class TestGenerateCouponCode:

    def test_plain_code(self):
        code = coupon_service.generate_coupon_code()
        assert len(code) == 8
        assert code.isalnum() and code.upper() == code

    def test_prefixed_code(self):
        code = coupon_service.generate_coupon_code('fidelidade')
        assert code.startswith('FIDELIDADE-')
        assert len(code) == len('FIDELIDADE-') + 8


class TestSelectableCoupon:
    """Tests for get_available_coupons / get_selectable_coupon."""

    def test_available_coupons_filters_and_orders(self, session, customer, make_coupon):
        later = make_coupon(customer, expire_at=datetime.now() + timedelta(days=10))
        sooner = make_coupon(customer, expire_at=datetime.now() + timedelta(days=2))
        make_coupon(customer, is_used=True)
        make_coupon(customer, is_active=False)
        make_coupon(customer, expire_at=datetime.now() - timedelta(days=1))

        coupons = coupon_service.get_available_coupons(session, customer.id)

        assert [c.id for c in coupons] == [sooner.id, later.id]

    def test_selectable(self, session, customer, make_coupon):
        coupon = make_coupon(customer)
        assert coupon_service.get_selectable_coupon(session, coupon.id, customer.id).id == coupon.id

    def test_other_customer(self, session, customer, other_customer, make_coupon):
        coupon = make_coupon(customer)
        with pytest.raises(CouponUnavailableError) as exc_info:
            coupon_service.get_selectable_coupon(session, coupon.id, other_customer.id)
        assert exc_info.value.status_code == 400

    def test_sale_without_customer(self, session, customer, make_coupon):
        coupon = make_coupon(customer)
        with pytest.raises(CouponUnavailableError):
            coupon_service.get_selectable_coupon(session, coupon.id, None)

    @pytest.mark.parametrize('kwargs', [
        {'is_used': True},
        {'is_active': False},
        {'expire_at': datetime(2020, 1, 1)},
    ])
    def test_unusable_coupons(self, session, customer, make_coupon, kwargs):
        coupon = make_coupon(customer, **kwargs)
        with pytest.raises(CouponUnavailableError):
            coupon_service.get_selectable_coupon(session, coupon.id, customer.id)

    def test_unknown_coupon(self, session, customer):
        with pytest.raises(CouponUnavailableError):
            coupon_service.get_selectable_coupon(session, 4242, customer.id)


class TestConsumeCoupon:

    def test_marks_used(self, session, customer, make_coupon):
        coupon = make_coupon(customer)
        now = datetime(2026, 1, 10, 12, 0)

        coupon_service.consume_coupon(session, coupon, now)
        session.commit()

        stored = session.get(Coupon, coupon.id)
        assert stored.is_used is True
        assert stored.used_at == now

    def test_second_consumption_fails(self, session, customer, make_coupon):
        coupon = make_coupon(customer)
        coupon_service.consume_coupon(session, coupon)
        session.commit()

        with pytest.raises(CouponUnavailableError):
            coupon_service.consume_coupon(session, coupon)


class TestCreateCoupon:

    def test_create(self, session, customer):
        expire_at = datetime.now() + timedelta(days=15)
        coupon = coupon_service.create_coupon(
            session, customer.id, 'percentage', '12,5', expire_at, code='verao10', user_id='1'
        )

        assert coupon.code == 'VERAO10'
        assert coupon.discount_type == DiscountType.PERCENTAGE
        assert coupon.discount_value == Decimal('12.50')
        assert coupon.is_active is True
        assert coupon.is_used is False

    def test_generates_code(self, session, customer):
        coupon = coupon_service.create_coupon(
            session, customer.id, DiscountType.FIXED, Decimal('5'), datetime.now() + timedelta(days=1)
        )
        assert len(coupon.code) == 8

    @pytest.mark.parametrize('kind, value', [
        ('percentage', '0'),
        ('percentage', '101'),
        ('fixed', '0'),
        ('fixed', '-3'),
    ])
    def test_invalid_values(self, session, customer, kind, value):
        with pytest.raises(ValidationError):
            coupon_service.create_coupon(session, customer.id, kind, value, datetime.now() + timedelta(days=1))

    def test_expiry_in_the_past(self, session, customer):
        with pytest.raises(ValidationError):
            coupon_service.create_coupon(session, customer.id, 'fixed', '5', datetime.now() - timedelta(minutes=1))

    def test_unknown_customer(self, session):
        with pytest.raises(NotFoundError):
            coupon_service.create_coupon(session, 777, 'fixed', '5', datetime.now() + timedelta(days=1))

    def test_duplicated_code(self, session, customer, make_coupon):
        make_coupon(customer, code='DUPLICADO')
        with pytest.raises(BusinessLogicError) as exc_info:
            coupon_service.create_coupon(
                session, customer.id, 'fixed', '5', datetime.now() + timedelta(days=1), code='duplicado'
            )
        assert exc_info.value.status_code == 409


class TestCouponMaintenance:

    def test_deactivate(self, session, customer, make_coupon):
        coupon = make_coupon(customer)
        coupon_service.deactivate_coupon(session, coupon.id)

        assert session.get(Coupon, coupon.id).is_active is False

    def test_deactivate_unknown(self, session):
        with pytest.raises(NotFoundError):
            coupon_service.deactivate_coupon(session, 31337)

    def test_expiring_coupons(self, session, customer, make_coupon):
        soon = make_coupon(customer, expire_at=datetime.now() + timedelta(days=2))
        make_coupon(customer, expire_at=datetime.now() + timedelta(days=20))
        make_coupon(customer, expire_at=datetime.now() + timedelta(days=1), is_used=True)

        coupons = coupon_service.get_expiring_coupons(session, within_days=3)

        assert [c.id for c in coupons] == [soon.id]
        assert coupons[0].customer.name == 'Maria Silva'

    def test_expire_coupons(self, session, customer, make_coupon):
        expired = make_coupon(customer, expire_at=datetime.now() - timedelta(days=1))
        used = make_coupon(customer, expire_at=datetime.now() - timedelta(days=1), is_used=True)
        valid = make_coupon(customer)

        assert coupon_service.expire_coupons(session) == 1

        assert session.get(Coupon, expired.id).is_active is False
        assert session.get(Coupon, used.id).is_active is True
        assert session.get(Coupon, valid.id).is_active is True
