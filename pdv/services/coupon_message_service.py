"""
Coupon message service - WhatsApp text announcing a coupon to the customer.

An optional external generator (``COUPON_MESSAGE_API_URL``) writes a varied
message; whenever it is unset or fails the canned template is used, so
building a message never raises.
"""
import logging
import re
from typing import Optional
from urllib.parse import quote

import requests
from flask import current_app, has_app_context

from pdv.models import DiscountType
from pdv.services.loyalty_service import LoyaltyPolicy
from pdv.utils.formatters import money_br, num_br, date_br

logger = logging.getLogger(__name__)

CANNED_TEMPLATE = """| CUPOM CASHBACK |

Olá {nome}! Amei te atender hoje!
Uhuu! Você garantiu {beneficio} para usar na {loja}!
Use na sua próxima compra.
Corre pra aproveitar e experimentar uma delícia nova! Qualquer dúvida é só chamar!
Validade: {validade}
Ele pode ser utilizado em compras a partir de R${minimo}.
Use e já garanta um novo cupom. Te vejo em breve!"""

_VARIATION_LABEL = re.compile(r'\**Variação \d+:\**', re.IGNORECASE)


def describe_benefit(discount_type, discount_value) -> str:
    """'10% de desconto' or 'R$5,00 de cashback'."""
    if discount_type == DiscountType.PERCENTAGE:
        return f"{num_br(discount_value)}% de desconto"
    return f"R${money_br(discount_value)} de cashback"


def render_canned_message(customer_name: str, coupon, min_purchase, store_name: str = 'Churrosteria') -> str:
    return CANNED_TEMPLATE.format(
        nome=customer_name,
        beneficio=describe_benefit(coupon.discount_type, coupon.discount_value),
        loja=store_name,
        validade=date_br(coupon.expire_at),
        minimo=money_br(min_purchase),
    )


def _clean_generated(text: str) -> str:
    """First variation only, without its label."""
    parts = [part.strip() for part in _VARIATION_LABEL.split(text)]
    return next((part for part in parts if part), '')


def _request_generated_message(config, customer_name: str, coupon, min_purchase) -> Optional[str]:
    url = config.get('COUPON_MESSAGE_API_URL')
    if not url:
        return None

    headers = {'Content-Type': 'application/json'}
    api_key = config.get('COUPON_MESSAGE_API_KEY')
    if api_key:
        headers['Authorization'] = f'Bearer {api_key}'

    payload = {
        'customerName': customer_name,
        'discountType': coupon.discount_type.value,
        'couponValue': str(coupon.discount_value),
        'expiryDate': date_br(coupon.expire_at),
        'minPurchase': str(min_purchase),
        'storeName': config.get('STORE_NAME', 'Churrosteria'),
    }

    try:
        response = requests.post(
            url,
            json=payload,
            headers=headers,
            timeout=config.get('COUPON_MESSAGE_TIMEOUT', 10)
        )
        response.raise_for_status()
        message = (response.json() or {}).get('message')
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"Coupon message generator failed, using canned template: {e}")
        return None

    if not message or not str(message).strip():
        logger.warning("Coupon message generator returned an empty message, using canned template")
        return None

    return _clean_generated(str(message))


def build_coupon_message(customer_name: str, coupon, min_purchase=None, config=None) -> str:
    """
    Message announcing ``coupon`` to ``customer_name``.

    Args:
        customer_name: Name used in the greeting
        coupon: Coupon row (discount_type, discount_value, expire_at)
        min_purchase: Minimum purchase shown in the text (defaults to the tier minimum of the coupon value)
        config: Mapping with the COUPON_MESSAGE_* keys (defaults to the app config)
    """
    if config is None:
        config = current_app.config if has_app_context() else {}
    if min_purchase is None:
        min_purchase = LoyaltyPolicy.from_config(config).min_purchase_for(coupon.discount_value)

    generated = _request_generated_message(config, customer_name, coupon, min_purchase)
    if generated:
        return generated

    return render_canned_message(
        customer_name, coupon, min_purchase,
        store_name=config.get('STORE_NAME', 'Churrosteria')
    )


def build_whatsapp_url(phone: Optional[str], message: str, country_code: str = '55') -> Optional[str]:
    """
    ``https://wa.me/<digits>?text=<message>``; None when the phone has no digits.

    Local numbers (area code + number, up to 11 digits) get ``country_code`` prepended.
    """
    digits = re.sub(r'\D', '', phone or '')
    if not digits:
        return None
    if country_code and len(digits) <= 11:
        digits = f"{country_code}{digits}"
    return f"https://wa.me/{digits}?text={quote(message)}"


def build_reward_notification(customer, coupon) -> dict:
    """``loyalty_message`` and ``whatsapp_url`` for a freshly issued reward; empty when none was issued."""
    if coupon is None or customer is None:
        return {}
    message = build_coupon_message(customer.name, coupon)
    return {
        'loyalty_message': message,
        'whatsapp_url': build_whatsapp_url(customer.phone, message),
    }
