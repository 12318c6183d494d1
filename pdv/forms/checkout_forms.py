"""
Forms for comanda, checkout, coupon and stock payloads.
"""
from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict
from wtforms import DecimalField, DateField, IntegerField, SelectField, StringField
from wtforms.validators import DataRequired, NumberRange, Length, Optional
from wtforms.validators import ValidationError as FieldError

from pdv.exceptions import ValidationError
from pdv.models import PaymentMethod, DiscountType
from pdv.services.pricing_service import DiscountDescriptor

PAYMENT_CHOICES = [
    (PaymentMethod.CASH.value, 'Dinheiro'),
    (PaymentMethod.PIX.value, 'PIX'),
    (PaymentMethod.DEBIT.value, 'Cartão de Débito'),
    (PaymentMethod.CREDIT.value, 'Cartão de Crédito'),
]

DISCOUNT_CHOICES = [
    (DiscountType.PERCENTAGE.value, 'Percentual (%)'),
    (DiscountType.FIXED.value, 'Valor fixo (R$)'),
]


class JsonForm(FlaskForm):
    """Base for JSON endpoints; CSRFProtect already checks the X-CSRFToken header."""

    class Meta:
        csrf = False


class ManualDiscountMixin:
    """Manual discount typed by the operator at checkout."""

    discount_type = SelectField(
        'Tipo de desconto',
        choices=DISCOUNT_CHOICES,
        validators=[Optional()]
    )

    discount_value = DecimalField(
        'Valor do desconto',
        validators=[Optional(), NumberRange(min=0, message='O desconto não pode ser negativo')],
        places=2
    )

    def validate_discount_value(self, field):
        if field.data is None:
            return
        if not self.discount_type.data:
            raise FieldError('Selecione o tipo de desconto')
        if self.discount_type.data == DiscountType.PERCENTAGE.value and field.data > 100:
            raise FieldError('O percentual não pode ser maior que 100')

    @property
    def manual_discount(self):
        """DiscountDescriptor, or None when no positive discount was typed."""
        if self.discount_value.data is None or self.discount_value.data <= 0:
            return None
        return DiscountDescriptor.from_values(self.discount_type.data, self.discount_value.data)


class PricingPreviewForm(ManualDiscountMixin, JsonForm):
    coupon_id = IntegerField('Cupom', validators=[Optional()])


class SettlementForm(ManualDiscountMixin, JsonForm):
    """Close a comanda."""

    payment_method = SelectField(
        'Forma de pagamento',
        choices=PAYMENT_CHOICES,
        validators=[DataRequired(message='Selecione a forma de pagamento')]
    )

    coupon_id = IntegerField('Cupom', validators=[Optional()])


class DirectSaleForm(SettlementForm):
    """Direct sale checkout (items travel separately in the payload)."""

    customer_id = IntegerField('Cliente', validators=[Optional()])

    idempotency_key = StringField(
        'Chave de idempotência',
        validators=[Optional(), Length(max=64)]
    )


class OpenComandaForm(JsonForm):
    customer_id = IntegerField('Cliente', validators=[Optional()])

    notes = StringField(
        'Identificação',
        validators=[Optional(), Length(max=200)]
    )

    def validate(self, extra_validators=None):
        if not super().validate(extra_validators):
            return False
        if self.customer_id.data is None and not (self.notes.data or '').strip():
            self.notes.errors.append('Informe o cliente ou uma identificação para a comanda')
            return False
        return True


class CouponForm(JsonForm):
    """Manual coupon creation."""

    customer_id = IntegerField(
        'Cliente',
        validators=[DataRequired(message='Selecione o cliente')]
    )

    code = StringField(
        'Código',
        validators=[Optional(), Length(min=3, max=40)]
    )

    discount_type = SelectField(
        'Tipo de desconto',
        choices=DISCOUNT_CHOICES,
        validators=[DataRequired(message='Selecione o tipo de desconto')]
    )

    discount_value = DecimalField(
        'Valor',
        validators=[
            DataRequired(message='Informe o valor do cupom'),
            NumberRange(min=0.01, message='O valor deve ser maior que zero')
        ],
        places=2
    )

    expire_at = DateField(
        'Validade',
        validators=[DataRequired(message='Informe a validade')],
        format='%Y-%m-%d'
    )

    def validate_discount_value(self, field):
        if self.discount_type.data == DiscountType.PERCENTAGE.value and field.data and field.data > 100:
            raise FieldError('O percentual não pode ser maior que 100')


class StockAdjustmentForm(JsonForm):
    """Stock entry (quantity) or inventory count (new_stock)."""

    quantity = IntegerField(
        'Quantidade de entrada',
        validators=[Optional(), NumberRange(min=1, message='A quantidade deve ser maior que zero')]
    )

    new_stock = IntegerField(
        'Novo estoque',
        validators=[Optional(), NumberRange(min=0, message='O estoque não pode ser negativo')]
    )

    reason = StringField(
        'Motivo',
        validators=[Optional(), Length(max=255)]
    )

    def validate(self, extra_validators=None):
        if not super().validate(extra_validators):
            return False
        if (self.quantity.data is None) == (self.new_stock.data is None):
            self.new_stock.errors.append('Informe a quantidade de entrada ou o novo estoque')
            return False
        return True


def json_formdata(payload) -> MultiDict:
    """
    Flatten a JSON object into form data. Scalars are passed as strings so
    DecimalField never parses a float; nested lists/objects are skipped.
    """
    formdata = MultiDict()
    for key, value in (payload or {}).items():
        if value is None or isinstance(value, (list, dict)):
            continue
        if isinstance(value, bool):
            value = 'y' if value else ''
        formdata.add(key, str(value))
    return formdata


def load_form(form_cls, payload):
    """
    Build and validate ``form_cls`` from a JSON payload.

    Raises:
        ValidationError: first field error as message, all of them in the payload
    """
    form = form_cls(formdata=json_formdata(payload))
    if not form.validate():
        first_error = next(iter(form.errors.values()))[0]
        raise ValidationError(first_error, payload={'errors': form.errors})
    return form


def items_from_payload(payload) -> list:
    """
    The ``items`` list of a JSON payload.

    Raises:
        ValidationError: missing, empty or not a list of objects
    """
    items = (payload or {}).get('items')
    if not isinstance(items, list) or not items or not all(isinstance(i, dict) for i in items):
        raise ValidationError('Informe os itens da venda')
    return items
