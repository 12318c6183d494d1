"""Custom exceptions for the PDV checkout application."""
from decimal import Decimal


class PdvError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="Ocorreu um erro interno", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv


class ValidationError(PdvError):
    """Invalid input (no payment method, empty cart, bad discount). Nothing is mutated."""
    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)


class BusinessLogicError(PdvError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class NotFoundError(PdvError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Registro não encontrado", payload=None):
        super().__init__(message, 404, payload)


class CouponUnavailableError(ValidationError):
    """Coupon is used, inactive, expired or belongs to another customer."""


class SaleAlreadySettledError(BusinessLogicError):
    """Raised when a completed sale is settled, edited or deleted again."""
    def __init__(self, sale_id, message=None):
        super().__init__(
            message or f'A venda #{sale_id} já foi finalizada',
            status_code=409,
            payload={'sale_id': sale_id}
        )
        self.sale_id = sale_id


def _fmt_qty(value) -> str:
    value = Decimal(str(value))
    if value % 1 == 0:
        return f"{int(value)}"
    return f"{value:.2f}".rstrip('0').rstrip('.')


class InsufficientStockError(BusinessLogicError):
    """Raised when an operation fails due to lack of stock."""
    def __init__(self, product_name, required, available):
        message = (
            f"Estoque insuficiente para {product_name}: "
            f"necessário {_fmt_qty(required)}, disponível {_fmt_qty(available)}"
        )
        super().__init__(message, status_code=409, payload={
            'product_name': product_name,
            'required': required,
            'available': available,
        })
        self.product_name = product_name
        self.required = required
        self.available = available


class PartialFailureError(PdvError):
    """A write failed midway through settlement. The transaction was rolled back."""
    def __init__(self, message="Falha ao finalizar a venda. Nenhuma alteração foi registrada.", payload=None):
        super().__init__(message, 500, payload)


class UnauthorizedError(PdvError):
    """Raised when there is no authenticated user for the request."""
    def __init__(self, message="Usuário não autenticado"):
        super().__init__(message, 401)
