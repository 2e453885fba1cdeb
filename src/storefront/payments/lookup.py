"""Payment lookups shared by the payment commands and manager."""

from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from storefront.errors import PaymentNotFound
from storefront.payments.payment import Payment
from storefront.utils.clock import as_utc


def load_payment(payment_id) -> Payment:
    try:
        return current_domain.repository_for(Payment).get(str(payment_id))
    except ObjectNotFoundError:
        raise PaymentNotFound(payment_id)


def payments_for_order(order_id) -> list[Payment]:
    payments = current_domain.repository_for(Payment)._dao.query.filter(order_id=str(order_id)).all().items
    return sorted(payments, key=lambda payment: as_utc(payment.created_at), reverse=True)


def open_payment_for_order(order_id) -> Payment | None:
    return next((payment for payment in payments_for_order(order_id) if payment.is_open), None)


def find_by_reference(provider: str, reference: str) -> Payment:
    """Find the payment a provider callback refers to.

    Providers echo either the reference they issued at initiation or our
    own transaction id, depending on the protocol.
    """
    dao = current_domain.repository_for(Payment)._dao
    for field_name in ("provider_reference", "transaction_id"):
        matches = dao.query.filter(**{field_name: str(reference)}).all().items
        matches = [payment for payment in matches if payment.provider == provider]
        if matches:
            return matches[0]
    raise PaymentNotFound(reference)


def open_payments() -> list[Payment]:
    dao = current_domain.repository_for(Payment)._dao
    return [payment for status in ("pending", "processing") for payment in dao.query.filter(status=status).all().items]


def paid_payment_for_order(order_id) -> Payment | None:
    return next((payment for payment in payments_for_order(order_id) if payment.status == "paid"), None)
