"""Template registry — maps template names to template classes.

Each template renders a ``NotificationContent`` from a plain context dict.
"""

from storefront.notifications.content import NotificationContent
from storefront.notifications.templates.admin import (
    LowInventoryTemplate,
    NewPaidOrderTemplate,
    SystemAnnouncementTemplate,
)
from storefront.notifications.templates.orders import OrderPlacedTemplate, OrderStatusTemplate
from storefront.notifications.templates.payments import PaymentRefundedTemplate, PaymentStatusTemplate

TEMPLATE_REGISTRY: dict[str, type] = {
    template.name: template
    for template in (
        OrderPlacedTemplate,
        OrderStatusTemplate,
        PaymentStatusTemplate,
        PaymentRefundedTemplate,
        LowInventoryTemplate,
        NewPaidOrderTemplate,
        SystemAnnouncementTemplate,
    )
}


def get_template(name: str):
    """Look up a template class by name."""
    template_cls = TEMPLATE_REGISTRY.get(name)
    if template_cls is None:
        raise ValueError(f"No template registered under: {name}")
    return template_cls


def render(name: str, context: dict) -> NotificationContent:
    return get_template(name).render(context)
