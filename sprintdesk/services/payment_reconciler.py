"""Stripe webhook reconciliation.

The webhook blueprint hands over the raw request body and the
``Stripe-Signature`` header. Verified events move matching invoices to
``paid`` or ``failed``; invoices are matched on ``processor_ref`` equality.

Status writes are plain assignments, so redelivered or reordered events
converge on whichever event was applied last.
"""
import logging
from datetime import datetime, timezone

import stripe

from sprintdesk.models import db
from sprintdesk.models.audit import write_changelog
from sprintdesk.models.settlement import Invoice

logger = logging.getLogger(__name__)


class WebhookVerificationError(Exception):
    """Signature header missing or invalid, or payload not a Stripe event."""


def verify_and_parse(payload, signature, secret):
    """Verify ``payload`` against ``signature`` and return the Stripe event.

    ``payload`` must be the exact bytes Stripe signed.
    """
    if not signature:
        raise WebhookVerificationError("Missing Stripe-Signature header")
    try:
        return stripe.Webhook.construct_event(payload, signature, secret)
    except stripe.SignatureVerificationError as e:
        logger.warning("Stripe signature verification failed: %s", e)
        raise WebhookVerificationError(f"Webhook signature verification failed: {e}") from e
    except ValueError as e:
        logger.warning("Stripe webhook payload could not be parsed: %s", e)
        raise WebhookVerificationError(f"Invalid payload: {e}") from e


def _field(obj, key):
    try:
        return obj[key]
    except (KeyError, TypeError):
        return None


def _checkout_reference(session):
    payment_intent = _field(session, "payment_intent")
    if isinstance(payment_intent, str) and payment_intent:
        return payment_intent
    return _field(session, "id")


# event type → (reference extractor, resulting invoice status)
EVENT_HANDLERS = {
    "payment_intent.succeeded":      (lambda obj: _field(obj, "id"), "paid"),
    "payment_intent.payment_failed": (lambda obj: _field(obj, "id"), "failed"),
    "checkout.session.completed":    (_checkout_reference, "paid"),
    "invoice.paid":                  (lambda obj: _field(obj, "id"), "paid"),
    "invoice.payment_failed":        (lambda obj: _field(obj, "id"), "failed"),
}


def update_invoices_by_reference(reference, status):
    """Set ``status`` on every invoice whose processor_ref equals ``reference``.

    Returns the number of invoices updated.
    """
    if not reference:
        return 0
    invoices = Invoice.query.filter_by(processor_ref=reference).all()
    if not invoices:
        logger.warning("No invoice matched processor ref %s", reference)
        return 0

    now = datetime.now(timezone.utc)
    try:
        for invoice in invoices:
            previous = invoice.status
            invoice.status = status
            invoice.updated_at = now
            if previous != status:
                write_changelog(
                    invoice.sprint_draft_id, "invoice.reconcile",
                    f"Invoice '{invoice.label}' marked {status} by payment processor",
                    details={"invoice_id": invoice.id, "processor_ref": reference,
                             "previous_status": previous},
                )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    for invoice in invoices:
        logger.info("Invoice %s set to %s for processor ref %s", invoice.id, status, reference,
                    extra={"sprint_id": invoice.sprint_draft_id})
    return len(invoices)


def handle_event(event):
    """Apply a verified event. Returns invoices updated, or None if unhandled."""
    event_type = _field(event, "type")
    entry = EVENT_HANDLERS.get(event_type)
    if entry is None:
        logger.info("Unhandled Stripe event type %s", event_type,
                    extra={"event_type": event_type})
        return None
    extract, status = entry
    data = _field(event, "data")
    reference = extract(_field(data, "object"))
    return update_invoices_by_reference(reference, status)


def process_event(event):
    """Handle an event without letting handler errors reach Stripe.

    Any failure is logged; the caller still acknowledges the delivery so
    Stripe does not retry it.
    """
    event_type = _field(event, "type")
    logger.info("Stripe event received id=%s type=%s", _field(event, "id"), event_type,
                extra={"event_type": event_type})
    try:
        return handle_event(event)
    except Exception:
        logger.exception("Stripe handler error for %s", event_type,
                         extra={"event_type": event_type})
        return None
