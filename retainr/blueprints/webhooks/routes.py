import hashlib
import json
from datetime import datetime, timezone

import stripe
from flask import request, jsonify, abort, current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from . import bp
from retainr.extensions import db, csrf, limiter
from retainr.models import WebhookEvent
from retainr.models.webhook_event import EVENT_PROCESSED, EVENT_SKIPPED, EVENT_FAILED
from retainr.observability import log_event
from retainr.services.payments import get_gateway
from retainr.services.webhooks import handle_event, SkipEvent


def _record_delivery(ev_id: str, ev_type: str) -> WebhookEvent:
    """Upsert the audit row; Stripe redelivers with the same event id."""
    row = WebhookEvent.query.filter_by(stripe_event_id=ev_id).first()
    if row is None:
        row = WebhookEvent(stripe_event_id=ev_id, type=ev_type)
        db.session.add(row)
        try:
            db.session.commit()
            return row
        except IntegrityError:
            db.session.rollback()
    db.session.execute(
        update(WebhookEvent)
        .where(WebhookEvent.stripe_event_id == ev_id)
        .values(deliveries=WebhookEvent.deliveries + 1)
    )
    db.session.commit()
    return WebhookEvent.query.filter_by(stripe_event_id=ev_id).one()


def _finish(row: WebhookEvent, status: str, notes: str | None = None) -> None:
    row.status = status
    row.notes = notes[:255] if notes else None
    row.processed_at = datetime.now(timezone.utc)
    db.session.commit()


def _malformed(raw_bytes: bytes, reason: str):
    """Signed but unusable body: keep an audit row under a digest id and acknowledge."""
    synthetic_id = f"invalid:{hashlib.sha256(raw_bytes).hexdigest()[:32]}"
    current_app.logger.warning("stripe_webhook_malformed: %s", reason)
    row = _record_delivery(synthetic_id, "malformed")
    _finish(row, EVENT_SKIPPED, reason)
    return jsonify({"received": True}), 200


@csrf.exempt
@limiter.exempt
@bp.post("/stripe")
def stripe_webhook():
    """
    Stripe → /webhooks/stripe
    Verifies the signature over the raw body before anything is parsed or written.
    Once verified, every outcome is acknowledged unless WEBHOOK_FAIL_ON_ERROR asks for redelivery.
    """
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not secret:
        abort(500, description="Stripe webhook secret not configured")

    raw_bytes = request.get_data(cache=False, as_text=False)
    sig_header = request.headers.get("Stripe-Signature", "")
    if not sig_header:
        return jsonify({"error": "missing_signature"}), 400

    try:
        stripe.WebhookSignature.verify_header(raw_bytes.decode("utf-8"), sig_header, secret)
    except (UnicodeDecodeError, stripe.SignatureVerificationError) as exc:
        current_app.logger.warning("stripe_webhook_rejected: %s", exc)
        return jsonify({"error": "invalid_signature"}), 400

    try:
        event = json.loads(raw_bytes)
    except ValueError:
        return _malformed(raw_bytes, "invalid_json")

    ev_id = event.get("id") if isinstance(event, dict) else None
    ev_type = event.get("type") if isinstance(event, dict) else None
    if not ev_id or not ev_type:
        return _malformed(raw_bytes, "missing_id_or_type")

    log_event("stripe_webhook", event_id=ev_id, type=ev_type)
    row = _record_delivery(ev_id, ev_type)

    try:
        handle_event(event, get_gateway())
    except SkipEvent as skip:
        _finish(row, EVENT_SKIPPED, str(skip))
        log_event("stripe_webhook_skipped", event_id=ev_id, type=ev_type, reason=str(skip))
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception("stripe_webhook_handler_error")
        _finish(row, EVENT_FAILED, f"handler_error:{type(exc).__name__}: {exc}")
        if current_app.config.get("WEBHOOK_FAIL_ON_ERROR"):
            # Non-2xx makes Stripe redeliver
            return jsonify({"error": "processing_failed"}), 500
    else:
        _finish(row, EVENT_PROCESSED)

    return jsonify({"received": True}), 200
