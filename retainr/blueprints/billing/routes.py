from flask import jsonify, current_app
from flask_login import current_user, login_required

from . import bp
from retainr.extensions import limiter
from retainr.models.user import SUBSCRIPTION_ACTIVE
from retainr.services.email import absolute_url
from retainr.services.payments import get_gateway


@bp.post("/checkout")
@limiter.limit("10/minute")
@login_required
def checkout():
    """Start (or restart) the account's Retainr subscription through Stripe Checkout."""
    if current_user.subscription_status == SUBSCRIPTION_ACTIVE:
        return jsonify({"error": "Subscription already active"}), 409

    price_id = current_app.config.get("STRIPE_PRICE_ID")
    if not price_id:
        return jsonify({"error": "billing_not_configured"}), 503

    try:
        session = get_gateway().create_checkout_session(
            price_id=price_id,
            user_id=current_user.id,
            email=current_user.email,
            customer_id=current_user.stripe_customer_id,
            success_url=absolute_url("billing/success?session_id={CHECKOUT_SESSION_ID}"),
            cancel_url=absolute_url("billing/cancelled"),
        )
    except Exception:
        current_app.logger.exception(
            "billing.checkout.session_create_failed",
            extra={"user_id": current_user.id, "price_id": price_id},
        )
        return jsonify({"error": "Could not create checkout session"}), 502

    if not session.get("url"):
        return jsonify({"error": "Could not create checkout session"}), 502
    return jsonify(session), 200
