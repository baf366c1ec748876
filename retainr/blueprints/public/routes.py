from flask import jsonify, request

from . import bp
from retainr.extensions import csrf, limiter
from retainr.services.dunning import payment_for_token
from retainr.services.payments import get_gateway
from retainr.services.recovery import RecoveryError, payment_summary, recover


@bp.get("/payment/<token>")
@limiter.limit("30/minute")
def payment_details(token):
    payment = payment_for_token(token)
    if payment is None:
        return jsonify({"error": "payment_not_found"}), 404
    return jsonify(payment_summary(payment)), 200


@csrf.exempt
@bp.post("/payment/<token>/update")
@limiter.limit("10/minute")
def update_payment_method(token):
    """Customer supplies a new payment method (Stripe.js token); we retry the failed intent."""
    payment = payment_for_token(token)
    if payment is None:
        return jsonify({"error": "payment_not_found"}), 404

    data = request.get_json(silent=True) or {}
    payment_method_id = (data.get("paymentMethodId") or "").strip()
    if not payment_method_id:
        return jsonify({"error": "paymentMethodId is required"}), 400

    try:
        result = recover(payment, payment_method_id, get_gateway())
    except RecoveryError as err:
        return jsonify(err.to_dict()), err.status_code

    return jsonify(result), 202 if result.get("pending") else 200
