from flask import jsonify, request
from flask_login import current_user, login_required
from sqlalchemy import func

from . import bp
from retainr.extensions import db, limiter
from retainr.models import DunningLog, FailedPayment, User
from retainr.models.failed_payment import STATUS_FAILED, STATUS_RECOVERED
from retainr.utils.validators import clean_str, is_valid_account_id


@bp.get("/health")
@limiter.exempt
def health():
    return jsonify({"status": "ok"}), 200


@bp.get("/failed-payments")
@login_required
def list_failed_payments():
    """The account's failed payments, newest first; ?status=failed|recovered filters."""
    q = FailedPayment.query.filter_by(user_id=current_user.id)
    status = (request.args.get("status") or "").strip().lower()
    if status:
        if status not in (STATUS_FAILED, STATUS_RECOVERED):
            return jsonify({"error": "invalid_status"}), 400
        q = q.filter_by(status=status)
    rows = q.order_by(FailedPayment.created_at.desc(), FailedPayment.id.desc()).all()
    return jsonify([r.to_dict() for r in rows]), 200


@bp.get("/failed-payments/<int:payment_id>/logs")
@login_required
def failed_payment_logs(payment_id: int):
    payment = FailedPayment.query.filter_by(id=payment_id, user_id=current_user.id).first()
    if payment is None:
        # anti-enumeration: other accounts' payments look missing
        return jsonify({"error": "not_found"}), 404
    logs = DunningLog.query.filter_by(failed_payment_id=payment.id).order_by(DunningLog.id).all()
    return jsonify([entry.to_dict() for entry in logs]), 200


@bp.get("/stats")
@login_required
def stats():
    rows = (
        db.session.query(FailedPayment.status, func.count(FailedPayment.id), func.coalesce(func.sum(FailedPayment.amount), 0))
        .filter(FailedPayment.user_id == current_user.id)
        .group_by(FailedPayment.status)
        .all()
    )
    by_status = {status: (int(count), int(total)) for status, count, total in rows}
    failed_count, failed_amount = by_status.get(STATUS_FAILED, (0, 0))
    recovered_count, recovered_amount = by_status.get(STATUS_RECOVERED, (0, 0))
    total = failed_count + recovered_count
    return jsonify({
        "total": total,
        "failed": failed_count,
        "recovered": recovered_count,
        "outstanding_amount": failed_amount,
        "recovered_amount": recovered_amount,
        "recovery_rate": round(recovered_count / total, 4) if total else 0.0,
    }), 200


@bp.put("/account/stripe")
@login_required
def link_stripe_account():
    """Link the connected Stripe account whose failed payments we should watch."""
    data = request.get_json(silent=True) or {}
    account_id = clean_str(data.get("stripe_account_id"), 64)
    if not is_valid_account_id(account_id):
        return jsonify({"error": "stripe_account_id must look like acct_..."}), 400

    taken = User.query.filter(User.stripe_account_id == account_id, User.id != current_user.id).first()
    if taken is not None:
        return jsonify({"error": "account_already_linked"}), 409

    current_user.stripe_account_id = account_id
    current_user.is_connected = True
    db.session.commit()
    return jsonify({"user": current_user.to_dict()}), 200
