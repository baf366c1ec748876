from flask import request, jsonify
from flask_login import login_user, logout_user, current_user, login_required
from flask_wtf.csrf import generate_csrf
from sqlalchemy import func, or_

from . import bp
from retainr.extensions import db, limiter
from retainr.models import User
from retainr.services.dunning import seed_default_templates
from retainr.utils.validators import clean_str, registration_errors


def _payload():
    return request.get_json(silent=True) or request.form


def _login_email_scope():
    email = (_payload().get("email") or "").strip().lower()
    # Keep a stable scope even if email is blank
    return f"login-email:{email or 'missing'}"


@bp.get("/csrf")
def csrf_token():
    return jsonify({"csrf_token": generate_csrf()})


@bp.post("/register")
@limiter.limit("5 per minute; 20 per hour")
def register():
    data = _payload()
    email = (clean_str(data.get("email"), 255) or "").lower()
    username = clean_str(data.get("username"), 64) or ""
    password = data.get("password") or ""

    errors = registration_errors(email, username, password)

    # case-insensitive uniqueness checks
    if email and db.session.execute(
        db.select(User).where(func.lower(User.email) == email)
    ).scalar_one_or_none():
        errors.append("An account with that email already exists.")
    if username and db.session.execute(
        db.select(User).where(func.lower(User.username) == username.lower())
    ).scalar_one_or_none():
        errors.append("That username is taken.")

    if errors:
        return jsonify({"error": "validation_failed", "errors": errors}), 400

    user = User(email=email, username=username)
    user.set_password(password)
    db.session.add(user)
    db.session.flush()  # get user.id

    seed_default_templates(user.id)
    db.session.commit()

    login_user(user)
    return jsonify({"user": user.to_dict()}), 201


@bp.post("/login")
@limiter.limit("10 per minute; 100 per hour")
@limiter.limit("5 per minute; 20 per hour", key_func=_login_email_scope)
def login():
    data = _payload()
    identifier = (data.get("email") or data.get("username") or "").strip().lower()
    password = data.get("password") or ""

    if not identifier or not password:
        return jsonify({"error": "Email and password are required"}), 400

    user = db.session.execute(
        db.select(User).where(or_(func.lower(User.email) == identifier, func.lower(User.username) == identifier))
    ).scalar_one_or_none()

    if not user or not user.check_password(password):
        return jsonify({"error": "Invalid credentials"}), 400

    login_user(user)
    return jsonify({"user": user.to_dict()}), 200


@bp.post("/logout")
def logout():
    if current_user.is_authenticated:
        logout_user()
    return jsonify({"ok": True}), 200


@bp.get("/me")
@login_required
def me():
    return jsonify({"user": current_user.to_dict()}), 200
