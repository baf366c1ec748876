from typing import Optional
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired
from flask import current_app


def _serializer() -> URLSafeTimedSerializer:
    secret = current_app.config["SECRET_KEY"]
    salt = current_app.config.get("RECOVERY_TOKEN_SALT", "recovery-token-v1")
    return URLSafeTimedSerializer(secret_key=secret, salt=salt)


def generate(kind: str, identity) -> str:
    """
    kind: 'recover' for payment recovery links.
    identity: the FailedPayment id; the token is the only public handle on it.
    """
    return _serializer().dumps({"k": kind, "i": identity})


def verify(kind: str, token: str, max_age_seconds: int) -> Optional[object]:
    try:
        data = _serializer().loads(token, max_age=max_age_seconds)
    except (BadSignature, SignatureExpired):
        return None
    if not isinstance(data, dict) or data.get("k") != kind:
        return None
    return data.get("i")
