from flask import Blueprint

# Customer-facing endpoints reached from the dunning email; no account session
bp = Blueprint("public", __name__)

from . import routes  # noqa: E402,F401
