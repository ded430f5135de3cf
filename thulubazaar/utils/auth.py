from __future__ import annotations

from functools import wraps

from flask import g, jsonify, request

from thulubazaar.extensions import db
from thulubazaar.models import User
from thulubazaar.utils.jwt_utils import decode_token, get_bearer_token


def current_user() -> User | None:
    cached = getattr(g, "_current_user", None)
    if cached is not None:
        return cached
    token = get_bearer_token(request.headers.get("Authorization", ""))
    if not token:
        return None
    payload = decode_token(token)
    if not payload:
        return None
    try:
        uid = int(payload.get("sub") or 0)
    except (TypeError, ValueError):
        return None
    if uid <= 0:
        return None
    user = db.session.get(User, uid)
    g._current_user = user
    return user


def _unauthorized():
    return jsonify({"ok": False, "error": "UNAUTHORIZED", "message": "Authentication required"}), 401


def require_user(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = current_user()
        if user is None:
            return _unauthorized()
        return fn(user, *args, **kwargs)

    return wrapper


def require_admin(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = current_user()
        if user is None:
            return _unauthorized()
        if not user.is_admin:
            return jsonify({"ok": False, "error": "FORBIDDEN", "message": "Admin access required"}), 403
        return fn(user, *args, **kwargs)

    return wrapper
