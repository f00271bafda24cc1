from functools import wraps

from flask import jsonify, session


def role_required(*roles):
    """Reject the request with 403 JSON unless the session role is one of `roles`."""
    def deco(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            role = session.get("role")
            if role not in roles:
                return jsonify(error="forbidden", message="Insufficient permission"), 403
            return fn(*args, **kwargs)

        return wrapper

    return deco
