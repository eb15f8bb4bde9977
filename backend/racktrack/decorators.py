# Overview: Request authentication and role decorators for API routes.

import hmac
from functools import wraps

from flask import current_app, g, jsonify, request

from .errors import Forbidden, Unauthorized
from .services import session_service


SESSION_COOKIE = "rt_session"


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1].strip() or None
    return None


def _error(exc):
    return jsonify(exc.to_dict()), exc.http_status


def require_auth(f):
    """
    Require a valid session token.

    The token is read from `Authorization: Bearer <token>`, falling back to the
    rt_session cookie so browser redirects (OAuth connect/callback) carry it.
    Sets g.current_user and g.session_context.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = request_session_token()
        if not token:
            return _error(Unauthorized("Authentication required"))

        context = session_service.validate_session(token)
        if not context:
            return _error(Unauthorized("Invalid or expired token"))

        g.current_user = context.user
        g.session_context = context
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """Require @require_auth first; 403 unless the user's role is one of `roles`."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "current_user"):
                return _error(Unauthorized("Authentication required"))
            if g.current_user.role not in roles:
                return _error(Forbidden(
                    f"Requires role: {', '.join(roles)}",
                    required_roles=list(roles),
                ))
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def require_cron_secret(f):
    """
    Shared-secret guard for the scheduled token refresh trigger.

    Fails closed: with no CRON_SECRET configured every call is rejected.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get("CRON_SECRET") or ""
        presented = _bearer_token() or ""
        if not expected or not hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8")):
            return _error(Unauthorized("Unauthorized"))
        return f(*args, **kwargs)
    return decorated_function


def request_session_token() -> str | None:
    """Session token from the Authorization header or the rt_session cookie."""
    return _bearer_token() or request.cookies.get(SESSION_COOKIE)
