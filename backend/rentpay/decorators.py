# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service
from .services.audit_service import RequestContext


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def require_auth(f):
    """
    Require a valid bearer token.

    Sets g.current_user (the authenticated User) and g.session_context.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]

        context = session_service.validate_session(token)

        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """Require the authenticated user to hold one of roles (Role members or values)."""
    allowed = {getattr(r, "value", r) for r in roles}

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if g.current_user.role not in allowed:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": sorted(allowed),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def client_context() -> RequestContext:
    """IP and user agent of the current request, for the audit trail."""
    return RequestContext(
        ip_address=request.headers.get("X-Forwarded-For", request.remote_addr or "").split(",")[0].strip() or None,
        user_agent=request.headers.get("User-Agent"),
    )
