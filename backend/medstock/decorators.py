# Overview: Request decorators establishing tenant and actor context for API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import Organization

ORG_HEADER = "X-Org-Id"
ACTOR_HEADER = "X-Actor-Id"


def _header_int(name: str):
    raw = request.headers.get(name)
    if raw is None or not raw.strip().isdigit():
        return None
    return int(raw.strip())


def require_actor(f):
    """
    Establish tenant context from the upstream auth gateway.

    Authentication itself happens before requests reach this service; the
    gateway forwards the verified identity as headers.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.org_id: The organization ID (tenant context) - REQUIRED
    - g.actor_id: The acting user's ID (may be None for system callers)

    Returns 401 if the organization header is missing or malformed,
    403 if the organization is unknown or deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        org_id = _header_int(ORG_HEADER)
        if org_id is None:
            return jsonify({"error": f"{ORG_HEADER} header required", "code": "unauthenticated"}), 401

        org = db.session.query(Organization).filter_by(id=org_id).first()
        if org is None or not org.is_active:
            return jsonify({"error": "Organization not found or inactive", "code": "forbidden"}), 403

        g.org_id = org_id
        g.actor_id = _header_int(ACTOR_HEADER)
        return f(*args, **kwargs)

    return decorated_function
