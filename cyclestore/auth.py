"""Bearer-token verification and the admin role guard.

Tokens are plain Flask-JWT-Extended access tokens whose identity is the
caller's normalized email. ``jwt_required()`` does the verification; the
loaders below only decide how a rejected request is answered:

- no ``Authorization: Bearer`` header: 401
- bad signature, malformed or expired token: 403
"""

from flask import current_app, jsonify
from flask_jwt_extended import JWTManager, create_access_token, get_jwt_identity

from .storage import normalize_email

ADMIN_ROLE = "admin"
DEFAULT_ROLE = "user"


def init_jwt(app) -> JWTManager:
    jwt = JWTManager(app)

    @jwt.unauthorized_loader
    def missing_token(reason: str):
        return jsonify({"message": "UnAuthorized Access"}), 401

    @jwt.invalid_token_loader
    def invalid_token(reason: str):
        current_app.logger.warning("Rejected bearer token: %s", reason)
        return jsonify({"message": "Forbidden Access"}), 403

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return jsonify({"message": "Forbidden Access"}), 403

    return jwt


def issue_access_token(email: str) -> str:
    normalized = normalize_email(email)
    return create_access_token(identity=normalized, additional_claims={"email": normalized})


def current_email() -> str:
    return normalize_email(get_jwt_identity())


def get_user_role(user_document) -> str:
    if not user_document:
        return DEFAULT_ROLE
    role = str(user_document.get("role") or "").strip().lower()
    return ADMIN_ROLE if role == ADMIN_ROLE else DEFAULT_ROLE


def require_admin_user(store):
    """Look up the verified caller and allow only admins.

    Must run inside a ``jwt_required()`` view. Returns ``(user, None)`` when
    the caller is an admin, otherwise ``(None, error_response)``. A caller
    with no stored user record is refused the same way as a non-admin.
    """
    requester = current_email()
    requester_account = store.find_user(requester)

    if requester_account is not None and get_user_role(requester_account) == ADMIN_ROLE:
        return requester_account, None

    current_app.logger.warning(
        "Admin access denied for %s (%s)",
        requester or "<unknown>",
        "no account" if requester_account is None else "not an admin",
    )
    return None, (jsonify({"message": "Forbidden access"}), 403)
