# salesdesk/auth.py
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db, limiter, login_manager, login_rate_limit
from .models import AdminUser, utcnow_naive
from .utils.passwords import new_api_token, token_digest, verify_password

auth = Blueprint("auth", __name__, url_prefix="/auth")


# =========================================================
# Flask-Login: bearer token loader
# =========================================================
@login_manager.request_loader
def load_user_from_request(req):
    header = req.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None

    user = AdminUser.query.filter_by(api_token=token_digest(token)).first()
    if not user or user.is_active is False:
        return None
    return user


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify(error="unauthorized", message="Authentication required"), 401


# =========================================================
# Login
# =========================================================
@auth.route("/login", methods=["POST"])
@limiter.limit(login_rate_limit)
def login():
    payload = request.get_json(silent=True) or {}
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""

    if not email or not password:
        return jsonify(error="validation_error", message="Email and password are required."), 422

    user = AdminUser.query.filter(db.func.lower(AdminUser.email) == email).first()

    if user and user.is_active is False:
        return jsonify(error="inactive", message="This account is inactive. Contact an admin."), 403

    if not user or not verify_password(user.password_hash, password):
        current_app.logger.info("Failed login for %s", email)
        return jsonify(error="invalid_credentials", message="Invalid email or password."), 401

    token, digest = new_api_token()
    user.api_token = digest
    user.last_login_at = utcnow_naive()

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Could not issue API token for %s", email)
        return jsonify(error="persistence_error", message="Login failed. Please try again."), 500

    return jsonify(
        token=token,
        user={"id": user.id, "name": user.name, "email": user.email, "role": user.role},
    )
