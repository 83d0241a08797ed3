# salesdesk/__init__.py
from __future__ import annotations

import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from .errors import SalesError
from .extensions import db, limiter, login_manager, migrate
from .settings import Config


def create_app(config_object=None, *, messenger=None, clock=None) -> Flask:
    """
    App factory.

    `messenger` and `clock` replace the WhatsApp client and wall clock
    (tests pass fakes); by default they come from config and UTC now.
    """
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # ======================
    # Initialize Extensions
    # ======================
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    limiter.init_app(app)

    # ======================
    # Import Models (CRITICAL)
    # ======================
    from . import models  # noqa: F401

    # ======================
    # Services
    # ======================
    from .services import build_services

    app.extensions["salesdesk"] = build_services(
        db.session,
        app.config,
        messenger=messenger,
        clock=clock,
    )

    # ======================
    # Register Blueprints
    # ======================
    from .api import api
    from .auth import auth
    from .webhooks import webhooks

    app.register_blueprint(auth)
    app.register_blueprint(api)
    app.register_blueprint(webhooks)

    # ======================
    # CLI
    # ======================
    from .cli import register_commands

    register_commands(app)

    # ======================
    # Error handlers
    # ======================
    @app.errorhandler(SalesError)
    def sales_error(e: SalesError):
        if e.status_code >= 500:
            app.logger.error("%s: %s", e.code, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(429)
    def ratelimit_handler(e):
        return jsonify(error="rate_limited", message="Too many requests. Please try again later."), 429

    @app.errorhandler(404)
    def not_found(e):
        return jsonify(error="not_found", message="Resource not found"), 404

    @app.errorhandler(405)
    def method_not_allowed(e: HTTPException):
        return jsonify(error="method_not_allowed", message=e.description), 405

    return app
