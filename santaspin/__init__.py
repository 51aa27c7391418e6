from __future__ import annotations

import logging
import os
import random

from flask import Flask, jsonify
from flask_wtf.csrf import CSRFError

from .cli import santa_cli
from .errors import SantaError
from .extensions import db, login_manager, migrate, csrf, broadcaster
from .views.admin import admin_bp
from .views.auth import auth_bp
from .views.santa import santa_bp
from .views.public import public_bp


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__)

    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "dev-secret-change-me")
    app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get("DATABASE_URL", "sqlite:///santaspin.db")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    # Argon2 hash of the organizer passphrase (flask santa hash-passkey)
    app.config["SANTA_ADMIN_PASSKEY_HASH"] = os.environ.get("SANTA_ADMIN_PASSKEY_HASH", "").strip()
    app.config["SANTA_RANDOM_SEED"] = os.environ.get("SANTA_RANDOM_SEED") or None
    # "external_id" upserts by employee id; "name" by name + department
    app.config["SANTA_IMPORT_KEY"] = os.environ.get("SANTA_IMPORT_KEY", "external_id")
    app.config["SANTA_PAGE_SIZE"] = int(os.environ.get("SANTA_PAGE_SIZE", "25"))
    app.config["SANTA_EVENT_QUEUE_SIZE"] = int(os.environ.get("SANTA_EVENT_QUEUE_SIZE", "100"))
    app.config["SANTA_LOG_LEVEL"] = os.environ.get("SANTA_LOG_LEVEL", "INFO")

    if test_config:
        app.config.update(test_config)

    logging.basicConfig(
        level=app.config["SANTA_LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)
    broadcaster.init_app(app)

    seed = app.config["SANTA_RANDOM_SEED"]
    app.extensions["santa_rng"] = random.Random(seed) if seed is not None else random.Random()

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"success": False, "message": "Please log in with your employee ID."}), 401

    # Blueprints
    app.register_blueprint(public_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(santa_bp)
    app.register_blueprint(admin_bp)

    @app.errorhandler(SantaError)
    def handle_santa_error(e: SantaError):
        return jsonify({
            "success": False,
            "error": type(e).__name__,
            "message": str(e),
            "retryable": e.retryable,
        }), e.status_code

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e: CSRFError):
        return jsonify({"success": False, "error": "CSRFError", "message": e.description}), 400

    app.cli.add_command(santa_cli)

    return app
