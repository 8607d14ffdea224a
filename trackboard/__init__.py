import os
import logging

import click
from flask import Flask, jsonify

from trackboard.config import config_by_name
from trackboard.errors import TrackerError
from trackboard.extensions import db, migrate, login_manager, limiter


def create_app(config_name=None, overrides=None):
    """Application factory.

    ``overrides`` is applied on top of the named config before any
    extension is initialised (e.g. a different SQLALCHEMY_DATABASE_URI).
    """

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])
    if overrides:
        app.config.update(overrides)

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from trackboard import models  # noqa: F401

    # --- Register blueprints ---
    from trackboard.blueprints.boards import boards_bp
    from trackboard.blueprints.sprints import sprints_bp
    from trackboard.blueprints.tickets import tickets_bp
    from trackboard.blueprints.projects import projects_bp

    app.register_blueprint(boards_bp)
    app.register_blueprint(sprints_bp)
    app.register_blueprint(tickets_bp)
    app.register_blueprint(projects_bp)

    # --- Health check ---
    @app.route("/healthz")
    def healthz():
        return jsonify({"status": "ok"})

    # --- Error handlers ---
    @app.errorhandler(TrackerError)
    def tracker_error(e):
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({"error": "forbidden", "message": "Forbidden."}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "not_found", "message": "Not found."}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({
            "error": "method_not_allowed",
            "message": "Method not allowed.",
        }), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({
            "error": "rate_limited",
            "message": "Too many requests. Try again later.",
        }), 429

    @app.errorhandler(500)
    def server_error(e):
        db.session.rollback()
        return jsonify({"error": "server_error", "message": "Internal error."}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("create-user")
    @click.option("--email", required=True, help="User email")
    @click.option("--name", default=None, help="Display name")
    def create_user(email, name):
        """Create a user row for an identity-provider account.

        Usage:
            flask create-user --email dev@example.com --name "Dev"
        """
        from trackboard.models.user import User

        existing = User.query.filter_by(email=email).first()
        if existing:
            click.echo(f"User already exists: {email} (id: {existing.id})")
            return

        user = User(email=email, name=name)
        db.session.add(user)
        db.session.commit()
        click.echo(f"Created user: {email} (id: {user.id})")

    @app.cli.command("seed-demo")
    @click.option("--email", default="owner@trackboard.local", help="Owner email")
    def seed_demo(email):
        """Create a demo owner, a board with a child board, a sprint and tickets.

        Usage:
            flask seed-demo
            flask seed-demo --email me@example.com
        """
        from datetime import datetime, timedelta, timezone

        from trackboard.models.user import User
        from trackboard.services import board_service, sprint_service, ticket_service

        # --- 1. Owner ---
        owner = User.query.filter_by(email=email).first()
        if owner is None:
            owner = User(email=email, name="Demo Owner")
            db.session.add(owner)
            db.session.commit()
            click.echo(f"Created user: {email}")

        # --- 2. Boards ---
        board = board_service.create_board(owner.id, "Demo Product", "DEMO")
        child = board_service.create_board(
            owner.id, "Demo Mobile", "MOB", parent_board_id=board.id
        )

        # --- 3. Sprint ---
        now = datetime.now(timezone.utc)
        sprint = sprint_service.create_sprint(
            board.id, owner.id, "Sprint 1", now, now + timedelta(days=14),
            goal="Ship the first cut",
        )

        # --- 4. Tickets ---
        setup = ticket_service.create_ticket(
            board.id, owner.id, "Setup", sprint_id=sprint.id, story_points=3
        )
        ticket_service.create_sub_ticket(setup.id, owner.id, "Provision database")
        ticket_service.create_ticket(board.id, owner.id, "Write onboarding docs")
        ticket_service.create_ticket(child.id, owner.id, "App store listing")

        click.echo("")
        click.echo("=" * 60)
        click.echo("Seed data created successfully!")
        click.echo("=" * 60)
        click.echo(f"  Owner:   {email} (id: {owner.id})")
        click.echo(f"  Board:   {board.prefix} (id: {board.id})")
        click.echo(f"  Child:   {child.prefix} (id: {child.id})")
        click.echo(f"  Sprint:  #{sprint.number} {sprint.name} (id: {sprint.id})")
        click.echo(f"  Header:  {app.config['AUTH_USER_HEADER']}: {owner.id}")
        click.echo("=" * 60)
