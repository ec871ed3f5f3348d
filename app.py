import os
import logging
from logging.handlers import RotatingFileHandler

import click
from flask import Flask, jsonify, session, g
from sqlalchemy.exc import IntegrityError

from config import Config
from extensions import db, login_manager, init_extensions
from logger import LOGS_DIR
from models import User, Wallet
from genealogy.config import CommissionConfigHelper
from genealogy.errors import NotFoundError, InvalidStateError, PurchaseError
from genealogy.lifecycle import InvestmentLifecycle
from utils import generate_referral_code, utcnow


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    if not app.debug and not app.testing:
        app.config.update(
            SESSION_COOKIE_SECURE=True,
            SESSION_COOKIE_HTTPONLY=True,
            REMEMBER_COOKIE_SECURE=True,
            REMEMBER_COOKIE_HTTPONLY=True,
        )

    setup_logging(app)

    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and not app.testing:
        os.makedirs(os.path.join(os.path.dirname(os.path.abspath(__file__)), "instance"), exist_ok=True)

    init_extensions(app)
    register_blueprints(app)
    register_error_handlers(app)
    register_commands(app)

    valid, message = CommissionConfigHelper.validate_configuration()
    if not valid:
        raise ValueError(message)
    app.logger.info(message)

    # ------------------------------------------------------------------------------------------------------------------------
    # Flask-Login user_loader
    # ------------------------------------------------------------------------------------------------------------------------
    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    # ----------------------
    # Global before_request
    # ----------------------
    @app.before_request
    def load_logged_in_user():
        g.user = None
        user_id = session.get("user_id")
        if user_id:
            g.user = db.session.get(User, user_id)

    @app.route("/healthz")
    def healthz():
        return {"status": "ok", "timestamp": utcnow().isoformat()}, 200

    return app


def setup_logging(app):
    """Rotating file log plus console output in debug"""
    if app.testing:
        return

    os.makedirs(LOGS_DIR, exist_ok=True)
    file_handler = RotatingFileHandler(
        os.path.join(LOGS_DIR, "app.log"), maxBytes=1024 * 1024, backupCount=10, encoding="utf-8"
    )
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
    ))
    file_handler.setLevel(logging.INFO)

    app.logger.handlers.clear()
    app.logger.addHandler(file_handler)
    app.logger.setLevel(logging.INFO)
    app.logger.propagate = False

    if app.debug:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG)
        app.logger.addHandler(console_handler)

    logging.getLogger('werkzeug').setLevel(logging.WARNING)


def register_blueprints(app):
    """Register all blueprints"""
    from blueprints.auth import bp as auth_bp
    from blueprints.user import bp as user_bp
    from blueprints.admin import admin_bp
    from blueprints.payments import bp as payments_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(payments_bp)


def register_error_handlers(app):
    """Domain errors become JSON bodies"""

    @app.errorhandler(NotFoundError)
    def handle_not_found(e):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(InvalidStateError)
    def handle_invalid_state(e):
        return jsonify({"error": str(e)}), 409

    @app.errorhandler(PurchaseError)
    def handle_purchase_error(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(ValueError)
    def handle_value_error(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(403)
    def handle_forbidden(e):
        return jsonify({"error": "Forbidden"}), 403


def register_commands(app):

    @app.cli.command("process-matured")
    def process_matured_command():
        """Complete every active investment past its end date."""
        completed = InvestmentLifecycle.process_matured()
        click.echo(f"Completed {len(completed)} investments: {completed}")

    @app.cli.command("make-admin")
    @click.argument("email")
    @click.option("--username", default=None, help="Username when the account must be created")
    @click.option("--password", default=None, help="Password when the account must be created")
    def make_admin_command(email, username, password):
        """Promote EMAIL to admin, creating the account if it does not exist."""
        email = email.strip().lower()
        user = User.query.filter_by(email=email).first()

        if user:
            click.echo(f"Found user id={user.id}, email={user.email}. Promoting to admin...")
        else:
            if not password:
                raise click.UsageError("--password is required to create a new admin")
            click.echo(f"No user with email {email} found, creating a new user.")
            user = User(
                username=username or email.split("@")[0],
                email=email,
                first_name="Admin",
                last_name="User",
                referral_code=generate_referral_code(
                    lambda code: User.query.filter_by(referral_code=code).first() is not None
                ),
            )
            user.set_password(password)
            db.session.add(user)
            try:
                db.session.flush()
            except IntegrityError as e:
                db.session.rollback()
                raise click.ClickException(f"Could not create user: {e.orig}")
            db.session.add(Wallet(user_id=user.id, currency=app.config.get("CURRENCY", "USD")))

        user.role = "admin"
        db.session.commit()
        click.echo(f"User (id={user.id}, email={user.email}) is now admin.")


# ----------------------
# Create app instance
# ----------------------
app = create_app()

# ----------------------
# Local development
# ----------------------
if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    debug_mode = app.config.get("DEBUG", False)
    app.run(debug=debug_mode, host="0.0.0.0", port=port)
