import atexit
import logging
import logging.config

import click
from flask import Flask, jsonify
from flask_migrate import Migrate
from werkzeug.exceptions import HTTPException

from config import Config
from jobs.expire_pending import ExpirePendingBookingsJob
from models import db
from routes import health_bp, booking_bp, payments_bp
from services.booking_guard import BookingGuard
from services.errors import ServiceError, Internal
from services.gateways import GatewayRegistry
from services.payment_orchestrator import PaymentOrchestrator
from services.room_locks import RoomLockRegistry
from utils.notifier import Notifier
from utils.seed import seed_catalog

logger = logging.getLogger(__name__)


def configure_logging(level: str):
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"},
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "default"},
        },
        "root": {"level": level, "handlers": ["console"]},
        "loggers": {
            "apscheduler": {"level": "WARNING"},
            "httpx": {"level": "WARNING"},
        },
    })


def create_app(config_object=Config, gateway_transport=None):
    app = Flask(__name__)
    app.config.from_object(config_object)
    configure_logging(app.config.get("LOG_LEVEL", "INFO"))

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(payments_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Core services, built once and shared by requests and the sweeper
    gateways = GatewayRegistry.from_config(app.config, transport=gateway_transport)
    notifier = Notifier(app.config)
    app.extensions["payment_gateways"] = gateways
    app.extensions["notifier"] = notifier
    app.extensions["booking_guard"] = BookingGuard(
        RoomLockRegistry(),
        notifier=notifier,
        max_nights=app.config["MAX_BOOKING_NIGHTS"],
        max_advance_days=app.config["MAX_ADVANCE_DAYS"],
        currency=app.config["PAYMENT_CURRENCY"],
    )
    app.extensions["payment_orchestrator"] = PaymentOrchestrator(
        gateways,
        notifier=notifier,
        callback_url=app.config["PAYMENT_CALLBACK_URL"],
        return_url=app.config.get("PAYMENT_RETURN_URL"),
        currency=app.config["PAYMENT_CURRENCY"],
        require_signature=app.config["PAYMENT_CALLBACK_REQUIRE_SIGNATURE"],
    )
    sweeper = ExpirePendingBookingsJob(
        app,
        interval_seconds=app.config["SWEEPER_INTERVAL_SECONDS"],
        grace_minutes=app.config["BOOKING_GRACE_MINUTES"],
    )
    app.extensions["expiration_sweeper"] = sweeper

    @app.errorhandler(ServiceError)
    def _service_error(err):
        return jsonify(err.to_dict()), err.http_status

    @app.errorhandler(Exception)
    def _unhandled(err):
        if isinstance(err, HTTPException):
            return err
        logger.exception("Unhandled error")
        internal = Internal()
        return jsonify(internal.to_dict()), internal.http_status

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    if not app.testing:
        if app.config.get("SWEEPER_ENABLED"):
            sweeper.start()
        atexit.register(release_resources, app)

    return app

#-------------------------


def release_resources(app):
    """Release what create_app started outside the request cycle."""
    app.extensions["expiration_sweeper"].stop()
    app.extensions["notifier"].shutdown()
    app.extensions["payment_gateways"].close()
    logger.info("Background resources released")


def register_cli(app):
    @app.cli.command("sweep-expired")
    def sweep_expired():
        """Expire unpaid bookings past the grace window (one run)."""
        result = app.extensions["expiration_sweeper"].run_once()
        if result is None:
            print("A sweep is already running")
        elif result["success"]:
            print(f"{result['expired']} booking(s) expired")
        else:
            print(f"Sweep failed: {result['error']}")

    @app.cli.command("seed-catalog")
    def seed_catalog_command():
        """Load sample hotels and rooms."""
        print(f"{seed_catalog()} hotel(s) created")

    @app.cli.command("verify-payment")
    @click.argument("payment_id")
    def verify_payment(payment_id):
        """Poll the provider for a payment whose callback never arrived."""
        try:
            result = app.extensions["payment_orchestrator"].verify_payment(payment_id)
        except ServiceError as err:
            print(f"{err.kind}: {err.message}")
            return
        print(f"payment {payment_id}: {result['payment']['status']}")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
