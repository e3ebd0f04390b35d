import os
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

import click
import stripe
from bson import ObjectId
from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_cors import CORS
from flask_jwt_extended import jwt_required
from pymongo.errors import PyMongoError
from werkzeug.routing import BaseConverter

from .auth import (
    ADMIN_ROLE,
    DEFAULT_ROLE,
    current_email,
    get_user_role,
    init_jwt,
    issue_access_token,
    require_admin_user,
)
from .payments import (
    PaymentConfigurationError,
    StripePayments,
    stripe_error_response,
    to_minor_units,
)
from .serializers import serialize_document, serialize_documents, serialize_write_result
from .storage import DEFAULT_DB_NAME, MongoStore, build_mongo_uri, normalize_email
from .validation import (
    bad_request,
    is_valid_email,
    parse_object_id,
    parse_sub_total,
    parse_transaction_id,
    read_json_object,
    without_fields,
)

load_dotenv()

# Profile keys the user upsert never writes; role changes go through promotion.
PROTECTED_USER_FIELDS = ("email", "role", "created_at", "updated_at")
# Order keys only payment confirmation may set.
PROTECTED_ORDER_FIELDS = ("paid", "transactionId", "created_at")


class ObjectIdConverter(BaseConverter):
    """Matches 24-character hex ids ahead of plain string segments."""

    regex = "[0-9a-fA-F]{24}"
    weight = 50

    def to_python(self, value):
        return ObjectId(value)

    def to_url(self, value):
        return str(value)


def env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "y", "on"):
        return True
    if value in ("0", "false", "no", "n", "off"):
        return False
    return default


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_app(
    config: Optional[Mapping] = None,
    *,
    store: Optional[MongoStore] = None,
    payments: Optional[StripePayments] = None,
) -> Flask:
    """Create and configure the Flask application.

    ``store`` and ``payments`` are built from configuration when not given.
    """
    app = Flask(__name__)

    # --- Configuration ---
    app.config["JWT_SECRET_KEY"] = (
        os.getenv("ACCESS_TOKEN_SECRET")
        or os.getenv("JWT_SECRET_KEY")
        or "change-me-in-production"
    )
    token_ttl_raw = os.getenv("ACCESS_TOKEN_TTL_HOURS", "24")
    try:
        token_ttl_hours = max(1, int(token_ttl_raw))
    except (TypeError, ValueError):
        token_ttl_hours = 24
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(hours=token_ttl_hours)
    app.config["MONGO_URI"] = build_mongo_uri(os.environ)
    app.config["MONGO_DB_NAME"] = os.getenv("MONGO_DB_NAME", DEFAULT_DB_NAME)
    app.config["STRIPE_SECRET_KEY"] = os.getenv("STRIPE_SECRET_KEY", "")
    app.config["PAYMENT_CURRENCY"] = os.getenv("PAYMENT_CURRENCY", "usd").strip().lower()
    app.config["PAYMENT_VERIFY_TRANSACTIONS"] = env_flag("PAYMENT_VERIFY_TRANSACTIONS")
    app.config["CORS_ALLOWED_ORIGINS"] = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if config:
        app.config.update(config)

    app.logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    app.url_map.converters["objectid"] = ObjectIdConverter

    # --- Initialize extensions ---
    allowed_origins = [
        origin.strip()
        for origin in str(app.config["CORS_ALLOWED_ORIGINS"] or "").split(",")
        if origin.strip()
    ]
    CORS(app, origins=allowed_origins or "*")
    init_jwt(app)

    if store is None:
        store = MongoStore.from_app(app)
    store.connect(app.logger)
    if payments is None:
        payments = StripePayments(
            app.config["STRIPE_SECRET_KEY"], currency=app.config["PAYMENT_CURRENCY"]
        )
    app.extensions["cyclestore"] = {"store": store, "payments": payments}

    # --- Error handlers ---

    @app.errorhandler(PyMongoError)
    def handle_database_error(exc):
        app.logger.error("Database operation failed: %s", exc)
        return jsonify({"message": "Database operation failed."}), 500

    @app.errorhandler(stripe.StripeError)
    def handle_stripe_error(exc):
        message, status = stripe_error_response(exc, app.logger)
        return jsonify({"message": message}), status

    @app.errorhandler(PaymentConfigurationError)
    def handle_payment_configuration_error(exc):
        app.logger.error("Payment provider is not configured: %s", exc)
        return (
            jsonify({"message": "Payment configuration is incomplete. Please contact support."}),
            500,
        )

    # --- Liveness ---

    @app.route("/")
    def index():
        return "Welcome to Server"

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    # --- Payments ---

    @app.route("/create-payment-intent", methods=["POST"])
    def create_payment_intent():
        payload, payload_error = read_json_object()
        if payload_error:
            return payload_error
        sub_total, total_error = parse_sub_total(payload)
        if total_error:
            return total_error

        amount = to_minor_units(sub_total)
        client_secret = payments.create_intent(amount)
        app.logger.info("Created payment intent for %s minor units", amount)
        return jsonify({"clientSecret": client_secret})

    @app.route("/order/<order_id>", methods=["PATCH"])
    @jwt_required()
    def confirm_order_payment(order_id: str):
        order_object_id, id_error = parse_object_id(order_id, "order")
        if id_error:
            return id_error
        payment, payload_error = read_json_object()
        if payload_error:
            return payload_error
        transaction_id, transaction_error = parse_transaction_id(payment)
        if transaction_error:
            return transaction_error

        if app.config["PAYMENT_VERIFY_TRANSACTIONS"] and not payments.is_settled(
            transaction_id
        ):
            app.logger.warning(
                "Transaction %s for order %s has not succeeded", transaction_id, order_id
            )
            return jsonify({"message": "Payment has not been completed."}), 402

        updated_order = store.orders.update_one(
            {"_id": order_object_id, "paid": {"$ne": True}},
            {"$set": {"paid": True, "transactionId": transaction_id}},
        )
        if updated_order.modified_count:
            store.payments.insert_one(
                {
                    **without_fields(payment, ("order_id", "created_at")),
                    "transactionId": transaction_id,
                    "order_id": order_object_id,
                    "created_at": utcnow(),
                }
            )
            app.logger.info(
                "Order %s paid by %s with transaction %s",
                order_id,
                current_email(),
                transaction_id,
            )
        else:
            app.logger.warning("Order %s is missing or already paid", order_id)

        return jsonify(serialize_write_result(updated_order))

    # --- Users & admins ---

    @app.route("/user/<email>", methods=["PUT"])
    def upsert_user(email: str):
        if not is_valid_email(email):
            return bad_request("A valid email address is required.")
        profile, payload_error = read_json_object(required=False)
        if payload_error:
            return payload_error

        normalized_email = normalize_email(email)
        now = utcnow()
        result = store.users.update_one(
            {"email": normalized_email},
            {
                "$set": {
                    **without_fields(profile, PROTECTED_USER_FIELDS),
                    "email": normalized_email,
                    "updated_at": now,
                },
                "$setOnInsert": {"role": DEFAULT_ROLE, "created_at": now},
            },
            upsert=True,
        )
        token = issue_access_token(normalized_email)
        app.logger.info("Issued access token for %s", normalized_email)
        return jsonify({"result": serialize_write_result(result), "token": token})

    @app.route("/user", methods=["GET"])
    @jwt_required()
    def list_users():
        return jsonify(serialize_documents(store.users.find()))

    @app.route("/user/admin/<email>", methods=["PUT"])
    @jwt_required()
    def promote_to_admin(email: str):
        admin_user, admin_error = require_admin_user(store)
        if admin_error:
            return admin_error

        target_email = normalize_email(email)
        result = store.users.update_one(
            {"email": target_email},
            {"$set": {"role": ADMIN_ROLE, "updated_at": utcnow()}},
        )
        app.logger.info(
            "%s promoted %s to admin (matched %s)",
            admin_user.get("email"),
            target_email,
            result.matched_count,
        )
        return jsonify(serialize_write_result(result))

    @app.route("/admin/<email>", methods=["GET"])
    def check_admin(email: str):
        user_document = store.find_user(email)
        is_admin = user_document is not None and get_user_role(user_document) == ADMIN_ROLE
        return jsonify({"admin": is_admin})

    # --- Products ---

    @app.route("/product", methods=["GET"])
    def list_products():
        return jsonify(serialize_documents(store.products.find()))

    @app.route("/product", methods=["POST"])
    @jwt_required()
    def create_product():
        product, payload_error = read_json_object()
        if payload_error:
            return payload_error

        result = store.products.insert_one(
            {**without_fields(product, ("created_at",)), "created_at": utcnow()}
        )
        app.logger.info("Product %s created by %s", result.inserted_id, current_email())
        return jsonify(serialize_write_result(result))

    @app.route("/product/<product_id>", methods=["DELETE"])
    @jwt_required()
    def delete_product(product_id: str):
        _, admin_error = require_admin_user(store)
        if admin_error:
            return admin_error
        product_object_id, id_error = parse_object_id(product_id, "product")
        if id_error:
            return id_error

        result = store.products.delete_one({"_id": product_object_id})
        app.logger.info(
            "Product %s deleted by %s (%s removed)",
            product_id,
            current_email(),
            result.deleted_count,
        )
        return jsonify(serialize_write_result(result))

    # --- Orders ---

    @app.route("/order", methods=["POST"])
    def create_order():
        info, payload_error = read_json_object()
        if payload_error:
            return payload_error
        if not is_valid_email(info.get("email")):
            return bad_request("Orders need a valid email address.")

        order_document = {
            **without_fields(info, PROTECTED_ORDER_FIELDS),
            "email": normalize_email(info.get("email")),
            "paid": False,
            "created_at": utcnow(),
        }
        result = store.orders.insert_one(order_document)
        app.logger.info("Order %s placed for %s", result.inserted_id, order_document["email"])
        return jsonify({"success": True, "result": serialize_write_result(result)})

    @app.route("/order", methods=["GET"])
    @jwt_required()
    def list_all_orders():
        return jsonify(serialize_documents(store.orders.find()))

    @app.route("/order/<objectid:order_id>", methods=["GET"])
    def get_order(order_id: ObjectId):
        order_document = store.orders.find_one({"_id": order_id})
        if not order_document:
            return jsonify({"message": "Order not found."}), 404
        return jsonify(serialize_document(order_document))

    @app.route("/order/<email>", methods=["GET"])
    @jwt_required()
    def list_orders_for_email(email: str):
        requested_email = normalize_email(email)
        decoded_email = current_email()
        if requested_email != decoded_email:
            app.logger.warning(
                "%s tried to read orders belonging to %s", decoded_email, requested_email
            )
            return jsonify({"message": "Forbidden Access"}), 403

        orders = store.orders.find({"email": requested_email})
        return jsonify(serialize_documents(orders))

    # --- Reviews ---

    @app.route("/review", methods=["POST"])
    @jwt_required()
    def create_review():
        review, payload_error = read_json_object()
        if payload_error:
            return payload_error

        result = store.reviews.insert_one(
            {**without_fields(review, ("created_at",)), "created_at": utcnow()}
        )
        return jsonify(serialize_write_result(result))

    @app.route("/review", methods=["GET"])
    def list_reviews():
        return jsonify(serialize_documents(store.reviews.find()))

    # --- Operator commands ---

    @app.cli.command("grant-admin")
    @click.argument("email")
    def grant_admin_command(email: str):
        """Create or promote EMAIL as an administrator."""
        if not is_valid_email(email):
            raise click.BadParameter("not a valid email address", param_hint="EMAIL")
        normalized_email = normalize_email(email)
        now = utcnow()
        store.users.update_one(
            {"email": normalized_email},
            {
                "$set": {"email": normalized_email, "role": ADMIN_ROLE, "updated_at": now},
                "$setOnInsert": {"created_at": now},
            },
            upsert=True,
        )
        app.logger.info("Granted admin role to %s from the command line", normalized_email)
        click.echo(f"{normalized_email} is now an admin.")

    return app
