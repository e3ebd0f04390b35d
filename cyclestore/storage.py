"""MongoDB access for the store.

The application never reaches for a module-level client. A ``MongoStore`` is
built once (from configuration, or injected by the caller) and handed to
``create_app``, which owns its lifecycle.
"""

from typing import Dict, Optional
from urllib.parse import quote_plus

from flask import Flask
from flask_pymongo import PyMongo
from pymongo.errors import PyMongoError

DEFAULT_DB_NAME = "bicycle-manufacture"


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def build_mongo_uri(env: Dict[str, str]) -> str:
    explicit = (env.get("MONGO_URI") or "").strip()
    if explicit:
        return explicit

    user = (env.get("DB_USER") or "").strip()
    password = env.get("DB_PASS") or ""
    host = (env.get("DB_HOST") or "").strip()
    if user and host:
        return (
            f"mongodb+srv://{quote_plus(user)}:{quote_plus(password)}@{host}"
            "/?retryWrites=true&w=majority"
        )

    return "mongodb://localhost:27017"


class MongoStore:
    """Collections used by the store plus connect/close."""

    def __init__(self, database, client=None):
        self.db = database
        self.client = client

    @classmethod
    def from_app(cls, app: Flask) -> "MongoStore":
        mongo = PyMongo(app, uri=app.config["MONGO_URI"])
        database = mongo.cx[app.config.get("MONGO_DB_NAME") or DEFAULT_DB_NAME]
        return cls(database, client=mongo.cx)

    @property
    def users(self):
        return self.db.users

    @property
    def products(self):
        return self.db.products

    @property
    def orders(self):
        return self.db.orders

    @property
    def reviews(self):
        return self.db.reviews

    @property
    def payments(self):
        return self.db.payment

    def connect(self, logger) -> bool:
        """Ping the server and make sure indexes exist.

        A failure is logged and startup goes on; requests will surface the
        error later through the database error handler.
        """
        try:
            self.db.command("ping")
        except PyMongoError as exc:
            logger.warning("Unable to reach MongoDB at startup: %s", exc)
            return False

        try:
            self.users.create_index("email", unique=True)
            self.orders.create_index("email")
        except PyMongoError as exc:
            logger.warning("Unable to ensure indexes: %s", exc)
        return True

    def find_user(self, email: Optional[str]) -> Optional[Dict]:
        normalized = normalize_email(email)
        if not normalized:
            return None
        return self.users.find_one({"email": normalized})

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
            self.client = None
