"""Request payload checks.

Each helper returns ``(value, error)``; ``error`` is a ready Flask response
tuple or ``None``.
"""

import math
import re
from typing import Dict, Iterable, Optional

from bson import ObjectId
from bson.errors import InvalidId
from flask import jsonify, request

from .payments import to_minor_units
from .storage import normalize_email

email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# BSON stores integers as signed 64-bit values.
BSON_INT_MIN = -(2**63)
BSON_INT_MAX = 2**63 - 1

# Fields the store assigns; never taken from a client payload.
STORE_MANAGED_FIELDS = ("_id",)


def bad_request(message: str):
    return jsonify({"message": message}), 400


def is_valid_email(value: Optional[str]) -> bool:
    if not isinstance(value, str):
        return False
    normalized = normalize_email(value)
    return bool(normalized and email_regex.match(normalized))


def read_json_object(*, required: bool = True):
    payload = request.get_json(silent=True)
    if payload is None and not required:
        return {}, None
    if not isinstance(payload, dict):
        return None, bad_request("Request body must be a JSON object.")
    if required and not payload:
        return None, bad_request("Request body must not be empty.")
    problem = find_unstorable_value(payload)
    if problem:
        return None, bad_request(problem)
    return payload, None


def find_unstorable_value(value):
    """Return why ``value`` cannot be written to MongoDB, or ``None``."""
    if isinstance(value, dict):
        for key, item in value.items():
            if not key or key.startswith("$") or "." in key:
                return "Field names must not be empty, start with '$' or contain '.'."
            problem = find_unstorable_value(item)
            if problem:
                return problem
    elif isinstance(value, list):
        for item in value:
            problem = find_unstorable_value(item)
            if problem:
                return problem
    elif isinstance(value, int) and not isinstance(value, bool):
        if not BSON_INT_MIN <= value <= BSON_INT_MAX:
            return "Integer values must fit in 64 bits."
    return None


def without_fields(payload: Dict, fields: Iterable[str]) -> Dict:
    dropped = set(fields) | set(STORE_MANAGED_FIELDS)
    return {key: value for key, value in payload.items() if key not in dropped}


def parse_object_id(value, label: str):
    try:
        return ObjectId(str(value)), None
    except (InvalidId, TypeError):
        return None, bad_request(f"Invalid {label} identifier.")


def parse_sub_total(payload: Dict):
    value = payload.get("subTotal")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None, bad_request("subTotal must be a number.")
    if not math.isfinite(value) or value <= 0:
        return None, bad_request("subTotal must be greater than zero.")
    if to_minor_units(value) < 1:
        return None, bad_request("subTotal must be at least one cent.")
    return value, None


def parse_transaction_id(payload: Dict):
    value = payload.get("transactionId")
    if not isinstance(value, str) or not value.strip():
        return None, bad_request("transactionId is required.")
    return value.strip(), None
