from datetime import datetime
from typing import Dict

from bson import ObjectId


def serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.replace(tzinfo=None) - value.utcoffset()
        return value.isoformat() + "Z"
    if isinstance(value, dict):
        return {str(key): serialize_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_value(item) for item in value]
    return value


def serialize_document(document):
    if not document:
        return None
    return serialize_value(document)


def serialize_documents(cursor):
    return [serialize_document(document) for document in cursor]


def serialize_write_result(result) -> Dict:
    """Render a PyMongo write result the way clients expect to read it.

    Matched on the attributes each result type carries, so any driver that
    mimics PyMongo's result objects serializes the same way.
    """
    if hasattr(result, "inserted_id"):
        return {
            "acknowledged": result.acknowledged,
            "insertedId": serialize_value(result.inserted_id),
        }
    if hasattr(result, "matched_count"):
        upserted_id = result.upserted_id
        return {
            "acknowledged": result.acknowledged,
            "matchedCount": result.matched_count,
            "modifiedCount": result.modified_count,
            "upsertedCount": 1 if upserted_id is not None else 0,
            "upsertedId": serialize_value(upserted_id),
        }
    if hasattr(result, "deleted_count"):
        return {
            "acknowledged": result.acknowledged,
            "deletedCount": result.deleted_count,
        }
    raise TypeError(f"Unsupported write result: {type(result).__name__}")
