"""MongoDB connection and document helpers."""
from datetime import datetime
from typing import Any, Dict

from pymongo import MongoClient

from config import DATABASE_NAME, DATABASE_URL

client = MongoClient(DATABASE_URL) if DATABASE_URL else None
db = client[DATABASE_NAME] if client is not None else None


def create_document(collection, data: Dict[str, Any]) -> Dict[str, Any]:
    """Insert a copy of data stamped with created_at/updated_at and return it with its _id."""
    now = datetime.utcnow()
    doc = dict(data)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    doc["_id"] = collection.insert_one(doc).inserted_id
    return doc
