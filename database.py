"""
Database connection

Reads DATABASE_URL / DATABASE_NAME from the environment (a .env file is
honoured). When DATABASE_URL is not set ``db`` stays ``None`` and the API
reports the database as unavailable.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "vendorbook")

client: Optional[MongoClient] = None
db: Optional[Database] = None

if DATABASE_URL:
    try:
        client = MongoClient(DATABASE_URL)
        db = client[DATABASE_NAME]
    except Exception as e:
        logger.error("Could not connect to MongoDB: %s", e)
        client = None
        db = None


def utcnow() -> datetime:
    """Naive UTC timestamp, the form pymongo hands back on reads."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def ensure_indexes(database: Database) -> None:
    database["customer"].create_index([("uniqueId", ASCENDING)], unique=True)
    database["customer"].create_index([("phone", ASCENDING)])
    database["order"].create_index([("uniqueId", ASCENDING)], unique=True)
    database["order"].create_index([("customerDetails.uniqueId", ASCENDING), ("date", DESCENDING)])
    database["order"].create_index([("date", DESCENDING)])
    database["ownerrecord"].create_index([("uniqueId", ASCENDING)], unique=True)
    database["ownerrecord"].create_index([("date", DESCENDING)])
    database["item"].create_index([("name", ASCENDING)], unique=True)
    database["user"].create_index([("username", ASCENDING)], unique=True)
    database["session"].create_index([("token", ASCENDING)], unique=True)


def create_document(collection_name: str, data: Dict[str, Any]) -> str:
    """Insert a document stamped with createdAt/updatedAt, return its id."""
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    now = utcnow()
    doc = {**data, "createdAt": now, "updatedAt": now}
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(collection_name: str) -> List[Dict[str, Any]]:
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    return list(db[collection_name].find({}))
