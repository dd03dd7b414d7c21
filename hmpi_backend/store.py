# Persistence of computed HMPI values in MongoDB
import logging
from typing import Any, Dict, Iterable, List, Optional

from pymongo import MongoClient
from pymongo.errors import PyMongoError

from .config import settings
from .errors import UpstreamError

logger = logging.getLogger(__name__)

# Global MongoDB client
_mongo_client = None


def get_mongo_client() -> MongoClient:
    """Get or create MongoDB client connection"""
    global _mongo_client
    if _mongo_client is None:
        uri = settings.mongo_uri
        if uri.endswith('/'):
            uri = uri[:-1]
        _mongo_client = MongoClient(uri, maxPoolSize=10, minPoolSize=1,
                                    serverSelectionTimeoutMS=settings.mongo_timeout_ms)
    return _mongo_client


def close_mongo_client():
    global _mongo_client
    if _mongo_client is not None:
        _mongo_client.close()
        _mongo_client = None


def get_results_collection():
    client = get_mongo_client()
    try:
        db = client.get_default_database()
    except Exception:
        db = None
    if db is None:
        db = client[settings.mongo_db]
    return db[settings.mongo_collection]


def result_to_record(result: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Stored shape of one HMPI result; None for failure markers"""
    if not result.get('success') or 'hmpiResult' not in result:
        return None
    location = result.get('location') or {}
    coordinates = location.get('coordinates') or {}
    return {
        'state': location.get('state'),
        'district': location.get('district'),
        'latitude': coordinates.get('latitude'),
        'longitude': coordinates.get('longitude'),
        'hmpiValue': result['hmpiResult'].get('value'),
    }


class ResultsStore:
    """Append-only store of HMPI values with a read-all accessor"""

    def __init__(self, collection):
        self.collection = collection

    def save_results(self, results: Iterable[Dict[str, Any]]) -> int:
        records = [r for r in (result_to_record(res) for res in results) if r is not None]
        if not records:
            return 0
        try:
            self.collection.insert_many(records)
        except PyMongoError as e:
            logger.error(f"Saving results failed: {e}", exc_info=True)
            raise UpstreamError(f'error in saving results: {e}') from e
        logger.info(f"Saved {len(records)} HMPI results")
        return len(records)

    def fetch_results(self) -> List[Dict[str, Any]]:
        try:
            return list(self.collection.find({}, {'_id': 0}))
        except PyMongoError as e:
            logger.error(f"Fetching results failed: {e}", exc_info=True)
            raise UpstreamError(f'error in fetching results: {e}') from e
