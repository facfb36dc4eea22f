"""
Client Directory - read-only lookup of people/companies that can be attached to a matter.

Phase 1: MongoDB `clients` collection (synchronous, same handle as the draft store)
Tests and local runs: InMemoryClientDirectory
"""
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError as ModelValidationError
from pymongo.errors import PyMongoError

import config
from models import ClientRecord

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ["client_id", "first_name", "last_name", "company_name"]


class ClientDirectoryUnavailable(Exception):
    """The directory backend could not be queried."""
    pass


class ClientDirectory(ABC):
    """Abstract base class for client directory implementations."""

    @abstractmethod
    def search(self, query: str, limit: int = 50) -> List[ClientRecord]:
        """Case-insensitive match on id, first name, last name or company name."""
        pass

    @abstractmethod
    def lookup(self, client_id: str) -> Optional[ClientRecord]:
        pass


def _matches(record: ClientRecord, term: str) -> bool:
    for field in SEARCH_FIELDS:
        value = getattr(record, field, None)
        if value and term in value.lower():
            return True
    return False


class InMemoryClientDirectory(ClientDirectory):
    def __init__(self, records: Iterable[ClientRecord] = ()):
        self._records: Dict[str, ClientRecord] = {r.client_id: r for r in records}

    def search(self, query: str, limit: int = 50) -> List[ClientRecord]:
        term = (query or "").strip().lower()
        results = [r for r in self._records.values() if not term or _matches(r, term)]
        return results[:limit]

    def lookup(self, client_id: str) -> Optional[ClientRecord]:
        return self._records.get(client_id)


class MongoClientDirectory(ClientDirectory):
    """Directory backed by the `clients` collection."""

    def __init__(self, db=None, collection_name: str = config.CLIENTS_COLLECTION):
        self._db = db
        self.collection_name = collection_name

    def _collection(self):
        if self._db is None:
            from database import database
            self._db = database.get_sync_db()
        return self._db[self.collection_name]

    @staticmethod
    def _to_record(doc: Dict[str, Any]) -> Optional[ClientRecord]:
        try:
            return ClientRecord.model_validate(doc)
        except ModelValidationError as e:
            logger.warning(f"Skipping malformed client document {doc.get('client_id')}: {e}")
            return None

    def search(self, query: str, limit: int = 50) -> List[ClientRecord]:
        term = (query or "").strip()
        mongo_filter: Dict[str, Any] = {}
        if term:
            pattern = {"$regex": re.escape(term), "$options": "i"}
            mongo_filter = {"$or": [{field: pattern} for field in SEARCH_FIELDS]}
        try:
            docs = list(
                self._collection()
                .find(mongo_filter, {"_id": 0})
                .sort("last_name", 1)
                .limit(limit)
            )
        except PyMongoError as e:
            raise ClientDirectoryUnavailable(str(e)) from e
        return [r for r in (self._to_record(d) for d in docs) if r is not None]

    def lookup(self, client_id: str) -> Optional[ClientRecord]:
        try:
            doc = self._collection().find_one({"client_id": client_id}, {"_id": 0})
        except PyMongoError as e:
            raise ClientDirectoryUnavailable(str(e)) from e
        return self._to_record(doc) if doc else None
