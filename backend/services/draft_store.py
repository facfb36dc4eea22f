"""
Draft Store - typed, namespaced persistence for matter opening drafts.

Key Principles:
1. One draft per namespace (the instruction reference); namespaces never share fields
2. Every field is declared in DRAFT_FIELDS with a codec; values are stored as
   canonical text and decoded back to their declared type on read
3. Writes are write-through: set() updates the cache and the backend before returning
4. A field whose stored text cannot be decoded is dropped and its default used
5. If the backend becomes unavailable the store keeps working in memory for the
   rest of its life and reports the condition once

Storage layout (MongoDB, collection matter_drafts):
    {"namespace": "HLX-12345-67890", "version": 7,
     "fields": {"selected_date": "\"2026-10-19\"", "no_conflict": "true", ...},
     "updated_at": <datetime>}
"""
import json
import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Type

from pydantic import BaseModel, TypeAdapter
from pymongo.errors import PyMongoError

import config
from models import (
    AnswerSet,
    ClientCategory,
    ClientRecord,
    Draft,
    PartyDetails,
    RiskProfile,
    SourceChannel,
    WorkflowStep,
)
from services.error_reporter import ErrorReporter
from services.risk_engine import classify

logger = logging.getLogger(__name__)


# ============================================================================
# EXCEPTIONS
# ============================================================================

class DraftStoreError(Exception):
    """Base exception for draft store operations."""
    pass


class DraftBackendUnavailable(DraftStoreError):
    """The persistence backend could not be reached."""
    pass


class MalformedPersistedData(DraftStoreError):
    """Stored text for a field could not be decoded to its declared type."""
    pass


class UnknownDraftField(DraftStoreError, KeyError):
    """Field id is not declared in DRAFT_FIELDS."""
    pass


# ============================================================================
# FIELD CODECS
# ============================================================================

class FieldCodec:
    """Encode a typed value to canonical text and back."""

    def __init__(self, name: str, encode: Callable[[Any], Any], decode: Callable[[Any], Any]):
        self.name = name
        self._encode = encode
        self._decode = decode

    def dumps(self, value: Any) -> str:
        return json.dumps(None if value is None else self._encode(value), sort_keys=True)

    def loads(self, text: str) -> Any:
        try:
            raw = json.loads(text)
            return None if raw is None else self._decode(raw)
        except (TypeError, ValueError) as e:
            # pydantic.ValidationError is a ValueError
            raise MalformedPersistedData(f"{self.name}: {e}") from e


def _decode_text(raw: Any) -> str:
    if not isinstance(raw, str):
        raise TypeError(f"expected string, got {type(raw).__name__}")
    return raw


def _decode_bool(raw: Any) -> bool:
    if not isinstance(raw, bool):
        raise TypeError(f"expected boolean, got {type(raw).__name__}")
    return raw


def _encode_date(value: Any) -> str:
    if isinstance(value, datetime):
        value = value.date()
    if not isinstance(value, date):
        raise TypeError(f"expected date, got {type(value).__name__}")
    return value.isoformat()


def _decode_date(raw: Any) -> date:
    if not isinstance(raw, str):
        raise TypeError(f"expected ISO date string, got {type(raw).__name__}")
    # Older drafts stored a full ISO timestamp
    return datetime.fromisoformat(raw.replace("Z", "+00:00")).date() if "T" in raw else date.fromisoformat(raw)


def _decode_text_list(raw: Any) -> list:
    if not isinstance(raw, list) or not all(isinstance(v, str) for v in raw):
        raise TypeError("expected list of strings")
    return list(raw)


TEXT = FieldCodec("text", lambda v: str(v), _decode_text)
BOOL = FieldCodec("bool", lambda v: bool(v), _decode_bool)
DATE = FieldCodec("date", _encode_date, _decode_date)
TEXT_LIST = FieldCodec("text_list", lambda v: [str(x) for x in v], _decode_text_list)


def enum_codec(enum_cls: Type[Enum]) -> FieldCodec:
    return FieldCodec(
        enum_cls.__name__,
        lambda v: enum_cls(v).value,
        lambda raw: enum_cls(raw),
    )


def record_codec(model_cls: Type[BaseModel]) -> FieldCodec:
    return FieldCodec(
        model_cls.__name__,
        lambda v: model_cls.model_validate(v).model_dump(mode="json"),
        lambda raw: model_cls.model_validate(raw),
    )


def adapter_codec(name: str, type_: Any) -> FieldCodec:
    adapter = TypeAdapter(type_)
    return FieldCodec(
        name,
        lambda v: adapter.dump_python(adapter.validate_python(v), mode="json"),
        lambda raw: adapter.validate_python(raw),
    )


class DraftField:
    def __init__(self, codec: FieldCodec, default: Any = None):
        self.codec = codec
        self._default = default

    @property
    def default(self) -> Any:
        # Fresh copy so callers cannot mutate a shared default
        if callable(self._default):
            return self._default()
        return self._default


# Field registry: every key a draft may hold
DRAFT_FIELDS: Dict[str, DraftField] = {
    # Workflow
    "current_step": DraftField(enum_codec(WorkflowStep), WorkflowStep.CLIENTS),
    "submitted": DraftField(BOOL, False),
    "submission_reference": DraftField(TEXT, ""),

    # Clients step
    "client_type": DraftField(enum_codec(ClientCategory)),
    "selected_client_ids": DraftField(TEXT_LIST, list),
    "selected_clients": DraftField(adapter_codec("ClientRecordMap", Dict[str, ClientRecord]), dict),

    # Matter details step
    "selected_date": DraftField(DATE, date.today),
    "team_member": DraftField(TEXT, ""),
    "supervising_partner": DraftField(TEXT, ""),
    "originating_solicitor": DraftField(TEXT, ""),
    "area_of_work": DraftField(TEXT, ""),
    "practice_area": DraftField(TEXT, ""),
    "description": DraftField(TEXT, ""),
    "folder_structure": DraftField(TEXT, ""),
    "dispute_value": DraftField(TEXT, ""),
    "source": DraftField(enum_codec(SourceChannel), SourceChannel.SEARCH),
    "referrer_name": DraftField(TEXT, ""),

    # Conflict check and parties
    "no_conflict": DraftField(BOOL, False),
    "opponent": DraftField(adapter_codec("PartyDetails", PartyDetails)),
    "opponent_solicitor": DraftField(adapter_codec("PartyDetails", PartyDetails)),

    # Risk assessment
    "answers": DraftField(record_codec(AnswerSet), AnswerSet),
    "risk_profile": DraftField(record_codec(RiskProfile), lambda: classify(AnswerSet())),
    "compliance_date": DraftField(DATE, date.today),
    "risk_assessor": DraftField(TEXT, ""),
}


# ============================================================================
# BACKENDS
# ============================================================================

class DraftBackend(ABC):
    """Persistence for encoded draft fields. Raises DraftBackendUnavailable on failure."""

    @abstractmethod
    def load(self, namespace: str) -> Dict[str, Any]:
        """Return {"version": int, "fields": {key: text}} (empty fields when new)."""
        pass

    @abstractmethod
    def write(self, namespace: str, key: str, text: str, version: int) -> None:
        pass

    @abstractmethod
    def clear(self, namespace: str) -> None:
        pass


class InMemoryDraftBackend(DraftBackend):
    """Process-local backend; also used in tests."""

    def __init__(self):
        self._drafts: Dict[str, Dict[str, Any]] = {}

    def load(self, namespace: str) -> Dict[str, Any]:
        doc = self._drafts.get(namespace) or {"version": 0, "fields": {}}
        return {"version": doc["version"], "fields": dict(doc["fields"])}

    def write(self, namespace: str, key: str, text: str, version: int) -> None:
        doc = self._drafts.setdefault(namespace, {"version": 0, "fields": {}})
        doc["fields"][key] = text
        doc["version"] = version

    def clear(self, namespace: str) -> None:
        self._drafts.pop(namespace, None)


class MongoDraftBackend(DraftBackend):
    """One document per namespace in matter_drafts, written synchronously via pymongo."""

    def __init__(self, db=None, collection_name: str = config.DRAFTS_COLLECTION):
        self._db = db
        self.collection_name = collection_name

    def _collection(self):
        if self._db is None:
            from database import database
            self._db = database.get_sync_db()
        return self._db[self.collection_name]

    def load(self, namespace: str) -> Dict[str, Any]:
        try:
            doc = self._collection().find_one({"namespace": namespace}, {"_id": 0})
        except PyMongoError as e:
            raise DraftBackendUnavailable(str(e)) from e
        if not doc:
            return {"version": 0, "fields": {}}
        return {"version": doc.get("version", 0), "fields": doc.get("fields") or {}}

    def write(self, namespace: str, key: str, text: str, version: int) -> None:
        try:
            self._collection().update_one(
                {"namespace": namespace},
                {
                    "$set": {
                        f"fields.{key}": text,
                        "version": version,
                        "updated_at": datetime.now(timezone.utc),
                    },
                    "$setOnInsert": {"created_at": datetime.now(timezone.utc)},
                },
                upsert=True,
            )
        except PyMongoError as e:
            raise DraftBackendUnavailable(str(e)) from e

    def clear(self, namespace: str) -> None:
        try:
            self._collection().delete_one({"namespace": namespace})
        except PyMongoError as e:
            raise DraftBackendUnavailable(str(e)) from e


# ============================================================================
# STORE
# ============================================================================

class DraftStore:
    """
    Typed key-value access to one draft namespace.

    Not thread-safe; one active workflow per namespace is the caller's job.
    """

    def __init__(self, namespace: str, backend: DraftBackend, reporter: ErrorReporter):
        if not namespace:
            raise ValueError("Draft namespace is required")
        self.namespace = namespace
        self._backend = backend
        self._reporter = reporter
        self._cache: Dict[str, Any] = {}
        self._version = 0
        self._loaded = False
        self._degraded = False

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def version(self) -> int:
        self._ensure_loaded()
        return self._version

    def _field(self, key: str) -> DraftField:
        field = DRAFT_FIELDS.get(key)
        if field is None:
            raise UnknownDraftField(key)
        return field

    def _degrade(self, action: str, error: Exception) -> None:
        if self._degraded:
            return
        self._degraded = True
        logger.warning(
            "Draft backend unavailable during %s for %s, continuing in memory: %s",
            action, self.namespace, error,
        )
        self._reporter.report(
            "warning",
            f"PersistenceDegraded: draft {self.namespace} is now in-memory only ({action}: {error})",
        )

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        try:
            stored = self._backend.load(self.namespace)
        except DraftBackendUnavailable as e:
            self._degrade("load", e)
            return

        version = stored.get("version", 0)
        if not isinstance(version, int) or isinstance(version, bool) or version < 0:
            logger.warning("Discarding malformed draft version in %s: %r", self.namespace, version)
            version = 0
        fields = stored.get("fields") or {}
        if not isinstance(fields, dict):
            logger.warning("Discarding malformed draft fields in %s: %s", self.namespace, type(fields).__name__)
            fields = {}

        self._version = version
        for key, text in fields.items():
            field = DRAFT_FIELDS.get(key)
            if field is None:
                logger.info("Ignoring undeclared draft field %s in %s", key, self.namespace)
                continue
            try:
                self._cache[key] = field.codec.loads(text)
            except MalformedPersistedData as e:
                logger.warning("Discarding malformed draft field in %s: %s", self.namespace, e)

    def get(self, key: str, default: Any = None) -> Any:
        """Typed value for key; the explicit default, else the field default, when unset."""
        field = self._field(key)
        self._ensure_loaded()
        if key in self._cache and self._cache[key] is not None:
            return self._cache[key]
        return default if default is not None else field.default

    def set(self, key: str, value: Any) -> None:
        field = self._field(key)
        self._ensure_loaded()
        # Encoding validates the value against the declared type
        text = field.codec.dumps(value)
        self._cache[key] = field.codec.loads(text)
        self._version += 1
        if self._degraded:
            return
        try:
            self._backend.write(self.namespace, key, text, self._version)
        except DraftBackendUnavailable as e:
            self._degrade("write", e)

    def clear_all(self) -> None:
        self._ensure_loaded()
        self._cache.clear()
        self._version = 0
        if self._degraded:
            return
        try:
            self._backend.clear(self.namespace)
        except DraftBackendUnavailable as e:
            self._degrade("clear", e)

    def snapshot(self) -> Draft:
        """Every declared field with its current (or default) typed value."""
        self._ensure_loaded()
        return Draft(
            namespace=self.namespace,
            version=self._version,
            values={key: self.get(key) for key in DRAFT_FIELDS},
        )
