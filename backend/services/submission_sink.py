"""
Submission Sink - system of record that accepts a completed matter opening.

The sink is not guaranteed idempotent; the workflow enforces one submission
per draft. Implementations:
- HttpSubmissionSink: POST the payload JSON to SUBMISSION_SINK_URL
- MongoSubmissionSink: insert into matter_submissions with a MAT-YYYYMMDD-#### reference

Declines come back as SubmissionReceipt(accepted=False). Transport failures
raise SubmissionSinkError.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

import httpx
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

import config
from models import SubmissionPayload, SubmissionReceipt

logger = logging.getLogger(__name__)


class SubmissionSinkError(Exception):
    """The sink could not be reached or answered with a server error."""
    pass


class SubmissionSink(ABC):
    @abstractmethod
    async def submit(self, payload: SubmissionPayload) -> SubmissionReceipt:
        pass


class HttpSubmissionSink(SubmissionSink):
    """
    JSON-over-HTTP sink.

    2xx  -> accepted; reference taken from the response body ("reference" or "id")
    4xx  -> declined; receipt carries the response detail
    5xx / network errors -> SubmissionSinkError
    """

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not url:
            raise ValueError("Submission sink URL is required")
        self.url = url
        self.token = token
        self.timeout = timeout or config.get_sink_timeout()
        self._client = client

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _post(self, client: httpx.AsyncClient, body: dict) -> httpx.Response:
        return await client.post(self.url, json=body, headers=self._headers())

    async def submit(self, payload: SubmissionPayload) -> SubmissionReceipt:
        body = payload.model_dump(mode="json")
        try:
            if self._client is not None:
                response = await self._post(self._client, body)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await self._post(client, body)
        except httpx.HTTPError as e:
            logger.error(f"Submission sink unreachable for {payload.instruction_ref}: {e}")
            raise SubmissionSinkError(f"Submission sink unreachable: {e}") from e

        if response.status_code >= 500:
            raise SubmissionSinkError(f"Submission sink error {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.status_code >= 400:
            detail = data.get("detail") or data.get("message") or response.text[:200]
            logger.warning(
                f"Submission declined for {payload.instruction_ref}: {response.status_code} {detail}"
            )
            return SubmissionReceipt(accepted=False, message=str(detail))

        accepted = data.get("accepted", True)
        reference = str(data.get("reference") or data.get("id") or "")
        return SubmissionReceipt(accepted=bool(accepted), reference=reference, message=data.get("message"))


SUBMISSION_COUNTER_PREFIX = "matter_submission_seq_"


async def generate_submission_ref(db) -> str:
    """
    Generate unique submission reference: MAT-YYYYMMDD-####

    Uses an atomic per-day counter in counters: { _id: "matter_submission_seq_YYYYMMDD", seq: N }.
    The sequence is at least four digits and keeps growing past 9999.
    """
    today = datetime.now(timezone.utc).strftime("%Y%m%d")

    result = await db[config.COUNTERS_COLLECTION].find_one_and_update(
        {"_id": f"{SUBMISSION_COUNTER_PREFIX}{today}"},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    seq = (result or {}).get("seq", 1)

    return f"MAT-{today}-{seq:04d}"


class MongoSubmissionSink(SubmissionSink):
    """Stores submissions in matter_submissions via the async motor client."""

    MAX_REF_ATTEMPTS = 3

    def __init__(self, db=None):
        self._db = db

    def _get_db(self):
        if self._db is None:
            from database import database
            self._db = database.get_db()
        return self._db

    async def submit(self, payload: SubmissionPayload) -> SubmissionReceipt:
        db = self._get_db()
        document = {
            "instruction_ref": payload.instruction_ref,
            "payload": payload.model_dump(mode="json"),
            "created_at": datetime.now(timezone.utc),
        }
        try:
            for _ in range(self.MAX_REF_ATTEMPTS):
                reference = await generate_submission_ref(db)
                try:
                    await db[config.SUBMISSIONS_COLLECTION].insert_one({**document, "reference": reference})
                except DuplicateKeyError:
                    # Another submission took this reference; pick the next one
                    continue
                logger.info(f"Matter submission stored: {reference} ({payload.instruction_ref})")
                return SubmissionReceipt(accepted=True, reference=reference)
        except PyMongoError as e:
            raise SubmissionSinkError(f"Failed to store submission: {e}") from e
        raise SubmissionSinkError("Could not allocate a unique submission reference")


def get_default_sink() -> SubmissionSink:
    """HTTP sink when SUBMISSION_SINK_URL is configured, MongoDB otherwise."""
    if config.SUBMISSION_SINK_URL:
        return HttpSubmissionSink(config.SUBMISSION_SINK_URL, token=config.SUBMISSION_SINK_TOKEN or None)
    return MongoSubmissionSink()
