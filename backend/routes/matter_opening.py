"""
Matter Opening Routes - intake API for opening a new client matter.

All endpoints are scoped by instruction reference, which is also the draft
namespace:
1. Pick clients (search the directory, select, choose client category)
2. Matter details, conflict check, opponent details (or defer them)
3. Risk assessment answers and compliance confirmations
4. Advance / retreat / jump between steps
5. Review the snapshot and submit once

The handlers are thin; every rule lives in services.matter_workflow.
Handlers that touch the draft are plain functions, so FastAPI runs their
synchronous MongoDB I/O in its threadpool; requests for one instruction are
serialized by a per-instruction lock.
"""
import asyncio
import threading
from collections import OrderedDict
from datetime import date
from typing import Dict, Iterator, Optional, Tuple

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel, ConfigDict
import logging

from models import (
    AuditAction,
    ClientCategory,
    RealParty,
    RiskCategory,
    RiskTier,
    SourceChannel,
    WorkflowStep,
)
from services.client_directory import (
    ClientDirectory,
    ClientDirectoryUnavailable,
    MongoClientDirectory,
)
from services.draft_store import DraftBackend, DraftStore, MongoDraftBackend
from services.error_reporter import ErrorReporter, LoggingErrorReporter
from services.matter_catalogue import (
    DISPUTE_VALUE_OPTIONS,
    PRACTICE_AREAS_BY_AREA,
    SOURCE_OPTIONS,
)
from services.matter_workflow import (
    ActionResult,
    MatterOpeningWorkflow,
    NotReady,
    SubmissionRejected,
    TransitionResult,
)
from services.risk_engine import question_catalogue
from services.submission_sink import SubmissionSink, get_default_sink
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/matter-opening", tags=["matter-opening"])


# ============================================================================
# REQUEST MODELS
# ============================================================================

class RiskAnswersRequest(BaseModel):
    """Partial update; only the fields sent are applied."""
    model_config = ConfigDict(extra="forbid")

    answers: Dict[RiskCategory, int] = {}
    client_risk_considered: Optional[bool] = None
    transaction_risk_considered: Optional[bool] = None
    transaction_risk_level: Optional[RiskTier] = None
    sanctions_considered: Optional[bool] = None
    aml_policy_considered: Optional[bool] = None
    limitation_date: Optional[date] = None
    limitation_date_tbc: Optional[bool] = None


class ClientTypeRequest(BaseModel):
    client_type: ClientCategory


class MatterDetailsRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    selected_date: Optional[date] = None
    team_member: Optional[str] = None
    supervising_partner: Optional[str] = None
    originating_solicitor: Optional[str] = None
    area_of_work: Optional[str] = None
    practice_area: Optional[str] = None
    description: Optional[str] = None
    folder_structure: Optional[str] = None
    dispute_value: Optional[str] = None
    source: Optional[SourceChannel] = None
    referrer_name: Optional[str] = None
    risk_assessor: Optional[str] = None
    compliance_date: Optional[date] = None


class ConflictRequest(BaseModel):
    no_conflict: bool


class JumpRequest(BaseModel):
    step: WorkflowStep


# ============================================================================
# DEPENDENCIES
# ============================================================================

# Live workflows by instruction reference, most recently used last. Each entry
# keeps the in-flight submit guard and the draft cache for this process; the
# lock serializes requests for one instruction.
MAX_CACHED_WORKFLOWS = 256
_workflows: "OrderedDict[str, Tuple[MatterOpeningWorkflow, threading.Lock]]" = OrderedDict()
_workflows_lock = threading.Lock()


def get_draft_backend() -> DraftBackend:
    return MongoDraftBackend()


def get_client_directory() -> ClientDirectory:
    return MongoClientDirectory()


def get_submission_sink() -> SubmissionSink:
    return get_default_sink()


def get_error_reporter() -> ErrorReporter:
    return LoggingErrorReporter()


def get_requesting_user(x_user_initials: Optional[str] = Header(default=None)) -> Optional[str]:
    return x_user_initials or None


def _evict_idle() -> None:
    """Drop least recently used workflows that are idle and persisted. Caller holds _workflows_lock."""
    for ref in list(_workflows):
        if len(_workflows) <= MAX_CACHED_WORKFLOWS:
            return
        workflow, lock = _workflows[ref]
        if not lock.locked() and not workflow.store.degraded:
            del _workflows[ref]


def forget_workflow(instruction_ref: str) -> None:
    with _workflows_lock:
        _workflows.pop(instruction_ref, None)


def get_workflow(
    instruction_ref: str,
    backend: DraftBackend = Depends(get_draft_backend),
    directory: ClientDirectory = Depends(get_client_directory),
    sink: SubmissionSink = Depends(get_submission_sink),
    reporter: ErrorReporter = Depends(get_error_reporter),
) -> Iterator[MatterOpeningWorkflow]:
    with _workflows_lock:
        entry = _workflows.get(instruction_ref)
        if entry is None:
            workflow = MatterOpeningWorkflow(
                store=DraftStore(instruction_ref, backend, reporter),
                directory=directory,
                sink=sink,
                reporter=reporter,
            )
            entry = (workflow, threading.Lock())
            _workflows[instruction_ref] = entry
            _evict_idle()
        else:
            _workflows.move_to_end(instruction_ref)

    workflow, lock = entry
    # Sync dependency: FastAPI acquires (and releases) the lock in its threadpool
    with lock:
        yield workflow


def _raise_for(result) -> None:
    """Map a gated result that failed to 422 with the missing fields."""
    if not result.ok:
        raise HTTPException(status_code=422, detail=result.error.model_dump(mode="json"))


# ============================================================================
# CATALOGUE & DIRECTORY
# ============================================================================

@router.get("/catalogue")
async def get_catalogue():
    """Option lists for the intake form."""
    return {
        "client_types": [c.value for c in ClientCategory],
        "areas_of_work": {area.value: areas for area, areas in PRACTICE_AREAS_BY_AREA.items()},
        "dispute_values": DISPUTE_VALUE_OPTIONS,
        "sources": SOURCE_OPTIONS,
        "risk_questions": question_catalogue(),
        "risk_tiers": [t.value for t in RiskTier],
    }


@router.get("/clients")
def search_clients(
    q: str = Query(default="", max_length=200),
    limit: int = Query(default=50, ge=1, le=200),
    directory: ClientDirectory = Depends(get_client_directory),
):
    try:
        records = directory.search(q, limit=limit)
    except ClientDirectoryUnavailable as e:
        logger.error(f"Client search failed: {e}")
        raise HTTPException(status_code=503, detail="Client directory unavailable")
    return {"clients": [r.model_dump(mode="json") for r in records], "total": len(records)}


# ============================================================================
# STATE & RISK
# ============================================================================

@router.get("/{instruction_ref}/state")
def get_state(workflow: MatterOpeningWorkflow = Depends(get_workflow)):
    return workflow.get_state().model_dump(mode="json")


@router.get("/{instruction_ref}/risk")
def get_risk(workflow: MatterOpeningWorkflow = Depends(get_workflow)):
    return workflow.get_risk_profile().model_dump(mode="json")


@router.put("/{instruction_ref}/risk/answers")
def update_risk_answers(
    request: RiskAnswersRequest,
    workflow: MatterOpeningWorkflow = Depends(get_workflow),
):
    sent = request.model_fields_set
    try:
        if request.answers:
            workflow.set_risk_answers(request.answers)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    for name in ("client_risk", "transaction_risk", "sanctions", "aml_policy"):
        field = f"{name}_considered"
        if field in sent:
            workflow.set_attestation(name, getattr(request, field))
    if "transaction_risk_level" in sent:
        workflow.set_transaction_risk_level(request.transaction_risk_level)
    if "limitation_date" in sent or "limitation_date_tbc" in sent:
        workflow.set_limitation_date(request.limitation_date, tbc=bool(request.limitation_date_tbc))

    return workflow.get_risk_profile().model_dump(mode="json")


# ============================================================================
# CLIENTS STEP
# ============================================================================

@router.put("/{instruction_ref}/clients/type")
def set_client_type(
    request: ClientTypeRequest,
    workflow: MatterOpeningWorkflow = Depends(get_workflow),
):
    workflow.set_client_type(request.client_type)
    return {"selected_client_ids": workflow.store.get("selected_client_ids")}


@router.post("/{instruction_ref}/clients/{client_id}")
def select_client(
    client_id: str,
    workflow: MatterOpeningWorkflow = Depends(get_workflow),
):
    _raise_for(workflow.select_client(client_id))
    return {"selected_client_ids": workflow.store.get("selected_client_ids")}


@router.delete("/{instruction_ref}/clients/{client_id}")
def deselect_client(
    client_id: str,
    workflow: MatterOpeningWorkflow = Depends(get_workflow),
):
    workflow.deselect_client(client_id)
    return {"selected_client_ids": workflow.store.get("selected_client_ids")}


# ============================================================================
# MATTER DETAILS STEP
# ============================================================================

@router.put("/{instruction_ref}/matter", response_model=ActionResult)
def update_matter_details(
    request: MatterDetailsRequest,
    workflow: MatterOpeningWorkflow = Depends(get_workflow),
):
    fields = request.model_dump(exclude_unset=True)
    try:
        return workflow.update_matter_details(**fields)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.put("/{instruction_ref}/conflict", response_model=ActionResult)
def set_conflict(
    request: ConflictRequest,
    workflow: MatterOpeningWorkflow = Depends(get_workflow),
):
    return workflow.confirm_no_conflict(request.no_conflict)


@router.put("/{instruction_ref}/opponent", response_model=ActionResult)
def set_opponent(
    request: RealParty,
    workflow: MatterOpeningWorkflow = Depends(get_workflow),
):
    result = workflow.set_opponent(request)
    _raise_for(result)
    return result


@router.put("/{instruction_ref}/solicitor", response_model=ActionResult)
def set_opponent_solicitor(
    request: RealParty,
    workflow: MatterOpeningWorkflow = Depends(get_workflow),
):
    result = workflow.set_opponent_solicitor(request)
    _raise_for(result)
    return result


@router.post("/{instruction_ref}/parties/defer", response_model=ActionResult)
def defer_party_details(workflow: MatterOpeningWorkflow = Depends(get_workflow)):
    result = workflow.defer_party_details()
    _raise_for(result)
    return result


# ============================================================================
# TRANSITIONS
# ============================================================================

@router.post("/{instruction_ref}/advance", response_model=TransitionResult)
def advance(workflow: MatterOpeningWorkflow = Depends(get_workflow)):
    result = workflow.advance()
    _raise_for(result)
    return result


@router.post("/{instruction_ref}/retreat", response_model=TransitionResult)
def retreat(workflow: MatterOpeningWorkflow = Depends(get_workflow)):
    return workflow.retreat()


@router.post("/{instruction_ref}/jump", response_model=TransitionResult)
def jump(
    request: JumpRequest,
    workflow: MatterOpeningWorkflow = Depends(get_workflow),
):
    result = workflow.jump_to(request.step)
    _raise_for(result)
    return result


# ============================================================================
# REVIEW & SUBMISSION
# ============================================================================

def _not_ready(e: NotReady) -> HTTPException:
    detail = e.error.model_dump(mode="json") if e.error else {"message": str(e)}
    return HTTPException(status_code=409, detail=detail)


@router.get("/{instruction_ref}/snapshot")
def get_snapshot(
    workflow: MatterOpeningWorkflow = Depends(get_workflow),
    user: Optional[str] = Depends(get_requesting_user),
):
    try:
        payload = workflow.export_snapshot(user=user)
    except NotReady as e:
        raise _not_ready(e)
    return payload.model_dump(mode="json")


@router.post("/{instruction_ref}/submit")
async def submit(
    instruction_ref: str,
    workflow: MatterOpeningWorkflow = Depends(get_workflow),
    user: Optional[str] = Depends(get_requesting_user),
):
    try:
        result = await workflow.submit(user=user)
    except NotReady as e:
        raise _not_ready(e)
    except SubmissionRejected as e:
        await create_audit_log(
            action=AuditAction.MATTER_SUBMISSION_REJECTED,
            actor_id=user,
            resource_id=instruction_ref,
            metadata={"reason": str(e)},
        )
        raise HTTPException(status_code=502, detail=f"Submission rejected: {e}")

    if not result.duplicate:
        await create_audit_log(
            action=AuditAction.MATTER_SUBMITTED,
            actor_id=user,
            resource_id=instruction_ref,
            metadata={"reference": result.reference},
        )
    # The stored receipt answers any later submit unless the draft is memory-only
    if not workflow.store.degraded:
        forget_workflow(instruction_ref)
    return result.model_dump(mode="json")


@router.delete("/{instruction_ref}/draft")
async def clear_draft(
    instruction_ref: str,
    workflow: MatterOpeningWorkflow = Depends(get_workflow),
    user: Optional[str] = Depends(get_requesting_user),
):
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(None, workflow.reset)
    forget_workflow(instruction_ref)
    await create_audit_log(
        action=AuditAction.DRAFT_CLEARED,
        actor_id=user,
        resource_id=instruction_ref,
    )
    return {"success": True, "message": f"Draft {instruction_ref} cleared"}
