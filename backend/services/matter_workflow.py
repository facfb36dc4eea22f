"""
Matter Opening Workflow - step controller for opening a new client matter.

Steps (ordered):
    CLIENTS -> MATTER_DETAILS -> REVIEW

Rules:
- advance() only leaves a step whose completion predicate holds
- retreat() is always allowed (no-op at CLIENTS)
- jump_to(step) requires every earlier step to be complete
- every transition call recomputes the risk profile and stores it in the draft
- opponent / solicitor capture requires the no-conflict confirmation
- submit() is one-shot per draft: once accepted, the stored receipt is returned
  and the sink is never called again

Gating failures are returned as results carrying a ValidationError, not raised.
NotReady and SubmissionRejected are the only exceptions callers handle.
"""
import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel

import config
from models import (
    AnswerSet,
    Attestation,
    ClientCategory,
    ClientRecord,
    ComplianceSummary,
    Draft,
    MatterDetails,
    RealParty,
    RiskCategory,
    RiskProfile,
    RiskTier,
    SourceChannel,
    SourceDetails,
    SubmissionMetadata,
    SubmissionPayload,
    SubmissionResult,
    TeamAssignments,
    WorkflowStep,
    _PartyFields,
    needs_follow_up,
)
from services.client_directory import ClientDirectory, ClientDirectoryUnavailable
from services.draft_store import DraftStore
from services.error_reporter import ErrorReporter
from services.matter_catalogue import (
    PLACEHOLDER_OPPONENT,
    PLACEHOLDER_SOLICITOR,
    is_single_selection,
)
from services.risk_engine import (
    ATTESTATION_FIELDS,
    build_answers,
    classify,
    compliance_expiry,
    make_answer,
    risk_assessment_record,
)
from services.step_validator import (
    WORKFLOW_ORDER,
    ValidationError,
    first_incomplete_before,
    is_complete,
    missing_fields,
    step_index,
    validate_step,
)
from services.submission_sink import SubmissionSink, SubmissionSinkError

logger = logging.getLogger(__name__)


# Fields the matter details step may write directly
MATTER_DETAIL_FIELDS = {
    "selected_date",
    "team_member",
    "supervising_partner",
    "originating_solicitor",
    "area_of_work",
    "practice_area",
    "description",
    "folder_structure",
    "dispute_value",
    "source",
    "referrer_name",
    "risk_assessor",
    "compliance_date",
}


class NotReady(Exception):
    """The draft cannot be exported yet."""

    def __init__(self, message: str, error: Optional[ValidationError] = None):
        super().__init__(message)
        self.error = error


class SubmissionRejected(Exception):
    """The sink declined or could not be reached; the draft is unchanged."""
    pass


class TransitionResult(BaseModel):
    ok: bool
    step: WorkflowStep
    error: Optional[ValidationError] = None
    risk_profile: Optional[RiskProfile] = None


class ActionResult(BaseModel):
    ok: bool
    error: Optional[ValidationError] = None


class StepStatus(BaseModel):
    step: WorkflowStep
    complete: bool
    missing_fields: List[str]


class WorkflowState(BaseModel):
    instruction_ref: str
    version: int
    current_step: WorkflowStep
    submitted: bool
    submission_reference: str = ""
    degraded: bool = False
    opponent_needs_follow_up: bool = False
    solicitor_needs_follow_up: bool = False
    steps: List[StepStatus]
    risk_profile: RiskProfile
    values: Dict[str, Any]


def default_guidance_urls() -> Dict[Attestation, str]:
    urls = {}
    for attestation in Attestation:
        url = config.get_guidance_url(attestation.value)
        if url:
            urls[attestation] = url
    return urls


def _conflict_required() -> ValidationError:
    return ValidationError(
        step=WorkflowStep.MATTER_DETAILS,
        missing_fields=["no_conflict"],
        message="Confirm there is no conflict before recording opponent details",
    )


class MatterOpeningWorkflow:
    """
    Drives one draft (namespace = instruction reference) through the steps.

    Not thread-safe; callers serialize access per instruction. submit() awaits the
    sink and runs its draft I/O in the default executor.
    """

    def __init__(
        self,
        store: DraftStore,
        directory: ClientDirectory,
        sink: SubmissionSink,
        reporter: ErrorReporter,
        guidance_urls: Optional[Dict[Attestation, str]] = None,
        user: Optional[str] = None,
    ):
        self.store = store
        self.directory = directory
        self.sink = sink
        self.reporter = reporter
        self.guidance_urls = default_guidance_urls() if guidance_urls is None else guidance_urls
        self.user = user
        self._submitting = False

    @property
    def instruction_ref(self) -> str:
        return self.store.namespace

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_current_step(self) -> WorkflowStep:
        return self.store.get("current_step")

    def get_risk_profile(self) -> RiskProfile:
        return classify(self.store.get("answers"), self.guidance_urls)

    def get_state(self) -> WorkflowState:
        draft = self.store.snapshot()
        return WorkflowState(
            instruction_ref=self.instruction_ref,
            version=draft.version,
            current_step=draft.get("current_step"),
            submitted=bool(draft.get("submitted")),
            submission_reference=draft.get("submission_reference") or "",
            degraded=self.store.degraded,
            opponent_needs_follow_up=needs_follow_up(draft.get("opponent")),
            solicitor_needs_follow_up=needs_follow_up(draft.get("opponent_solicitor")),
            steps=[
                StepStatus(
                    step=step,
                    complete=is_complete(step, draft),
                    missing_fields=missing_fields(step, draft),
                )
                for step in WORKFLOW_ORDER
            ],
            risk_profile=self.get_risk_profile(),
            values=draft.values,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _refresh_risk(self) -> RiskProfile:
        profile = self.get_risk_profile()
        # Only write when the profile changed
        if profile != self.store.get("risk_profile"):
            self.store.set("risk_profile", profile)
        return profile

    def _move_to(self, step: WorkflowStep, profile: RiskProfile) -> TransitionResult:
        previous = self.get_current_step()
        if step != previous:
            self.store.set("current_step", step)
            logger.info(f"Matter {self.instruction_ref}: {previous.value} -> {step.value}")
        return TransitionResult(ok=True, step=step, risk_profile=profile)

    def advance(self) -> TransitionResult:
        profile = self._refresh_risk()
        current = self.get_current_step()

        if current == WorkflowStep.REVIEW:
            return TransitionResult(
                ok=False,
                step=current,
                error=ValidationError(step=current, message="Review is the final step"),
                risk_profile=profile,
            )

        error = validate_step(current, self.store.snapshot())
        if error:
            logger.info(f"Matter {self.instruction_ref}: advance blocked at {current.value} ({error.missing_fields})")
            return TransitionResult(ok=False, step=current, error=error, risk_profile=profile)

        return self._move_to(WORKFLOW_ORDER[step_index(current) + 1], profile)

    def retreat(self) -> TransitionResult:
        profile = self._refresh_risk()
        current = self.get_current_step()
        index = step_index(current)
        if index == 0:
            return TransitionResult(ok=True, step=current, risk_profile=profile)
        return self._move_to(WORKFLOW_ORDER[index - 1], profile)

    def jump_to(self, step: Union[WorkflowStep, str]) -> TransitionResult:
        step = WorkflowStep(step)
        profile = self._refresh_risk()
        error = first_incomplete_before(step, self.store.snapshot())
        if error:
            return TransitionResult(ok=False, step=self.get_current_step(), error=error, risk_profile=profile)
        return self._move_to(step, profile)

    # ------------------------------------------------------------------
    # Clients step
    # ------------------------------------------------------------------

    def _selected(self) -> List[str]:
        return list(self.store.get("selected_client_ids"))

    def _write_selection(self, ids: List[str], records: Dict[str, ClientRecord]) -> None:
        self.store.set("selected_client_ids", ids)
        self.store.set("selected_clients", {cid: records[cid] for cid in ids if cid in records})

    def select_client(self, client_id: str) -> ActionResult:
        """Attach a directory client. Replaces the selection unless the category allows several."""
        try:
            record = self.directory.lookup(client_id)
        except ClientDirectoryUnavailable as e:
            self.reporter.report("error", f"Client directory unavailable selecting {client_id}: {e}")
            return ActionResult(ok=False, error=ValidationError(
                step=WorkflowStep.CLIENTS,
                missing_fields=["selected_client_ids"],
                message="Client directory is unavailable",
            ))
        if record is None:
            return ActionResult(ok=False, error=ValidationError(
                step=WorkflowStep.CLIENTS,
                missing_fields=["selected_client_ids"],
                message=f"Client {client_id} not found",
            ))

        records = dict(self.store.get("selected_clients"))
        records[client_id] = record
        ids = self._selected()
        if is_single_selection(self.store.get("client_type")):
            ids = [client_id]
        elif client_id not in ids:
            ids.append(client_id)

        self._write_selection(ids, records)
        return ActionResult(ok=True)

    def deselect_client(self, client_id: str) -> ActionResult:
        ids = [cid for cid in self._selected() if cid != client_id]
        self._write_selection(ids, dict(self.store.get("selected_clients")))
        return ActionResult(ok=True)

    def set_client_type(self, category: Union[ClientCategory, str]) -> ActionResult:
        category = ClientCategory(category)
        self.store.set("client_type", category)

        ids = self._selected()
        if is_single_selection(category) and len(ids) > 1:
            # Keep the earliest selected client
            logger.info(f"Matter {self.instruction_ref}: {category.value} keeps {ids[0]}, dropping {ids[1:]}")
            self._write_selection(ids[:1], dict(self.store.get("selected_clients")))
        return ActionResult(ok=True)

    # ------------------------------------------------------------------
    # Matter details step
    # ------------------------------------------------------------------

    def update_matter_details(self, **fields: Any) -> ActionResult:
        unknown = sorted(set(fields) - MATTER_DETAIL_FIELDS)
        if unknown:
            raise ValueError(f"Unknown matter detail fields: {', '.join(unknown)}")
        for key, value in fields.items():
            self.store.set(key, value)
        return ActionResult(ok=True)

    def confirm_no_conflict(self, value: bool) -> ActionResult:
        self.store.set("no_conflict", bool(value))
        if not value:
            # Opponent details only exist under a clean conflict check
            self.store.set("opponent", None)
            self.store.set("opponent_solicitor", None)
        return ActionResult(ok=True)

    @staticmethod
    def _as_real(details: Union[_PartyFields, Dict[str, Any]]) -> RealParty:
        if isinstance(details, _PartyFields):
            details = details.model_dump(exclude={"kind"})
        else:
            details = {k: v for k, v in details.items() if k != "kind"}
        return RealParty.model_validate(details)

    def _set_party(self, key: str, details: Union[_PartyFields, Dict[str, Any]]) -> ActionResult:
        if self.store.get("no_conflict") is not True:
            return ActionResult(ok=False, error=_conflict_required())
        self.store.set(key, self._as_real(details))
        return ActionResult(ok=True)

    def set_opponent(self, details: Union[_PartyFields, Dict[str, Any]]) -> ActionResult:
        return self._set_party("opponent", details)

    def set_opponent_solicitor(self, details: Union[_PartyFields, Dict[str, Any]]) -> ActionResult:
        return self._set_party("opponent_solicitor", details)

    def defer_party_details(self) -> ActionResult:
        """Stamp placeholder opponent and solicitor details to be completed later."""
        if self.store.get("no_conflict") is not True:
            return ActionResult(ok=False, error=_conflict_required())
        self.store.set("opponent", PLACEHOLDER_OPPONENT)
        self.store.set("opponent_solicitor", PLACEHOLDER_SOLICITOR)
        logger.info(f"Matter {self.instruction_ref}: opponent details deferred")
        return ActionResult(ok=True)

    # ------------------------------------------------------------------
    # Risk assessment
    # ------------------------------------------------------------------

    def _update_answers(self, answers: AnswerSet) -> RiskProfile:
        self.store.set("answers", answers)
        return self._refresh_risk()

    def set_risk_answer(self, category: Union[RiskCategory, str], weight: int) -> RiskProfile:
        category = RiskCategory(category)
        answers = self.store.get("answers")
        return self._update_answers(answers.with_answer(category, make_answer(category, weight)))

    def set_risk_answers(self, choices: Dict[Union[RiskCategory, str], int]) -> RiskProfile:
        """Apply several answers in one write; an invalid weight leaves the draft untouched."""
        answers = build_answers(choices, base=self.store.get("answers"))
        return self._update_answers(answers)

    def set_attestation(self, attestation: Union[Attestation, str], value: Optional[bool]) -> RiskProfile:
        attestation = Attestation(attestation)
        updates: Dict[str, Any] = {ATTESTATION_FIELDS[attestation]: value}
        if attestation == Attestation.TRANSACTION_RISK and value is not True:
            updates["transaction_risk_level"] = None
        return self._update_answers(self.store.get("answers").with_updates(**updates))

    def set_transaction_risk_level(self, tier: Optional[Union[RiskTier, str]]) -> RiskProfile:
        tier = RiskTier(tier) if tier is not None else None
        return self._update_answers(self.store.get("answers").with_updates(transaction_risk_level=tier))

    def set_limitation_date(self, value: Optional[date], tbc: bool = False) -> RiskProfile:
        updates = {"limitation_date": None if tbc else value, "limitation_date_tbc": bool(tbc)}
        return self._update_answers(self.store.get("answers").with_updates(**updates))

    # ------------------------------------------------------------------
    # Export & submission
    # ------------------------------------------------------------------

    def _selected_records(self, draft: Draft) -> List[ClientRecord]:
        records = draft.get("selected_clients") or {}
        return [
            records.get(client_id) or ClientRecord(client_id=client_id)
            for client_id in draft.get("selected_client_ids") or []
        ]

    def export_snapshot(self, user: Optional[str] = None) -> SubmissionPayload:
        """Denormalized payload for the sink. Raises NotReady unless Review is current and ready."""
        user = user or self.user
        draft = self.store.snapshot()
        current = draft.get("current_step")
        if current != WorkflowStep.REVIEW:
            raise NotReady(f"Matter {self.instruction_ref} is at {current.value}, not REVIEW")
        error = validate_step(WorkflowStep.REVIEW, draft)
        if error:
            raise NotReady(error.message, error)

        answers: AnswerSet = draft.get("answers")
        profile = classify(answers, self.guidance_urls)
        compliance_date: date = draft.get("compliance_date")

        return SubmissionPayload(
            instruction_ref=self.instruction_ref,
            answers=answers,
            draft=draft,
            risk_profile=profile,
            clients=self._selected_records(draft),
            matter=MatterDetails(
                instruction_ref=self.instruction_ref,
                date_created=draft.get("selected_date"),
                client_category=draft.get("client_type"),
                area_of_work=draft.get("area_of_work"),
                practice_area=draft.get("practice_area"),
                description=draft.get("description"),
                dispute_value=draft.get("dispute_value") or None,
                folder_structure=draft.get("folder_structure") or None,
            ),
            team=TeamAssignments(
                fee_earner=draft.get("team_member") or None,
                supervising_partner=draft.get("supervising_partner"),
                originating_solicitor=draft.get("originating_solicitor"),
                requesting_user=user,
            ),
            source=SourceDetails(
                source=draft.get("source"),
                referrer_name=(draft.get("referrer_name") or None)
                if draft.get("source") == SourceChannel.REFERRAL else None,
            ),
            opponent=draft.get("opponent"),
            opponent_solicitor=draft.get("opponent_solicitor"),
            compliance=ComplianceSummary(
                conflict_check_completed=bool(draft.get("no_conflict")),
                compliance_date=compliance_date,
                compliance_expiry=compliance_expiry(compliance_date, config.COMPLIANCE_VALIDITY_MONTHS),
                risk_assessment=risk_assessment_record(
                    self.instruction_ref,
                    answers,
                    profile,
                    draft.get("risk_assessor") or user,
                    compliance_date,
                    config.COMPLIANCE_VALIDITY_MONTHS,
                ),
            ),
            metadata=SubmissionMetadata(
                created_by=user,
                created_at=datetime.now(timezone.utc),
                form_version=config.MATTER_FORM_VERSION,
            ),
        )

    def _previous_receipt(self) -> Optional[SubmissionResult]:
        if not self.store.get("submitted"):
            return None
        return SubmissionResult(
            accepted=True,
            reference=self.store.get("submission_reference") or "",
            duplicate=True,
        )

    def _record_receipt(self, reference: str) -> None:
        self.store.set("submitted", True)
        self.store.set("submission_reference", reference)

    async def submit(self, user: Optional[str] = None) -> SubmissionResult:
        """
        Hand the payload to the sink exactly once.

        Draft reads and writes run in the default executor so a slow draft
        backend does not hold the event loop.

        Raises:
            NotReady: Review is not current or not complete
            SubmissionRejected: sink declined/unreachable, or a submission is in flight
        """
        if self._submitting:
            raise SubmissionRejected(f"Submission already in progress for {self.instruction_ref}")

        self._submitting = True
        loop = asyncio.get_event_loop()
        try:
            previous = await loop.run_in_executor(None, self._previous_receipt)
            if previous is not None:
                return previous

            payload = await loop.run_in_executor(None, self.export_snapshot, user)
            try:
                receipt = await self.sink.submit(payload)
            except SubmissionSinkError as e:
                self.reporter.report("error", f"Matter {self.instruction_ref} submission failed: {e}")
                raise SubmissionRejected(str(e)) from e

            if not receipt.accepted:
                message = receipt.message or "Submission declined"
                self.reporter.report("warning", f"Matter {self.instruction_ref} submission declined: {message}")
                raise SubmissionRejected(message)

            await loop.run_in_executor(None, self._record_receipt, receipt.reference)
        finally:
            self._submitting = False

        logger.info(f"Matter {self.instruction_ref} submitted: {receipt.reference}")
        return SubmissionResult(accepted=True, reference=receipt.reference)

    def reset(self) -> None:
        """Discard the whole draft for this instruction."""
        self.store.clear_all()
        logger.info(f"Matter {self.instruction_ref}: draft cleared")
