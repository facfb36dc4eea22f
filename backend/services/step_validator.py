"""
Step Validator - completion predicates for the matter opening steps.

Pure functions over a Draft snapshot; no I/O, no side effects.

Step table:
    CLIENTS         at least one selected client AND a client category
    MATTER_DETAILS  date, supervising partner, originating solicitor,
                    area of work, practice area, description, and the
                    no-conflict confirmation (it gates the review step)
    REVIEW          terminal; ready when both earlier steps are complete
"""
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from models import Draft, SourceChannel, WorkflowStep
from services.matter_catalogue import is_valid_practice_area


WORKFLOW_ORDER: List[WorkflowStep] = [
    WorkflowStep.CLIENTS,
    WorkflowStep.MATTER_DETAILS,
    WorkflowStep.REVIEW,
]

MATTER_REQUIRED_FIELDS = [
    "selected_date",
    "supervising_partner",
    "originating_solicitor",
    "area_of_work",
    "practice_area",
    "description",
]


class ValidationError(BaseModel):
    """A step's completion predicate failed. Returned as a result, never raised."""
    step: WorkflowStep
    missing_fields: List[str] = Field(default_factory=list)
    message: str = ""


def step_index(step: WorkflowStep) -> int:
    return WORKFLOW_ORDER.index(step)


def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return not value
    return False


def _missing_clients(draft: Draft) -> List[str]:
    missing = []
    if not draft.get("selected_client_ids"):
        missing.append("selected_client_ids")
    if draft.get("client_type") is None:
        missing.append("client_type")
    return missing


def _missing_matter_details(draft: Draft) -> List[str]:
    missing = [key for key in MATTER_REQUIRED_FIELDS if _is_blank(draft.get(key))]

    area = draft.get("area_of_work")
    practice = draft.get("practice_area")
    if "area_of_work" not in missing and "practice_area" not in missing:
        if not is_valid_practice_area(area, practice):
            missing.append("practice_area")

    if draft.get("source") == SourceChannel.REFERRAL and _is_blank(draft.get("referrer_name")):
        missing.append("referrer_name")

    if draft.get("no_conflict") is not True:
        missing.append("no_conflict")
    return missing


def _missing_review(draft: Draft) -> List[str]:
    return _missing_clients(draft) + _missing_matter_details(draft)


_PREDICATES: Dict[WorkflowStep, Callable[[Draft], List[str]]] = {
    WorkflowStep.CLIENTS: _missing_clients,
    WorkflowStep.MATTER_DETAILS: _missing_matter_details,
    WorkflowStep.REVIEW: _missing_review,
}


def missing_fields(step: WorkflowStep, draft: Draft) -> List[str]:
    """Field ids still needed for the step to count as complete."""
    return _PREDICATES[step](draft)


def is_complete(step: WorkflowStep, draft: Draft) -> bool:
    return not missing_fields(step, draft)


def validate_step(step: WorkflowStep, draft: Draft) -> Optional[ValidationError]:
    """ValidationError for an incomplete step, None when complete."""
    missing = missing_fields(step, draft)
    if not missing:
        return None
    return ValidationError(
        step=step,
        missing_fields=missing,
        message=f"{step.value} step is incomplete: {', '.join(missing)}",
    )


def first_incomplete_before(step: WorkflowStep, draft: Draft) -> Optional[ValidationError]:
    """First incomplete step strictly before `step`, as a ValidationError."""
    for earlier in WORKFLOW_ORDER[:step_index(step)]:
        error = validate_step(earlier, draft)
        if error:
            return error
    return None
