from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Dict, Any, List, Literal, Union, Annotated
from datetime import datetime, date, timezone
import uuid
from enum import Enum

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class WorkflowStep(str, Enum):
    CLIENTS = "CLIENTS"
    MATTER_DETAILS = "MATTER_DETAILS"
    REVIEW = "REVIEW"

class ClientCategory(str, Enum):
    INDIVIDUAL = "Individual"
    COMPANY = "Company"
    MULTIPLE_INDIVIDUALS = "Multiple Individuals"
    EXISTING_CLIENT = "Existing Client"

class AreaOfWork(str, Enum):
    COMMERCIAL = "Commercial"
    PROPERTY = "Property"
    CONSTRUCTION = "Construction"
    EMPLOYMENT = "Employment"

class SourceChannel(str, Enum):
    SEARCH = "search"
    REFERRAL = "referral"
    YOUR_FOLLOWING = "your following"
    UNCERTAIN = "uncertain"

class RiskCategory(str, Enum):
    CLIENT_TYPE = "client_type"
    DESTINATION_OF_FUNDS = "destination_of_funds"
    FUNDS_TYPE = "funds_type"
    CLIENT_INTRODUCED = "client_introduced"
    LIMITATION = "limitation"
    SOURCE_OF_FUNDS = "source_of_funds"
    VALUE_OF_INSTRUCTION = "value_of_instruction"

class RiskTier(str, Enum):
    LOW = "Low Risk"
    MEDIUM = "Medium Risk"
    HIGH = "High Risk"

class Attestation(str, Enum):
    CLIENT_RISK = "client_risk"
    TRANSACTION_RISK = "transaction_risk"
    SANCTIONS = "sanctions"
    AML_POLICY = "aml_policy"

class AuditAction(str, Enum):
    MATTER_SUBMITTED = "MATTER_SUBMITTED"
    MATTER_SUBMISSION_REJECTED = "MATTER_SUBMISSION_REJECTED"
    DRAFT_CLEARED = "DRAFT_CLEARED"


# ============================================================================
# RISK ASSESSMENT
# ============================================================================

class RiskAnswer(BaseModel):
    """A chosen option on one weighted risk question."""
    model_config = ConfigDict(frozen=True)

    option: str
    weight: int = Field(ge=1, le=3)


class AnswerSet(BaseModel):
    """Responses to the weighted risk questionnaire plus the compliance confirmations.

    Frozen: callers replace the whole set (see with_answer / with_updates).
    """
    model_config = ConfigDict(frozen=True)

    answers: Dict[RiskCategory, RiskAnswer] = Field(default_factory=dict)

    # None = not answered yet
    client_risk_considered: Optional[bool] = None
    transaction_risk_considered: Optional[bool] = None
    transaction_risk_level: Optional[RiskTier] = None
    sanctions_considered: Optional[bool] = None
    aml_policy_considered: Optional[bool] = None

    limitation_date: Optional[date] = None
    limitation_date_tbc: bool = False

    def weight(self, category: RiskCategory) -> int:
        answer = self.answers.get(category)
        return answer.weight if answer else 0

    def with_answer(self, category: RiskCategory, answer: RiskAnswer) -> "AnswerSet":
        answers = dict(self.answers)
        answers[category] = answer
        return self.model_copy(update={"answers": answers})

    def with_updates(self, **fields) -> "AnswerSet":
        return self.model_copy(update=fields)


class RiskAttestations(BaseModel):
    model_config = ConfigDict(frozen=True)

    client_risk_considered: Optional[bool] = None
    transaction_risk_considered: Optional[bool] = None
    transaction_risk_level: Optional[RiskTier] = None
    sanctions_considered: Optional[bool] = None
    aml_policy_considered: Optional[bool] = None


class ReferenceMaterial(BaseModel):
    """Advisory: guidance is available for a confirmation that was declined."""
    model_config = ConfigDict(frozen=True)

    attestation: Attestation
    title: str
    url: Optional[str] = None


class RiskProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int
    tier: RiskTier
    limitation_override: bool = False
    complete: bool = False
    missing_categories: List[RiskCategory] = Field(default_factory=list)
    missing_confirmations: List[str] = Field(default_factory=list)
    attestations: RiskAttestations = Field(default_factory=RiskAttestations)
    reference_material: List[ReferenceMaterial] = Field(default_factory=list)


# ============================================================================
# CLIENTS & PARTIES
# ============================================================================

class Address(BaseModel):
    model_config = ConfigDict(extra="ignore")

    house_number: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    county: Optional[str] = None
    postcode: Optional[str] = None
    country: Optional[str] = None


class ClientRecord(BaseModel):
    """A person or company held in the client directory (read-only here)."""
    model_config = ConfigDict(extra="ignore")

    client_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    client_type: str = "individual"
    nationality: Optional[str] = None
    date_of_birth: Optional[date] = None
    address: Address = Field(default_factory=Address)
    company_name: Optional[str] = None
    company_number: Optional[str] = None
    company_address: Optional[Address] = None
    # ID check summary: stage, check_result, pep_sanctions_result, check_expiry...
    verification: Dict[str, Any] = Field(default_factory=dict)


class _PartyFields(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    title: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Address = Field(default_factory=Address)
    is_company: bool = False
    company_name: Optional[str] = None
    company_number: Optional[str] = None


class RealParty(_PartyFields):
    """Opponent or opponent's solicitor details entered by the fee earner."""
    kind: Literal["real"] = "real"


class PlaceholderParty(_PartyFields):
    """Stand-in details stamped when entry is deferred; needs follow-up."""
    kind: Literal["placeholder"] = "placeholder"


PartyDetails = Annotated[Union[RealParty, PlaceholderParty], Field(discriminator="kind")]


def needs_follow_up(party: Optional[_PartyFields]) -> bool:
    return isinstance(party, PlaceholderParty)


# ============================================================================
# DRAFT & SUBMISSION
# ============================================================================

class Draft(BaseModel):
    """Snapshot of a namespaced draft: typed values keyed by field id."""
    namespace: str
    version: int = 0
    values: Dict[str, Any] = Field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)


class MatterDetails(BaseModel):
    instruction_ref: str
    date_created: date
    client_category: ClientCategory
    area_of_work: str
    practice_area: str
    description: str
    dispute_value: Optional[str] = None
    folder_structure: Optional[str] = None


class TeamAssignments(BaseModel):
    fee_earner: Optional[str] = None
    supervising_partner: str
    originating_solicitor: str
    requesting_user: Optional[str] = None


class SourceDetails(BaseModel):
    source: SourceChannel = SourceChannel.SEARCH
    referrer_name: Optional[str] = None


class ComplianceSummary(BaseModel):
    conflict_check_completed: bool
    compliance_date: date
    compliance_expiry: date
    id_verification_required: bool = True
    pep_sanctions_check_required: bool = True
    risk_assessment: Dict[str, Any] = Field(default_factory=dict)


class SubmissionMetadata(BaseModel):
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    form_version: str = "1.0"
    processing_status: str = "pending_review"


class SubmissionPayload(BaseModel):
    """Denormalized matter opening record handed to the submission sink."""
    instruction_ref: str
    answers: AnswerSet
    draft: Draft
    risk_profile: RiskProfile
    clients: List[ClientRecord]
    matter: MatterDetails
    team: TeamAssignments
    source: SourceDetails
    opponent: Optional[PartyDetails] = None
    opponent_solicitor: Optional[PartyDetails] = None
    compliance: ComplianceSummary
    metadata: SubmissionMetadata = Field(default_factory=SubmissionMetadata)


class SubmissionReceipt(BaseModel):
    accepted: bool
    reference: str = ""
    message: Optional[str] = None


class SubmissionResult(BaseModel):
    accepted: bool
    reference: str
    # True when the draft had already been submitted and the sink was not called
    duplicate: bool = False


class AuditLog(BaseModel):
    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    actor_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
