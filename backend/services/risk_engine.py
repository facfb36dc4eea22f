"""Risk Score Engine - AML/client risk classification for new matters.

Scoring Model:
- Seven weighted questions, each answered 1 (low), 2 or 3 (high)
- Score = sum of the answered weights (7..21 when complete)
- High Risk:   limitation weight is 3 (under 6 months to expiry), OR score >= 16
- Medium Risk: score >= 11
- Low Risk:    otherwise

The limitation rule is a hard override: a matter close to limitation expiry is
High Risk whatever the other answers are.

The four compliance confirmations never change the tier. A "No" on any of them
surfaces the matching guidance document as reference material.

classify() is pure: same AnswerSet (and guidance map) -> same RiskProfile.
It never raises on partial input so it can drive live feedback mid-interview.
"""
import calendar
from datetime import date
from typing import Dict, Any, Optional, List, Union

from models import (
    AnswerSet,
    Attestation,
    ReferenceMaterial,
    RiskAnswer,
    RiskAttestations,
    RiskCategory,
    RiskProfile,
    RiskTier,
)
from services.matter_catalogue import (
    ATTESTATION_TITLES,
    LIMITATION_BANDS_WITH_DATE,
    RISK_QUESTIONS,
    get_option_text,
)


# ============================================================================
# THRESHOLDS
# ============================================================================
HIGH_RISK_THRESHOLD = 16
MEDIUM_RISK_THRESHOLD = 11
LIMITATION_OVERRIDE_WEIGHT = 3

# Attestation -> AnswerSet field
ATTESTATION_FIELDS: Dict[Attestation, str] = {
    Attestation.CLIENT_RISK: "client_risk_considered",
    Attestation.TRANSACTION_RISK: "transaction_risk_considered",
    Attestation.SANCTIONS: "sanctions_considered",
    Attestation.AML_POLICY: "aml_policy_considered",
}


def tier_for(score: int, limitation_weight: int) -> RiskTier:
    """Tier for a score; limitation weight 3 forces High regardless of score."""
    if limitation_weight == LIMITATION_OVERRIDE_WEIGHT or score >= HIGH_RISK_THRESHOLD:
        return RiskTier.HIGH
    if score >= MEDIUM_RISK_THRESHOLD:
        return RiskTier.MEDIUM
    return RiskTier.LOW


def _missing_confirmations(answers: AnswerSet) -> List[str]:
    missing = []
    for field_name in ATTESTATION_FIELDS.values():
        if getattr(answers, field_name) is None:
            missing.append(field_name)
    if answers.transaction_risk_considered and answers.transaction_risk_level is None:
        missing.append("transaction_risk_level")
    if (
        answers.weight(RiskCategory.LIMITATION) in LIMITATION_BANDS_WITH_DATE
        and answers.limitation_date is None
        and not answers.limitation_date_tbc
    ):
        missing.append("limitation_date")
    return missing


def _reference_material(
    answers: AnswerSet,
    guidance_urls: Optional[Dict[Attestation, str]],
) -> List[ReferenceMaterial]:
    material = []
    for attestation, field_name in ATTESTATION_FIELDS.items():
        if getattr(answers, field_name) is False:
            url = (guidance_urls or {}).get(attestation) or None
            material.append(ReferenceMaterial(
                attestation=attestation,
                title=ATTESTATION_TITLES[attestation],
                url=url,
            ))
    return material


def classify(
    answers: AnswerSet,
    guidance_urls: Optional[Dict[Attestation, str]] = None,
) -> RiskProfile:
    """
    Score an AnswerSet and assign its risk tier.

    Missing categories contribute nothing to the score; the tier is a
    best-effort value over what has been answered and the missing keys are
    listed on the profile.
    """
    score = sum(answers.weight(category) for category in RiskCategory)
    limitation_weight = answers.weight(RiskCategory.LIMITATION)

    missing_categories = [c for c in RiskCategory if c not in answers.answers]
    missing_confirmations = _missing_confirmations(answers)

    return RiskProfile(
        score=score,
        tier=tier_for(score, limitation_weight),
        limitation_override=limitation_weight == LIMITATION_OVERRIDE_WEIGHT,
        complete=not missing_categories and not missing_confirmations,
        missing_categories=missing_categories,
        missing_confirmations=missing_confirmations,
        attestations=RiskAttestations(
            client_risk_considered=answers.client_risk_considered,
            transaction_risk_considered=answers.transaction_risk_considered,
            transaction_risk_level=answers.transaction_risk_level,
            sanctions_considered=answers.sanctions_considered,
            aml_policy_considered=answers.aml_policy_considered,
        ),
        reference_material=_reference_material(answers, guidance_urls),
    )


def make_answer(category: Union[RiskCategory, str], weight: int) -> RiskAnswer:
    """RiskAnswer for a weight, with the catalogue wording. Raises ValueError for unknown options."""
    category = RiskCategory(category)
    text = get_option_text(category, weight)
    if text is None:
        raise ValueError(f"Weight {weight!r} is not an option for {category.value}")
    return RiskAnswer(option=text, weight=weight)


def build_answers(
    choices: Dict[Union[RiskCategory, str], int],
    base: Optional[AnswerSet] = None,
    **confirmations: Any,
) -> AnswerSet:
    """
    Build an AnswerSet from {category: weight} choices.

    Args:
        choices: weights keyed by RiskCategory (or its string value)
        base: existing AnswerSet to extend; a fresh one when omitted
        **confirmations: AnswerSet confirmation fields (client_risk_considered, ...)
    """
    answers = base or AnswerSet()
    for category, weight in choices.items():
        category = RiskCategory(category)
        answers = answers.with_answer(category, make_answer(category, weight))
    if confirmations:
        answers = answers.with_updates(**confirmations)
    return answers


# ============================================================================
# ASSESSMENT RECORD
# ============================================================================

def add_months(start: date, months: int) -> date:
    """Calendar month arithmetic; clamps to the last day of a shorter month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def compliance_expiry(compliance_date: date, months: int = 6) -> date:
    return add_months(compliance_date, months)


def _limitation_text(answers: AnswerSet) -> str:
    answer = answers.answers.get(RiskCategory.LIMITATION)
    if not answer:
        return ""
    text = answer.option
    if answer.weight in LIMITATION_BANDS_WITH_DATE:
        if answers.limitation_date_tbc:
            text += " - TBC"
        elif answers.limitation_date:
            text += f" - {answers.limitation_date.strftime('%d/%m/%Y')}"
    return text


def risk_assessment_record(
    instruction_ref: str,
    answers: AnswerSet,
    profile: RiskProfile,
    assessor: Optional[str],
    compliance_date: date,
    validity_months: int = 6,
) -> Dict[str, Any]:
    """Flat risk assessment record in the firm's reporting column layout."""
    def _text(category: RiskCategory) -> str:
        answer = answers.answers.get(category)
        return answer.option if answer else ""

    return {
        "MatterId": instruction_ref,
        "InstructionRef": instruction_ref,
        "RiskAssessor": assessor,
        "ComplianceDate": compliance_date.isoformat(),
        "ComplianceExpiry": compliance_expiry(compliance_date, validity_months).isoformat(),
        "ClientType": _text(RiskCategory.CLIENT_TYPE),
        "ClientType_Value": answers.weight(RiskCategory.CLIENT_TYPE),
        "DestinationOfFunds": _text(RiskCategory.DESTINATION_OF_FUNDS),
        "DestinationOfFunds_Value": answers.weight(RiskCategory.DESTINATION_OF_FUNDS),
        "FundsType": _text(RiskCategory.FUNDS_TYPE),
        "FundsType_Value": answers.weight(RiskCategory.FUNDS_TYPE),
        "HowWasClientIntroduced": _text(RiskCategory.CLIENT_INTRODUCED),
        "HowWasClientIntroduced_Value": answers.weight(RiskCategory.CLIENT_INTRODUCED),
        "Limitation": _limitation_text(answers),
        "Limitation_Value": answers.weight(RiskCategory.LIMITATION),
        "LimitationDate": answers.limitation_date.isoformat() if answers.limitation_date else None,
        "LimitationDateTbc": answers.limitation_date_tbc,
        "SourceOfFunds": _text(RiskCategory.SOURCE_OF_FUNDS),
        "SourceOfFunds_Value": answers.weight(RiskCategory.SOURCE_OF_FUNDS),
        "ValueOfInstruction": _text(RiskCategory.VALUE_OF_INSTRUCTION),
        "ValueOfInstruction_Value": answers.weight(RiskCategory.VALUE_OF_INSTRUCTION),
        "TransactionRiskLevel": answers.transaction_risk_level.value if answers.transaction_risk_level else None,
        "ClientRiskFactorsConsidered": answers.client_risk_considered,
        "TransactionRiskFactorsConsidered": answers.transaction_risk_considered,
        "FirmWideSanctionsRiskConsidered": answers.sanctions_considered,
        "FirmWideAMLPolicyConsidered": answers.aml_policy_considered,
        "RiskScore": profile.score,
        "RiskScoreIncrementBy": profile.score,
        "RiskAssessmentResult": profile.tier.value,
    }


def question_catalogue() -> List[Dict[str, Any]]:
    """Questions and options for rendering the questionnaire."""
    return [
        {
            "category": category.value,
            "label": question["label"],
            "options": [{"weight": w, "text": t} for w, t in question["options"].items()],
        }
        for category, question in RISK_QUESTIONS.items()
    ]
