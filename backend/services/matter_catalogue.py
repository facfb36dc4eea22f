"""
Matter Catalogue - static option tables for the matter opening form.

Risk questionnaire options carry their weight as the key (1 = lowest risk,
3 = highest). Everything here is read-only reference data; nothing in this
module touches the database.
"""
from typing import Dict, List, Optional

from models import (
    Address,
    AreaOfWork,
    Attestation,
    ClientCategory,
    PlaceholderParty,
    RiskCategory,
    SourceChannel,
)


# ============================================================================
# RISK QUESTIONNAIRE
# ============================================================================

RISK_QUESTIONS: Dict[RiskCategory, Dict] = {
    RiskCategory.CLIENT_TYPE: {
        "label": "Client Type",
        "options": {
            1: "Individual or Company registered in England and Wales with Companies House",
            2: "Group Company or Subsidiary, Trust",
            3: "Non UK Company",
        },
    },
    RiskCategory.DESTINATION_OF_FUNDS: {
        "label": "Destination of Funds",
        "options": {
            1: "Client within UK",
            2: "Client in EU/3rd party in UK",
            3: "Outwith UK or Client outwith EU",
        },
    },
    RiskCategory.FUNDS_TYPE: {
        "label": "Funds Type",
        "options": {
            1: "Personal Cheque, BACS",
            2: "Cash payment if less than £1,000",
            3: "Cash payment above £1,000",
        },
    },
    RiskCategory.CLIENT_INTRODUCED: {
        "label": "How was Client Introduced?",
        "options": {
            1: "Existing client introduction, personal introduction",
            2: "Internet Enquiry",
            3: "Other",
        },
    },
    RiskCategory.LIMITATION: {
        "label": "Limitation Period",
        "options": {
            1: "There is no applicable limitation period",
            2: "There is greater than 6 months to the expiry of the limitation period",
            3: "There is less than 6 months to limitation expiry",
        },
    },
    RiskCategory.SOURCE_OF_FUNDS: {
        "label": "Source of Funds",
        "options": {
            1: "Client's named account",
            2: "3rd Party UK or Client's EU account",
            3: "Any other account",
        },
    },
    RiskCategory.VALUE_OF_INSTRUCTION: {
        "label": "Value of Instruction",
        "options": {
            1: "Less than £10,000",
            2: "£10,000 to £500,000",
            3: "Above £500,000",
        },
    },
}

# Limitation bands that need a limitation date (or an explicit TBC)
LIMITATION_BANDS_WITH_DATE = {2, 3}

ATTESTATION_TITLES: Dict[Attestation, str] = {
    Attestation.CLIENT_RISK: "I have considered client risk factors",
    Attestation.TRANSACTION_RISK: "I have considered transaction risk factors",
    Attestation.SANCTIONS: "I have considered the Firm Wide Sanctions Risk Assessment",
    Attestation.AML_POLICY: "I have considered the Firm Wide AML policy",
}


def get_option_text(category: RiskCategory, weight: int) -> Optional[str]:
    """Option wording for a weight, or None when the weight is not offered."""
    question = RISK_QUESTIONS.get(category)
    if not question:
        return None
    return question["options"].get(weight)


# ============================================================================
# CLIENTS
# ============================================================================

# Categories that allow exactly one selected client
SINGLE_SELECTION_CATEGORIES = {
    ClientCategory.INDIVIDUAL,
    ClientCategory.COMPANY,
    ClientCategory.EXISTING_CLIENT,
}


def is_single_selection(category: Optional[ClientCategory]) -> bool:
    """No category yet behaves like a single-selection one."""
    return category is None or category in SINGLE_SELECTION_CATEGORIES


# ============================================================================
# MATTER DETAILS
# ============================================================================

PRACTICE_AREAS_BY_AREA: Dict[AreaOfWork, List[str]] = {
    AreaOfWork.COMMERCIAL: [
        "Commercial Contract - Drafting",
        "Contract Dispute",
        "Director Rights & Dispute Advice",
        "Shareholder Rights & Dispute Advice",
        "Intellectual Property",
        "Debt Recovery",
        "Partnership Dispute",
        "Professional Negligence",
        "Insolvency",
    ],
    AreaOfWork.PROPERTY: [
        "Landlord & Tenant - Commercial Dispute",
        "Landlord & Tenant - Residential Dispute",
        "Boundary and Nuisance",
        "Trust of Land (Tolata) Advice",
        "Service Charge Recovery & Dispute Advice",
        "Breach of Lease Advice",
        "Terminal Dilapidations Advice",
        "Adverse Possession",
    ],
    AreaOfWork.CONSTRUCTION: [
        "Final Account Recovery",
        "Retention Recovery Advice",
        "Adjudication Advice & Dispute",
        "Construction Contract Advice",
        "Interim Payment Recovery",
        "Contract Dispute",
    ],
    AreaOfWork.EMPLOYMENT: [
        "Employment Contract - Drafting",
        "Employment Retainer Instruction",
        "Settlement Agreement - Drafting",
        "Settlement Agreement - Advising",
        "Handbook - Drafting",
        "Policy - Drafting",
        "Redundancy - Advising",
        "Sick Leave - Advising",
        "Disciplinary - Advising",
        "Restrictive Covenant Advice",
        "Employment Tribunal Claim - Advising",
    ],
}

DISPUTE_VALUE_OPTIONS = [
    "Less than £10k",
    "£10k - £500k",
    "£500k - £1m",
    "£1m - £5m",
    "£5 - £20m",
    "£20m+",
]

SOURCE_OPTIONS = [channel.value for channel in SourceChannel]


def is_valid_practice_area(area_of_work: str, practice_area: str) -> bool:
    try:
        area = AreaOfWork(area_of_work)
    except ValueError:
        return False
    return practice_area in PRACTICE_AREAS_BY_AREA.get(area, [])


# ============================================================================
# DEFERRED PARTY DETAILS
# ============================================================================

_PLACEHOLDER_ADDRESS = Address(
    house_number="Second Floor",
    street="1 Placeholder Street",
    city="Brighton",
    county="East Sussex",
    postcode="BN1 1AA",
    country="United Kingdom",
)

PLACEHOLDER_OPPONENT = PlaceholderParty(
    title="Mr",
    first_name="Invent",
    last_name="Name",
    email="opponent@placeholder.invalid",
    phone="0000 000 0000",
    address=_PLACEHOLDER_ADDRESS,
    is_company=True,
    company_name="Placeholder Opponent Ltd",
    company_number="00000000",
)

PLACEHOLDER_SOLICITOR = PlaceholderParty(
    title="Mr",
    first_name="Invent",
    last_name="Solicitor Name",
    email="opponentsolicitor@placeholder.invalid",
    phone="0000 000 0000",
    address=_PLACEHOLDER_ADDRESS,
    is_company=True,
    company_name="Placeholder Solicitors LLP",
    company_number="00000000",
)
