"""
Unit tests for risk classification: scoring, tier thresholds, the limitation
override, partial input and the compliance confirmations.
"""
import pytest
import sys
from pathlib import Path
from datetime import date

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from models import AnswerSet, Attestation, RiskCategory, RiskTier
from services.risk_engine import (
    build_answers,
    classify,
    compliance_expiry,
    make_answer,
    question_catalogue,
    risk_assessment_record,
    tier_for,
)


WEIGHTED_EXAMPLE = {
    RiskCategory.CLIENT_TYPE: 2,
    RiskCategory.DESTINATION_OF_FUNDS: 1,
    RiskCategory.FUNDS_TYPE: 3,
    RiskCategory.CLIENT_INTRODUCED: 1,
    RiskCategory.LIMITATION: 2,
    RiskCategory.SOURCE_OF_FUNDS: 3,
    RiskCategory.VALUE_OF_INSTRUCTION: 2,
}

ALL_CONFIRMED = dict(
    client_risk_considered=True,
    transaction_risk_considered=True,
    transaction_risk_level=RiskTier.LOW,
    sanctions_considered=True,
    aml_policy_considered=True,
    limitation_date_tbc=True,
)


class TestScoring:

    def test_weighted_example_is_medium(self):
        profile = classify(build_answers(WEIGHTED_EXAMPLE))
        assert profile.score == 14
        assert profile.tier == RiskTier.MEDIUM
        assert profile.limitation_override is False

    def test_limitation_three_overrides_total(self):
        choices = dict(WEIGHTED_EXAMPLE, **{RiskCategory.LIMITATION: 3})
        profile = classify(build_answers(choices))
        assert profile.score == 15
        assert profile.tier == RiskTier.HIGH
        assert profile.limitation_override is True

    def test_limitation_override_with_otherwise_low_score(self):
        choices = {category: 1 for category in RiskCategory}
        choices[RiskCategory.LIMITATION] = 3
        profile = classify(build_answers(choices))
        assert profile.score == 9
        assert profile.tier == RiskTier.HIGH

    @pytest.mark.parametrize("weights,expected_score,expected_tier", [
        ([2, 1, 1, 1, 1, 2, 2], 10, RiskTier.LOW),
        ([2, 1, 1, 1, 1, 2, 3], 11, RiskTier.MEDIUM),
        ([3, 3, 3, 1, 2, 2, 1], 15, RiskTier.MEDIUM),
        ([3, 3, 3, 1, 2, 2, 2], 16, RiskTier.HIGH),
    ])
    def test_tier_boundaries(self, weights, expected_score, expected_tier):
        choices = dict(zip(list(RiskCategory), weights))
        profile = classify(build_answers(choices))
        assert profile.score == expected_score
        assert profile.tier == expected_tier

    def test_tier_for_direct(self):
        assert tier_for(7, 1) == RiskTier.LOW
        assert tier_for(7, 3) == RiskTier.HIGH
        assert tier_for(21, 2) == RiskTier.HIGH

    def test_classify_is_deterministic(self):
        answers = build_answers(WEIGHTED_EXAMPLE, **ALL_CONFIRMED)
        assert classify(answers) == classify(answers)
        assert classify(answers).model_dump() == classify(answers.model_copy()).model_dump()


class TestPartialInput:

    def test_empty_answers_do_not_raise(self):
        profile = classify(AnswerSet())
        assert profile.score == 0
        assert profile.tier == RiskTier.LOW
        assert profile.complete is False
        assert profile.missing_categories == list(RiskCategory)

    def test_missing_categories_listed(self):
        answers = build_answers({RiskCategory.CLIENT_TYPE: 3, RiskCategory.FUNDS_TYPE: 3})
        profile = classify(answers)
        assert profile.score == 6
        assert RiskCategory.CLIENT_TYPE not in profile.missing_categories
        assert RiskCategory.LIMITATION in profile.missing_categories
        assert len(profile.missing_categories) == 5

    def test_partial_with_limitation_three_is_high(self):
        profile = classify(build_answers({RiskCategory.LIMITATION: 3}))
        assert profile.tier == RiskTier.HIGH
        assert profile.complete is False

    def test_complete_when_everything_answered(self):
        profile = classify(build_answers(WEIGHTED_EXAMPLE, **ALL_CONFIRMED))
        assert profile.complete is True
        assert profile.missing_categories == []
        assert profile.missing_confirmations == []


class TestConfirmations:

    def test_unanswered_confirmations_reported(self):
        profile = classify(build_answers(WEIGHTED_EXAMPLE))
        assert "client_risk_considered" in profile.missing_confirmations
        assert "aml_policy_considered" in profile.missing_confirmations
        # Limitation band 2 needs a date or TBC
        assert "limitation_date" in profile.missing_confirmations

    def test_transaction_level_required_when_considered(self):
        confirmations = dict(ALL_CONFIRMED, transaction_risk_level=None)
        profile = classify(build_answers(WEIGHTED_EXAMPLE, **confirmations))
        assert profile.missing_confirmations == ["transaction_risk_level"]

    def test_limitation_date_satisfies_band(self):
        confirmations = dict(ALL_CONFIRMED, limitation_date_tbc=False, limitation_date=date(2027, 3, 1))
        profile = classify(build_answers(WEIGHTED_EXAMPLE, **confirmations))
        assert profile.complete is True

    def test_confirmations_do_not_change_tier(self):
        declined = dict(
            client_risk_considered=False,
            transaction_risk_considered=False,
            sanctions_considered=False,
            aml_policy_considered=False,
        )
        with_no = classify(build_answers(WEIGHTED_EXAMPLE, **declined))
        with_yes = classify(build_answers(WEIGHTED_EXAMPLE, **ALL_CONFIRMED))
        assert with_no.tier == with_yes.tier == RiskTier.MEDIUM
        assert with_no.score == with_yes.score

    def test_declined_confirmation_surfaces_reference_material(self):
        answers = build_answers(WEIGHTED_EXAMPLE, **dict(ALL_CONFIRMED, sanctions_considered=False))
        urls = {Attestation.SANCTIONS: "https://docs.example.com/sanctions.pdf"}
        profile = classify(answers, urls)
        assert len(profile.reference_material) == 1
        material = profile.reference_material[0]
        assert material.attestation == Attestation.SANCTIONS
        assert material.url == "https://docs.example.com/sanctions.pdf"

    def test_reference_material_without_configured_url(self):
        answers = build_answers({}, aml_policy_considered=False)
        profile = classify(answers)
        assert [m.attestation for m in profile.reference_material] == [Attestation.AML_POLICY]
        assert profile.reference_material[0].url is None

    def test_unanswered_confirmation_has_no_reference_material(self):
        assert classify(AnswerSet()).reference_material == []


class TestAnswerHelpers:

    def test_make_answer_uses_catalogue_text(self):
        answer = make_answer("limitation", 3)
        assert answer.weight == 3
        assert answer.option == "There is less than 6 months to limitation expiry"

    def test_make_answer_rejects_unknown_weight(self):
        with pytest.raises(ValueError):
            make_answer(RiskCategory.FUNDS_TYPE, 4)

    def test_build_answers_extends_base(self):
        base = build_answers({RiskCategory.CLIENT_TYPE: 1})
        extended = build_answers({RiskCategory.FUNDS_TYPE: 2}, base=base)
        assert extended.weight(RiskCategory.CLIENT_TYPE) == 1
        assert extended.weight(RiskCategory.FUNDS_TYPE) == 2
        # base is frozen and unchanged
        assert base.weight(RiskCategory.FUNDS_TYPE) == 0

    def test_question_catalogue_covers_every_category(self):
        catalogue = question_catalogue()
        assert [q["category"] for q in catalogue] == [c.value for c in RiskCategory]
        assert all(len(q["options"]) == 3 for q in catalogue)


class TestAssessmentRecord:

    def test_compliance_expiry_is_six_months(self):
        assert compliance_expiry(date(2026, 10, 19)) == date(2027, 4, 19)
        # Clamped to month end
        assert compliance_expiry(date(2026, 8, 31)) == date(2027, 2, 28)

    def test_record_fields(self):
        answers = build_answers(
            WEIGHTED_EXAMPLE,
            **dict(ALL_CONFIRMED, limitation_date_tbc=False, limitation_date=date(2027, 1, 5)),
        )
        profile = classify(answers)
        record = risk_assessment_record("HLX-1-2", answers, profile, "AB", date(2026, 10, 19))

        assert record["InstructionRef"] == "HLX-1-2"
        assert record["RiskAssessor"] == "AB"
        assert record["ComplianceExpiry"] == "2027-04-19"
        assert record["FundsType_Value"] == 3
        assert record["Limitation"].endswith(" - 05/01/2027")
        assert record["RiskScore"] == 14
        assert record["RiskAssessmentResult"] == "Medium Risk"
        assert record["TransactionRiskLevel"] == "Low Risk"

    def test_limitation_tbc_suffix(self):
        answers = build_answers(WEIGHTED_EXAMPLE, limitation_date_tbc=True)
        record = risk_assessment_record("X", answers, classify(answers), None, date(2026, 1, 1))
        assert record["Limitation"].endswith(" - TBC")

    def test_limitation_band_one_has_no_suffix(self):
        answers = build_answers({RiskCategory.LIMITATION: 1}, limitation_date_tbc=True)
        record = risk_assessment_record("X", answers, classify(answers), None, date(2026, 1, 1))
        assert record["Limitation"] == "There is no applicable limitation period"
