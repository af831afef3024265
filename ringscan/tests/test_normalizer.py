import re

import pytest

from ringscan.app.normalization.normalizer import FindingNormalizer, stable_finding_id
from ringscan.app.schemas.findings import Severity
from ringscan.tests.fakes import CS, EI, IK, candidate, stmt


SSN_TEXT = "SSNs must be encrypted at rest."


def _everywhere(text=SSN_TEXT, requirement_id="SEC-ENC-01", **kwargs):
    return {
        CS: [stmt(CS, text, requirement_id, citation="Security Standard", **kwargs)],
        IK: [stmt(IK, text, requirement_id)],
        EI: [stmt(EI, text, requirement_id)],
    }


def test_one_candidate_yields_one_finding_per_tier():
    result = FindingNormalizer().normalize(
        _everywhere(),
        [candidate("SSN encryption", requirement_id="SEC-ENC-01")],
        consulted=[CS, IK, EI],
    )

    assert [f.tier for f in result.findings] == [CS, IK, EI]
    assert len({f.finding_id for f in result.findings}) == 3
    assert {f.topic_id for f in result.findings} == {"sec-enc-01"}

    codified = result.findings[0]
    assert re.match(r"^RING-CS-CRITICAL-[0-9a-f]{12}$", codified.finding_id)
    assert codified.citation == "Security Standard"
    assert codified.violation_type == "sensitive_data_encryption_at_rest"
    assert codified.requirement == SSN_TEXT


def test_validated_tiers_restrict_attribution():
    result = FindingNormalizer().normalize(
        _everywhere(),
        [candidate("SSN encryption", validated_against=[IK])],
        consulted=[CS, IK, EI],
    )

    assert [f.tier for f in result.findings] == [IK]


def test_unconsulted_tier_never_receives_a_finding():
    result = FindingNormalizer().normalize(
        _everywhere(),
        [candidate("SSN encryption", validated_against=[EI])],
        consulted=[CS, IK],
    )

    assert result.findings == []
    assert result.unattributed == 1
    assert all(EI not in topic.tiers for topic in result.topics)


def test_candidate_matching_no_topic_is_counted():
    result = FindingNormalizer().normalize(
        _everywhere(),
        [candidate("logging of admin actions")],
        consulted=[CS, IK, EI],
    )

    assert result.findings == []
    assert result.unattributed == 1


def test_repeated_candidates_collapse_per_tier_and_location():
    result = FindingNormalizer().normalize(
        _everywhere(),
        [
            candidate("SSN encryption at rest", validated_against=[CS]),
            candidate("SSN encryption", validated_against=[CS]),
        ],
        consulted=[CS, IK, EI],
    )

    assert len(result.findings) == 1


def test_normalization_is_idempotent():
    statements = _everywhere()
    candidates = [
        candidate("SSN encryption", lines=(30, 31)),
        candidate("SSN encryption", file="app/db.py", lines=(4, 4)),
    ]

    first = FindingNormalizer().normalize(statements, candidates, consulted=[CS, IK, EI])
    second = FindingNormalizer().normalize(statements, candidates, consulted=[CS, IK, EI])

    assert first == second
    assert [f.file for f in first.findings[:2]] == ["app/db.py", "app/models.py"]


# ---------------------------------------------------------------------------
# Severity precedence
# ---------------------------------------------------------------------------

def test_tier_hint_overrides_category():
    statements = {CS: [stmt(CS, SSN_TEXT, severity=Severity.LOW)]}

    result = FindingNormalizer().normalize(
        statements,
        [candidate("SSN encryption", severity=Severity.HIGH)],
        consulted=[CS],
    )

    assert result.findings[0].severity == Severity.LOW


def test_category_overrides_agent_severity():
    result = FindingNormalizer().normalize(
        {CS: [stmt(CS, SSN_TEXT)]},
        [candidate("SSN encryption", severity=Severity.LOW)],
        consulted=[CS],
    )

    assert result.findings[0].severity == Severity.CRITICAL


@pytest.mark.parametrize(
    "agent_severity, expected",
    [
        (Severity.HIGH, Severity.HIGH),
        (None, Severity.MEDIUM),
    ],
)
def test_general_requirements_fall_back_to_agent_then_medium(agent_severity, expected):
    result = FindingNormalizer().normalize(
        {IK: [stmt(IK, "Feature flags must be documented.")]},
        [candidate("feature flags documented", severity=agent_severity)],
        consulted=[IK],
    )

    finding = result.findings[0]
    assert finding.violation_type == "general_requirement"
    assert finding.severity == expected


def test_id_suffix_survives_a_regrade():
    high = stable_finding_id(CS, Severity.HIGH, "sec-enc-01", "app/models.py", 10, 12)
    low = stable_finding_id(CS, Severity.LOW, "sec-enc-01", "app/models.py", 10, 12)

    assert high.startswith("RING-CS-HIGH-")
    assert low.startswith("RING-CS-LOW-")
    assert high.rsplit("-", 1)[1] == low.rsplit("-", 1)[1]
