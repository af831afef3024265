import pytest

from ringscan.app.normalization.topics import TopicMatcher
from ringscan.app.reconciliation.engine import ReconciliationEngine, normalize_value
from ringscan.app.schemas.availability import FailureKind
from ringscan.app.schemas.findings import Finding, LineRange, Severity
from ringscan.app.schemas.reconciliation import GapClassification
from ringscan.app.schemas.topics import RequirementTopic
from ringscan.tests.fakes import CS, EI, IK, ledger, stmt


def topic(topic_id, *statements, low_confidence=False):
    return RequirementTopic(
        topic_id=topic_id,
        label=statements[0].text,
        category="general_requirement",
        statements=list(statements),
        low_confidence=low_confidence,
    )


def finding(topic_id, tier, finding_id="RING-X-HIGH-000000000000"):
    return Finding(
        finding_id=finding_id,
        topic_id=topic_id,
        tier=tier,
        severity=Severity.HIGH,
        file="app/models.py",
        line_range=LineRange(start=1, end=2),
        violation_type="general_requirement",
        description="d",
        requirement="r",
        remediation="fix",
    )


RETENTION = "Customer records should be retained for 7 years."
PROFILING = "A DPIA must be performed before automated profiling of customers."


def _reconcile(topics, availability, findings=()):
    return ReconciliationEngine().reconcile(topics, list(findings), availability)


# ---------------------------------------------------------------------------
# Absence gating
# ---------------------------------------------------------------------------

def test_informal_only_with_all_tiers_consulted_is_unverified():
    [record] = _reconcile([topic("retention", stmt(IK, RETENTION))], ledger())

    assert record.classification == GapClassification.UNVERIFIED_PROVENANCE_GAP
    assert record.tiers_present == [IK]
    assert record.tiers_absent == [CS, EI]
    assert record.tiers_not_consulted == []
    assert record.priority == 3


def test_absence_of_an_unconsulted_tier_is_not_a_signal():
    [record] = _reconcile(
        [topic("retention", stmt(IK, RETENTION))],
        ledger((EI, FailureKind.SERVICE_UNAVAILABLE)),
    )

    # EI was never asked, so IK-only is not "unverified provenance"
    assert record.classification == GapClassification.CODIFICATION_GAP
    assert record.tiers_absent == [CS]
    assert record.tiers_not_consulted == [EI]


def test_external_only_with_internal_tiers_silent_is_critical():
    [record] = _reconcile([topic("dpia", stmt(EI, PROFILING))], ledger())

    assert record.classification == GapClassification.CRITICAL_UNTRACKED_GAP
    assert record.priority == 1


def test_external_only_with_informal_unconsulted_is_codification_gap():
    [record] = _reconcile(
        [topic("dpia", stmt(EI, PROFILING))],
        ledger((IK, FailureKind.TIMEOUT)),
    )

    assert record.classification == GapClassification.CODIFICATION_GAP
    assert "External Intelligence" in record.recommendation


def test_codified_silence_only_counts_when_codified_was_consulted():
    records = _reconcile(
        [topic("retention", stmt(IK, RETENTION), stmt(EI, RETENTION))],
        ledger((CS, FailureKind.AUTH_DENIED)),
    )

    assert records == []


@pytest.mark.parametrize("down", [CS, IK, EI])
def test_unconsulted_tier_never_appears_as_present_or_absent(down):
    topics = [
        topic("retention", stmt(IK, RETENTION)),
        topic("dpia", stmt(EI, PROFILING)),
        topic("mixed", stmt(CS, "Keys must be rotated every 90 days."), stmt(IK, "Keys must be rotated every 90 days.")),
    ]

    for record in _reconcile(topics, ledger((down, FailureKind.NOT_CONFIGURED))):
        assert down not in record.tiers_present
        assert down not in record.tiers_absent
        assert record.tiers_not_consulted == [down]


def test_topic_asserted_by_every_tier_yields_no_record():
    text = "Audit logs must be retained for 1 year."
    records = _reconcile(
        [topic("audit", stmt(CS, text), stmt(IK, text), stmt(EI, text))],
        ledger(),
    )

    assert records == []


def test_codified_topic_without_conflict_yields_no_record():
    records = _reconcile(
        [topic("hashing", stmt(CS, "Passwords must be hashed with bcrypt."))],
        ledger(),
    )

    assert records == []


def test_finding_from_a_consulted_tier_counts_as_presence():
    [record] = _reconcile(
        [topic("retention", stmt(IK, RETENTION))],
        ledger(),
        findings=[finding("retention", EI, "RING-EI-HIGH-aaaaaaaaaaaa")],
    )

    assert record.classification == GapClassification.CODIFICATION_GAP
    assert record.tiers_present == [IK, EI]
    assert record.finding_ids == ["RING-EI-HIGH-aaaaaaaaaaaa"]


@pytest.mark.parametrize(
    "informal",
    [
        [
            stmt(IK, "SSNs must be encrypted at rest.", "SEC-01"),
            stmt(IK, "SSNs must be encrypted at rest with AES-256.", "SEC-01"),
        ],
        [
            stmt(IK, "SSN values must be encrypted at rest."),
            stmt(IK, "SSN values must be encrypted at rest in the database."),
        ],
    ],
    ids=["same-identifier", "near-duplicate"],
)
def test_a_tier_repeating_a_codified_requirement_is_not_a_gap(informal):
    codified = stmt(CS, informal[0].text, informal[0].requirement_id)
    topics = TopicMatcher().match({CS: [codified], IK: informal, EI: []})

    assert len(topics) == 1
    assert _reconcile(topics, ledger()) == []


# ---------------------------------------------------------------------------
# Superseded standards
# ---------------------------------------------------------------------------

def test_materially_different_values_are_a_superseded_conflict():
    [record] = _reconcile(
        [
            topic(
                "ssn-encryption",
                stmt(CS, "SSNs must be encrypted with AES-128.", encryption_algorithm="AES-128"),
                stmt(IK, "SSNs must be encrypted with AES-256.", encryption_algorithm="AES-256"),
                stmt(EI, "SSNs must be encrypted with AES-256.", encryption_algorithm="aes 256"),
            )
        ],
        ledger(),
    )

    assert record.classification == GapClassification.SUPERSEDED_STANDARD_CONFLICT
    assert record.priority == 2
    assert [c.target_tier for c in record.conflicts] == [EI, IK]
    assert all(c.baseline_value == "AES-128" for c in record.conflicts)
    assert record.target_value == "aes 256"
    assert "codified baseline AES-128" in record.recommendation


def test_equivalent_value_spellings_do_not_conflict():
    assert normalize_value("AES 256") == normalize_value("aes-256")

    records = _reconcile(
        [
            topic(
                "ssn-encryption",
                stmt(CS, "SSNs must be encrypted with AES 256.", encryption_algorithm="AES 256"),
                stmt(EI, "SSNs must be encrypted with AES-256.", encryption_algorithm="aes-256"),
            )
        ],
        ledger(),
    )

    assert records == []


def test_value_from_an_unconsulted_tier_is_ignored():
    records = _reconcile(
        [
            topic(
                "ssn-encryption",
                stmt(CS, "SSNs must be encrypted with AES-128.", encryption_algorithm="AES-128"),
                stmt(EI, "SSNs must be encrypted with AES-256.", encryption_algorithm="AES-256"),
            )
        ],
        ledger((EI, FailureKind.TIMEOUT)),
    )

    assert records == []


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------

def test_records_are_sorted_by_priority_then_topic_order():
    topics = [
        topic("codify-me", stmt(IK, RETENTION), stmt(EI, RETENTION)),
        topic("untracked", stmt(EI, PROFILING)),
        topic(
            "superseded",
            stmt(CS, "Keys must be rotated every 90 days.", key_rotation_days="90"),
            stmt(EI, "Keys must be rotated every 30 days.", key_rotation_days="30"),
            low_confidence=True,
        ),
        topic("unverified", stmt(IK, "Feature flags must be documented.")),
    ]

    records = _reconcile(topics, ledger())

    assert [r.topic_id for r in records] == [
        "untracked",
        "superseded",
        "unverified",
        "codify-me",
    ]
    assert [r.priority for r in records] == [1, 2, 3, 4]
    assert records[1].low_confidence is True
