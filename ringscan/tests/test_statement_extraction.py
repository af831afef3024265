import pytest

from ringscan.app.schemas.findings import Severity
from ringscan.app.tiers.extraction import StatementExtractor, extract_fields
from ringscan.tests.fakes import CS, EI, IK


CONTENT = """\
Data handling requirements:

- [REQ: SEC-ENC-01] Social security numbers must be encrypted at rest with AES 256. [severity: critical]
- PRIV-RET-02: Customer records shall not be retained longer than 7 years.
- The team usually reviews this quarterly.

All external traffic is required to use TLS 1.2 or higher [cite: Transport Policy | section 3].
"""


def test_requirement_sentences_and_markers_are_extracted():
    statements = StatementExtractor().extract(CS, CONTENT)

    assert [s.requirement_id for s in statements] == ["SEC-ENC-01", "PRIV-RET-02", None]

    encryption, retention, transport = statements

    assert encryption.text == (
        "Social security numbers must be encrypted at rest with AES 256."
    )
    assert encryption.severity_hint == Severity.CRITICAL
    assert encryption.fields == {"encryption_algorithm": "AES-256"}

    assert retention.fields == {"retention_days": str(7 * 365)}

    assert transport.fields == {"tls_version": "TLS1.2"}
    assert transport.citation.render() == "Transport Policy (section 3)"


def test_extraction_is_deterministic():
    extractor = StatementExtractor()

    assert extractor.extract(IK, CONTENT) == extractor.extract(IK, CONTENT)


def test_non_requirement_text_yields_nothing():
    assert StatementExtractor().extract(EI, "The office is closed on Friday.") == []


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Use aes-128 for archives", {"encryption_algorithm": "AES-128"}),
        ("Hash passwords with sha 256", {"hash_algorithm": "SHA-256"}),
        ("Passwords must use bcrypt", {"hash_algorithm": "BCRYPT"}),
        ("Keys must be rotated every 90 days", {"key_rotation_days": "90"}),
        ("Logs must be retained for 2 weeks", {"retention_days": "14"}),
        ("Meet every 2 weeks", {}),
    ],
)
def test_structured_fields(text, expected):
    assert extract_fields(text) == expected


def test_structured_entries_override_extracted_values():
    statements = StatementExtractor().from_structured(
        EI,
        [
            {
                "id": "GDPR-32",
                "text": "Personal data must be encrypted with AES-128.",
                "fields": {"encryption_algorithm": "AES-256"},
                "severity": "HIGH",
            }
        ],
    )

    assert statements[0].fields == {"encryption_algorithm": "AES-256"}
    assert statements[0].severity_hint == Severity.HIGH


def test_structured_entry_without_text_is_rejected():
    with pytest.raises(ValueError):
        StatementExtractor().from_structured(CS, [{"id": "X-1", "text": "  "}])
