"""
Requirement categories.

Fixed requirement-category -> severity table, with the keyword
detectors used to assign a category to a topic and the advisory
remediation text attached to findings.

Detection is first-match in table order, so more specific categories
(sensitive-data encryption) precede general ones (encryption at rest).
A tier-declared severity hint always overrides this table.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import List, Tuple

from pydantic import BaseModel, ConfigDict

from ringscan.app.schemas.findings import Severity


GENERAL_CATEGORY = "general_requirement"


class RequirementCategory(BaseModel):
    name: str
    severity: Severity
    # Every group must match (any keyword within a group).
    keyword_groups: Tuple[Tuple[str, ...], ...]
    remediation: str

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    def matches(self, text: str) -> bool:
        return all(
            any(_keyword_re(k).search(text) for k in group)
            for group in self.keyword_groups
        )


_SENSITIVE = (
    "ssn", "social security", "phi", "health", "medical", "patient",
    "card number", "cardholder", "biometric", "genetic",
)

CATEGORY_TABLE: List[RequirementCategory] = [
    RequirementCategory(
        name="sensitive_data_encryption_at_rest",
        severity=Severity.CRITICAL,
        keyword_groups=(("encrypt", "unencrypted", "plaintext", "cleartext"), _SENSITIVE),
        remediation=(
            "Encrypt the sensitive data at rest with an approved algorithm "
            "and managed keys."
        ),
    ),
    RequirementCategory(
        name="encryption_in_transit",
        severity=Severity.HIGH,
        keyword_groups=(("tls", "https", "in transit", "ssl"),),
        remediation="Enforce TLS at the required minimum version for this channel.",
    ),
    RequirementCategory(
        name="encryption_at_rest",
        severity=Severity.HIGH,
        keyword_groups=(("encrypt", "unencrypted", "aes", "plaintext"),),
        remediation="Encrypt the stored data with the required algorithm.",
    ),
    RequirementCategory(
        name="password_hashing",
        severity=Severity.HIGH,
        keyword_groups=(("password", "credential", "secret"), ("hash", "bcrypt", "argon2", "scrypt", "pbkdf2", "md5")),
        remediation="Hash credentials with the required adaptive algorithm.",
    ),
    RequirementCategory(
        name="consent",
        severity=Severity.HIGH,
        keyword_groups=(("consent", "opt-in", "opt in"),),
        remediation="Obtain and record explicit consent before processing.",
    ),
    RequirementCategory(
        name="impact_assessment",
        severity=Severity.HIGH,
        keyword_groups=(("dpia", "impact assessment", "automated profiling", "automated decision"),),
        remediation=(
            "Complete and document the required impact assessment before "
            "the processing goes live."
        ),
    ),
    RequirementCategory(
        name="access_control",
        severity=Severity.HIGH,
        keyword_groups=(("access control", "authoriz", "authoris", "role-based", "least privilege", "permission"),),
        remediation="Restrict access to authorized roles and check permissions server-side.",
    ),
    RequirementCategory(
        name="key_management",
        severity=Severity.MEDIUM,
        keyword_groups=(("key",), ("rotat", "management", "vault", "kms")),
        remediation="Rotate and store keys according to the key-management requirement.",
    ),
    RequirementCategory(
        name="data_retention",
        severity=Severity.MEDIUM,
        keyword_groups=(("retain", "retention", "retained", "delete", "deletion", "purge", "kept"),),
        remediation="Apply the required retention period and delete data when it expires.",
    ),
    RequirementCategory(
        name="audit_logging",
        severity=Severity.MEDIUM,
        keyword_groups=(("audit", "logging", "logged", "log entr"),),
        remediation="Emit audit log entries for the covered operations.",
    ),
    RequirementCategory(
        name="data_minimization",
        severity=Severity.LOW,
        keyword_groups=(("minimi", "only the data necessary", "no more data than"),),
        remediation="Collect and keep only the fields the purpose requires.",
    ),
]

_GENERAL = RequirementCategory(
    name=GENERAL_CATEGORY,
    severity=Severity.MEDIUM,
    keyword_groups=(),
    remediation="Bring the code in line with the cited requirement.",
)

_CATEGORY_BY_NAME = {c.name: c for c in CATEGORY_TABLE + [_GENERAL]}


@lru_cache(maxsize=None)
def _keyword_re(keyword: str) -> re.Pattern[str]:
    # Prefix match on word start; multi-word keywords match literally.
    return re.compile(r"\b" + re.escape(keyword), re.IGNORECASE)


def detect_category(text: str) -> RequirementCategory:
    for candidate in CATEGORY_TABLE:
        if candidate.matches(text):
            return candidate
    return _GENERAL


def category_named(name: str) -> RequirementCategory:
    return _CATEGORY_BY_NAME.get(name, _GENERAL)
