"""
Requirement statement extraction from tier responses.

Tier backends return free-text requirements content, optionally with
structured requirement entries and citations. This module turns both
into TierStatement objects:

- requirement sentences are identified by modal/obligation patterns
- inline markers are lifted into structured attributes:
    [REQ: SEC-ENC-01]      requirement identifier
    [severity: critical]   tier-declared severity hint
    [cite: Source | Loc]   citation
- structured values (encryption algorithm, retention period, TLS version,
  key rotation, hashing algorithm) are extracted from the text

Extraction is deterministic: the same content always yields the same
statements in the same order.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ringscan.app.schemas.findings import Severity
from ringscan.app.schemas.statements import Citation, TierStatement
from ringscan.app.schemas.tiers import Tier


REQUIREMENT_PATTERNS = [
    r"\b(?:shall|must|is required to|are required to|has to|have to|needs? to)\b",
    r"\b(?:shall not|must not|may not|is prohibited|are prohibited|is forbidden)\b",
    r"\b(?:required|mandatory|prohibited|at least|no less than|minimum of)\b",
    r"\b(?:should|ought to)\b",
]

_REQUIREMENT_RE = re.compile(
    "|".join(f"(?:{p})" for p in REQUIREMENT_PATTERNS),
    re.IGNORECASE,
)

_REQ_ID_MARKER_RE = re.compile(
    r"\[\s*(?:req|requirement|id)\s*[:#]\s*([A-Za-z0-9][A-Za-z0-9._\-]*)\s*\]",
    re.IGNORECASE,
)
_LEADING_REQ_ID_RE = re.compile(
    r"^\s*([A-Z]{2,}[-_][A-Z0-9][A-Za-z0-9._\-]*)\s*[:)\-]\s+"
)
_SEVERITY_MARKER_RE = re.compile(
    r"\[\s*severity\s*:\s*(critical|high|medium|low|info)\s*\]",
    re.IGNORECASE,
)
_CITE_MARKER_RE = re.compile(
    r"\[\s*cite\s*:\s*([^\]|]+?)\s*(?:\|\s*([^\]]+?)\s*)?\]",
    re.IGNORECASE,
)
_BULLET_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)]|\(?[a-z]\))\s+")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+(?=[A-Z\[])")

# ---------------------------------------------------------------------------
# Structured field extractors
# ---------------------------------------------------------------------------

_ENCRYPTION_RE = re.compile(
    r"\b(AES|RSA|ChaCha20|3DES|DES)(?:[-\s]?(\d{2,4}))?\b",
    re.IGNORECASE,
)
_TLS_RE = re.compile(r"\bTLS\s*v?\s*(1\.[0-3])\b", re.IGNORECASE)
_HASH_RE = re.compile(
    r"\b(SHA[-\s]?(?:1|224|256|384|512)|MD5|bcrypt|scrypt|argon2(?:id)?|PBKDF2)\b",
    re.IGNORECASE,
)
_PERIOD_RE = re.compile(
    r"\b(\d{1,5})\s*(day|days|week|weeks|month|months|year|years)\b",
    re.IGNORECASE,
)
_RETENTION_CONTEXT_RE = re.compile(
    r"\b(retain|retained|retention|keep|kept|store[ds]?|delete[ds]?|purge[ds]?|archive[ds]?)\b",
    re.IGNORECASE,
)
_ROTATION_CONTEXT_RE = re.compile(r"\brotat(?:e|ed|ion)\b", re.IGNORECASE)

_PERIOD_DAYS = {
    "day": 1,
    "week": 7,
    "month": 30,
    "year": 365,
}


def _period_in_days(amount: str, unit: str) -> int:
    unit = unit.lower().rstrip("s")
    return int(amount) * _PERIOD_DAYS[unit]


def extract_fields(text: str) -> Dict[str, str]:
    """
    Extract structured requirement values from a statement.

    Values are normalized so that equivalent spellings compare equal
    (e.g. 'aes 256' and 'AES-256' both become 'AES-256').
    """
    fields: Dict[str, str] = {}

    match = _ENCRYPTION_RE.search(text)
    if match:
        algorithm = match.group(1).upper()
        if algorithm == "CHACHA20":
            algorithm = "ChaCha20"
        size = match.group(2)
        fields["encryption_algorithm"] = (
            f"{algorithm}-{size}" if size else algorithm
        )

    match = _TLS_RE.search(text)
    if match:
        fields["tls_version"] = f"TLS{match.group(1)}"

    match = _HASH_RE.search(text)
    if match:
        value = re.sub(r"[-\s]", "", match.group(1)).upper()
        if value.startswith("SHA"):
            value = "SHA-" + value[3:]
        fields["hash_algorithm"] = value

    period = _PERIOD_RE.search(text)
    if period:
        days = str(_period_in_days(period.group(1), period.group(2)))
        if _ROTATION_CONTEXT_RE.search(text):
            fields["key_rotation_days"] = days
        elif _RETENTION_CONTEXT_RE.search(text):
            fields["retention_days"] = days

    return fields


def _parse_severity(value: Any) -> Optional[Severity]:
    if value is None:
        return None
    try:
        return Severity(str(value).strip().lower())
    except ValueError:
        return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


class StatementExtractor:
    """
    Extracts TierStatements from tier response content.
    """

    def __init__(
        self,
        *,
        min_statement_length: int = 15,
        max_statement_length: int = 1000,
    ) -> None:
        self.min_statement_length = min_statement_length
        self.max_statement_length = max_statement_length

    # ------------------------------------------------------------------
    # Free text
    # ------------------------------------------------------------------

    def extract(
        self,
        tier: Tier,
        content: str,
        *,
        citations: Optional[List[Citation]] = None,
        retrieved_at: Optional[datetime] = None,
    ) -> List[TierStatement]:
        """
        Extract requirement statements from free-text content.

        A response-level citation is attached to every statement only
        when the response carries exactly one citation; otherwise only
        inline citations are used.
        """
        default_citation = None
        if citations and len(citations) == 1:
            default_citation = citations[0]

        statements: List[TierStatement] = []
        seen: set[str] = set()

        for segment in self._segments(content):
            if not _REQUIREMENT_RE.search(segment):
                continue

            statement = self._build_statement(
                tier,
                segment,
                default_citation=default_citation,
                retrieved_at=retrieved_at,
            )
            if statement is None:
                continue

            key = statement.text.lower()
            if key in seen:
                continue
            seen.add(key)
            statements.append(statement)

        return statements

    # ------------------------------------------------------------------
    # Structured entries
    # ------------------------------------------------------------------

    def from_structured(
        self,
        tier: Tier,
        entries: Iterable[Dict[str, Any]],
        *,
        retrieved_at: Optional[datetime] = None,
    ) -> List[TierStatement]:
        """
        Build statements from structured requirement entries.

        Expected entry keys: text (required), id, fields, severity,
        citation {source, locator}, retrieved_at. Structured values given
        by the tier take precedence over values extracted from text.

        Raises ValueError or TypeError on malformed entries; the caller
        maps these to MALFORMED_RESPONSE.
        """
        statements: List[TierStatement] = []

        for entry in entries:
            if not isinstance(entry, dict):
                raise TypeError("requirement entry must be an object")

            text = str(entry.get("text") or "").strip()
            if not text:
                raise ValueError("requirement entry is missing text")

            fields = extract_fields(text)
            declared = entry.get("fields") or {}
            if not isinstance(declared, dict):
                raise TypeError("requirement fields must be an object")
            fields.update({str(k): str(v) for k, v in declared.items()})

            citation = None
            raw_citation = entry.get("citation")
            if isinstance(raw_citation, dict) and raw_citation.get("source"):
                citation = Citation(
                    source=str(raw_citation["source"]),
                    locator=raw_citation.get("locator"),
                )

            statements.append(
                TierStatement(
                    tier=tier,
                    text=text,
                    requirement_id=entry.get("id"),
                    fields=fields,
                    citation=citation,
                    retrieved_at=(
                        parse_timestamp(entry.get("retrieved_at"))
                        or retrieved_at
                    ),
                    severity_hint=_parse_severity(entry.get("severity")),
                )
            )

        return statements

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _segments(self, content: str) -> List[str]:
        segments: List[str] = []
        paragraph: List[str] = []

        def flush() -> None:
            if paragraph:
                text = " ".join(paragraph)
                segments.extend(_SENTENCE_SPLIT_RE.split(text))
                paragraph.clear()

        for line in content.splitlines():
            if not line.strip():
                flush()
                continue
            if _BULLET_RE.match(line):
                flush()
                segments.append(_BULLET_RE.sub("", line, count=1))
                continue
            paragraph.append(line.strip())

        flush()
        return [s.strip() for s in segments if s.strip()]

    def _build_statement(
        self,
        tier: Tier,
        segment: str,
        *,
        default_citation: Optional[Citation],
        retrieved_at: Optional[datetime],
    ) -> Optional[TierStatement]:
        text = segment

        requirement_id = None
        match = _REQ_ID_MARKER_RE.search(text)
        if match:
            requirement_id = match.group(1)
            text = _REQ_ID_MARKER_RE.sub("", text)
        else:
            match = _LEADING_REQ_ID_RE.match(text)
            if match:
                requirement_id = match.group(1)
                text = text[match.end():]

        severity_hint = None
        match = _SEVERITY_MARKER_RE.search(text)
        if match:
            severity_hint = Severity(match.group(1).lower())
            text = _SEVERITY_MARKER_RE.sub("", text)

        citation = default_citation
        match = _CITE_MARKER_RE.search(text)
        if match:
            citation = Citation(source=match.group(1), locator=match.group(2))
            text = _CITE_MARKER_RE.sub("", text)

        text = re.sub(r"\s+", " ", text).strip()
        if len(text) < self.min_statement_length:
            return None
        if len(text) > self.max_statement_length:
            text = text[: self.max_statement_length] + "..."

        return TierStatement(
            tier=tier,
            text=text,
            requirement_id=requirement_id,
            fields=extract_fields(text),
            citation=citation,
            retrieved_at=retrieved_at,
            severity_hint=severity_hint,
        )
