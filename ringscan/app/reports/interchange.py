"""
Report interchange format.

Serializes a ComplianceReport into a tree of plain JSON values with
stable camelCase field names, for hand-off to external renderers:

    scanPath, timestamp,
    ringAvailability[{tier, status, reason}],
    findings[{id, tier, severity, file, lineRange, violationType,
              description, requirement, citation, remediation}],
    reconciliation[{topic, classification, tiersPresent[], recommendation}],
    summary{totalFindings, byTier, bySeverity, byGapClass}

The stable names above never change. Additive fields (latencyMs,
lowConfidence, conflicts, ...) may appear alongside them.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List

from ringscan.app.schemas.availability import RingAvailability
from ringscan.app.schemas.findings import Finding
from ringscan.app.schemas.reconciliation import ReconciliationRecord
from ringscan.app.schemas.report import ComplianceReport
from ringscan.app.schemas.topics import RequirementTopic


INTERCHANGE_VERSION = "1.0"


def _availability(entry: RingAvailability) -> Dict[str, Any]:
    return {
        "tier": entry.tier.value,
        "status": entry.status.value,
        "reason": entry.reason.value if entry.reason else None,
        "latencyMs": (
            round(entry.latency_ms, 1) if entry.latency_ms is not None else None
        ),
        "invocations": entry.invocations,
        "detail": entry.detail,
    }


def _finding(finding: Finding) -> Dict[str, Any]:
    return {
        "id": finding.finding_id,
        "tier": finding.tier.value,
        "severity": finding.severity.value,
        "file": finding.file,
        "lineRange": {
            "start": finding.line_range.start,
            "end": finding.line_range.end,
        },
        "violationType": finding.violation_type,
        "description": finding.description,
        "requirement": finding.requirement,
        "citation": finding.citation,
        "remediation": finding.remediation,
        "topic": finding.topic_id,
    }


def _record(record: ReconciliationRecord) -> Dict[str, Any]:
    return {
        "topic": record.topic_id,
        "classification": record.classification.value,
        "tiersPresent": [t.value for t in record.tiers_present],
        "recommendation": record.recommendation,
        "topicLabel": record.topic_label,
        "tiersAbsent": [t.value for t in record.tiers_absent],
        "tiersNotConsulted": [t.value for t in record.tiers_not_consulted],
        "priority": record.priority,
        "lowConfidence": record.low_confidence,
        "conflicts": [
            {
                "field": c.field_name,
                "baselineTier": c.baseline_tier.value,
                "baselineValue": c.baseline_value,
                "targetTier": c.target_tier.value,
                "targetValue": c.target_value,
            }
            for c in record.conflicts
        ],
        "findingIds": list(record.finding_ids),
    }


def _topic(topic: RequirementTopic) -> Dict[str, Any]:
    return {
        "id": topic.topic_id,
        "label": topic.label,
        "category": topic.category,
        "tiers": [t.value for t in topic.tiers],
        "matchMethod": topic.match_method.value,
        "lowConfidence": topic.low_confidence,
    }


def to_interchange(report: ComplianceReport) -> Dict[str, Any]:
    """
    Project a ComplianceReport onto the interchange tree.
    """
    metadata = report.metadata
    summary = report.summary

    findings: List[Dict[str, Any]] = [_finding(f) for f in report.findings]

    return {
        "interchangeVersion": INTERCHANGE_VERSION,
        "scanId": metadata.scan_id,
        "scanPath": metadata.scan_path,
        "timestamp": metadata.timestamp.isoformat(),
        "mode": metadata.mode.value,
        "deadlineExceeded": metadata.deadline_exceeded,
        "agentFailure": metadata.agent_failure,
        "unattributedCandidates": metadata.unattributed_candidates,
        "ringAvailability": [_availability(e) for e in report.ring_availability],
        "findings": findings,
        "reconciliation": [_record(r) for r in report.reconciliation],
        "topics": [_topic(t) for t in report.topics],
        "summary": {
            "totalFindings": summary.total_findings,
            "byTier": dict(summary.by_tier),
            "bySeverity": dict(summary.by_severity),
            "byGapClass": dict(summary.by_gap_class),
            "totalTopics": summary.total_topics,
            "tiersConsulted": summary.tiers_consulted,
        },
    }


def pretty_json(data: Any) -> str:
    """
    Pretty-print JSON for human-readable output. Key order is preserved.
    """
    return json.dumps(
        data,
        ensure_ascii=False,
        allow_nan=False,
        indent=2,
        separators=(", ", ": "),
    )


def dumps(report: ComplianceReport) -> str:
    return pretty_json(to_interchange(report))
