# src/plancheck/reporting.py

"""
reporting.py
============

Serialización del Report a estructuras planas (dict / JSON) con un
contrato de campos estable para las capas de presentación:

    {category, severity, name, message, checklistItems}

No formatea texto ni colores: eso vive en la capa de presentación.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Optional

from plancore.snapshot import Category, Finding, Report, Severity


def _plain(value: Any) -> Any:
    # details congelados → dict/list para JSON
    if isinstance(value, Mapping):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_plain(v) for v in value]
    return value


def finding_to_dict(finding: Finding, include_details: bool = False) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "category": finding.category.value,
        "severity": finding.severity.value,
        "name": finding.name,
        "message": finding.message,
        "checklistItems": list(finding.checklist_items),
    }
    if include_details:
        out["details"] = _plain(finding.details)
    return out


def report_to_dict(report: Report, include_details: bool = False) -> Dict[str, Any]:
    """
    Dict determinista del reporte:

        {
          "planId": ...,
          "summary": {"numFindings", "numCritical", "numWarnings", "highestSeverity"},
          "categories": [
              {"category": "Plan", "findings": [ {...}, ... ]},
              ...
          ]
        }
    """
    return {
        "planId": report.plan_id,
        "summary": {
            "numFindings": report.num_findings,
            "numCritical": report.num_critical,
            "numWarnings": report.num_warnings,
            "highestSeverity": report.highest_severity.value,
        },
        "categories": [
            {
                "category": cat.value,
                "findings": [finding_to_dict(f, include_details) for f in items],
            }
            for cat, items in report.sections
        ],
    }


def report_to_json(report: Report, include_details: bool = False, indent: Optional[int] = 2) -> str:
    return json.dumps(
        report_to_dict(report, include_details),
        ensure_ascii=False,
        indent=indent,
        default=str,
    )


def filter_findings(
    report: Report,
    min_severity: Severity = Severity.INFO,
    categories: Optional[List[Category]] = None,
) -> List[Finding]:
    """
    Findings con severidad >= min_severity, opcionalmente restringidos a
    algunas categorías, en el orden del reporte.
    """
    wanted = set(categories) if categories is not None else set(report.categories)
    return [
        f for cat, items in report.sections if cat in wanted
        for f in items if f.severity.rank >= min_severity.rank
    ]


def pending_checklist(report: Report) -> List[str]:
    """Todos los items de checklist del reporte, sin duplicados, en orden."""
    seen: List[str] = []
    for f in report.all_findings:
        for item in f.checklist_items:
            if item not in seen:
                seen.append(item)
    return seen
