"""
Base analyzer class — Finding data model and analyzer contract.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger("m365_license_engine.analyzers")


@dataclass
class Finding:
    """A single licensing finding from analysis."""
    id: str                              # Unique finding ID (e.g., "CON-001")
    domain: str                          # Domain (conditional_access, ...)
    control_name: str                    # Human-readable title
    detection_logic: str                 # How this was detected
    evidence: Any = None                 # Extracted evidence data
    required_license: str = ""           # Tier needed, e.g. "Entra ID P2"
    recommendation: str = ""
    severity: str = "medium"             # high, medium, low, informational

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "domain": self.domain,
            "control_name": self.control_name,
            "detection_logic": self.detection_logic,
            "evidence": self.evidence,
            "required_license": self.required_license,
            "recommendation": self.recommendation,
            "severity": self.severity,
        }


class BaseAnalyzer(ABC):
    """
    Abstract base class for all analyzers.
    Analyzers receive collected data and produce findings.
    """

    name: str = "base"
    domain: str = "general"
    description: str = "Base analyzer"

    def __init__(self):
        self.findings: list[Finding] = []
        self._finding_counter = 0

    def analyze(self, collected_data: dict[str, Any]) -> list[Finding]:
        """Reset state, run _analyze() and return its findings."""
        self.findings = []
        self._finding_counter = 0
        self._analyze(collected_data)
        logger.info(f"[{self.name}] Analysis complete — {len(self.findings)} findings")
        return self.findings

    @abstractmethod
    def _analyze(self, data: dict[str, Any]):
        """Implement analysis logic. Add findings via self.add_finding()."""
        raise NotImplementedError

    def add_finding(self, **kwargs) -> Finding:
        """Create and register a new finding."""
        self._finding_counter += 1
        prefix = self.domain.upper()[:3]
        finding_id = kwargs.pop("id", f"{prefix}-{self._finding_counter:03d}")

        finding = Finding(id=finding_id, domain=self.domain, **kwargs)
        self.findings.append(finding)
        return finding
