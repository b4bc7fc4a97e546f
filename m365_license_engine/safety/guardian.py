"""
Safety Guardian — Keeps every Graph call read-only.
License lookups never need to write, so anything but GET/HEAD is refused.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

logger = logging.getLogger("m365_license_engine.safety")

READ_METHODS = {"GET", "HEAD", "OPTIONS"}

# License-management actions that must never be reached, whatever the method
BLOCKED_URL_PATTERNS = [
    re.compile(r"/assignLicense$", re.IGNORECASE),
    re.compile(r"/reprocessLicenseAssignment$", re.IGNORECASE),
    re.compile(r"/licenseDetails/.+/(remove|update)$", re.IGNORECASE),
]


class SafetyViolation(Exception):
    """Raised when a write operation is attempted."""
    pass


class SafetyGuardian:
    """
    Validates outbound requests and keeps an audit trail of refusals.
    """

    def __init__(self):
        self.violations: list[dict] = []
        self.checks_performed: int = 0
        self.started_at: str = datetime.now(timezone.utc).isoformat()

    def validate_request(self, method: str, url: str) -> bool:
        """Return True for a safe request, raise SafetyViolation otherwise."""
        self.checks_performed += 1
        method_upper = method.upper()

        for pattern in BLOCKED_URL_PATTERNS:
            if pattern.search(url.split("?", 1)[0]):
                self._record_violation(method_upper, url, "License-write URL blocked")
                raise SafetyViolation(
                    f"SAFETY VIOLATION: License-write URL detected: {method_upper} {url}"
                )

        if method_upper not in READ_METHODS:
            self._record_violation(method_upper, url, "Write HTTP method blocked")
            raise SafetyViolation(
                f"SAFETY VIOLATION: Write method blocked: {method_upper} {url}"
            )
        return True

    def _record_violation(self, method: str, url: str, reason: str):
        self.violations.append({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "method": method,
            "url": url,
            "reason": reason,
        })
        logger.critical(f"SAFETY VIOLATION: {reason} — {method} {url}")

    def get_audit_record(self) -> dict:
        return {
            "mode": "READ-ONLY",
            "started_at": self.started_at,
            "checks_performed": self.checks_performed,
            "violations_detected": len(self.violations),
            "status": "CLEAN" if not self.violations else "VIOLATIONS_DETECTED",
        }

    @staticmethod
    def print_banner():
        print("=" * 70)
        print("  READ-ONLY LICENSE LOOKUP -- NO TENANT CHANGES WILL BE MADE")
        print("  * Only GET requests are sent to Microsoft Graph")
        print("  * License assignments are read, never modified")
        print("=" * 70)
