"""Read-only enforcement for outbound Graph requests."""

import pytest

from m365_license_engine.safety.guardian import SafetyGuardian, SafetyViolation

BASE = "https://graph.microsoft.com/v1.0"


@pytest.mark.parametrize("method", ["GET", "get", "HEAD", "OPTIONS"])
def test_read_methods_allowed(method):
    assert SafetyGuardian().validate_request(method, f"{BASE}/users?$top=999")


@pytest.mark.parametrize("method", ["POST", "PATCH", "PUT", "DELETE"])
def test_write_methods_blocked(method):
    guardian = SafetyGuardian()

    with pytest.raises(SafetyViolation, match="Write method blocked"):
        guardian.validate_request(method, f"{BASE}/users")

    assert guardian.violations[0]["method"] == method


@pytest.mark.parametrize(
    "path",
    [
        "users/u1/assignLicense",
        "users/u1/ASSIGNLICENSE",
        "users/u1/reprocessLicenseAssignment",
        "users/u1/licenseDetails/abc/remove",
    ],
)
def test_license_write_urls_blocked_even_for_get(path):
    with pytest.raises(SafetyViolation, match="License-write URL"):
        SafetyGuardian().validate_request("GET", f"{BASE}/{path}")


def test_license_details_read_allowed():
    assert SafetyGuardian().validate_request("GET", f"{BASE}/users/u1/licenseDetails")


def test_audit_record():
    guardian = SafetyGuardian()
    guardian.validate_request("GET", f"{BASE}/subscribedSkus")
    assert guardian.get_audit_record()["status"] == "CLEAN"

    with pytest.raises(SafetyViolation):
        guardian.validate_request("DELETE", f"{BASE}/users/u1")

    record = guardian.get_audit_record()
    assert record["checks_performed"] == 2
    assert record["violations_detected"] == 1
    assert record["status"] == "VIOLATIONS_DETECTED"
