"""Runtime gate for public chat endpoints.

The gate walks a fixed sequence of states and stops at the first failure:

    ORIGIN_PRESENT → SITE_FOUND → SITE_ACTIVE → LICENSE_ACTIVE (kill switch)
    → LICENSE_STATUS_ACTIVE → ORIGIN_ALLOWLISTED → USAGE_WITHIN_LIMIT → PASSED

Cheap checks run before the ones that hit the database again. The license kill
switch is also exposed on its own for endpoints that skip origin validation.
Every failure is raised as a GateError with a stable code; SITE_NOT_FOUND maps
to 404 and everything else to 403.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from storechat.errors import GateError
from storechat.tenancy import LicenseRecord, SiteRecord, TenantDirectory
from storechat.usage import UsageMeter
from storechat.utils import normalize_origin

logger = logging.getLogger(__name__)


class GateState(enum.Enum):
    ORIGIN_PRESENT = "origin_present"
    SITE_FOUND = "site_found"
    SITE_ACTIVE = "site_active"
    LICENSE_ACTIVE = "license_active"
    LICENSE_STATUS_ACTIVE = "license_status_active"
    ORIGIN_ALLOWLISTED = "origin_allowlisted"
    USAGE_WITHIN_LIMIT = "usage_within_limit"
    PASSED = "passed"


GATE_SEQUENCE = (
    GateState.ORIGIN_PRESENT,
    GateState.SITE_FOUND,
    GateState.SITE_ACTIVE,
    GateState.LICENSE_ACTIVE,
    GateState.LICENSE_STATUS_ACTIVE,
    GateState.ORIGIN_ALLOWLISTED,
    GateState.USAGE_WITHIN_LIMIT,
)

SITE_STATUS_ERRORS = {
    "disabled": ("SITE_DISABLED", "This site has been detached. Chat is unavailable."),
    "revoked": ("SITE_REVOKED", "This site has been revoked. Chat is unavailable."),
}


def gate_error(code: str, message: str, state: GateState, details: Optional[dict] = None) -> GateError:
    status = 404 if code == "SITE_NOT_FOUND" else 403
    err = GateError(message, code=code, status_code=status, details=details)
    err.state = state
    return err


@dataclass(frozen=True)
class GatePass:
    """Validated site and license handed to the wrapped handler."""
    site: SiteRecord
    license: LicenseRecord
    origin: str


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _license_verdict(license: Optional[LicenseRecord], now: datetime) -> Optional[tuple]:
    """Return (code, message) when the license must block service, else None."""
    if license is None:
        return "LICENSE_NOT_FOUND", "License not found. Service is unavailable."
    if license.status == "revoked":
        return "LICENSE_REVOKED", "License has been revoked. Service is unavailable."
    if license.status == "expired" or (license.expires_at and _as_utc(license.expires_at) < now):
        return "LICENSE_EXPIRED", "License has expired. Service is unavailable."
    if license.status != "active":
        return "LICENSE_INVALID", "License is not valid. Service is unavailable."
    return None


def check_license_kill_switch(
    directory: TenantDirectory, site_id: str, now: Optional[datetime] = None
) -> LicenseRecord:
    """Fail fast when the site's license is revoked, expired or otherwise invalid.

    Re-reads the site and license on every call so a revocation takes effect on
    the next request.

    Args:
        directory: Site/license lookups.
        site_id: Site being served.
        now: Clock override for expiry checks.

    Returns:
        LicenseRecord: The active license.

    Raises:
        GateError: SITE_NOT_FOUND, SITE_DISABLED, LICENSE_NOT_FOUND,
            LICENSE_REVOKED, LICENSE_EXPIRED or LICENSE_INVALID.
    """
    now = now or datetime.now(timezone.utc)
    site = directory.get_site(site_id)
    if site is None:
        raise gate_error("SITE_NOT_FOUND", "Site not found", GateState.LICENSE_ACTIVE)
    if site.status != "active":
        raise gate_error("SITE_DISABLED", "Site is disabled", GateState.LICENSE_ACTIVE)

    license = directory.get_license(site.license_id) if site.license_id else None
    verdict = _license_verdict(license, now)
    if verdict:
        code, message = verdict
        logger.warning("Kill switch blocked site %s: %s", site_id, code)
        raise gate_error(code, message, GateState.LICENSE_ACTIVE)
    return license


def origin_allowed(origin: str, allowed_origins) -> bool:
    """Compare normalized origins; unparsable allowlist entries need an exact match.

    Raises:
        ValueError: If `origin` itself cannot be parsed.
    """
    normalized = normalize_origin(origin)
    for allowed in allowed_origins:
        try:
            if normalize_origin(allowed) == normalized:
                return True
        except ValueError:
            if allowed == origin:
                return True
    return False


class RuntimeGate:
    """Full per-request validation for widget-facing endpoints."""

    def __init__(self, directory: TenantDirectory, usage_meter: Optional[UsageMeter] = None):
        self.directory = directory
        self.usage_meter = usage_meter

    def evaluate(self, site_id: str, origin: Optional[str], now: Optional[datetime] = None) -> GatePass:
        """Run every gate state in order.

        Args:
            site_id: Site named by the request.
            origin: Origin header value.
            now: Clock override for license expiry.

        Returns:
            GatePass: Site, license and origin once every state passed.

        Raises:
            GateError: The first failing state's error.
            StoreChatError: USAGE_CHECK_FAILED when today's usage cannot be read.
        """
        if not origin:
            raise gate_error("MISSING_ORIGIN", "Origin header is required", GateState.ORIGIN_PRESENT)

        site = self.directory.get_site(site_id)
        if site is None:
            raise gate_error("SITE_NOT_FOUND", "Site not found", GateState.SITE_FOUND)

        if site.status != "active":
            code, message = SITE_STATUS_ERRORS.get(
                site.status, ("SITE_INACTIVE", "Site is not active. Chat is unavailable.")
            )
            raise gate_error(code, message, GateState.SITE_ACTIVE)

        license = check_license_kill_switch(self.directory, site_id, now)

        if license.status != "active":
            raise gate_error(
                "LICENSE_INVALID",
                f"License is {license.status}. Chat is unavailable.",
                GateState.LICENSE_STATUS_ACTIVE,
            )

        if not site.allowed_origins:
            raise gate_error(
                "INVALID_ORIGIN", "Site configuration error. Please contact support.", GateState.ORIGIN_ALLOWLISTED
            )
        try:
            allowed = origin_allowed(origin, site.allowed_origins)
        except ValueError:
            raise gate_error("INVALID_ORIGIN", "Invalid origin format", GateState.ORIGIN_ALLOWLISTED)
        if not allowed:
            raise gate_error(
                "INVALID_ORIGIN",
                "Origin not allowed. Contact support to add your domain.",
                GateState.ORIGIN_ALLOWLISTED,
                details={"origin": origin},
            )

        if self.usage_meter is not None:
            check = self.usage_meter.check(site, license, "chat")
            if not check.allowed:
                raise gate_error(
                    "USAGE_LIMIT_EXCEEDED",
                    check.reason or "Usage limit exceeded",
                    GateState.USAGE_WITHIN_LIMIT,
                    details=check.details(),
                )

        return GatePass(site=site, license=license, origin=origin)
