"""Read-only access to sites and licenses for the runtime gate.

SiteRecord and LicenseRecord are detached snapshots so no ORM session outlives
the lookup. TenantDirectory is the interface the gate depends on;
SqlTenantDirectory implements it over the platform's tables.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import select

from storechat.db import SessionFactory
from storechat.models import License, Site
from storechat.rag.retrieval import UUID_RE


@dataclass(frozen=True)
class LicenseRecord:
    id: str
    tenant_id: str
    status: str
    expires_at: Optional[datetime] = None
    plan_limits: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SiteRecord:
    id: str
    tenant_id: str
    license_id: Optional[str]
    status: str
    site_url: str = ""
    site_name: Optional[str] = None
    allowed_origins: List[str] = field(default_factory=list)
    site_context: Dict[str, Any] = field(default_factory=dict)


class TenantDirectory(Protocol):
    def get_site(self, site_id: str) -> Optional[SiteRecord]:
        ...

    def get_license(self, license_id: str) -> Optional[LicenseRecord]:
        ...


class SqlTenantDirectory:
    """TenantDirectory over the sites and licenses tables."""

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    def get_site(self, site_id: str) -> Optional[SiteRecord]:
        if not site_id or not UUID_RE.match(site_id):
            return None
        session = self.session_factory()
        try:
            site = session.execute(select(Site).where(Site.id == site_id)).scalar_one_or_none()
            if site is None:
                return None
            return SiteRecord(
                id=str(site.id),
                tenant_id=str(site.tenant_id),
                license_id=str(site.license_id) if site.license_id else None,
                status=site.status,
                site_url=site.site_url,
                site_name=site.site_name,
                allowed_origins=list(site.allowed_origins or []),
                site_context=dict(site.site_context or {}),
            )
        finally:
            session.close()

    def get_license(self, license_id: str) -> Optional[LicenseRecord]:
        if not license_id or not UUID_RE.match(license_id):
            return None
        session = self.session_factory()
        try:
            lic = session.execute(select(License).where(License.id == license_id)).scalar_one_or_none()
            if lic is None:
                return None
            return LicenseRecord(
                id=str(lic.id),
                tenant_id=str(lic.tenant_id),
                status=lic.status,
                expires_at=lic.expires_at,
                plan_limits=dict(lic.plan_limits or {}),
            )
        finally:
            session.close()
