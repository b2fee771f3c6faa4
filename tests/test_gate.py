"""Tests for the runtime gate: in-memory directory and usage store."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from storechat.errors import GateError, StoreChatError
from storechat.gate import GateState, RuntimeGate, check_license_kill_switch, origin_allowed
from storechat.usage import UsageMeter, UsageSnapshot
from tests.conftest import ORIGIN, SITE_ID, FakeDirectory, FakeUsageStore


def _gate(site, license, usage_store=None):
    meter = UsageMeter(usage_store) if usage_store is not None else None
    return RuntimeGate(FakeDirectory([site], [license]), meter)


def _fail(gate, origin=ORIGIN, site_id=SITE_ID):
    with pytest.raises(GateError) as exc:
        gate.evaluate(site_id, origin)
    return exc.value


class TestRuntimeGate:

    def test_passes_active_site(self, active_site, active_license, usage_store):
        gate_pass = _gate(active_site, active_license, usage_store).evaluate(SITE_ID, ORIGIN)

        assert gate_pass.site == active_site
        assert gate_pass.license == active_license
        assert gate_pass.origin == ORIGIN

    def test_missing_origin_checked_first(self, active_site, active_license):
        directory = FakeDirectory([active_site], [active_license])
        err = _fail(RuntimeGate(directory), origin=None)

        assert err.code == "MISSING_ORIGIN"
        assert err.status_code == 403
        assert err.state is GateState.ORIGIN_PRESENT
        assert directory.site_lookups == 0

    def test_unknown_site_is_404(self, active_site, active_license):
        err = _fail(_gate(active_site, active_license), site_id="99999999-9999-4999-8999-999999999999")
        assert err.code == "SITE_NOT_FOUND"
        assert err.status_code == 404

    @pytest.mark.parametrize(
        "status,code",
        [("disabled", "SITE_DISABLED"), ("revoked", "SITE_REVOKED"), ("pending", "SITE_INACTIVE")],
    )
    def test_site_status_codes(self, active_site, active_license, status, code):
        err = _fail(_gate(replace(active_site, status=status), active_license))
        assert err.code == code
        assert err.state is GateState.SITE_ACTIVE

    def test_site_state_wins_over_license_state(self, active_site, active_license):
        site = replace(active_site, status="disabled")
        license = replace(active_license, status="revoked")
        assert _fail(_gate(site, license)).code == "SITE_DISABLED"

    @pytest.mark.parametrize(
        "overrides,code",
        [
            ({"status": "revoked"}, "LICENSE_REVOKED"),
            ({"status": "expired"}, "LICENSE_EXPIRED"),
            ({"expires_at": datetime.now(timezone.utc) - timedelta(days=1)}, "LICENSE_EXPIRED"),
            ({"status": "suspended"}, "LICENSE_INVALID"),
        ],
    )
    def test_license_kill_switch(self, active_site, active_license, overrides, code):
        err = _fail(_gate(active_site, replace(active_license, **overrides)))
        assert err.code == code
        assert err.status_code == 403
        assert err.state is GateState.LICENSE_ACTIVE

    def test_missing_license(self, active_site, active_license):
        site = replace(active_site, license_id=None)
        assert _fail(_gate(site, active_license)).code == "LICENSE_NOT_FOUND"

    def test_empty_allowlist_is_config_error(self, active_site, active_license):
        err = _fail(_gate(replace(active_site, allowed_origins=[]), active_license))
        assert err.code == "INVALID_ORIGIN"
        assert "configuration" in err.message

    def test_origin_not_allowlisted(self, active_site, active_license):
        err = _fail(_gate(active_site, active_license), origin="https://evil.example.net")
        assert err.code == "INVALID_ORIGIN"
        assert err.details == {"origin": "https://evil.example.net"}
        assert err.state is GateState.ORIGIN_ALLOWLISTED

    def test_malformed_origin(self, active_site, active_license):
        err = _fail(_gate(active_site, active_license), origin="not a url")
        assert err.code == "INVALID_ORIGIN"
        assert err.message == "Invalid origin format"

    def test_origin_normalized(self, active_site, active_license):
        gate = _gate(active_site, active_license)
        assert gate.evaluate(SITE_ID, "HTTPS://Shop.Example.com:443/").origin == "HTTPS://Shop.Example.com:443/"
        assert gate.evaluate(SITE_ID, "https://www.example.com").site == active_site

    def test_usage_limit_exceeded(self, active_site, active_license):
        store = FakeUsageStore(UsageSnapshot(chat_requests=100))
        err = _fail(_gate(active_site, active_license, store))

        assert err.code == "USAGE_LIMIT_EXCEEDED"
        assert err.status_code == 403
        assert err.details["current_usage"]["chat_requests"] == 100
        assert err.details["limits"]["max_chat_requests_per_day"] == 100


class TestKillSwitch:

    def test_returns_active_license(self, directory, active_license):
        assert check_license_kill_switch(directory, SITE_ID) == active_license

    def test_expiry_uses_supplied_clock(self, directory):
        later = datetime.now(timezone.utc) + timedelta(days=31)
        with pytest.raises(GateError) as exc:
            check_license_kill_switch(directory, SITE_ID, now=later)
        assert exc.value.code == "LICENSE_EXPIRED"

    def test_naive_expiry_treated_as_utc(self, active_site, active_license):
        naive = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(hours=1)
        license = replace(active_license, expires_at=naive)
        with pytest.raises(GateError):
            check_license_kill_switch(FakeDirectory([active_site], [license]), SITE_ID)


class TestOriginAllowed:

    def test_default_ports_dropped(self):
        assert origin_allowed("https://shop.example.com", ["https://shop.example.com:443"])
        assert origin_allowed("http://shop.example.com:80", ["http://shop.example.com"])

    def test_scheme_and_port_matter(self):
        assert not origin_allowed("http://shop.example.com", ["https://shop.example.com"])
        assert not origin_allowed("https://shop.example.com:8443", ["https://shop.example.com"])

    def test_unparsable_allowlist_entry_needs_exact_match(self):
        assert origin_allowed("https://shop.example.com", ["junk", "https://shop.example.com"])
        assert not origin_allowed("https://a.example.com", ["junk"])

    def test_unparsable_origin_raises(self):
        with pytest.raises(ValueError):
            origin_allowed("junk", ["https://shop.example.com"])


def test_usage_read_failure_is_not_a_gate_denial(active_site, active_license):
    store = FakeUsageStore(read_error=OperationalError("SELECT", {}, Exception("db down")))
    with pytest.raises(StoreChatError) as exc:
        _gate(active_site, active_license, store).evaluate(SITE_ID, ORIGIN)

    assert not isinstance(exc.value, GateError)
    assert exc.value.code == "USAGE_CHECK_FAILED"
    assert exc.value.status_code == 500
