"""
Unit tests for status and validation reports.
"""
import os
from datetime import datetime, timezone

from certs.models import Domain, RotationOutcome, RotationRecord
from certs.status import (
    SEVERITY_CRITICAL,
    SEVERITY_OK,
    SEVERITY_WARNING,
    all_statuses,
    check_permissions,
    domain_status,
    validate_domain,
)
from tests.factories import DOMAIN, make_malformed_san_pair, plant_slot


def failure_record(domain=DOMAIN.name):
    return RotationRecord(
        domain=domain,
        timestamp=datetime.now(timezone.utc),
        outcome=RotationOutcome.FAILURE,
        reason="CA unreachable",
        error_type="IssuanceFailed",
    )


class TestDomainStatus:
    """Tests for domain_status()."""

    def test_healthy_domain(self, store, rotation_log, published):
        generation = published(days=200)
        status = domain_status(store, rotation_log, DOMAIN.name, 30)

        assert status.state == "valid"
        assert status.severity == SEVERITY_OK
        assert status.generation == generation
        assert status.days_until_expiry in (199, 200)
        assert status.self_signed is True
        assert "www.example.test" in status.names
        assert not status.expired_rotation_failed

    def test_expiring_domain_is_warning(self, store, rotation_log, published):
        published(days=10)
        status = domain_status(store, rotation_log, DOMAIN.name, 30)
        assert status.state == "expiring_soon"
        assert status.severity == SEVERITY_WARNING

    def test_missing_domain_is_critical(self, store, rotation_log):
        status = domain_status(store, rotation_log, DOMAIN.name, 30)
        assert status.state == "missing"
        assert status.severity == SEVERITY_CRITICAL

    def test_corrupt_pointer_is_critical(self, store, rotation_log):
        store.domain_dir(DOMAIN.name).mkdir(parents=True)
        os.symlink("slots/000003", store.pointer_path(DOMAIN.name))
        status = domain_status(store, rotation_log, DOMAIN.name, 30)
        assert status.state == "corrupt"
        assert status.severity == SEVERITY_CRITICAL
        assert status.error

    def test_malformed_san_is_corrupt(self, store, rotation_log):
        plant_slot(store, DOMAIN.name, *make_malformed_san_pair())
        status = domain_status(store, rotation_log, DOMAIN.name, 30)
        assert status.state == "corrupt"
        assert status.severity == SEVERITY_CRITICAL
        assert "unreadable" in status.error

    def test_expired_and_failed_is_flagged(self, store, rotation_log, published):
        """Expired plus a failed last attempt is distinguishable from healthy."""
        published(days=-2)
        rotation_log.append(failure_record())

        status = domain_status(store, rotation_log, DOMAIN.name, 30)

        assert status.state == "expired"
        assert status.severity == SEVERITY_CRITICAL
        assert status.expired_rotation_failed
        assert status.last_record.error_type == "IssuanceFailed"

    def test_expiring_and_failed_not_flagged(self, store, rotation_log, published):
        published(days=10)
        rotation_log.append(failure_record())
        status = domain_status(store, rotation_log, DOMAIN.name, 30)
        assert not status.expired_rotation_failed

    def test_to_dict_is_json_friendly(self, store, rotation_log, published):
        published(days=200)
        data = domain_status(store, rotation_log, DOMAIN.name, 30).to_dict()
        assert isinstance(data["not_after"], str)
        assert data["last_record"] is None

    def test_all_statuses(self, store, rotation_log, published):
        published(days=200)
        statuses = all_statuses(store, rotation_log, [DOMAIN, Domain("other.test")], 30)
        assert [s.severity for s in statuses] == [SEVERITY_OK, SEVERITY_CRITICAL]


class TestValidateDomain:
    """Tests for validate_domain() and check_permissions()."""

    def test_valid_live_pair(self, store, published):
        published(days=200)
        report = validate_domain(store, DOMAIN)
        assert report.ok
        assert report.problems == []

    def test_no_live_certificate(self, store):
        report = validate_domain(store, DOMAIN)
        assert not report.ok
        assert report.problems == ["no live certificate"]

    def test_uncovered_name_reported(self, store, published):
        published(days=200, names=["example.test"])
        report = validate_domain(store, DOMAIN)
        assert not report.ok
        assert "www.example.test" in report.problems[0]

    def test_loose_key_permissions_reported(self, store, published):
        generation = published(days=200)
        slot = store.slot(DOMAIN.name, generation)
        os.chmod(slot.key_path, 0o644)

        assert check_permissions(slot) == ["privkey.pem has mode 0644, expected 0600"]
        assert not validate_domain(store, DOMAIN).ok
