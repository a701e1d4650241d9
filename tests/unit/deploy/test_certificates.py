"""Tests for ACM certificate provisioning."""

from __future__ import annotations

import pytest
from aws_fakes import FakeAcm, FakeRoute53

from sitedeck.deploy.aws.certificates import (
    CertificateState,
    await_issuance,
    delete_certificate,
    find_existing_certificate,
    get_certificate_tags,
    provision_certificate,
    publish_validation_records,
)
from sitedeck.deploy.events import EventRecorder
from sitedeck.lib.errors import CertificateError, DnsError


def _provision(acm: FakeAcm, route53: FakeRoute53, **kwargs: object):
    params: dict = {
        "domain": "example.com",
        "alternative_names": ["www.example.com"],
        "app": "site",
        "environment": "prod",
    }
    params.update(kwargs)
    return provision_certificate(acm, route53, **params)


class TestFindExistingCertificate:
    """Tests for reusing issued certificates."""

    def test_exact_names(self) -> None:
        acm = FakeAcm()
        arn = acm.add_certificate("example.com", ["www.example.com"])
        assert find_existing_certificate(acm, "example.com", ["www.example.com"]) == arn

    def test_wildcard_covers_one_label(self) -> None:
        acm = FakeAcm()
        arn = acm.add_certificate("*.example.com", ["example.com"])
        assert find_existing_certificate(acm, "www.example.com", ["example.com"]) == arn
        assert find_existing_certificate(acm, "a.b.example.com") is None

    def test_missing_alias_is_not_covered(self) -> None:
        acm = FakeAcm()
        acm.add_certificate("example.com")
        found = find_existing_certificate(acm, "example.com", ["www.example.com"])
        assert found is None

    def test_pending_certificates_are_ignored(self) -> None:
        acm = FakeAcm()
        acm.add_certificate("example.com", status="PENDING_VALIDATION")
        assert find_existing_certificate(acm, "example.com") is None


class TestProvisionCertificate:
    """Tests for the certificate lifecycle."""

    def test_requests_validates_and_waits(self) -> None:
        acm, route53 = FakeAcm(), FakeRoute53()
        zone_id = route53.add_zone("example.com")
        recorder = EventRecorder()

        result = _provision(acm, route53, reporter=recorder)

        assert result.state == CertificateState.READY
        assert result.requested
        assert acm.certificates[result.arn]["Status"] == "ISSUED"
        assert sorted(route53.record_names(zone_id, "CNAME")) == [
            "_acme.example.com.",
            "_acme.www.example.com.",
        ]
        request = acm.called("RequestCertificate")[0]
        assert request["ValidationMethod"] == "DNS"
        assert request["SubjectAlternativeNames"] == ["example.com", "www.example.com"]
        assert "certificate" in recorder.stages()

    def test_requested_certificate_is_tagged(self) -> None:
        acm, route53 = FakeAcm(), FakeRoute53()
        route53.add_zone("example.com")
        result = _provision(acm, route53)
        tags = get_certificate_tags(acm, result.arn)
        assert tags["sitedeck:auto-created"] == "true"
        assert tags["sitedeck:domain"] == "example.com"

    def test_reuses_issued_certificate(self) -> None:
        acm, route53 = FakeAcm(), FakeRoute53()
        route53.add_zone("example.com")
        arn = acm.add_certificate("example.com", ["www.example.com"])

        result = _provision(acm, route53)

        assert result.arn == arn
        assert not result.requested
        assert not acm.called("RequestCertificate")

    def test_known_arn_is_checked_first(self) -> None:
        acm, route53 = FakeAcm(), FakeRoute53()
        route53.add_zone("example.com")
        arn = acm.add_certificate("example.com", ["www.example.com"])

        result = _provision(acm, route53, known_arn=arn)

        assert result.arn == arn
        assert not acm.called("ListCertificates")

    def test_pending_known_arn_resumes_validation(self) -> None:
        acm, route53 = FakeAcm(), FakeRoute53()
        route53.add_zone("example.com")
        arn = acm.add_certificate(
            "example.com", ["www.example.com"], status="PENDING_VALIDATION"
        )

        result = _provision(acm, route53, known_arn=arn)

        assert result.arn == arn
        assert result.state == CertificateState.READY
        assert not acm.called("RequestCertificate")

    def test_created_zone_reports_name_servers(self) -> None:
        acm, route53 = FakeAcm(), FakeRoute53()
        recorder = EventRecorder()

        result = _provision(acm, route53, reporter=recorder)

        assert result.zone is not None and result.zone.created
        warning = recorder.warnings[0]
        assert warning.data["name_servers"] == result.zone.name_servers

    def test_subdomain_without_zone(self) -> None:
        with pytest.raises(DnsError):
            _provision(FakeAcm(), FakeRoute53(), domain="blog.example.com")

    def test_validation_failure(self) -> None:
        acm, route53 = FakeAcm(), FakeRoute53()
        route53.add_zone("example.com")
        acm.fail_status = "FAILED"

        with pytest.raises(CertificateError, match="CAA_ERROR"):
            _provision(acm, route53)

    def test_timeout_carries_name_servers(self) -> None:
        """A stuck certificate points the user at registrar delegation."""
        acm, route53 = FakeAcm(), FakeRoute53()
        route53.add_zone("example.com")
        acm.issue_after = None

        with pytest.raises(CertificateError, match="timed out") as exc_info:
            _provision(acm, route53, timeout=120)

        error = exc_info.value
        assert error.domain == "example.com"
        assert len(error.name_servers) == 4
        assert error.name_servers[0] in error.message


class TestValidationRecords:
    def test_waits_for_records(self, fake_clock) -> None:
        acm, route53 = FakeAcm(), FakeRoute53()
        zone_id = route53.add_zone("example.com")
        acm.records_after = 2
        arn = acm.add_certificate("example.com", status="PENDING_VALIDATION")

        names = publish_validation_records(acm, route53, arn, zone_id, delay=5.0)

        assert names == ["_acme.example.com"]
        assert fake_clock.sleeps == [5.0, 5.0]

    def test_records_never_appear(self) -> None:
        acm, route53 = FakeAcm(), FakeRoute53()
        zone_id = route53.add_zone("example.com")
        acm.records_after = 100
        arn = acm.add_certificate("example.com", status="PENDING_VALIDATION")

        with pytest.raises(CertificateError, match="did not generate"):
            publish_validation_records(acm, route53, arn, zone_id, attempts=3)

    def test_await_issuance_polls(self, fake_clock) -> None:
        acm = FakeAcm()
        acm.issue_after = 3
        arn = acm.add_certificate("example.com", status="PENDING_VALIDATION")

        detail = await_issuance(acm, arn, timeout=600, interval=30)

        assert detail["Status"] == "ISSUED"
        assert fake_clock.sleeps == [30, 30, 30]


class TestDeleteCertificate:
    def test_delete(self) -> None:
        acm = FakeAcm()
        arn = acm.add_certificate("example.com")
        assert delete_certificate(acm, arn) is True
        assert arn not in acm.certificates

    def test_already_gone(self) -> None:
        arn = "arn:aws:acm:us-east-1:1:certificate/x"
        assert delete_certificate(FakeAcm(), arn) is False

    def test_in_use(self) -> None:
        acm = FakeAcm()
        arn = acm.add_certificate("example.com")
        acm.in_use.add(arn)
        with pytest.raises(CertificateError, match="still in use"):
            delete_certificate(acm, arn)
