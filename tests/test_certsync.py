"""Tests for the certificate sync engine."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from signvault.certsync import (
    CertificateSyncEngine,
    metadata_key,
    password_key,
    sanitize_serial,
    value_key,
)
from signvault.models import CertificateRef, CertificateSecretMetadata, SecretLocation

from tests.conftest import FakeCredentialStore, make_identity


@pytest.fixture
def engine(active_registry, local_store) -> CertificateSyncEngine:
    return CertificateSyncEngine(active_registry, local_store)


def _cert(serial: str, cert_id: str = "cert-1") -> CertificateRef:
    return CertificateRef(id=cert_id, serial_number=serial, name="Apple Distribution: Test",
                          certificate_type="DISTRIBUTION",
                          expiration_date=datetime(2027, 1, 1, tzinfo=timezone.utc))


# ---------------------------------------------------------------------------
# Serial handling
# ---------------------------------------------------------------------------


class TestSanitizeSerial:
    """Join key normalisation."""

    @pytest.mark.parametrize("raw,expected", [
        ("0a:1b:2c", "A1B2C"),
        ("00ABC", "ABC"),
        ("ab-cd ef", "ABCDEF"),
        ("", ""),
        (None, ""),
        ("000", ""),
    ])
    def test_examples(self, raw, expected) -> None:
        assert sanitize_serial(raw) == expected

    def test_idempotent(self) -> None:
        once = sanitize_serial("0x-0F:aa")
        assert sanitize_serial(once) == once

    def test_derived_keys(self) -> None:
        assert value_key("0a1b") == "CERT_A1B_P12"
        assert password_key("0a1b") == "CERT_A1B_PWD"
        assert metadata_key("0a1b") == "CERT_A1B_META"


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


class TestStatuses:
    """Local vs. cloud classification."""

    def test_all_four_locations(self, engine, local_store, memory_backend, onepassword_config) -> None:
        local_store.identities = [
            make_identity("0a-b"), make_identity("CD"), make_identity("EF", valid=False),
        ]
        memory_backend.secrets = {
            "CERT_AB_P12": b"x", "CERT_GH_P12": b"y", "CERT_IJ_PWD": b"z",
        }
        certs = [_cert("ab", "1"), _cert("cd", "2"), _cert("gh", "3"), _cert("ef", "4"), _cert("ij", "5")]

        statuses = {s.certificate_id: s for s in engine.get_statuses(certs)}
        assert statuses["1"].location == SecretLocation.BOTH
        assert statuses["2"].location == SecretLocation.LOCAL_ONLY
        assert statuses["3"].location == SecretLocation.CLOUD_ONLY
        assert statuses["4"].location == SecretLocation.NONE
        assert statuses["5"].location == SecretLocation.NONE
        assert statuses["3"].backend_id == onepassword_config.id
        assert statuses["3"].secret_key == "CERT_GH_P12"
        assert statuses["2"].backend_id is None
        assert statuses["2"].secret_key is None

    def test_empty_serial_is_none(self, engine, local_store) -> None:
        local_store.identities = [make_identity("")]
        (status,) = engine.get_statuses([_cert("")])
        assert status.location == SecretLocation.NONE

    def test_no_active_backend(self, registry, local_store) -> None:
        local_store.identities = [make_identity("AB")]
        engine = CertificateSyncEngine(registry, local_store)
        (status,) = engine.get_statuses([_cert("AB")])
        assert status.location == SecretLocation.LOCAL_ONLY

    def test_list_failure_treated_as_empty(self, engine, local_store, memory_backend) -> None:
        local_store.identities = [make_identity("AB")]
        memory_backend.secrets = {"CERT_AB_P12": b"x"}
        memory_backend.list_error = RuntimeError("network down")
        (status,) = engine.get_statuses([_cert("AB")])
        assert status.location == SecretLocation.LOCAL_ONLY

    def test_unsupported_local_store(self, active_registry, memory_backend) -> None:
        store = FakeCredentialStore([make_identity("AB")], supported=False)
        memory_backend.secrets = {"CERT_AB_P12": b"x"}
        engine = CertificateSyncEngine(active_registry, store)
        (status,) = engine.get_statuses([_cert("AB")])
        assert status.location == SecretLocation.CLOUD_ONLY

    def test_find_local_identity(self, engine, local_store) -> None:
        local_store.identities = [make_identity("00AB"), make_identity("CD")]
        assert engine.find_local_identity("ab").serial_number == "00AB"
        assert engine.find_local_identity("ZZ") is None
        assert engine.find_local_identity("") is None


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------


class TestUpload:
    """Three-key upload with rollback."""

    def test_stores_three_keys(self, engine, memory_backend) -> None:
        with patch("signvault.certsync.socket.gethostname", return_value="build-mac"):
            assert engine.upload_to_cloud(_cert("0AB"), b"p12-bytes", "s3cret") is True

        assert memory_backend.secrets["CERT_AB_P12"] == b"p12-bytes"
        assert memory_backend.secrets["CERT_AB_PWD"] == b"s3cret"
        meta = CertificateSecretMetadata.model_validate_json(memory_backend.secrets["CERT_AB_META"])
        assert meta.certificate_id == "cert-1"
        assert meta.serial_number == "0AB"
        assert meta.certificate_type == "DISTRIBUTION"
        assert meta.created_by_machine == "build-mac"
        assert [k for op, k in memory_backend.calls if op == "store"] == [
            "CERT_AB_P12", "CERT_AB_PWD", "CERT_AB_META",
        ]

    def test_explicit_metadata_used(self, engine, memory_backend) -> None:
        meta = CertificateSecretMetadata(certificate_id="other", serial_number="AB", common_name="X")
        assert engine.upload_to_cloud(_cert("AB"), b"p", "pw", metadata=meta) is True
        stored = CertificateSecretMetadata.model_validate_json(memory_backend.secrets["CERT_AB_META"])
        assert stored.common_name == "X"

    def test_password_failure_rolls_back(self, engine, memory_backend) -> None:
        memory_backend.fail_store.add("CERT_AB_PWD")
        assert engine.upload_to_cloud(_cert("AB"), b"p", "pw") is False
        assert memory_backend.secrets == {}
        assert ("delete", "CERT_AB_P12") in memory_backend.calls

    def test_cancel_after_value_rolls_back(self, engine, memory_backend) -> None:
        cancel = threading.Event()
        memory_backend.after_store = lambda key: cancel.set()
        assert engine.upload_to_cloud(_cert("AB"), b"p", "pw", cancel=cancel) is False
        assert memory_backend.secrets == {}
        assert ("store", "CERT_AB_PWD") not in memory_backend.calls

    def test_cancel_before_start(self, engine, memory_backend) -> None:
        cancel = threading.Event()
        cancel.set()
        assert engine.upload_to_cloud(_cert("AB"), b"p", "pw", cancel=cancel) is False
        assert memory_backend.calls == []

    def test_value_failure(self, engine, memory_backend) -> None:
        memory_backend.fail_store.add("CERT_AB_P12")
        assert engine.upload_to_cloud(_cert("AB"), b"p", "pw") is False
        assert ("store", "CERT_AB_PWD") not in memory_backend.calls

    def test_metadata_failure_is_not_fatal(self, engine, memory_backend) -> None:
        memory_backend.fail_store.add("CERT_AB_META")
        assert engine.upload_to_cloud(_cert("AB"), b"p", "pw") is True
        assert set(memory_backend.secrets) == {"CERT_AB_P12", "CERT_AB_PWD"}

    def test_no_active_backend(self, registry, local_store) -> None:
        engine = CertificateSyncEngine(registry, local_store)
        assert engine.upload_to_cloud(_cert("AB"), b"p", "pw") is False

    def test_unusable_serial(self, engine, memory_backend) -> None:
        assert engine.upload_to_cloud(_cert("00"), b"p", "pw") is False
        assert memory_backend.calls == []

    def test_same_serial_uploads_do_not_interleave(self, engine, memory_backend) -> None:
        """Two uploads of one certificate run their three writes back to back."""
        guard = threading.Lock()
        state = {"active": 0, "peak": 0}

        def track(key: str) -> None:
            if key.endswith("_P12"):
                with guard:
                    state["active"] += 1
                    state["peak"] = max(state["peak"], state["active"])
                time.sleep(0.05)
            elif key.endswith("_META"):
                with guard:
                    state["active"] -= 1

        memory_backend.after_store = track
        results = []
        workers = [
            threading.Thread(target=lambda s=s: results.append(engine.upload_to_cloud(_cert(s), b"p", "pw")))
            for s in ("0AB", "ab")
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join(5)

        assert results == [True, True]
        assert state["peak"] == 1
        stores = [k for op, k in memory_backend.calls if op == "store"]
        assert stores == ["CERT_AB_P12", "CERT_AB_PWD", "CERT_AB_META"] * 2


# ---------------------------------------------------------------------------
# Download and delete
# ---------------------------------------------------------------------------


class TestDownload:
    """Install from cloud into the local store."""

    def test_install_by_serial(self, engine, memory_backend, local_store) -> None:
        memory_backend.secrets = {"CERT_AB_P12": b"p12", "CERT_AB_PWD": b"pw"}
        assert engine.download_and_install_by_serial("0ab") is True
        assert local_store.imported == [(b"p12", "pw")]

    def test_missing_password(self, engine, memory_backend, local_store) -> None:
        memory_backend.secrets = {"CERT_AB_P12": b"p12"}
        assert engine.download_and_install_by_serial("AB") is False
        assert local_store.imported == []

    def test_missing_value(self, engine, local_store) -> None:
        assert engine.download_and_install_by_serial("AB") is False
        assert local_store.imported == []

    def test_import_failure(self, engine, memory_backend, local_store) -> None:
        memory_backend.secrets = {"CERT_AB_P12": b"p12", "CERT_AB_PWD": b"pw"}
        local_store.import_result = False
        assert engine.download_and_install_by_serial("AB") is False

    def test_install_by_certificate_id(self, engine, memory_backend, local_store) -> None:
        assert engine.upload_to_cloud(_cert("AB", "wanted"), b"p12", "pw") is True
        assert engine.upload_to_cloud(_cert("CD", "other"), b"other", "pw2") is True
        assert engine.download_and_install("wanted") is True
        assert local_store.imported == [(b"p12", "pw")]

    def test_unknown_certificate_id(self, engine, local_store) -> None:
        assert engine.download_and_install("nope") is False

    def test_metadata_unreadable(self, engine, memory_backend) -> None:
        memory_backend.secrets = {"CERT_AB_META": b"{broken"}
        assert engine.get_certificate_metadata("AB") is None


class TestDelete:
    """Removal of all three keys."""

    def test_deletes_everything(self, engine, memory_backend) -> None:
        engine.upload_to_cloud(_cert("AB"), b"p", "pw")
        assert engine.delete_from_cloud("AB") is True
        assert memory_backend.secrets == {}

    def test_value_failure_decides(self, engine, memory_backend) -> None:
        engine.upload_to_cloud(_cert("AB"), b"p", "pw")
        memory_backend.fail_delete.add("CERT_AB_P12")
        assert engine.delete_from_cloud("AB") is False
        assert set(memory_backend.secrets) == {"CERT_AB_P12"}

    def test_password_failure_ignored(self, engine, memory_backend) -> None:
        engine.upload_to_cloud(_cert("AB"), b"p", "pw")
        memory_backend.fail_delete.add("CERT_AB_PWD")
        assert engine.delete_from_cloud("AB") is True

    def test_no_active_backend(self, registry, local_store) -> None:
        assert CertificateSyncEngine(registry, local_store).delete_from_cloud("AB") is False
