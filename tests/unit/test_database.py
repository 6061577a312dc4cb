"""
Unit tests for SerialDatabase: uniqueness policy, counters, index lines and
the registry transaction.
"""

import re

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import NameOID

from homelab_ca.backend import CryptoBackend
from homelab_ca.database import SerialDatabase, openssl_oneline
from homelab_ca.errors import PreconditionError, UniquenessViolation
from homelab_ca.extensions import ca_extensions
from homelab_ca.models import CertificateRole, KeyAlgorithm


def _cert(cn: str, serial: int) -> x509.Certificate:
    backend = CryptoBackend()
    key = backend.generate_key(KeyAlgorithm.ECDSA)
    subject = x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "NL"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "HA"),
        x509.NameAttribute(NameOID.COMMON_NAME, cn),
    ])
    return backend.self_sign(key, subject, ca_extensions(CertificateRole.TRUSTED_ID).extensions, 30, serial, hashes.SHA384())


@pytest.fixture
def db(tmp_path):
    d = SerialDatabase(tmp_path / "db", newcerts_dir=tmp_path / "newcerts")
    d.initialize(unique_subject=True)
    (tmp_path / "newcerts").mkdir()
    return d


def test_unique_subject_policy(tmp_path):
    """Missing attr file means no; set_unique_subject rewrites it."""
    d = SerialDatabase(tmp_path / "db")
    assert d.unique_subject is False

    d.initialize(unique_subject=False)
    assert d.attr_path.read_text() == "unique_subject = no\n"
    assert d.unique_subject is False

    d.set_unique_subject(True)
    assert d.unique_subject is True


def test_refresh_counters_writes_new_hex(db):
    """refresh_counters() replaces serial and crlnumber with 32 hex digits."""
    before = (db.serial_path.read_text(), db.crlnumber_path.read_text())

    db.refresh_counters()

    after = (db.serial_path.read_text(), db.crlnumber_path.read_text())
    assert after != before
    for text in after:
        assert re.fullmatch(r"[0-9a-f]{32}\n", text)


def test_read_serial_rejects_garbage(db):
    db.serial_path.write_text("not-hex\n")
    with pytest.raises(PreconditionError):
        db.read_serial()


def test_commit_appends_index_and_advances_serial(db):
    """
    A committed transaction:
        - appends one OpenSSL index line,
        - stores newcerts/<SERIAL>.pem,
        - advances db/serial past the reserved value.
    """
    with db.transaction() as txn:
        serial = txn.reserve_serial()
        cert = _cert("HA Root X1", serial)
        txn.check_and_register_subject(cert, name="root_ca", role=CertificateRole.ROOT_CA)

    fields = db.index_path.read_text().rstrip("\n").split("\t")
    assert fields[0] == "V"
    assert re.fullmatch(r"\d{12}Z", fields[1])
    assert fields[2] == ""
    assert int(fields[3], 16) == serial
    assert fields[4] == "unknown"
    assert fields[5] == "/C=NL/O=HA/CN=HA Root X1"

    assert (db.newcerts_dir / f"{fields[3]}.pem").is_file()
    assert db.read_serial() == serial + 1

    record = db.lookup("root_ca")
    assert record.role is CertificateRole.ROOT_CA
    assert record.common_name == "HA Root X1"
    assert db.subject_exists("HA Root X1")


def test_exception_rolls_back_registration(db):
    """Nothing is registered or indexed when the block raises."""
    serial_before = db.serial_path.read_text()

    with pytest.raises(RuntimeError):
        with db.transaction() as txn:
            cert = _cert("HA Root X1", txn.reserve_serial())
            txn.check_and_register_subject(cert, name="root_ca", role=CertificateRole.ROOT_CA)
            raise RuntimeError("signing failed")

    assert not db.subject_exists("HA Root X1")
    assert db.lookup("root_ca") is None
    assert db.index_path.read_text() == ""
    assert db.serial_path.read_text() == serial_before


def test_registration_enforces_unique_subject(db):
    """A second certificate with the same CN is refused while unique_subject = yes."""
    with db.transaction() as txn:
        txn.check_and_register_subject(_cert("localhost", txn.reserve_serial()),
                                       name="localhost", role=CertificateRole.SERVER)

    with pytest.raises(UniquenessViolation) as exc:
        with db.transaction() as txn:
            txn.check_and_register_subject(_cert("localhost", txn.reserve_serial()),
                                           name="localhost", role=CertificateRole.SERVER)

    assert "already exists" in str(exc.value)
    assert len(db.index_path.read_text().splitlines()) == 1


def test_superseded_entries_without_uniqueness(db):
    """With unique_subject = no the newer certificate supersedes the old entry."""
    db.set_unique_subject(False)

    for _ in range(2):
        with db.transaction() as txn:
            serial = txn.reserve_serial()
            txn.check_and_register_subject(_cert("alice", serial), name="alice", role=CertificateRole.CLIENT)

    assert int(db.lookup("alice").serial, 16) == serial
    assert len(db.index_path.read_text().splitlines()) == 2


def test_openssl_oneline_keeps_attribute_order():
    name = x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "NL"),
        x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, "Servers"),
        x509.NameAttribute(NameOID.COMMON_NAME, "localhost"),
    ])
    assert openssl_oneline(name) == "/C=NL/OU=Servers/CN=localhost"
