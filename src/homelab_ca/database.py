"""
Serial/index database shared by every authority in the hierarchy.

The on-disk files keep OpenSSL's CA database conventions so the directory can
still be driven by `openssl ca`:

    db/index.txt         issued certificates, one tab separated line each
    db/index.txt.attr    "unique_subject = yes|no"
    db/serial            next serial number (hex)
    db/crlnumber         next CRL number (hex)

Alongside them db/registry.sqlite records every issued certificate with its
CertificateRole. The registry is the transactional source of truth: a run
reserves a serial and registers its subject inside one sqlite transaction that
is committed only when the certificate has been written, and all of it happens
under an exclusive file lock scoped to the database directory.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import NameOID
from filelock import FileLock, Timeout

from .errors import PreconditionError, SubOperationError, UniquenessViolation
from .files import random_hex, write_file
from .models import CertificateRole

LOGGER = logging.getLogger(__name__)

INDEX_FILE = "index.txt"
ATTR_FILE = "index.txt.attr"
SERIAL_FILE = "serial"
CRLNUMBER_FILE = "crlnumber"
REGISTRY_FILE = "registry.sqlite"
LOCK_FILE = ".lock"

STATUS_VALID = "valid"
STATUS_SUPERSEDED = "superseded"

_ATTR_RE = re.compile(r"^\s*unique_subject\s*=\s*(\S+)", re.MULTILINE)

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS certificates(
        serial TEXT PRIMARY KEY,
        subject TEXT NOT NULL,
        common_name TEXT NOT NULL,
        name TEXT NOT NULL,
        role TEXT NOT NULL,
        not_before TEXT,
        not_after TEXT,
        status TEXT NOT NULL DEFAULT 'valid',   -- 'valid' or 'superseded'
        issued_at TEXT NOT NULL
    )
"""


def common_name(name: x509.Name) -> str:
    """Return the first CN attribute of a Name, or an empty string."""
    attrs = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    return str(attrs[0].value) if attrs else ""


def openssl_oneline(name: x509.Name) -> str:
    """
    Format a Name the way OpenSSL writes it into index.txt.

    Example: /C=NL/O=HA/CN=HA Root X1
    """
    parts = []
    for rdn in name.rdns:
        for attr in rdn:
            parts.append(f"{attr.rfc4514_attribute_name}={attr.value}")
    return "/" + "/".join(parts)


def _serial_hex(serial: int) -> str:
    """Uppercase hex with an even number of digits, as OpenSSL stores serials."""
    text = f"{serial:X}"
    return text if len(text) % 2 == 0 else "0" + text


@dataclass(frozen=True)
class RegistryRecord:
    serial: str
    subject: str
    common_name: str
    name: str
    role: CertificateRole
    not_before: str
    not_after: str
    status: str
    issued_at: str


class Reservation:
    """
    Handle yielded by SerialDatabase.transaction().

    Everything recorded here becomes visible only when the transaction
    commits; an exception inside the `with` block discards it.
    """

    def __init__(self, db: "SerialDatabase", conn: sqlite3.Connection):
        self._db = db
        self._conn = conn
        self._serial: Optional[int] = None
        self._pending: list[x509.Certificate] = []

    def reserve_serial(self) -> int:
        """
        Claim the serial number currently stored in db/serial.

        A value already present in the registry (a collision with an earlier
        certificate) is replaced with a fresh random serial.

        Returns:
            int: Serial number to embed in the certificate.
        """
        if self._serial is not None:
            return self._serial
        serial = self._db.read_serial()
        while serial == 0 or self._serial_taken(serial):
            LOGGER.warning("Serial %s already issued; drawing a new one", _serial_hex(serial))
            serial = int(random_hex(16), 16)
        self._serial = serial
        return serial

    def _serial_taken(self, serial: int) -> bool:
        cur = self._conn.execute(
            "SELECT 1 FROM certificates WHERE serial = ?", (_serial_hex(serial),)
        )
        return cur.fetchone() is not None

    def subject_exists(self, cn: str) -> bool:
        cur = self._conn.execute(
            "SELECT 1 FROM certificates WHERE common_name = ? AND status = ?",
            (cn, STATUS_VALID),
        )
        return cur.fetchone() is not None

    def check_and_register_subject(
        self,
        cert: x509.Certificate,
        *,
        name: str,
        role: CertificateRole,
    ) -> None:
        """
        Enforce the uniqueness policy and record an issued certificate.

        With unique_subject = no, earlier valid entries for the same Common
        Name are marked superseded (the operator already confirmed the
        overwrite).

        Args:
            cert (x509.Certificate): The newly signed certificate.
            name (str): File stem the certificate is stored under.
            role (CertificateRole): Role tag used by the verifier.

        Raises:
            UniquenessViolation: If uniqueness is enforced and the CN exists.
        """
        cn = common_name(cert.subject)
        if self.subject_exists(cn):
            if self._db.unique_subject:
                raise UniquenessViolation(cn)
            self._conn.execute(
                "UPDATE certificates SET status = ? WHERE common_name = ? AND status = ?",
                (STATUS_SUPERSEDED, cn, STATUS_VALID),
            )

        self._conn.execute(
            "INSERT INTO certificates(serial, subject, common_name, name, role, "
            "not_before, not_after, status, issued_at) VALUES (?,?,?,?,?,?,?,?,?)",
            (
                _serial_hex(cert.serial_number),
                openssl_oneline(cert.subject),
                cn,
                name,
                role.value,
                cert.not_valid_before_utc.isoformat(),
                cert.not_valid_after_utc.isoformat(),
                STATUS_VALID,
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        self._pending.append(cert)

    def _finalize(self) -> None:
        """Write the OpenSSL-compatible side files after the sqlite commit."""
        for cert in self._pending:
            self._db.append_index(cert)
            if self._db.newcerts_dir is not None:
                write_file(
                    self._db.newcerts_dir / f"{_serial_hex(cert.serial_number)}.pem",
                    cert.public_bytes(serialization.Encoding.PEM),
                )
        if self._serial is not None:
            self._db.write_serial(self._serial + 1)


class SerialDatabase:
    """
    Serial, CRL number and issued-certificate index for one db directory.

    Args:
        db_dir (Path): Directory holding index.txt and friends.
        newcerts_dir (Path | None): Where to keep a copy of every issued
            certificate named by serial, like `openssl ca` does.
        lock_timeout (float): Seconds to wait for another run holding the lock.
    """

    def __init__(self, db_dir: Path, newcerts_dir: Path | None = None, lock_timeout: float = 30.0):
        self.db_dir = Path(db_dir)
        self.newcerts_dir = newcerts_dir
        self.lock_timeout = lock_timeout

    # ---- paths ----

    @property
    def index_path(self) -> Path:
        return self.db_dir / INDEX_FILE

    @property
    def attr_path(self) -> Path:
        return self.db_dir / ATTR_FILE

    @property
    def serial_path(self) -> Path:
        return self.db_dir / SERIAL_FILE

    @property
    def crlnumber_path(self) -> Path:
        return self.db_dir / CRLNUMBER_FILE

    @property
    def registry_path(self) -> Path:
        return self.db_dir / REGISTRY_FILE

    # ---- setup ----

    def initialize(self, unique_subject: bool = True) -> None:
        """
        Create missing database files without touching existing ones.

        Args:
            unique_subject (bool): Policy written only if index.txt.attr is new.
        """
        self.db_dir.mkdir(parents=True, exist_ok=True)
        if not self.index_path.exists():
            self.index_path.touch()
        if not self.attr_path.exists():
            self.set_unique_subject(unique_subject)
        for p in (self.serial_path, self.crlnumber_path):
            if not p.exists():
                write_file(p, random_hex(16) + "\n")
        with sqlite3.connect(self.registry_path) as conn:
            conn.execute(_SCHEMA)
            conn.commit()
        conn.close()

    # ---- uniqueness policy ----

    @property
    def unique_subject(self) -> bool:
        """True when index.txt.attr says unique_subject = yes; missing file means no."""
        try:
            text = self.attr_path.read_text()
        except FileNotFoundError:
            return False
        m = _ATTR_RE.search(text)
        return bool(m) and m.group(1).lower() == "yes"

    def set_unique_subject(self, value: bool) -> None:
        write_file(self.attr_path, f"unique_subject = {'yes' if value else 'no'}\n")

    # ---- counters ----

    def refresh_counters(self) -> None:
        """Renew serial and CRL numbers with fresh random 16-byte hex values."""
        for p in (self.serial_path, self.crlnumber_path):
            write_file(p, random_hex(16) + "\n")

    def read_serial(self) -> int:
        """
        Read db/serial.

        Raises:
            PreconditionError: If the file is missing or not hex.
        """
        try:
            return int(self.serial_path.read_text().strip(), 16)
        except FileNotFoundError:
            raise PreconditionError(f"Missing serial file: {self.serial_path}")
        except ValueError:
            raise PreconditionError(f"Serial file is not hex: {self.serial_path}")

    def write_serial(self, serial: int) -> None:
        write_file(self.serial_path, _serial_hex(serial) + "\n")

    # ---- index ----

    def append_index(self, cert: x509.Certificate) -> None:
        """Append an OpenSSL CA database line for an issued certificate."""
        expiry = cert.not_valid_after_utc.strftime("%y%m%d%H%M%SZ")
        line = "\t".join([
            "V",                                # Status: valid
            expiry,                             # Expiry date
            "",                                 # Revocation date (none)
            _serial_hex(cert.serial_number),    # Serial in hex
            "unknown",                          # File name (always unknown)
            openssl_oneline(cert.subject),      # Subject DN
        ])
        with open(self.index_path, "a") as f:
            f.write(line + "\n")

    # ---- registry queries ----

    def _connect(self) -> sqlite3.Connection:
        if not self.registry_path.is_file():
            raise PreconditionError(f"Missing registry database: {self.registry_path}")
        return sqlite3.connect(self.registry_path)

    def subject_exists(self, cn: str) -> bool:
        conn = self._connect()
        try:
            return Reservation(self, conn).subject_exists(cn)
        finally:
            conn.close()

    def lookup(self, name: str) -> Optional[RegistryRecord]:
        """
        Return the newest valid registry record stored under a file name.

        Args:
            name (str): File stem, e.g. "root_ca" or "localhost".

        Returns:
            RegistryRecord | None: The record, or None if unknown.
        """
        conn = self._connect()
        try:
            cur = conn.execute(
                "SELECT serial, subject, common_name, name, role, not_before, not_after, "
                "status, issued_at FROM certificates WHERE name = ? AND status = ? "
                "ORDER BY issued_at DESC LIMIT 1",
                (name, STATUS_VALID),
            )
            row = cur.fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return RegistryRecord(*row[:4], CertificateRole(row[4]), *row[5:])

    # ---- transactions ----

    @contextmanager
    def transaction(self) -> Iterator[Reservation]:
        """
        Exclusive issuance transaction.

        Yields:
            Reservation: Serial reservation and subject registration handle.

        Raises:
            SubOperationError: If the lock cannot be acquired in time.
        """
        lock = FileLock(str(self.db_dir / LOCK_FILE), timeout=self.lock_timeout)
        try:
            lock.acquire()
        except Timeout as e:
            raise SubOperationError("acquire the database lock", e) from e
        try:
            conn = self._connect()
            try:
                reservation = Reservation(self, conn)
                yield reservation
                conn.commit()
                reservation._finalize()
            except BaseException:
                conn.rollback()
                raise
            finally:
                conn.close()
        finally:
            lock.release()
