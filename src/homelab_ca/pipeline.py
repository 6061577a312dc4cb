"""
Steps shared by every issuer: loading a signing authority, refreshing the
database counters, writing material and the post-issuance verification.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from cryptography import x509

from .backend import CryptoBackend, load_cert, load_private_key, operation
from .database import SerialDatabase
from .errors import PreconditionError
from .files import PRIVATE_MODE, concat_files, write_file
from .layout import Layout
from .models import CheckResult
from .verify import CheckSpec, run_check

LOGGER = logging.getLogger(__name__)


@dataclass
class Authority:
    """A CA that can sign: its certificate, private key and chain bundle."""

    label: str
    cert: x509.Certificate
    key: object
    cert_path: Path
    chain_path: Path


def require_file(path: Path, what: str) -> Path:
    if not path.is_file():
        raise PreconditionError(f"{what} not found: {path}")
    return path


def load_authority(label: str, cert_path: Path, key_path: Path, chain_path: Path) -> Authority:
    """
    Load a signing authority from disk.

    Args:
        label (str): Human name, e.g. "Root CA".
        cert_path (Path): CA certificate.
        key_path (Path): CA private key.
        chain_path (Path): Chain bundle to append below issued certificates.
            For the trust anchor this is its own certificate.

    Raises:
        PreconditionError: If any file is missing or unreadable.
    """
    require_file(cert_path, f"{label} certificate")
    require_file(key_path, f"{label} private key")
    require_file(chain_path, f"{label} chain bundle")
    try:
        cert = load_cert(cert_path)
        key = load_private_key(key_path)
    except (ValueError, TypeError) as e:
        raise PreconditionError(f"Unable to load {label}: {e}") from e
    return Authority(label, cert, key, cert_path, chain_path)


def open_database(layout: Layout) -> SerialDatabase:
    layout.require_initialized()
    return SerialDatabase(layout.db_dir, newcerts_dir=layout.newcerts_dir)


def refresh_counters(layout: Layout) -> None:
    """Renew serial and CRL numbers in every database directory."""
    with operation("renew db numbers (serial and CRL)"):
        for db_dir in layout.db_dirs():
            if db_dir.is_dir():
                SerialDatabase(db_dir).refresh_counters()


def write_private(path: Path, pem: bytes) -> None:
    write_file(path, pem, mode=PRIVATE_MODE)


def write_bundle(path: Path, parts: Iterable[Path], mode: int | None = None) -> None:
    """Concatenate PEM files, leaf first, into a bundle."""
    write_file(path, concat_files(parts), mode=mode)


def export_copy(src: Path, dest: Path, mode: int | None = None) -> Path:
    """Byte-identical copy under the conventional .crt/.key name."""
    with operation(f"convert {src.name} to {dest.name}"):
        if mode is None:
            shutil.copyfile(src, dest)
        else:
            write_file(dest, src.read_bytes(), mode=mode)
    LOGGER.info("--> %s", dest.name)
    return dest


def run_checks(backend: CryptoBackend, specs: Iterable[CheckSpec]) -> list[CheckResult]:
    """
    Post-issuance verification. Failures are logged and returned, never raised: the
    material has already been generated at this point.
    """
    results = []
    for title, cert_path, chain_path in specs:
        res = run_check(backend, title, cert_path, chain_path)
        if res.passed:
            LOGGER.info("%s: %s [ PASS ]", title, cert_path.name)
        else:
            LOGGER.info("%s: %s [ FAIL ] %s", title, cert_path.name, res.reason)
        results.append(res)
    return results
