"""
Small filesystem and PEM helpers shared by the initializer, issuers and verifier.
"""

from __future__ import annotations

import os
import secrets
from pathlib import Path
from typing import Iterable

PRIVATE_MODE = 0o600


def ensure_dir(p: Path) -> Path:
    """
    Ensure that the given directory exists, creating it if necessary.

    Args:
        p (Path): The directory path to ensure exists.

    Returns:
        Path: The same path object that was provided.
    """
    p.mkdir(parents=True, exist_ok=True)
    return p


def write_file(path: Path, data: bytes | str, mode: int | None = None) -> None:
    """
    Write data to a file that may or may not exist already.

    Args:
        path (Path): The file path that needs to be written to.
        data (bytes or str): The data that needs to be written.
        mode (int | None): Permission bits the file carries before any data
            is written (e.g. 0o600 for private keys and HAProxy bundles).
    """
    path.parent.mkdir(parents=True, exist_ok=True)  # Make sure the parent directory exists
    file_mode = "wb" if isinstance(data, (bytes, bytearray)) else "w"
    if mode is None:
        with open(path, file_mode) as f:
            f.write(data)
        return

    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, file_mode) as f:
        os.fchmod(f.fileno(), mode)     # An existing file keeps its old bits through os.open
        f.write(data)


def random_hex(nbytes: int = 16) -> str:
    """Random hex string, the equivalent of `openssl rand -hex 16`."""
    return secrets.token_hex(nbytes)


def split_pem_bundle(pem_bytes: bytes) -> list[bytes]:
    """
    Split a concatenated PEM bundle into individual PEM blocks.

    Used for chain bundles and HAProxy bundles (certificates followed by a
    private key).

    Args:
        pem_bytes (bytes): Raw PEM contents.

    Returns:
        list[bytes]: List of individual PEM objects (each ending with newline).
    """
    parts: list[bytes] = []
    chunk: list[bytes] = []
    for line in pem_bytes.splitlines():
        if line.startswith(b"-----BEGIN "):
            chunk = [line]
        elif line.startswith(b"-----END "):
            if chunk:
                chunk.append(line)
                parts.append(b"\n".join(chunk) + b"\n")
            chunk = []
        elif chunk:
            chunk.append(line)
    return parts


def pem_label(block: bytes) -> str:
    """Return the label of a PEM block, e.g. 'CERTIFICATE' or 'EC PRIVATE KEY'."""
    first = block.split(b"\n", 1)[0].strip()
    return first[len(b"-----BEGIN "):-len(b"-----")].decode("ascii", "replace")


def concat_files(paths: Iterable[Path]) -> bytes:
    """
    Concatenate files in order, the equivalent of `cat a b > c`.

    Each part is newline-terminated so PEM blocks never run together.
    """
    out = b""
    for p in paths:
        data = p.read_bytes()
        if data and not data.endswith(b"\n"):
            data += b"\n"
        out += data
    return out
