"""
Per-role configuration profiles.

Each role has one YAML file in <base>/config. A profile provides the subject
distinguished name, the default validity period and the signature digest:

    subject:
      country: NL
      organization: HA
      common_name: HA Root X1
    days: 7305
    digest: sha384

Presence and shape are checked up front, before any key material is written.
`days` and `digest` are only interpreted when signing, so a bad value there
fails the signing step instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import NameOID

from .errors import ProfileError
from .models import CertificateRole

LOGGER = logging.getLogger(__name__)

PROFILE_FILES = {
    CertificateRole.TRUSTED_ID: "trusted_id.yml",
    CertificateRole.ROOT_CA: "root_ca.yml",
    CertificateRole.INTERMEDIATE_CA: "ca.yml",
    CertificateRole.SERVER: "cert.yml",
    CertificateRole.CLIENT: "cert.yml",
}

# Subject keys in the order they appear in the distinguished name
_SUBJECT_OIDS = (
    ("country", NameOID.COUNTRY_NAME),
    ("state", NameOID.STATE_OR_PROVINCE_NAME),
    ("locality", NameOID.LOCALITY_NAME),
    ("organization", NameOID.ORGANIZATION_NAME),
    ("organizational_unit", NameOID.ORGANIZATIONAL_UNIT_NAME),
    ("common_name", NameOID.COMMON_NAME),
    ("email", NameOID.EMAIL_ADDRESS),
)

_DIGESTS = {
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}


@dataclass
class Profile:
    role: CertificateRole
    path: Path
    subject: dict[str, str] = field(default_factory=dict)
    days: Any = None
    digest: Any = None
    comment: str | None = None

    def subject_name(self, common_name: str | None = None) -> x509.Name:
        """
        Build the subject Distinguished Name for this role.

        Args:
            common_name (str | None): Overrides the profile CN (leaf
                certificates use the requested name).

        Returns:
            x509.Name: Name with the configured attributes.

        Raises:
            ProfileError: If no Common Name is available.
        """
        values = dict(self.subject)
        if common_name is not None:
            values["common_name"] = common_name
        if not values.get("common_name"):
            raise ProfileError(f"Profile {self.path} defines no subject common_name")
        attrs = [
            x509.NameAttribute(oid, str(values[key]))
            for key, oid in _SUBJECT_OIDS
            if values.get(key)
        ]
        return x509.Name(attrs)

    @property
    def common_name(self) -> str:
        return str(self.subject.get("common_name", ""))

    def validity_days(self) -> int:
        """Validated `days` value; raises ValueError when it is not a positive integer."""
        if isinstance(self.days, bool) or not isinstance(self.days, int) or self.days <= 0:
            raise ValueError(f"invalid days {self.days!r} in {self.path.name}")
        return self.days

    def hash_algorithm(self, default: str) -> hashes.HashAlgorithm:
        """Resolve the configured digest; raises ValueError for unknown names."""
        name = str(self.digest or default).lower()
        try:
            return _DIGESTS[name]()
        except KeyError:
            raise ValueError(f"unsupported digest {name!r} in {self.path.name}") from None


def profile_path(config_dir: Path, role: CertificateRole) -> Path:
    return Path(config_dir) / PROFILE_FILES[role]


def load_profile(config_dir: Path, role: CertificateRole) -> Profile:
    """
    Load and shape-check the profile for a role.

    Args:
        config_dir (Path): The layout's config directory.
        role (CertificateRole): Role whose profile should be loaded.

    Returns:
        Profile: The parsed profile.

    Raises:
        ProfileError: If the file is missing, not YAML, or not a mapping.
    """
    path = profile_path(config_dir, role)
    if not path.is_file():
        raise ProfileError(f"Configuration profile not found: {path}")
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ProfileError(f"{path.name} is not valid YAML: {e}") from e

    if not isinstance(data, dict):
        raise ProfileError(f"{path.name} must be a mapping")
    subject = data.get("subject") or {}
    if not isinstance(subject, dict):
        raise ProfileError(f"{path.name}: 'subject' must be a mapping")

    LOGGER.debug("Loaded profile %s", path)
    return Profile(
        role=role,
        path=path,
        subject={str(k): str(v) for k, v in subject.items() if v is not None},
        days=data.get("days"),
        digest=data.get("digest"),
        comment=data.get("comment"),
    )
