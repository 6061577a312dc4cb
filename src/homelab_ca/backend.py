"""
Cryptographic capability used by every issuer.

Wraps the `cryptography` X.509 API behind the handful of operations the
issuance pipeline needs: key generation, CSR creation, CA signing, self
signing, chain verification and a text dump of a certificate. The
orchestration code never touches the builders directly.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional, Sequence

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from .errors import CAError, SubOperationError
from .files import pem_label, split_pem_bundle
from .models import KeyAlgorithm

LOGGER = logging.getLogger(__name__)

RSA_KEY_SIZE = 2048
MAX_CHAIN_DEPTH = 10

# (extension value, critical)
ExtensionSpec = tuple[x509.ExtensionType, bool]


@contextmanager
def operation(step: str) -> Iterator[None]:
    """
    Run one pipeline step, converting any failure into SubOperationError.

    Args:
        step (str): Step description, e.g. "generate ECDSA key for Root CA".

    Raises:
        SubOperationError: If the wrapped block raises anything other than
            a CAError (those already carry their own message).
    """
    LOGGER.info("%s", step[0].upper() + step[1:])
    try:
        yield
    except CAError:
        raise
    except Exception as e:
        LOGGER.debug("Failed to %s: %s", step, e)
        raise SubOperationError(step, e) from e


# ---------- serialization ----------

def pem_private_key(key) -> bytes:
    """Serialize a private key to unencrypted PEM (TraditionalOpenSSL)."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def pem_cert(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(encoding=serialization.Encoding.PEM)


def pem_csr(csr: x509.CertificateSigningRequest) -> bytes:
    return csr.public_bytes(encoding=serialization.Encoding.PEM)


def load_private_key(path: Path):
    return serialization.load_pem_private_key(path.read_bytes(), password=None)


def load_cert(path: Path) -> x509.Certificate:
    """Load the first certificate found in a PEM file (bundles included)."""
    certs = load_certs(path)
    if not certs:
        raise ValueError(f"No certificate found in {path}")
    return certs[0]


def load_certs(path: Path) -> list[x509.Certificate]:
    """
    Load every CERTIFICATE block in a PEM file, in file order.

    Non-certificate blocks (the private key at the end of an HAProxy bundle)
    are skipped.
    """
    blocks = split_pem_bundle(path.read_bytes())
    return [
        x509.load_pem_x509_certificate(b)
        for b in blocks
        if pem_label(b) in ("CERTIFICATE", "X509 CERTIFICATE", "TRUSTED CERTIFICATE")
    ]


def _default_digest(key) -> hashes.HashAlgorithm:
    return hashes.SHA256() if isinstance(key, rsa.RSAPrivateKey) else hashes.SHA384()


def _spki(public_key) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )


def _is_self_signed(cert: x509.Certificate) -> bool:
    if cert.issuer != cert.subject:
        return False
    try:
        cert.verify_directly_issued_by(cert)
    except (ValueError, TypeError, InvalidSignature):
        return False
    return True


def _is_ca(cert: x509.Certificate) -> bool:
    try:
        bc = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
    except x509.ExtensionNotFound:
        return False
    if not bc.ca:
        return False
    try:
        ku = cert.extensions.get_extension_for_class(x509.KeyUsage).value
    except x509.ExtensionNotFound:
        return True
    return ku.key_cert_sign


@dataclass
class VerificationResult:
    """
    Outcome of a chain verification.

    Attributes:
        ok (bool): True when a path to a trusted self-signed certificate was built.
        error (str): OpenSSL-style error text when ok is False.
        depth (int): Chain depth at which the error occurred.
        chain (list[x509.Certificate]): Path walked, target first.
    """

    ok: bool
    error: str = ""
    depth: int = 0
    chain: list[x509.Certificate] = field(default_factory=list)


class CryptoBackend:
    """
    X.509 operations backed by the `cryptography` package.

    Args:
        clock (callable | None): Returns the current UTC datetime; tests
            may pass a fixed clock.
    """

    def __init__(self, clock=None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._clock()

    # ---------- keys and requests ----------

    def generate_key(self, algorithm: KeyAlgorithm):
        """
        Generate a new private key.

        Args:
            algorithm (KeyAlgorithm): ECDSA -> P-384, RSA -> 2048-bit RSA.

        Returns:
            EllipticCurvePrivateKey | RSAPrivateKey
        """
        if algorithm is KeyAlgorithm.ECDSA:
            return ec.generate_private_key(ec.SECP384R1())
        if algorithm is KeyAlgorithm.RSA:
            return rsa.generate_private_key(public_exponent=65537, key_size=RSA_KEY_SIZE)
        raise ValueError(f"Unsupported key algorithm: {algorithm!r}")

    def create_csr(
        self,
        key,
        subject: x509.Name,
        sans: Sequence[x509.GeneralName] = (),
        digest: Optional[hashes.HashAlgorithm] = None,
    ) -> x509.CertificateSigningRequest:
        """
        Create a certificate signing request.

        Args:
            key: Private key the request is signed with.
            subject (x509.Name): Requested subject.
            sans (Sequence[x509.GeneralName]): Optional subjectAltName entries.
            digest: Signature hash; SHA-384 for EC keys, SHA-256 for RSA by default.

        Returns:
            x509.CertificateSigningRequest
        """
        builder = x509.CertificateSigningRequestBuilder().subject_name(subject)
        if sans:
            builder = builder.add_extension(x509.SubjectAlternativeName(list(sans)), critical=False)
        return builder.sign(key, digest or _default_digest(key))

    # ---------- signing ----------

    def _builder(self, subject, issuer, public_key, serial: int, days: int) -> x509.CertificateBuilder:
        now = self.now()
        return (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key(public_key)
            .serial_number(serial)
            .not_valid_before(now)
            .not_valid_after(now + timedelta(days=days))
        )

    @staticmethod
    def _add_extensions(builder: x509.CertificateBuilder, extensions: Iterable[ExtensionSpec]) -> x509.CertificateBuilder:
        for ext, critical in extensions:
            builder = builder.add_extension(ext, critical=critical)
        return builder

    def self_sign(
        self,
        key,
        subject: x509.Name,
        extensions: Iterable[ExtensionSpec],
        days: int,
        serial: int,
        digest: hashes.HashAlgorithm,
    ) -> x509.Certificate:
        """
        Create a self-signed certificate directly from a key (no CSR step).

        Returns:
            x509.Certificate: Certificate whose issuer equals its subject.
        """
        pub = key.public_key()
        builder = self._builder(subject, subject, pub, serial, days)
        builder = builder.add_extension(x509.SubjectKeyIdentifier.from_public_key(pub), critical=False)
        builder = self._add_extensions(builder, extensions)
        return builder.sign(private_key=key, algorithm=digest)

    def sign(
        self,
        csr: x509.CertificateSigningRequest,
        issuer_key,
        issuer_cert: x509.Certificate,
        extensions: Iterable[ExtensionSpec],
        days: int,
        serial: int,
        digest: hashes.HashAlgorithm,
    ) -> x509.Certificate:
        """
        Sign a CSR with a CA key, like `openssl ca -extfile`.

        Extensions requested inside the CSR are not copied; the certificate
        carries exactly `extensions` plus key identifiers.

        Raises:
            ValueError: If the CSR signature is invalid or the issuer key
                does not match the issuer certificate.
        """
        if not csr.is_signature_valid:
            raise ValueError("CSR signature is invalid")
        if _spki(issuer_key.public_key()) != _spki(issuer_cert.public_key()):
            raise ValueError("issuer private key does not match issuer certificate")

        pub = csr.public_key()
        builder = self._builder(csr.subject, issuer_cert.subject, pub, serial, days)
        builder = builder.add_extension(x509.SubjectKeyIdentifier.from_public_key(pub), critical=False)
        try:
            ski = issuer_cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier).value
            aki = x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ski)
        except x509.ExtensionNotFound:
            aki = x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_key.public_key())
        builder = builder.add_extension(aki, critical=False)
        builder = self._add_extensions(builder, extensions)
        return builder.sign(private_key=issuer_key, algorithm=digest)

    # ---------- verification ----------

    def _check_validity(self, cert: x509.Certificate, at: datetime) -> Optional[str]:
        if at < cert.not_valid_before_utc:
            return "certificate is not yet valid"
        if at > cert.not_valid_after_utc:
            return "certificate has expired"
        return None

    def build_path(self, target: x509.Certificate, trusted: Sequence[x509.Certificate]) -> VerificationResult:
        """
        Build and check a path from target to a trusted self-signed certificate.

        Mirrors `openssl verify -CAfile`: every certificate in `trusted` is
        usable as an issuer, and the walk must end at a self-signed
        certificate that is itself in `trusted`.

        Args:
            target (x509.Certificate): Certificate being verified.
            trusted (Sequence[x509.Certificate]): Trust store contents.

        Returns:
            VerificationResult
        """
        at = self.now()
        chain = [target]
        current = target

        for depth in range(MAX_CHAIN_DEPTH):
            err = self._check_validity(current, at)
            if err:
                return VerificationResult(False, err, depth, chain)

            if _is_self_signed(current):
                if current in trusted:
                    return VerificationResult(True, "", depth, chain)
                return VerificationResult(False, "self-signed certificate", depth, chain)

            issuer = None
            for candidate in trusted:
                if candidate.subject != current.issuer:
                    continue
                try:
                    current.verify_directly_issued_by(candidate)
                except (ValueError, TypeError, InvalidSignature):
                    continue
                issuer = candidate
                break
            if issuer is None:
                return VerificationResult(False, "unable to get local issuer certificate", depth, chain)
            if not _is_ca(issuer):
                return VerificationResult(False, "invalid CA certificate", depth + 1, chain + [issuer])

            bc = issuer.extensions.get_extension_for_class(x509.BasicConstraints).value
            # CA certificates between target and this issuer (the target itself excluded)
            below = len(chain) - 1
            if bc.path_length is not None and below > bc.path_length:
                return VerificationResult(False, "path length constraint exceeded", depth + 1, chain + [issuer])

            chain.append(issuer)
            current = issuer

        return VerificationResult(False, "certificate chain too long", MAX_CHAIN_DEPTH, chain)

    def verify_chain(self, cert_path: Path, chain_path: Path) -> VerificationResult:
        """
        Verify the first certificate of cert_path against the certificates in chain_path.

        Unreadable or empty inputs are reported as a failed result rather
        than raised.
        """
        try:
            target = load_cert(cert_path)
            trusted = load_certs(chain_path)
        except (OSError, ValueError) as e:
            return VerificationResult(False, f"unable to load certificate: {e}")
        if not trusted:
            return VerificationResult(False, f"no certificates found in {chain_path}")
        return self.build_path(target, trusted)

    # ---------- inspection ----------

    def describe(self, cert: x509.Certificate) -> str:
        """
        Text dump of a certificate, the `openssl x509 -text -noout` analog.

        Returns:
            str: Multi-line human readable description.
        """
        pub = cert.public_key()
        if isinstance(pub, ec.EllipticCurvePublicKey):
            key_desc = f"EC ({pub.curve.name}, {pub.key_size} bit)"
        elif isinstance(pub, rsa.RSAPublicKey):
            key_desc = f"RSA ({pub.key_size} bit)"
        else:
            key_desc = type(pub).__name__

        lines = [
            "Certificate:",
            f"    Serial Number: {cert.serial_number:x}",
            f"    Signature Algorithm: {cert.signature_algorithm_oid._name}",
            f"    Issuer: {cert.issuer.rfc4514_string()}",
            "    Validity",
            f"        Not Before: {cert.not_valid_before_utc:%b %d %H:%M:%S %Y} GMT",
            f"        Not After : {cert.not_valid_after_utc:%b %d %H:%M:%S %Y} GMT",
            f"    Subject: {cert.subject.rfc4514_string()}",
            f"    Public Key: {key_desc}",
            f"    SHA-256 Fingerprint: {cert.fingerprint(hashes.SHA256()).hex(':').upper()}",
            "    X509v3 extensions:",
        ]
        for ext in cert.extensions:
            flag = " critical" if ext.critical else ""
            lines.append(f"        {ext.oid._name}:{flag}")
            lines.append(f"            {_describe_extension(ext.value)}")
        return "\n".join(lines)


def _describe_extension(value: x509.ExtensionType) -> str:
    if isinstance(value, x509.BasicConstraints):
        text = f"CA:{'TRUE' if value.ca else 'FALSE'}"
        if value.path_length is not None:
            text += f", pathlen:{value.path_length}"
        return text
    if isinstance(value, x509.KeyUsage):
        names = [
            n for n in ("digital_signature", "content_commitment", "key_encipherment",
                        "data_encipherment", "key_agreement", "key_cert_sign", "crl_sign")
            if getattr(value, n)
        ]
        return ", ".join(names)
    if isinstance(value, x509.ExtendedKeyUsage):
        return ", ".join(oid._name for oid in value)
    if isinstance(value, x509.SubjectAlternativeName):
        out = []
        for gn in value:
            prefix = "IP" if isinstance(gn, x509.IPAddress) else "DNS" if isinstance(gn, x509.DNSName) else type(gn).__name__
            out.append(f"{prefix}:{gn.value}")
        return ", ".join(out)
    if isinstance(value, x509.SubjectKeyIdentifier):
        return value.digest.hex(":").upper()
    if isinstance(value, x509.AuthorityKeyIdentifier) and value.key_identifier:
        return value.key_identifier.hex(":").upper()
    if isinstance(value, x509.UnrecognizedExtension):
        return value.value.hex()
    return repr(value)
