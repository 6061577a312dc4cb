"""
X.509v3 extension profiles per certificate role.

CA roles get basicConstraints CA:TRUE and certificate/CRL signing key usage.
Leaf roles get CA:FALSE, digitalSignature, and the extended key usage,
Netscape certificate type and subjectAltName entries for server or client use.
"""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass, field

from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID, ObjectIdentifier

from .models import CertificateRole, KeyAlgorithm, LeafRequest, SanAlias

NS_CERT_TYPE_OID = ObjectIdentifier("2.16.840.1.113730.1.1")
NS_COMMENT_OID = ObjectIdentifier("2.16.840.1.113730.1.13")

# nsCertType bit positions (RFC-less Netscape extension, MSB first)
NS_CLIENT = 0
NS_SERVER = 1
NS_EMAIL = 2

_IP_LITERAL_RE = re.compile(r"^\s*,?\s*(?:IP\s*:)?\s*(?P<addr>\S*)\s*$", re.IGNORECASE)

_CA_KEY_USAGE = x509.KeyUsage(
    digital_signature=True,     # Allows signing of OCSP responses / CRLs
    content_commitment=False,
    key_encipherment=False,
    data_encipherment=False,
    key_agreement=False,
    key_cert_sign=True,         # Can sign subordinate certificates
    crl_sign=True,              # Can issue CRLs
    encipher_only=False,
    decipher_only=False,
)

_LEAF_KEY_USAGE = x509.KeyUsage(
    digital_signature=True,
    content_commitment=False,
    key_encipherment=False,
    data_encipherment=False,
    key_agreement=False,
    key_cert_sign=False,
    crl_sign=False,
    encipher_only=False,
    decipher_only=False,
)


def _der_length(n: int) -> bytes:
    if n < 0x80:
        return bytes([n])
    body = n.to_bytes((n.bit_length() + 7) // 8, "big")
    return bytes([0x80 | len(body)]) + body


def ns_cert_type(*bits: int) -> x509.UnrecognizedExtension:
    """
    Encode a Netscape nsCertType extension as a DER BIT STRING.

    Args:
        *bits (int): Bit positions (NS_CLIENT, NS_SERVER, NS_EMAIL).
    """
    value = 0
    for b in bits:
        value |= 0x80 >> b
    unused = (value & -value).bit_length() - 1 if value else 0
    der = bytes([0x03, 0x02, unused, value])
    return x509.UnrecognizedExtension(NS_CERT_TYPE_OID, der)


def ns_comment(text: str) -> x509.UnrecognizedExtension:
    """Encode a Netscape nsComment extension as a DER IA5String."""
    raw = text.encode("ascii")
    return x509.UnrecognizedExtension(NS_COMMENT_OID, b"\x16" + _der_length(len(raw)) + raw)


def parse_ipv4(value: str | None) -> ipaddress.IPv4Address | None:
    """
    Parse an operator supplied IPv4 address.

    Accepts the bare form "192.168.1.10" as well as the extfile fragment
    ", IP:192.168.1.10" the interactive prompt asks for. Empty input means
    no address.

    Raises:
        ValueError: If the value is not an IPv4 address.
    """
    if value is None or not value.strip():
        return None
    m = _IP_LITERAL_RE.match(value)
    if m is None:
        raise ValueError(f"not an IPv4 address: {value!r}")
    addr = m.group("addr")
    if not addr:
        return None
    return ipaddress.IPv4Address(addr)


@dataclass
class ExtensionProfile:
    """
    Extensions applied when signing, plus their OpenSSL extfile rendering.

    Attributes:
        extensions (list[tuple[x509.ExtensionType, bool]]): (value, critical) pairs.
        lines (list[str]): Same content in `openssl ca -extfile` syntax.
        sans (list[x509.GeneralName]): subjectAltName entries, also put in the CSR.
    """

    extensions: list = field(default_factory=list)
    lines: list[str] = field(default_factory=list)
    sans: list[x509.GeneralName] = field(default_factory=list)

    def add(self, ext: x509.ExtensionType, critical: bool, line: str) -> None:
        self.extensions.append((ext, critical))
        self.lines.append(line)

    def render_extfile(self) -> str:
        return "\n".join(self.lines) + "\n"


def ca_extensions(role: CertificateRole) -> ExtensionProfile:
    """
    Extension profile for the trust anchor, root CA and intermediate CA.

    The intermediate CA is restricted to pathlen:0 because it only ever
    signs leaf certificates.
    """
    prof = ExtensionProfile()
    if role is CertificateRole.INTERMEDIATE_CA:
        prof.add(x509.BasicConstraints(ca=True, path_length=0), True,
                 "basicConstraints = critical, CA:TRUE, pathlen:0")
    elif role in (CertificateRole.TRUSTED_ID, CertificateRole.ROOT_CA):
        prof.add(x509.BasicConstraints(ca=True, path_length=None), True,
                 "basicConstraints = critical, CA:TRUE")
    else:
        raise ValueError(f"{role.value} is not a CA role")
    prof.add(_CA_KEY_USAGE, True, "keyUsage = critical, digitalSignature, cRLSign, keyCertSign")
    return prof


def _server_sans(req: LeafRequest) -> tuple[list[x509.GeneralName], list[str]]:
    names: list[x509.GeneralName] = [x509.DNSName(req.name)]
    text = [f"DNS:{req.name}"]
    if req.alias is SanAlias.WILDCARD:
        names.append(x509.DNSName(f"*.{req.name}"))
        text.append(f"DNS:*.{req.name}")
    elif req.alias is SanAlias.WWW:
        names.append(x509.DNSName(f"www.{req.name}"))
        text.append(f"DNS:www.{req.name}")
    ip = parse_ipv4(req.ipv4)
    if ip is not None:
        names.append(x509.IPAddress(ip))
        text.append(f"IP:{ip}")
    return names, text


def leaf_extensions(req: LeafRequest, comment: str | None = None) -> ExtensionProfile:
    """
    Extension profile for a server or client certificate.

    Servers: subjectAltName DNS:<fqdn>[, DNS:*.<fqdn> | DNS:www.<fqdn>][, IP:<addr>],
    serverAuth, nsCertType server.
    Clients: clientAuth + emailProtection, nsCertType client, email; no
    subjectAltName for RSA, optional DNS names for ECDSA.

    Args:
        req (LeafRequest): Operator request.
        comment (str | None): nsComment text from the leaf profile.

    Returns:
        ExtensionProfile
    """
    prof = ExtensionProfile()

    if req.role is CertificateRole.SERVER:
        sans, san_text = _server_sans(req)
    elif req.role is CertificateRole.CLIENT:
        sans, san_text = [], []
        if req.algorithm is KeyAlgorithm.ECDSA:
            sans = [x509.DNSName(d) for d in req.dns_names]
            san_text = [f"DNS:{d}" for d in req.dns_names]
    else:
        raise ValueError(f"{req.role.value} is not a leaf role")

    if sans:
        prof.sans = sans
        prof.add(x509.SubjectAlternativeName(sans), False, "subjectAltName = " + ", ".join(san_text))

    prof.add(x509.BasicConstraints(ca=False, path_length=None), True, "basicConstraints = critical, CA:FALSE")
    prof.add(_LEAF_KEY_USAGE, True, "keyUsage = critical, digitalSignature")

    if req.role is CertificateRole.SERVER:
        prof.add(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), False,
                 "extendedKeyUsage = serverAuth")
        prof.add(ns_cert_type(NS_SERVER), False, "nsCertType = server")
        default_comment = "OpenSSL Generated Server Certificate"
    else:
        prof.add(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.CLIENT_AUTH, ExtendedKeyUsageOID.EMAIL_PROTECTION]),
                 False, "extendedKeyUsage = clientAuth, emailProtection")
        prof.add(ns_cert_type(NS_CLIENT, NS_EMAIL), False, "nsCertType = client, email")
        default_comment = "OpenSSL Generated Client Certificate"

    text = comment or default_comment
    prof.add(ns_comment(text), False, f"nsComment = {text}")
    return prof
