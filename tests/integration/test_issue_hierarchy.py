"""
End-to-end issuance: trusted identity -> root CA -> intermediate CA -> leaf
certificates, run against a temporary base directory.
"""

import hashlib
import ipaddress
import os
import stat

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID

from homelab_ca.authorities import issue_intermediate_ca, issue_root_ca, issue_trust_anchor
from homelab_ca.backend import load_cert, load_certs, load_private_key
from homelab_ca.certificates import issue_certificate
from homelab_ca.database import LOCK_FILE, SerialDatabase
from homelab_ca.errors import OperationAborted, PreconditionError, SubOperationError, UniquenessViolation
from homelab_ca.models import CertificateRole, KeyAlgorithm, LeafRequest, SanAlias
from homelab_ca.verify import verify_certificate_chain

LOCALHOST = LeafRequest("localhost", alias=SanAlias.WILDCARD, ipv4="127.0.0.1")


def _tree(base) -> dict:
    """Digest of every file under base; the transaction lock file may come and go."""
    return {
        p.relative_to(base): hashlib.sha256(p.read_bytes()).hexdigest()
        for p in sorted(base.rglob("*"))
        if p.is_file() and p.name != LOCK_FILE
    }


def _mode(path) -> int:
    return stat.S_IMODE(os.stat(path).st_mode)


def test_full_hierarchy_and_server_certificate(layout):
    """
    Steps:
        1. Issue trusted identity, root CA, intermediate CA and a server
           certificate for localhost (wildcard alias, IP 127.0.0.1).
        2. Check every post-issuance verification passed.
        3. Check the bundles are concatenations of their parts, leaf first.
        4. Check SANs, key permissions and the .crt exports.
        5. Run the verifier sweep: 11 checks, all PASS.
    """
    anchor = issue_trust_anchor(layout)
    root = issue_root_ca(layout)
    inter = issue_intermediate_ca(layout)
    leaf = issue_certificate(layout, LOCALHOST)

    for result, count in ((anchor, 1), (root, 3), (inter, 3), (leaf, 4)):
        assert len(result.checks) == count
        assert result.verified, [c.reason for c in result.checks if not c.passed]

    # --- Chain bundles: cert followed by the parent's chain ---
    read = lambda p: p.read_bytes()
    assert read(layout.root_ca_chain) == read(layout.root_ca_cert) + read(layout.trusted_id_cert)
    assert read(layout.intermediate_chain) == read(layout.intermediate_cert) + read(layout.root_ca_chain)
    assert read(layout.leaf_chain("localhost")) == read(layout.leaf_cert("localhost")) + read(layout.intermediate_chain)
    assert read(layout.leaf_haproxy("localhost")) == read(layout.leaf_chain("localhost")) + read(layout.leaf_key("localhost"))
    assert len(load_certs(layout.leaf_chain("localhost"))) == 4

    # --- Leaf contents ---
    cert = load_cert(layout.leaf_cert("localhost"))
    san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    assert san.get_values_for_type(x509.DNSName) == ["localhost", "*.localhost"]
    assert san.get_values_for_type(x509.IPAddress) == [ipaddress.IPv4Address("127.0.0.1")]
    assert cert.issuer == load_cert(layout.intermediate_cert).subject
    assert (cert.not_valid_after_utc - cert.not_valid_before_utc).days == 365

    inter_bc = load_cert(layout.intermediate_cert).extensions.get_extension_for_class(x509.BasicConstraints).value
    assert inter_bc.path_length == 0

    # --- Key identifiers: the anchor has an SKI only, the root points at it ---
    anchor_cert = load_cert(layout.trusted_id_cert)
    with pytest.raises(x509.ExtensionNotFound):
        anchor_cert.extensions.get_extension_for_class(x509.AuthorityKeyIdentifier)
    anchor_ski = anchor_cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier).value
    root_aki = load_cert(layout.root_ca_cert).extensions.get_extension_for_class(x509.AuthorityKeyIdentifier).value
    assert root_aki.key_identifier == anchor_ski.digest

    # --- Private material is owner-only ---
    for p in (layout.trusted_id_key, layout.root_ca_key, layout.intermediate_key,
              layout.leaf_key("localhost"), layout.leaf_key_export("localhost"),
              layout.leaf_haproxy("localhost")):
        assert _mode(p) == 0o600, p

    # --- Exports are byte-identical copies ---
    for pem in (layout.trusted_id_cert, layout.root_ca_cert, layout.root_ca_chain,
                layout.intermediate_cert, layout.intermediate_chain,
                layout.leaf_cert("localhost"), layout.leaf_chain("localhost")):
        assert pem.with_suffix(".crt").read_bytes() == pem.read_bytes()
    assert layout.leaf_key_export("localhost").read_bytes() == layout.leaf_key("localhost").read_bytes()
    assert "DNS:*.localhost" in layout.leaf_extfile("localhost").read_text()

    # --- Database: one index line per certificate ---
    assert len((layout.db_dir / "index.txt").read_text().splitlines()) == 4
    assert len(list(layout.newcerts_dir.glob("*.pem"))) == 4

    checks = verify_certificate_chain(layout, "localhost")
    assert len(checks) == 11
    assert all(c.passed for c in checks)


def test_rsa_client_certificate(hierarchy):
    """RSA client: clientAuth + emailProtection, no SAN, no HAProxy bundle."""
    req = LeafRequest("alice@example.com", role=CertificateRole.CLIENT, algorithm=KeyAlgorithm.RSA)

    result = issue_certificate(hierarchy, req)

    assert result.verified
    assert len(result.checks) == 3
    assert result.haproxy_bundle is None
    assert not hierarchy.leaf_haproxy("alice@example.com").exists()

    cert = load_cert(result.certificate)
    with pytest.raises(x509.ExtensionNotFound):
        cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
    assert set(eku) == {ExtendedKeyUsageOID.CLIENT_AUTH, ExtendedKeyUsageOID.EMAIL_PROTECTION}
    assert isinstance(load_private_key(result.private_key), rsa.RSAPrivateKey)

    # The registry role lets the verifier skip the HAProxy check
    checks = verify_certificate_chain(hierarchy, "alice@example.com")
    assert len(checks) == 10
    assert all(c.passed for c in checks)


def test_rsa_server_and_ecdsa_client_with_dns(hierarchy):
    """
    Steps:
        1. Issue an RSA server certificate: HAProxy bundle with the RSA key, 4 checks.
        2. Issue an ECDSA client with a DNS SAN: no HAProxy bundle, 3 checks.
        3. The verifier sweep passes for both, 11 and 10 checks.
    """
    server = issue_certificate(hierarchy, LeafRequest("rsa.lan", algorithm=KeyAlgorithm.RSA))
    client = issue_certificate(
        hierarchy, LeafRequest("bob", role=CertificateRole.CLIENT, dns_names=("bob.lan",))
    )

    assert server.verified and len(server.checks) == 4
    assert server.haproxy_bundle == hierarchy.leaf_haproxy("rsa.lan")
    assert b"RSA PRIVATE KEY" in server.haproxy_bundle.read_bytes()
    assert isinstance(load_private_key(server.private_key), rsa.RSAPrivateKey)

    assert client.verified and len(client.checks) == 3
    assert client.haproxy_bundle is None
    assert not hierarchy.leaf_haproxy("bob").exists()
    san = load_cert(client.certificate).extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    assert san.get_values_for_type(x509.DNSName) == ["bob.lan"]

    for name, count in (("rsa.lan", 11), ("bob", 10)):
        checks = verify_certificate_chain(hierarchy, name)
        assert len(checks) == count, name
        assert all(c.passed for c in checks), [c.reason for c in checks if not c.passed]


def test_unique_subject_blocks_reissue(hierarchy):
    """
    With unique_subject = yes a second issuance fails and changes nothing,
    serial and CRL counters in both databases included.
    """
    issue_certificate(hierarchy, LOCALHOST)
    before = _tree(hierarchy.base)

    with pytest.raises(UniquenessViolation) as exc:
        issue_trust_anchor(hierarchy)
    assert "already exists" in str(exc.value)
    assert _tree(hierarchy.base) == before

    with pytest.raises(UniquenessViolation):
        issue_certificate(hierarchy, LOCALHOST)

    assert _tree(hierarchy.base) == before


def test_declined_overwrite_leaves_files_untouched(hierarchy):
    """unique_subject = no and any answer but 'yes' aborts without writing."""
    SerialDatabase(hierarchy.db_dir).set_unique_subject(False)
    before = _tree(hierarchy.base)

    for answer in ("Yes", "no", ""):
        with pytest.raises(OperationAborted):
            issue_root_ca(hierarchy, confirm=lambda lines, a=answer: a)

    assert _tree(hierarchy.base) == before


def test_confirmed_overwrite_invalidates_descendants(hierarchy):
    """
    Re-issuing the root CA after confirming replaces it; the existing
    intermediate CA no longer verifies against the new root chain.
    """
    SerialDatabase(hierarchy.db_dir).set_unique_subject(False)
    old_root = hierarchy.root_ca_cert.read_bytes()
    prompts = []

    def confirm(lines):
        prompts.append(lines)
        return "yes"

    result = issue_root_ca(hierarchy, confirm=confirm)

    assert result.verified
    assert len(prompts) == 1
    assert hierarchy.root_ca_cert.read_bytes() != old_root

    checks = {c.title: c for c in verify_certificate_chain(hierarchy, "ca")}
    stale = checks["Verify Intermediate Certificate Authority against the Root Certificate Authority Chain"]
    assert not stale.passed
    assert stale.reason == "unable to get local issuer certificate"

    record = SerialDatabase(hierarchy.db_dir).lookup("root_ca")
    assert int(record.serial, 16) == result.serial


def test_failed_signing_keeps_partial_files(layout):
    """
    A bad digest in the intermediate profile fails the signing step:
        - the key and CSR already written stay on disk,
        - no certificate or chain bundle is produced,
        - nothing is registered.
    """
    issue_trust_anchor(layout)
    issue_root_ca(layout)
    profile = layout.config_dir / "ca.yml"
    profile.write_text(profile.read_text().replace("digest: sha384", "digest: md5"))

    with pytest.raises(SubOperationError) as exc:
        issue_intermediate_ca(layout)

    assert "Intermediate CA certificate" in exc.value.step
    assert layout.intermediate_key.is_file()
    assert layout.intermediate_csr.is_file()
    assert not layout.intermediate_cert.exists()
    assert not layout.intermediate_chain.exists()
    assert SerialDatabase(layout.db_dir).lookup("ca") is None


def test_missing_parent_is_a_precondition_error(layout):
    with pytest.raises(PreconditionError):
        issue_root_ca(layout)
    with pytest.raises(PreconditionError):
        issue_certificate(layout, LOCALHOST)
    assert not layout.root_ca_key.exists()


def test_uninitialized_layout(tmp_path):
    from homelab_ca.layout import Layout

    with pytest.raises(PreconditionError) as exc:
        issue_trust_anchor(Layout(tmp_path / "missing"))
    assert "not initialized" in str(exc.value)


@pytest.mark.parametrize("name", ["", "ca", "root_ca", "../escape", "trusted_id"])
def test_invalid_leaf_names(hierarchy, name):
    with pytest.raises(PreconditionError):
        issue_certificate(hierarchy, LeafRequest(name))


def test_ip_only_for_servers(hierarchy):
    req = LeafRequest("bob", role=CertificateRole.CLIENT, ipv4="10.0.0.5")
    with pytest.raises(PreconditionError):
        issue_certificate(hierarchy, req)
