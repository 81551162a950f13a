import pytest

from casesign.app.services.chain_loader import load_trust_chain
from casesign.tests.fixtures.pki_factory import issue


@pytest.fixture(scope="module")
def extra_roots():
    return [issue(f"Independent Root {index}", ca=True) for index in range(3)]


# ---------------------------------------------------------------------------
# Counting: N distinct CA files next to the signer's own certificate
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("count", [0, 1, 2, 3])
def test_chain_contains_each_ca_once_and_never_the_signer(
    pki, signer_dir, extra_roots, count
):
    (signer_dir / "signer.crt").write_bytes(pki.leaf.pem())
    for index, root in enumerate(extra_roots[:count]):
        (signer_dir / f"ca-{index}.pem").write_bytes(root.pem())

    chain = load_trust_chain(signer_dir, pki.leaf.asn1)

    assert len(chain) == count
    assert pki.leaf.asn1.sha256 not in {cert.sha256 for cert in chain}


def test_pem_and_der_files_are_both_read(pki, signer_dir):
    (signer_dir / "root.cer").write_bytes(pki.root.der())
    (signer_dir / "issuing.pem").write_bytes(pki.intermediate.pem())

    chain = load_trust_chain(signer_dir, pki.leaf.asn1)

    assert {cert.sha256 for cert in chain} == {
        pki.root.asn1.sha256,
        pki.intermediate.asn1.sha256,
    }


def test_pem_bundle_with_duplicates_is_deduplicated(pki, signer_dir):
    bundle = pki.intermediate.pem() + pki.root.pem() + pki.leaf.pem()
    (signer_dir / "bundle.pem").write_bytes(bundle)
    (signer_dir / "root.der").write_bytes(pki.root.der())

    chain = load_trust_chain(
        signer_dir,
        pki.leaf.asn1,
        embedded=[pki.root.asn1, pki.intermediate.asn1, pki.leaf.asn1],
    )

    assert len(chain) == 2


def test_embedded_chain_is_merged(pki, signer_dir):
    chain = load_trust_chain(
        signer_dir,
        pki.leaf.asn1,
        embedded=[pki.intermediate.asn1],
    )

    assert [cert.sha256 for cert in chain] == [pki.intermediate.asn1.sha256]


def test_unparseable_and_foreign_files_are_skipped(pki, signer_dir, caplog):
    (signer_dir / "broken.pem").write_bytes(b"this is not a certificate")
    (signer_dir / "notes.txt").write_bytes(pki.root.pem())
    (signer_dir / "signer.p12").write_bytes(b"\x30\x03\x02\x01\x03")
    (signer_dir / "root.CRT").write_bytes(pki.root.pem())

    with caplog.at_level("WARNING", logger="casesign.chain_loader"):
        chain = load_trust_chain(signer_dir, pki.leaf.asn1)

    assert [cert.sha256 for cert in chain] == [pki.root.asn1.sha256]
    assert any(
        record.message == "chain_certificate_skipped" for record in caplog.records
    )


def test_configured_extensions_are_honoured(pki, signer_dir):
    (signer_dir / "root.pem").write_bytes(pki.root.pem())
    (signer_dir / "issuing.crt").write_bytes(pki.intermediate.pem())

    chain = load_trust_chain(signer_dir, pki.leaf.asn1, extensions=(".crt",))

    assert [cert.sha256 for cert in chain] == [pki.intermediate.asn1.sha256]


def test_missing_directory_yields_embedded_only(pki, tmp_path):
    chain = load_trust_chain(
        tmp_path / "does-not-exist",
        pki.leaf.asn1,
        embedded=[pki.root.asn1],
    )

    assert [cert.sha256 for cert in chain] == [pki.root.asn1.sha256]
