import hashlib

import pytest
from asn1crypto import cms
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding

from casesign.app.core.errors import SigningFailed
from casesign.app.services.cms_detach import (
    extract_message_digest,
    has_embedded_content,
    make_detached,
)
from casesign.tests.fixtures.cms_factory import (
    build_signed_data,
    signed_attributes_der,
)

CONTENT = b"%PDF-1.7 covered byte range " * 64


@pytest.fixture
def attached(pki):
    return build_signed_data(
        CONTENT,
        pki.leaf.key,
        pki.leaf.asn1,
        extra_certificates=[pki.intermediate.asn1, pki.root.asn1],
    )


def test_removes_embedded_content(attached):
    assert has_embedded_content(attached)

    detached = make_detached(attached)

    assert not has_embedded_content(detached)
    assert len(detached) < len(attached)
    assert CONTENT not in detached


def test_keeps_content_type_identifier(attached):
    detached = cms.ContentInfo.load(make_detached(attached))

    assert detached["content_type"].native == "signed_data"
    encap = detached["content"]["encap_content_info"]
    assert encap["content_type"].native == "data"


def test_other_substructures_are_byte_identical(attached):
    before = cms.ContentInfo.load(attached)["content"]
    after = cms.ContentInfo.load(make_detached(attached))["content"]

    for field in ("digest_algorithms", "certificates", "signer_infos"):
        assert after[field].dump() == before[field].dump()


def test_signature_still_verifies_after_detaching(pki, attached):
    detached = cms.ContentInfo.load(make_detached(attached))
    signer_info = detached["content"]["signer_infos"][0]

    pki.leaf.certificate.public_key().verify(
        signer_info["signature"].native,
        signed_attributes_der(signer_info["signed_attrs"]),
        padding.PKCS1v15(),
        hashes.SHA256(),
    )


def test_already_detached_input_is_unchanged(pki):
    detached = build_signed_data(
        CONTENT,
        pki.leaf.key,
        pki.leaf.asn1,
        attached=False,
    )

    assert not has_embedded_content(detached)
    assert make_detached(detached) == detached


def test_extracts_message_digest(attached):
    expected = hashlib.sha256(CONTENT).digest()

    assert extract_message_digest(attached) == expected
    assert extract_message_digest(make_detached(attached)) == expected


@pytest.mark.parametrize(
    "payload",
    [
        pytest.param(b"garbage", id="garbage"),
        pytest.param(b"", id="empty"),
        pytest.param(
            cms.ContentInfo({"content_type": "data", "content": b"abc"}).dump(),
            id="not-signed-data",
        ),
    ],
)
def test_rejects_non_signed_data(payload):
    with pytest.raises(SigningFailed):
        make_detached(payload)
