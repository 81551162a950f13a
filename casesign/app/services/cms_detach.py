"""
Attached-to-detached conversion for CMS signed-data structures.

The external toolkit emits an *attached* structure: it embeds a copy of
the signed bytes as ``encapContentInfo.eContent``. PDF signatures with
``/SubFilter /adbe.pkcs7.detached`` require that field to be absent.

Removing it does not invalidate the signature. The signature value
covers the DER encoding of the signed attributes, which already carry
the message digest of the content, not the embedded content octets.

The structure is parsed generically with asn1crypto and only the
encapsulated content info is touched. Every other substructure
(certificates, signer infos, signed attributes) is re-emitted from its
original encoding, so the canonical ordering produced by the toolkit is
preserved byte for byte.
"""

from typing import Optional

from asn1crypto import cms, core

from casesign.app.core.errors import SigningFailed


def _load_signed_data(der: bytes) -> cms.ContentInfo:
    try:
        content_info = cms.ContentInfo.load(der)
        content_type = content_info["content_type"].native
        signed_data = content_info["content"]
        signed_data["encap_content_info"]["content_type"].native
    except (ValueError, TypeError, KeyError) as exc:
        raise SigningFailed(
            "The signature structure produced by the toolkit is invalid.",
            detail=f"{type(exc).__name__}: {exc}",
        ) from exc

    if content_type != "signed_data" or not isinstance(
        signed_data, cms.SignedData
    ):
        raise SigningFailed(
            "The signature structure produced by the toolkit is invalid.",
            detail=f"unexpected content type: {content_type}",
        )

    return content_info


def has_embedded_content(der: bytes) -> bool:
    """True if ``encapContentInfo.eContent`` is present."""
    content_info = _load_signed_data(der)
    encap = content_info["content"]["encap_content_info"]
    return not isinstance(encap["content"], core.Void)


def make_detached(attached_der: bytes) -> bytes:
    """
    Remove the embedded content, keeping the content type identifier.

    A structure that is already detached is returned re-serialized
    (unchanged for DER input).

    Raises:
        SigningFailed:
            If the input is not a CMS signed-data structure.
    """
    content_info = _load_signed_data(attached_der)
    encap = content_info["content"]["encap_content_info"]

    if isinstance(encap["content"], core.Void):
        return content_info.dump()

    encap["content"] = None
    return content_info.dump()


def extract_message_digest(der: bytes) -> Optional[bytes]:
    """
    Return the ``messageDigest`` signed attribute of the first signer.

    ``None`` when the signer has no signed attributes or no digest.
    """
    content_info = _load_signed_data(der)
    signer_infos = content_info["content"]["signer_infos"]

    if len(signer_infos) == 0:
        return None

    signed_attrs = signer_infos[0]["signed_attrs"]
    if isinstance(signed_attrs, core.Void):
        return None

    for attribute in signed_attrs:
        if attribute["type"].native == "message_digest":
            return attribute["values"][0].native

    return None
