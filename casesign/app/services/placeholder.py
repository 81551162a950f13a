"""
Signature placeholder reservation and fill.

A PDF signature covers the whole file except its own /Contents value,
so the exact byte offsets of that value must be written into the file
before the signature can be computed. They are only known once the
file has been serialized, hence two passes:

    pass 1  write the signature dictionary with a zero-filled /Contents
            of the reserved size and a fixed-width /ByteRange sentinel
    pass 2  locate both in the written bytes and patch the real offsets
            over the sentinel, in place, without changing any length

Invariant (for any file size):

    byte_range[1] + byte_range[3] == file_length - placeholder_length

where the placeholder is the hex string including its angle brackets.
"""

import io
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple

import pikepdf
from pikepdf import Array, Dictionary, Name, String

from casesign.app.core.errors import MalformedPdf, OversizeSignature, SigningFailed
from casesign.app.schemas.signing import SignatureMetadata
from casesign.app.utils.hashing import BytesLike, covered_bytes

logger = logging.getLogger("casesign.placeholder")

DEFAULT_RESERVED_SIZE = 16384

# Ten digits per entry leaves room for any offset below 10 GB.
_BYTE_RANGE_SENTINEL = [0, 1000000000, 2000000000, 3000000000]
_BYTE_RANGE_PATTERN = re.compile(
    rb"/ByteRange\s*(\[\s*0\s+1000000000\s+2000000000\s+3000000000\s*\])"
)

# Annotation flags: Print (4) + Locked (128)
_WIDGET_FLAGS = 132
# SignaturesExist (1) + AppendOnly (2)
_SIG_FLAGS = 3


# ----------------------------------------------------------------------
# Data model
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class SignaturePlaceholder:
    """
    Location of a reserved /Contents field inside a prepared PDF.

    ``contents_start`` points at the opening ``<`` and ``contents_end``
    just past the closing ``>``.
    """

    contents_start: int
    contents_end: int
    file_length: int
    reserved_size: int
    field_name: str = "Signature1"

    def __post_init__(self) -> None:
        if self.placeholder_length != 2 * self.reserved_size + 2:
            raise ValueError(
                "Placeholder span does not match the reserved size "
                f"({self.placeholder_length} != {2 * self.reserved_size + 2})"
            )
        if not 0 < self.contents_start < self.contents_end <= self.file_length:
            raise ValueError("Placeholder lies outside the file")

    @property
    def placeholder_length(self) -> int:
        return self.contents_end - self.contents_start

    @property
    def hex_capacity(self) -> int:
        return 2 * self.reserved_size

    @property
    def byte_range(self) -> Tuple[int, int, int, int]:
        return (
            0,
            self.contents_start,
            self.contents_end,
            self.file_length - self.contents_end,
        )

    def covered_bytes(self, buffer: BytesLike) -> bytes:
        return covered_bytes(buffer, self.byte_range)


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------

def pdf_date(moment: datetime) -> str:
    """Format a datetime as a PDF date string in UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("D:%Y%m%d%H%M%S+00'00'")


def _unique_field_name(fields: Array) -> str:
    taken = {str(field.get("/T", "")) for field in fields}
    index = 1
    while f"Signature{index}" in taken:
        index += 1
    return f"Signature{index}"


def _build_signature_dictionary(
    pdf: pikepdf.Pdf,
    *,
    reserved_size: int,
    metadata: SignatureMetadata,
    signing_time: datetime,
) -> Dictionary:
    sig = Dictionary(
        Type=Name.Sig,
        Filter=Name("/Adobe.PPKLite"),
        SubFilter=Name("/adbe.pkcs7.detached"),
        ByteRange=Array(_BYTE_RANGE_SENTINEL),
        Contents=String(b"\x00" * reserved_size),
        M=String(pdf_date(signing_time)),
    )

    optional_entries = {
        "/Name": metadata.signer_name,
        "/Reason": metadata.reason,
        "/Location": metadata.location,
        "/ContactInfo": metadata.contact,
    }
    for key, value in optional_entries.items():
        if value:
            sig[key] = String(value)

    return pdf.make_indirect(sig)


def _locate_single(pattern: "re.Pattern[bytes]", data: bytes, what: str) -> Tuple[int, int]:
    matches = list(pattern.finditer(data))
    if len(matches) != 1:
        raise SigningFailed(
            "The signature placeholder could not be prepared.",
            detail=f"{what}: expected 1 match, found {len(matches)}",
        )
    return matches[0].span(1)


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def reserve_placeholder(
    pdf_bytes: bytes,
    *,
    reserved_size: int = DEFAULT_RESERVED_SIZE,
    metadata: Optional[SignatureMetadata] = None,
    signing_time: Optional[datetime] = None,
) -> Tuple[bytes, SignaturePlaceholder]:
    """
    Insert an invisible signature field with a reserved /Contents.

    Args:
        pdf_bytes:
            Unsigned PDF buffer.
        reserved_size:
            Bytes reserved for the DER-encoded CMS structure. The hex
            field written to the file is twice as long.
        metadata:
            Display metadata for /Name, /Reason, /Location, /ContactInfo.
        signing_time:
            Value for /M. Defaults to now (UTC).

    Returns:
        The prepared PDF and the placeholder describing its byte range.

    Raises:
        MalformedPdf:
            If the buffer cannot be opened, has no pages, or is encrypted.
    """
    if reserved_size <= 0:
        raise ValueError("reserved_size must be positive")

    metadata = metadata or SignatureMetadata()
    signing_time = signing_time or datetime.now(timezone.utc)

    try:
        pdf = pikepdf.open(io.BytesIO(pdf_bytes))
    except pikepdf.PdfError as exc:
        raise MalformedPdf(
            "The document is not a valid PDF.",
            detail=str(exc),
        ) from exc

    # ------------------------------------------------------------------
    # Pass 1: reserve
    # ------------------------------------------------------------------
    with pdf:
        if pdf.is_encrypted:
            raise MalformedPdf("Encrypted PDF documents cannot be signed.")
        if len(pdf.pages) == 0:
            raise MalformedPdf("The document has no pages.")

        page = pdf.pages[-1].obj

        sig = _build_signature_dictionary(
            pdf,
            reserved_size=reserved_size,
            metadata=metadata,
            signing_time=signing_time,
        )

        if "/AcroForm" not in pdf.Root:
            pdf.Root.AcroForm = pdf.make_indirect(Dictionary(Fields=Array()))
        acroform = pdf.Root.AcroForm
        if "/Fields" not in acroform:
            acroform.Fields = Array()

        field_name = _unique_field_name(acroform.Fields)

        widget = pdf.make_indirect(
            Dictionary(
                Type=Name.Annot,
                Subtype=Name.Widget,
                FT=Name.Sig,
                T=String(field_name),
                F=_WIDGET_FLAGS,
                Rect=Array([0, 0, 0, 0]),
                P=page,
                V=sig,
            )
        )

        if "/Annots" not in page:
            page.Annots = Array()
        page.Annots.append(widget)
        acroform.Fields.append(widget)
        acroform.SigFlags = _SIG_FLAGS

        buffer = io.BytesIO()
        # Object streams would compress the signature dictionary and
        # hide the placeholder from byte-level patching.
        pdf.save(
            buffer,
            object_stream_mode=pikepdf.ObjectStreamMode.disable,
        )

    data = buffer.getvalue()

    # ------------------------------------------------------------------
    # Pass 2: patch exact offsets
    # ------------------------------------------------------------------
    contents_pattern = re.compile(
        rb"/Contents\s*(<0{%d}>)" % (2 * reserved_size)
    )
    contents_start, contents_end = _locate_single(
        contents_pattern, data, "Contents"
    )
    range_start, range_end = _locate_single(
        _BYTE_RANGE_PATTERN, data, "ByteRange"
    )

    placeholder = SignaturePlaceholder(
        contents_start=contents_start,
        contents_end=contents_end,
        file_length=len(data),
        reserved_size=reserved_size,
        field_name=field_name,
    )

    replacement = "[{} {} {} {}]".format(*placeholder.byte_range).encode("ascii")
    span_length = range_end - range_start
    if len(replacement) > span_length:
        raise SigningFailed(
            "The document is too large to be signed.",
            detail=f"byte range {replacement!r} exceeds {span_length} bytes",
        )

    patched = (
        data[:range_start]
        + replacement.ljust(span_length, b" ")
        + data[range_end:]
    )

    logger.info(
        "signature_placeholder_reserved",
        extra={
            "field_name": field_name,
            "file_length": placeholder.file_length,
            "reserved_size": reserved_size,
        },
    )

    return patched, placeholder


def fill_placeholder(
    buffer: bytes,
    placeholder: SignaturePlaceholder,
    structure: bytes,
) -> bytes:
    """
    Write a DER structure into the reserved /Contents field.

    The hex encoding is left-justified and zero padded. The output has
    exactly the same length as ``buffer``.

    Raises:
        OversizeSignature:
            If the structure is larger than the reserved size. Never
            truncates.
    """
    if len(buffer) != placeholder.file_length:
        raise SigningFailed(
            "The prepared document changed before signing.",
            detail=(
                f"length {len(buffer)} != reserved for "
                f"{placeholder.file_length}"
            ),
        )

    encoded = structure.hex().encode("ascii")

    if len(encoded) > placeholder.hex_capacity:
        raise OversizeSignature(
            required_bytes=len(structure),
            reserved_bytes=placeholder.reserved_size,
        )

    start = placeholder.contents_start + 1
    end = placeholder.contents_end - 1

    if (
        buffer[start - 1:start] != b"<"
        or buffer[end:end + 1] != b">"
        or buffer[start:end].strip(b"0")
    ):
        raise SigningFailed(
            "The signature placeholder is not in its reserved state.",
            detail=f"contents span {placeholder.contents_start}..{placeholder.contents_end}",
        )

    return buffer[:start] + encoded.ljust(end - start, b"0") + buffer[end:]
