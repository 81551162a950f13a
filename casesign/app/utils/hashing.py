"""
Digest helpers for PDF byte ranges.

Current scope:
- Extracting the bytes covered by a signature's /ByteRange
- SHA-256 over those bytes (the digest the signed attributes must carry)

Explicit non-scope:
- Locating /ByteRange inside a PDF (handled by the placeholder module)
- CMS construction (delegated to the external toolkit)

IMPORTANT DESIGN RULE:
- This module hashes bytes, and bytes only.
"""

import hashlib
from typing import Sequence, Union

BytesLike = Union[bytes, bytearray, memoryview]


def covered_bytes(buffer: BytesLike, byte_range: Sequence[int]) -> bytes:
    """
    Concatenate the two segments described by a PDF /ByteRange.

    Args:
        buffer:
            The complete PDF file.
        byte_range:
            ``[start1, length1, start2, length2]``.

    Raises:
        ValueError:
            If the range is not four non-negative integers that fit
            inside ``buffer``.
    """
    if len(byte_range) != 4:
        raise ValueError(
            f"ByteRange must have exactly 4 entries, got {len(byte_range)}"
        )

    start1, length1, start2, length2 = (int(v) for v in byte_range)

    if min(start1, length1, start2, length2) < 0:
        raise ValueError(f"ByteRange has negative entries: {byte_range}")

    if start2 + length2 > len(buffer) or start1 + length1 > start2:
        raise ValueError(
            f"ByteRange {list(byte_range)} does not fit a "
            f"{len(buffer)}-byte buffer"
        )

    view = memoryview(buffer)
    return bytes(view[start1:start1 + length1]) + bytes(
        view[start2:start2 + length2]
    )


def compute_byte_range_digest(
    buffer: BytesLike,
    byte_range: Sequence[int],
) -> bytes:
    """
    Compute the raw SHA-256 digest over a /ByteRange.

    This is the value an independent validator recomputes and compares
    against the ``messageDigest`` signed attribute.
    """
    return hashlib.sha256(covered_bytes(buffer, byte_range)).digest()
