"""
Visible signature box drawn on the last page.

Used on its own by the visual (non-cryptographic) strategy and as a
human-readable companion to the invisible cryptographic signature.

The box is appended as a new content stream. Existing page content is
wrapped in ``q``/``Q`` so that any graphics state it leaves behind does
not move or recolor the box.
"""

import io
from dataclasses import dataclass
from typing import Sequence, Tuple

import pikepdf
from pikepdf import Dictionary, Name, Operator, String

from casesign.app.core.errors import MalformedPdf

RGB = Tuple[float, float, float]


@dataclass(frozen=True)
class BoxStyle:
    x: float = 50
    y: float = 35
    width: float = 250
    height: float = 35
    border_color: RGB = (0.5, 0.5, 0.5)
    border_width: float = 0.5
    fill_color: RGB | None = None
    text_color: RGB = (0.3, 0.3, 0.3)
    font_size: float = 8
    line_spacing: float = 12
    padding: float = 5


VISUAL_STYLE = BoxStyle()

CRYPTO_STYLE = BoxStyle(
    width=280,
    height=45,
    border_color=(0.3, 0.5, 0.3),
    border_width=1,
    fill_color=(0.95, 0.98, 0.95),
    text_color=(0.2, 0.2, 0.2),
    font_size=9,
    line_spacing=14,
    padding=8,
)


def _encode_text(text: str) -> String:
    # Helvetica with WinAnsiEncoding; unmappable characters become '?'
    return String(text.encode("cp1252", errors="replace"))


def _box_instructions(font: Name, lines: Sequence[str], style: BoxStyle):
    instructions = [
        ([], Operator("q")),
        ([*style.border_color], Operator("RG")),
        ([style.border_width], Operator("w")),
    ]

    rect = [style.x, style.y, style.width, style.height]
    if style.fill_color is not None:
        instructions.append(([*style.fill_color], Operator("rg")))
        instructions.append((rect, Operator("re")))
        instructions.append(([], Operator("B")))
    else:
        instructions.append((rect, Operator("re")))
        instructions.append(([], Operator("S")))

    first_baseline = style.y + style.height - style.padding - style.font_size

    instructions.extend(
        [
            ([], Operator("BT")),
            ([*style.text_color], Operator("rg")),
            ([font, style.font_size], Operator("Tf")),
            ([style.x + style.padding, first_baseline], Operator("Td")),
        ]
    )

    for index, line in enumerate(lines):
        if index:
            instructions.append(([0, -style.line_spacing], Operator("Td")))
        instructions.append(([_encode_text(line)], Operator("Tj")))

    instructions.append(([], Operator("ET")))
    instructions.append(([], Operator("Q")))
    return instructions


def stamp_signature_box(
    pdf_bytes: bytes,
    lines: Sequence[str],
    *,
    style: BoxStyle = VISUAL_STYLE,
) -> bytes:
    """
    Draw a bordered text box on the last page and return the new PDF.

    Raises:
        MalformedPdf:
            If the buffer cannot be opened, is encrypted or has no pages.
    """
    try:
        pdf = pikepdf.open(io.BytesIO(pdf_bytes))
    except pikepdf.PdfError as exc:
        raise MalformedPdf(
            "The document is not a valid PDF.",
            detail=str(exc),
        ) from exc

    with pdf:
        # Saving would silently drop owner-password protection.
        if pdf.is_encrypted:
            raise MalformedPdf("Encrypted PDF documents cannot be signed.")
        if len(pdf.pages) == 0:
            raise MalformedPdf("The document has no pages.")

        page = pdf.pages[-1]

        font = pdf.make_indirect(
            Dictionary(
                Type=Name.Font,
                Subtype=Name.Type1,
                BaseFont=Name.Helvetica,
                Encoding=Name.WinAnsiEncoding,
            )
        )
        font_name = page.add_resource(font, Name.Font, prefix="CsF")

        content = pikepdf.unparse_content_stream(
            _box_instructions(font_name, lines, style)
        )

        page.contents_add(pikepdf.Stream(pdf, b"q\n"), prepend=True)
        page.contents_add(pikepdf.Stream(pdf, b"\nQ\n" + content + b"\n"))

        buffer = io.BytesIO()
        pdf.save(buffer)

    return buffer.getvalue()
