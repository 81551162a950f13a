import io
from datetime import datetime, timezone

import pikepdf
import pytest

from casesign.app.core.errors import MalformedPdf
from casesign.app.schemas.signing import SignatureMetadata, SignatureRequest
from casesign.app.services.strategies import VisualSignatureStrategy
from casesign.app.services.visual_stamp import CRYPTO_STYLE, stamp_signature_box
from casesign.tests.fixtures.pdf_factory import (
    document_pdf,
    not_a_pdf,
    owner_protected_pdf,
    pageless_pdf,
    shown_text,
)

FIXED_TIME = datetime(2026, 11, 30, 23, 5, tzinfo=timezone.utc)


@pytest.fixture
def strategy(make_settings):
    return VisualSignatureStrategy(
        make_settings(signer_name="Registro General"),
        clock=lambda: FIXED_TIME,
    )


def test_box_is_drawn_on_last_page_only(strategy):
    signed = strategy.sign(SignatureRequest(pdf_bytes=document_pdf(pages=3)))

    with pikepdf.open(io.BytesIO(signed)) as pdf:
        assert len(pdf.pages) == 3
        assert shown_text(pdf.pages[0]) == ["Case page 1"]
        assert shown_text(pdf.pages[-1]) == [
            "Case page 3",
            "Documento firmado digitalmente por: Registro General",
            "Fecha de firma: 30/11/2026 23:05",
        ]


def test_signer_name_from_request_metadata(strategy):
    signed = strategy.sign(
        SignatureRequest(
            pdf_bytes=document_pdf(),
            metadata=SignatureMetadata(signer_name="Juzgado n.º 3"),
        )
    )

    with pikepdf.open(io.BytesIO(signed)) as pdf:
        assert "Documento firmado digitalmente por: Juzgado n.º 3" in shown_text(
            pdf.pages[-1]
        )


def test_no_signature_dictionary_is_added(strategy):
    signed = strategy.sign(SignatureRequest(pdf_bytes=document_pdf()))

    with pikepdf.open(io.BytesIO(signed)) as pdf:
        assert "/AcroForm" not in pdf.Root


def test_existing_graphics_state_is_isolated():
    stamped = stamp_signature_box(document_pdf(), ["line"], style=CRYPTO_STYLE)

    with pikepdf.open(io.BytesIO(stamped)) as pdf:
        operators = [
            str(operator)
            for _, operator in pikepdf.parse_content_stream(pdf.pages[0])
        ]

    # Original content (with its translated CTM) is wrapped in q ... Q
    # before the box is drawn.
    first_cm = operators.index("cm")
    assert operators[0] == "q"
    assert "Q" in operators[first_cm:]
    assert operators.index("Q", first_cm) < operators.index("re")


def test_describe(strategy):
    info = strategy.describe()
    assert info.type.value == "visual"
    assert "not cryptographic" in info.details


@pytest.mark.parametrize("payload", [not_a_pdf(), pageless_pdf()])
def test_malformed_input(strategy, payload):
    with pytest.raises(MalformedPdf):
        strategy.sign(SignatureRequest(pdf_bytes=payload))


def test_owner_protected_pdf_is_rejected(strategy):
    with pytest.raises(MalformedPdf, match="Encrypted"):
        strategy.sign(SignatureRequest(pdf_bytes=owner_protected_pdf()))


def test_stamp_refuses_to_drop_protection():
    with pytest.raises(MalformedPdf):
        stamp_signature_box(owner_protected_pdf(), ["line"])


def test_signing_date_uses_display_timezone(make_settings):
    strategy = VisualSignatureStrategy(
        make_settings(
            signer_name="Registro General",
            display_timezone="Europe/Madrid",
        ),
        clock=lambda: FIXED_TIME,
    )

    signed = strategy.sign(SignatureRequest(pdf_bytes=document_pdf()))

    with pikepdf.open(io.BytesIO(signed)) as pdf:
        # 23:05 UTC on 30 November is past midnight in Madrid (CET).
        assert "Fecha de firma: 01/12/2026 00:05" in shown_text(pdf.pages[-1])
