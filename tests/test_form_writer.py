import fitz  # PyMuPDF
import pytest

from conftest import PAGE_H, is_checked, make_form_pdf, read_fields
from form_catalog import extract_field_catalog
from form_writer import (
    FieldWriter,
    FillDiagnostics,
    draw_positional,
    fallback_position,
    pick_anchor,
)


@pytest.fixture
def open_form():
    docs = []

    def _open(pdf_bytes):
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
        docs.append(doc)
        catalog = extract_field_catalog(doc)
        return doc, catalog, FieldWriter(doc, catalog, FillDiagnostics())

    yield _open
    for d in docs:
        d.close()


def test_write_text_round_trips(open_form):
    doc, _, writer = open_form(make_form_pdf(["location", "notes"]))

    assert writer.write_text("location", "Tempe, AZ", "location") is True

    fields = read_fields(doc.tobytes())
    assert fields["location"] == "Tempe, AZ"
    assert fields["notes"] == ""
    assert writer.diagnostics.by_action("filled")[0].field == "location"


def test_write_text_reports_missing_and_wrong_kind(open_form):
    _, _, writer = open_form(make_form_pdf(["location", ("card", "checkbox")]))

    assert writer.write_text("Location", "x", "location") is False  # exact names only
    assert writer.write_text("nope", "x", "location") is False
    assert writer.write_text("card", "x", "paymentMethodCard") is False
    assert writer.set_checkbox("location", True, "location") is False


def test_field_belongs_to_first_writer(open_form):
    doc, _, writer = open_form(make_form_pdf(["businessPurpose"]))

    assert writer.write_text("businessPurpose", "Team lunch", "businessPurpose")
    assert writer.write_text("businessPurpose", "PO-1", "poNumber") is False
    # same owner may write again
    assert writer.write_text("businessPurpose", "Team lunch", "businessPurpose")

    assert read_fields(doc.tobytes())["businessPurpose"] == "Team lunch"
    skipped = writer.diagnostics.by_action("skipped")
    assert skipped and skipped[0].key == "poNumber"


def test_set_checkbox(open_form):
    doc, _, writer = open_form(make_form_pdf([("paymentMethodCard", "checkbox"),
                                              ("paymentMethodInvoice", "checkbox")]))

    assert writer.set_checkbox("paymentMethodCard", True, "paymentMethodCard")

    fields = read_fields(doc.tobytes())
    assert is_checked(fields["paymentMethodCard"])
    assert not is_checked(fields["paymentMethodInvoice"])


def test_read_text_and_ownership(open_form):
    _, _, writer = open_form(make_form_pdf(["prefilled", "empty"], values={"prefilled": "N/A"}))

    assert writer.read_text("prefilled") == "N/A"
    assert writer.read_text("empty") == ""
    assert writer.read_text("missing") == ""
    assert not writer.is_owned("empty")
    writer.write_text("empty", "v", "k")
    assert writer.is_owned("empty")
    assert writer.is_text_field("empty")


def test_field_rect_is_in_pdf_space(open_form):
    pdf = make_form_pdf(["requesterSignature"], rects={"requesterSignature": fitz.Rect(50, 100, 250, 120)})
    _, _, writer = open_form(pdf)

    left, bottom, right, top = writer.field_rect("requesterSignature")
    assert (left, right) == pytest.approx((50, 250))
    assert (bottom, top) == pytest.approx((PAGE_H - 120, PAGE_H - 100))


def test_field_rect_only_on_requested_page(open_form):
    pdf = make_form_pdf(["signature"], pages=2, field_pages={"signature": 1})
    _, _, writer = open_form(pdf)
    assert writer.field_rect("signature") is None
    assert writer.field_rect("signature", page=1) is not None


def test_fallback_position_offsets():
    anchor = (100.0, 200.0, 300.0, 220.0)
    assert fallback_position("date", anchor) == (320.0, 210.0)
    assert fallback_position("signature", anchor) == (100.0, 180.0)
    assert fallback_position("date", None) == (500.0, 100.0)
    assert fallback_position("signature", None) == (100.0, 100.0)


def test_pick_anchor_uses_keywords_in_catalog_order(open_form):
    pdf = make_form_pdf(["location", "requesterName", "certificationDate"])
    _, catalog, writer = open_form(pdf)

    name, _ = pick_anchor(writer, catalog, "signature")
    assert name == "requesterName"
    assert pick_anchor(writer, catalog, "date") is None


def test_draw_positional_at_default_spot(open_form):
    doc, catalog, writer = open_form(make_form_pdf(["location"]))

    assert draw_positional(writer, catalog, "date", "05/02/2024", "requesterDate")

    out = fitz.open(stream=doc.tobytes(), filetype="pdf")
    try:
        hits = out[0].search_for("05/02/2024")
    finally:
        out.close()
    assert hits
    # default (500, 100) in PDF space; baseline 100pt above the bottom edge
    assert hits[0].x0 == pytest.approx(500, abs=1.5)
    assert PAGE_H - 100 - 12 < hits[0].y1 < PAGE_H - 100 + 6
    drawn = writer.diagnostics.by_action("drawn")
    assert drawn[0].key == "requesterDate"
    assert "default position" in drawn[0].detail


def test_draw_positional_next_to_signature_anchor(open_form):
    rect = fitz.Rect(60, 600, 260, 620)  # PDF space: bottom 172, top 192
    doc, catalog, writer = open_form(make_form_pdf(["Signature"], rects={"Signature": rect}))

    assert draw_positional(writer, catalog, "date", "05/02/2024", "requesterDate")

    out = fitz.open(stream=doc.tobytes(), filetype="pdf")
    try:
        hits = out[0].search_for("05/02/2024")
    finally:
        out.close()
    assert hits[0].x0 == pytest.approx(280, abs=1.5)
    # baseline at y = 182 in PDF space -> 610 from the top
    assert 600 < hits[0].y1 < 616
    assert "near 'Signature'" in writer.diagnostics.by_action("drawn")[0].detail


def test_writes_stay_bound_across_pages(open_form):
    pdf = make_form_pdf(["location", ("card", "checkbox"), "notes"], pages=2,
                        field_pages={"notes": 1})
    doc, _, writer = open_form(pdf)

    # each lookup fetches fresh page objects; the widgets must still update
    assert writer.write_text("location", "Tempe", "location")
    assert writer.set_checkbox("card", True, "paymentMethodCard")
    assert writer.write_text("notes", "Second page", "notes")

    assert writer.diagnostics.by_action("error") == []
    fields = read_fields(doc.tobytes())
    assert fields["location"] == "Tempe"
    assert fields["notes"] == "Second page"
    assert is_checked(fields["card"])


def _span_for(doc, text):
    out = fitz.open(stream=doc.tobytes(), filetype="pdf")
    try:
        for block in out[0].get_text("dict")["blocks"]:
            for line in block.get("lines", []):
                for span in line["spans"]:
                    if span["text"].strip() == text:
                        return span
    finally:
        out.close()
    return None


def test_signature_is_drawn_in_12pt_times_italic(open_form):
    doc, catalog, writer = open_form(make_form_pdf(["location"]))

    assert draw_positional(writer, catalog, "signature", "Jane Doe", "textSignature")

    span = _span_for(doc, "Jane Doe")
    assert span is not None
    assert span["size"] == pytest.approx(12, abs=0.1)
    assert "Times" in span["font"] and "Italic" in span["font"]


def test_date_is_drawn_in_10pt_helvetica(open_form):
    doc, catalog, writer = open_form(make_form_pdf(["location"]))

    assert draw_positional(writer, catalog, "date", "05/02/2024", "requesterDate")

    span = _span_for(doc, "05/02/2024")
    assert span is not None
    assert span["size"] == pytest.approx(10, abs=0.1)
    assert "Helvetica" in span["font"]
