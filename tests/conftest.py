import fitz  # PyMuPDF
import pytest

PAGE_W, PAGE_H = 612, 792


def _slot_rect(i: int) -> fitz.Rect:
    col, row = divmod(i, 28)
    x0 = 40 + col * 280
    y0 = 30 + row * 26
    return fitz.Rect(x0, y0, x0 + 240, y0 + 18)


def make_form_pdf(fields, pages: int = 1, values=None, rects=None, field_pages=None) -> bytes:
    """
    Build a PDF with one widget per entry of `fields`.

    fields: names (text fields) or (name, "text"|"checkbox") tuples
    values: name -> initial text
    rects: name -> fitz.Rect (MuPDF coordinates, top-left origin)
    field_pages: name -> 0-based page
    """
    values = values or {}
    rects = rects or {}
    field_pages = field_pages or {}

    doc = fitz.open()
    for _ in range(pages):
        doc.new_page(width=PAGE_W, height=PAGE_H)

    for i, item in enumerate(fields):
        name, kind = (item, "text") if isinstance(item, str) else item
        w = fitz.Widget()
        w.field_name = name
        w.rect = rects.get(name, _slot_rect(i))
        if kind == "checkbox":
            w.field_type = fitz.PDF_WIDGET_TYPE_CHECKBOX
            w.field_value = False
        else:
            w.field_type = fitz.PDF_WIDGET_TYPE_TEXT
            w.field_value = values.get(name, "")
        doc[field_pages.get(name, 0)].add_widget(w)

    data = doc.tobytes()
    doc.close()
    return data


def read_fields(pdf_bytes: bytes) -> dict:
    doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    out = {}
    try:
        for page in doc:
            for w in page.widgets():
                out.setdefault(w.field_name, w.field_value)
    finally:
        doc.close()
    return out


def first_page_text(pdf_bytes: bytes) -> str:
    doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    try:
        return doc[0].get_text()
    finally:
        doc.close()


def is_checked(value) -> bool:
    return value not in (None, False, "", "Off")


SCENARIO_FIELDS = [
    "location", "eventDate", "businessPurpose", "costCenter", "totalAmount",
    ("paymentMethodCard", "checkbox"), "supplierName", "requesterName", "requesterPhone",
]


@pytest.fixture
def scenario_pdf() -> bytes:
    return make_form_pdf(SCENARIO_FIELDS)


@pytest.fixture
def scenario_data() -> dict:
    return {
        "location": "Tempe",
        "eventDate": "2024-05-01",
        "businessPurpose": "Recruiting dinner",
        "costCenter": "CC-1234 PGM-01",
        "totalAmount": "245.80",
        "paymentMethod": "1",
        "supplierName": "Four Peaks",
        "requesterName": "Jane Doe",
        "requesterPhone": "480-555-0100",
        "requesterDate": "2024-05-02",
        "textSignature": "Jane Doe",
    }


@pytest.fixture
def blank_pdf() -> bytes:
    doc = fitz.open()
    doc.new_page(width=PAGE_W, height=PAGE_H)
    data = doc.tobytes()
    doc.close()
    return data
