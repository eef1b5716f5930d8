# expense_filler.py
# Fills a business-meals expense form PDF whose AcroForm field names are not
# known up front: mapped fields first, literal-name guesses for attendee
# rows, and text drawn onto page 1 for a date or signature with no field.

import argparse
import base64
import json
import os
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from numbers import Number
from typing import Any, Dict, List, Optional, Tuple, Union

import fitz  # PyMuPDF

from field_patterns import (
    BLANK_SCAN_EXCLUDE,
    DATE_FIELD_PATTERNS,
    DATE_KEYWORD,
    DEFAULT_EXPENSE_TYPE,
    FIELD_PATTERNS,
    MAX_ATTENDEES,
    REQUESTER_BLOCK_KEYWORDS,
    SIGNATURE_KEYWORDS,
    attendee_candidates,
    load_pattern_overrides,
)
from form_catalog import (
    FieldCatalogEntry,
    build_field_mapping,
    extract_field_catalog,
    first_success,
    logical_candidates,
    names_containing,
)
from form_writer import FieldWriter, FillDiagnostics, FillEvent, draw_positional

TEMPLATE_INVALID_MSG = "The PDF template is not valid or is corrupted. Please try a different PDF template."
NO_FIELDS_MSG = "No fillable form fields found in the PDF. Please ensure you're using a fillable PDF form template."
NO_MATCH_MSG = "Could not match any form fields with the PDF. Please check the field mapping."
PERSIST_WARNING = "Could not save the PDF file for download, but you can view it in the browser."

BASIC_KEYS = ("expenseType", "location", "eventDate", "businessPurpose",
              "costCenter", "poNumber", "totalAmount")
CERTIFICATION_KEYS = ("largeGroupInfo", "requesterName", "requesterPhone")
APPROVAL_KEYS = ("directInquiriesTo", "directInquiriesDate",
                 "costCenterManager", "costCenterManagerDate",
                 "deanDirector", "deanDirectorDate",
                 "otherApprover", "otherApproverDate")
TEXT_KEYS = BASIC_KEYS + ("supplierName",) + CERTIFICATION_KEYS + (
    "requesterDate", "textSignature") + APPROVAL_KEYS
DATE_KEYS = ("eventDate", "requesterDate", "directInquiriesDate",
             "costCenterManagerDate", "deanDirectorDate", "otherApproverDate")

# Older key spellings still accepted on input
KEY_ALIASES = {
    "eventLocation": "location",
    "inquiriesDate": "directInquiriesDate",
    "other": "otherApprover",
    "otherDate": "otherApproverDate",
}


# ---------------------------
# Errors
# ---------------------------
class FormFillError(Exception):
    """A fill that cannot produce an output document."""


class TemplateInvalid(FormFillError):
    pass


class NoFillableFields(FormFillError):
    pass


class NoFieldsFilled(FormFillError):
    def __init__(self, message: str, field_names: List[str]):
        super().__init__(message)
        self.field_names = field_names


class InvalidFormData(FormFillError):
    pass


# ---------------------------
# Input model
# ---------------------------
def to_text(v: Any) -> str:
    if v is None or isinstance(v, bool):
        return ""
    if isinstance(v, Number):
        if float(v).is_integer():
            return str(int(v))
        return str(v)
    return str(v)


def has_value(s: Optional[str]) -> bool:
    return bool(s and s.strip())


def format_form_date(value: str) -> str:
    """ISO dates (YYYY-MM-DD) become MM/DD/YYYY; anything else is kept."""
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").strftime("%m/%d/%Y")
    except ValueError:
        return value


class PaymentMethod(Enum):
    CARD = "1"
    INVOICE = "2"

    @property
    def checkbox_key(self) -> str:
        return "paymentMethodCard" if self is PaymentMethod.CARD else "paymentMethodInvoice"

    @classmethod
    def parse(cls, value: Any) -> Optional["PaymentMethod"]:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            raise InvalidFormData(f"paymentMethod must be a string or integer, got {value!r}")
        s = to_text(value).strip()
        if not s:
            return None
        try:
            return cls(s)
        except ValueError:
            raise InvalidFormData(
                f"paymentMethod must be '1' (purchasing card) or '2' (supplier invoice), got {s!r}"
            )


@dataclass
class Attendee:
    name: str = ""
    department: str = ""
    title: str = ""


@dataclass
class OtherAttendee:
    name: str = ""
    affiliation: str = ""
    title: str = ""


def _attendees(raw: Any, cls) -> list:
    # Slots are positional (index i -> field suffix i+1), so junk entries stay as blanks
    if not isinstance(raw, list):
        return []
    names = [f.name for f in fields(cls)]
    out = []
    for item in raw:
        if isinstance(item, dict):
            out.append(cls(**{n: to_text(item.get(n)) for n in names}))
        else:
            out.append(cls())
    return out


@dataclass
class ExpenseFormData:
    values: Dict[str, str] = field(default_factory=dict)
    payment_method: Optional[PaymentMethod] = None
    asu_attendees: List[Attendee] = field(default_factory=list)
    other_attendees: List[OtherAttendee] = field(default_factory=list)

    def value(self, key: str) -> str:
        return self.values.get(key, "")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExpenseFormData":
        if not isinstance(data, dict):
            raise InvalidFormData("Form data must be a JSON object.")

        raw = dict(data)
        for old, new in KEY_ALIASES.items():
            if old in raw and raw.get(new) is None:
                raw[new] = raw[old]

        values = {k: to_text(raw[k]) for k in TEXT_KEYS if raw.get(k) is not None}
        if "expenseType" not in values:
            values["expenseType"] = DEFAULT_EXPENSE_TYPE
        for k in DATE_KEYS:
            if has_value(values.get(k)):
                values[k] = format_form_date(values[k])

        return cls(
            values=values,
            payment_method=PaymentMethod.parse(raw.get("paymentMethod")),
            asu_attendees=_attendees(raw.get("asuAttendees"), Attendee),
            other_attendees=_attendees(raw.get("otherAttendees"), OtherAttendee),
        )


# ---------------------------
# Result
# ---------------------------
@dataclass
class FillResult:
    success: bool
    filled_count: int = 0
    output_bytes: bytes = b""
    field_names: List[str] = field(default_factory=list)
    error: Optional[str] = None
    url: Optional[str] = None
    warning: Optional[str] = None
    events: List[FillEvent] = field(default_factory=list)

    @property
    def data_uri(self) -> Optional[str]:
        if not self.output_bytes:
            return None
        return "data:application/pdf;base64," + base64.b64encode(self.output_bytes).decode("ascii")

    def to_response(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "success": self.success,
            "filledCount": self.filled_count,
            "fieldNames": self.field_names,
            "diagnostics": [e.as_dict() for e in self.events],
        }
        if self.output_bytes:
            out["base64"] = self.data_uri
        for k in ("url", "error", "warning"):
            v = getattr(self, k)
            if v is not None:
                out[k] = v
        return out


# ---------------------------
# Orchestrator
# ---------------------------
class ExpenseFormFiller:
    """One fill over one open document. Not reusable across documents."""

    def __init__(self, doc: fitz.Document,
                 catalog: Tuple[FieldCatalogEntry, ...],
                 patterns: Optional[Dict[str, List[str]]] = None,
                 diagnostics: Optional[FillDiagnostics] = None):
        self.doc = doc
        self.catalog = catalog
        self.diagnostics = diagnostics if diagnostics is not None else FillDiagnostics()
        self.mapping = build_field_mapping(catalog, patterns if patterns is not None else FIELD_PATTERNS)
        self.writer = FieldWriter(doc, catalog, self.diagnostics)
        self.filled = 0

    def _write_first(self, candidates: List[str], value: str, owner: str) -> Optional[str]:
        return first_success(candidates, lambda n: self.writer.write_text(n, value, owner))

    def fill_logical(self, key: str, value: str) -> bool:
        if not has_value(value):
            return False
        if self._write_first(logical_candidates(key, self.mapping), value, key):
            self.filled += 1
            return True
        self.diagnostics.record("missed", key, None, "no matching text field")
        return False

    def check_logical(self, key: str, checked: bool = True) -> bool:
        hit = first_success(logical_candidates(key, self.mapping),
                            lambda n: self.writer.set_checkbox(n, checked, key))
        if hit:
            self.filled += 1
            return True
        self.diagnostics.record("missed", key, None, "no matching checkbox")
        return False

    def fill_attendees(self, group: str, label: str, records: list, subfields: Tuple[str, ...]):
        for i, rec in enumerate(records[:MAX_ATTENDEES]):
            for sub in subfields:
                value = getattr(rec, sub)
                if not has_value(value):
                    continue
                owner = f"{label}[{i}].{sub}"
                if self._write_first(attendee_candidates(group, sub, i), value, owner):
                    self.filled += 1
                else:
                    self.diagnostics.record("missed", owner, None, "no attendee field matched")

    def _blank_text_field(self, name: str, value: str, owner: str) -> bool:
        if self.writer.is_owned(name) or has_value(self.writer.read_text(name)):
            return False
        return self.writer.write_text(name, value, owner)

    def fill_requester_date(self, value: str) -> bool:
        key = "requesterDate"
        if not has_value(value):
            return False

        # 1) literal names, each through the mapping first
        literal = []
        for pattern in DATE_FIELD_PATTERNS:
            literal.extend(logical_candidates(pattern, self.mapping))
        literal = list(dict.fromkeys(literal))
        if self._write_first(literal, value, key):
            self.filled += 1
            return True

        # 2) any field with "date" in its name
        if self._write_first(names_containing(self.catalog, [DATE_KEYWORD]), value, key):
            self.filled += 1
            return True

        # 3) best effort: first blank text field when the form has a requester block
        if names_containing(self.catalog, REQUESTER_BLOCK_KEYWORDS):
            blanks = [e.name for e in self.catalog
                      if e.kind == "Text"
                      and not any(k in e.name.lower() for k in BLANK_SCAN_EXCLUDE)]
            if first_success(blanks, lambda n: self._blank_text_field(n, value, key)):
                self.filled += 1
                return True

        # 4) draw it
        if draw_positional(self.writer, self.catalog, "date", value, key):
            self.filled += 1
            return True
        return False

    def fill_signature(self, value: str) -> bool:
        key = "textSignature"
        if not has_value(value):
            return False
        if self._write_first(names_containing(self.catalog, SIGNATURE_KEYWORDS), value, key):
            self.filled += 1
            return True
        if draw_positional(self.writer, self.catalog, "signature", value, key):
            self.filled += 1
            return True
        return False

    def run(self, data: ExpenseFormData) -> int:
        for key in BASIC_KEYS:
            self.fill_logical(key, data.value(key))

        if data.payment_method is not None:
            self.check_logical(data.payment_method.checkbox_key, True)
        self.fill_logical("supplierName", data.value("supplierName"))

        self.fill_attendees("asu", "asuAttendees", data.asu_attendees, ("name", "department", "title"))
        self.fill_attendees("other", "otherAttendees", data.other_attendees, ("name", "affiliation", "title"))

        for key in CERTIFICATION_KEYS + APPROVAL_KEYS:
            self.fill_logical(key, data.value(key))

        self.fill_requester_date(data.value("requesterDate"))
        self.fill_signature(data.value("textSignature"))
        return self.filled


def open_template(template_bytes: bytes) -> fitz.Document:
    try:
        doc = fitz.open(stream=template_bytes, filetype="pdf")
    except Exception as e:
        raise TemplateInvalid(TEMPLATE_INVALID_MSG) from e
    if not doc.is_pdf or len(doc) == 0:
        doc.close()
        raise TemplateInvalid(TEMPLATE_INVALID_MSG)
    return doc


def list_template_fields(template_bytes: bytes) -> Tuple[FieldCatalogEntry, ...]:
    doc = open_template(template_bytes)
    try:
        return extract_field_catalog(doc)
    finally:
        doc.close()


def fill_pdf_bytes(template_bytes: bytes,
                   data: ExpenseFormData,
                   patterns: Optional[Dict[str, List[str]]] = None,
                   diagnostics: Optional[FillDiagnostics] = None) -> Tuple[bytes, int, List[str]]:
    """
    Fill `template_bytes` and return (pdf bytes, filled count, field names).
    Raises a FormFillError subclass when no output can be produced.
    """
    doc = open_template(template_bytes)
    try:
        catalog = extract_field_catalog(doc)
        field_names = [e.name for e in catalog]
        if not catalog:
            raise NoFillableFields(NO_FIELDS_MSG)

        filler = ExpenseFormFiller(doc, catalog, patterns=patterns, diagnostics=diagnostics)
        filled = filler.run(data)
        if filled == 0:
            raise NoFieldsFilled(NO_MATCH_MSG, field_names)

        return doc.tobytes(garbage=3, deflate=True), filled, field_names
    finally:
        doc.close()


def save_filled_pdf(pdf_bytes: bytes, output_dir: str) -> str:
    """Write a copy under `output_dir`; returns the generated file name."""
    os.makedirs(output_dir, exist_ok=True)
    filename = f"filled_form_{uuid.uuid4()}.pdf"
    with open(os.path.join(output_dir, filename), "wb") as f:
        f.write(pdf_bytes)
    return filename


def fill_expense_form(template_bytes: bytes,
                      form_data: Union[ExpenseFormData, Dict[str, Any]],
                      output_dir: Optional[str] = None,
                      url_prefix: str = "/filled_pdfs",
                      patterns: Optional[Dict[str, List[str]]] = None,
                      diagnostics: Optional[FillDiagnostics] = None) -> FillResult:
    """
    Fill and report; never raises. A copy is saved under `output_dir` when
    given, and failing to save it only adds a warning.
    """
    diagnostics = diagnostics if diagnostics is not None else FillDiagnostics()

    try:
        data = form_data if isinstance(form_data, ExpenseFormData) else ExpenseFormData.from_dict(form_data)
        pdf_bytes, filled, field_names = fill_pdf_bytes(template_bytes, data, patterns, diagnostics)
    except NoFieldsFilled as e:
        return FillResult(False, error=str(e), field_names=e.field_names, events=diagnostics.events)
    except FormFillError as e:
        return FillResult(False, error=str(e), events=diagnostics.events)
    except Exception as e:
        diagnostics.record("error", "fill", None, repr(e))
        return FillResult(False, error=str(e) or "Unknown error", events=diagnostics.events)

    result = FillResult(True, filled_count=filled, output_bytes=pdf_bytes,
                        field_names=field_names, events=diagnostics.events)

    if output_dir:
        try:
            filename = save_filled_pdf(pdf_bytes, output_dir)
            result.url = f"{url_prefix.rstrip('/')}/{filename}"
        except OSError as e:
            diagnostics.record("warning", "persist", None, str(e))
            result.warning = PERSIST_WARNING

    return result


# ---------------------------
# CLI
# ---------------------------
_EVENT_ICONS = {
    "filled": "✅", "checked": "☑️ ", "unchecked": "☐ ", "drawn": "📍",
    "missed": "ℹ️ ", "skipped": "↪️ ", "warning": "⚠️ ", "error": "⚠️ ",
}


def print_diagnostics(events: List[FillEvent], verbose: bool = False):
    for e in events:
        if not verbose and e.action in ("missed", "skipped"):
            continue
        icon = _EVENT_ICONS.get(e.action, "•")
        target = f" → '{e.field}'" if e.field else ""
        detail = f": {e.detail}" if e.detail else ""
        print(f"{icon} {e.action} {e.key}{target}{detail}")


def main():
    ap = argparse.ArgumentParser(description="Fill a business meals expense PDF from JSON form data")
    ap.add_argument("--template", required=True, help="Fillable PDF template")
    ap.add_argument("--data", help="JSON file with the form values")
    ap.add_argument("--output", default="filled_form.pdf", help="Output PDF path")
    ap.add_argument("--patterns", help="Excel/CSV with Key,Pattern rows to extend the field name table")
    ap.add_argument("--list-fields", action="store_true", help="Print the template's field names and exit")
    ap.add_argument("--verbose", action="store_true", help="Also print misses and skipped candidates")
    args = ap.parse_args()

    with open(args.template, "rb") as f:
        template_bytes = f.read()

    if args.list_fields:
        try:
            catalog = list_template_fields(template_bytes)
        except TemplateInvalid as e:
            print(f"⚠️ {e}")
            return 1
        for e in catalog:
            print(f"   • {e.name}  [{e.kind}] p{','.join(str(p + 1) for p in e.pages)}")
        print(f"🔎 {len(catalog)} fields")
        return 0

    if not args.data:
        ap.error("--data is required unless --list-fields is given")

    with open(args.data, "r", encoding="utf-8") as f:
        form_data = json.load(f)

    patterns = load_pattern_overrides(args.patterns) if args.patterns else None

    result = fill_expense_form(template_bytes, form_data, patterns=patterns)
    print_diagnostics(result.events, verbose=args.verbose)

    if not result.success:
        print(f"⚠️ {result.error}")
        if result.field_names:
            print("   Fields found in the template:")
            for n in result.field_names:
                print(f"   • {n}")
        return 1

    with open(args.output, "wb") as f:
        f.write(result.output_bytes)
    print(f"📝 {result.filled_count} values written → {args.output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
