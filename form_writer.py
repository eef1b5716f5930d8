# form_writer.py
# Writes values into AcroForm widgets by exact field name, and draws text
# onto the first page when a value has no field to go into.

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import fitz  # PyMuPDF

from field_patterns import ANCHOR_GAP, ANCHOR_KEYWORDS, POSITIONAL_STYLES
from form_catalog import FieldCatalogEntry, get_widgets, names_containing

Rect4 = Tuple[float, float, float, float]  # left, bottom, right, top (PDF space)


@dataclass
class FillEvent:
    action: str            # filled | checked | skipped | error | drawn | warning
    key: str               # logical key, e.g. "location" or "asuAttendees[0].name"
    field: Optional[str] = None
    detail: str = ""

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {"action": self.action, "key": self.key, "field": self.field, "detail": self.detail}


@dataclass
class FillDiagnostics:
    """Collects what happened during one fill; handed back with the result."""
    events: List[FillEvent] = field(default_factory=list)

    def record(self, action: str, key: str, field_name: Optional[str] = None, detail: str = ""):
        self.events.append(FillEvent(action, key, field_name, detail))

    def by_action(self, action: str) -> List[FillEvent]:
        return [e for e in self.events if e.action == action]


class FieldWriter:
    """
    Field writes for one open document.

    Every write reports a bool: missing field, wrong kind, a field already
    holding another logical value, or a PyMuPDF error all come back as
    False. A physical field belongs to the first logical value written to
    it; rewriting it for the same owner is allowed.
    """

    def __init__(self, doc: fitz.Document, catalog: Iterable[FieldCatalogEntry],
                 diagnostics: Optional[FillDiagnostics] = None):
        self.doc = doc
        self.entries = {e.name: e for e in catalog}
        self.owners: Dict[str, str] = {}
        self.diagnostics = diagnostics if diagnostics is not None else FillDiagnostics()

    def _widgets(self, name: str, field_type: int) -> List[Tuple[fitz.Page, fitz.Widget]]:
        # (page, widget) pairs: a widget is unbound once its page object is collected
        entry = self.entries.get(name)
        if entry is None:
            return []
        out = []
        for pno in entry.pages:
            page = self.doc[pno]
            for w in get_widgets(page):
                if (w.field_name or "").strip() == name and w.field_type == field_type:
                    out.append((page, w))
        return out

    def _claimed_by_other(self, name: str, owner: str) -> bool:
        holder = self.owners.get(name)
        if holder is not None and holder != owner:
            self.diagnostics.record("skipped", owner, name, f"already holds {holder}")
            return True
        return False

    def write_text(self, name: str, value: str, owner: str) -> bool:
        if self._claimed_by_other(name, owner):
            return False
        widgets = self._widgets(name, fitz.PDF_WIDGET_TYPE_TEXT)
        if not widgets:
            return False
        try:
            for _page, w in widgets:
                w.field_value = value
                w.update()
        except Exception as e:
            self.diagnostics.record("error", owner, name, str(e))
            return False
        self.owners[name] = owner
        self.diagnostics.record("filled", owner, name, value)
        return True

    def set_checkbox(self, name: str, checked: bool, owner: str) -> bool:
        if self._claimed_by_other(name, owner):
            return False
        widgets = self._widgets(name, fitz.PDF_WIDGET_TYPE_CHECKBOX)
        if not widgets:
            return False
        try:
            for _page, w in widgets:
                w.field_value = bool(checked)
                w.update()
        except Exception as e:
            self.diagnostics.record("error", owner, name, str(e))
            return False
        self.owners[name] = owner
        self.diagnostics.record("checked" if checked else "unchecked", owner, name)
        return True

    def is_text_field(self, name: str) -> bool:
        entry = self.entries.get(name)
        return bool(entry) and entry.kind == "Text"

    def is_owned(self, name: str) -> bool:
        return name in self.owners

    def read_text(self, name: str) -> str:
        widgets = self._widgets(name, fitz.PDF_WIDGET_TYPE_TEXT)
        if not widgets:
            return ""
        try:
            cur = widgets[0][1].field_value
        except Exception:
            return ""
        if isinstance(cur, bytes):
            cur = cur.decode("utf-8", "ignore")
        return "" if cur is None else str(cur)

    def field_rect(self, name: str, page: int = 0) -> Optional[Rect4]:
        """Bounding box of the field's first widget on `page`, in PDF user space."""
        entry = self.entries.get(name)
        if entry is None or page not in entry.pages:
            return None
        pg = self.doc[page]
        for w in get_widgets(pg):
            if (w.field_name or "").strip() == name:
                r = fitz.Rect(w.rect) * ~pg.transformation_matrix
                r.normalize()
                return (r.x0, r.y0, r.x1, r.y1)
        return None

    def draw_text(self, text: str, x: float, y: float, fontsize: float, fontname: str) -> bool:
        """Draw `text` with its baseline at PDF point (x, y) of the first page."""
        page = self.doc[0]
        try:
            point = fitz.Point(x, y) * page.transformation_matrix
            page.insert_text(point, text, fontsize=fontsize, fontname=fontname, color=(0, 0, 0))
        except Exception as e:
            self.diagnostics.record("error", "draw", None, str(e))
            return False
        return True


# ---------------------------
# Positional fallback
# ---------------------------
def pick_anchor(writer: FieldWriter, catalog: Iterable[FieldCatalogEntry],
                kind: str) -> Optional[Tuple[str, Rect4]]:
    """First keyword-named field with a widget on the first page."""
    for name in names_containing(catalog, ANCHOR_KEYWORDS[kind]):
        rect = writer.field_rect(name)
        if rect:
            return name, rect
    return None


def fallback_position(kind: str, anchor: Optional[Rect4]) -> Tuple[float, float]:
    """
    date: right of the anchor, vertically centred on it.
    signature: left-aligned with the anchor, below it.
    """
    style = POSITIONAL_STYLES[kind]
    if anchor is None:
        return style["x"], style["y"]
    left, bottom, right, top = anchor
    if kind == "date":
        return right + ANCHOR_GAP, bottom + (top - bottom) / 2
    return left, bottom - ANCHOR_GAP


def draw_positional(writer: FieldWriter, catalog: Iterable[FieldCatalogEntry],
                    kind: str, text: str, owner: str) -> bool:
    # Known limitation: no collision check, the text may overlap page content.
    catalog = list(catalog)
    anchor = pick_anchor(writer, catalog, kind)
    x, y = fallback_position(kind, anchor[1] if anchor else None)
    style = POSITIONAL_STYLES[kind]
    if not writer.draw_text(text, x, y, style["fontsize"], style["fontname"]):
        return False
    where = f"near '{anchor[0]}'" if anchor else "default position"
    writer.diagnostics.record("drawn", owner, None, f"({x:.1f}, {y:.1f}) {where}")
    return True
