# form_catalog.py
# Field catalog of a loaded AcroForm and the logical-key -> physical-name mapper.

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import fitz  # PyMuPDF

from field_patterns import FIELD_PATTERNS, normalize_name


@dataclass(frozen=True)
class FieldCatalogEntry:
    name: str
    normalized: str
    kind: str
    pages: Tuple[int, ...]


def get_widgets(page: fitz.Page):
    try:
        it = page.widgets() or []
    except TypeError:
        it = page.widgets or []
    return list(it)


def extract_field_catalog(doc: fitz.Document) -> Tuple[FieldCatalogEntry, ...]:
    """
    One entry per distinct field name, in document order (page, then widget
    order on the page). A field with several widgets keeps its first kind
    and collects every page it appears on.
    """
    order: List[str] = []
    kinds: Dict[str, str] = {}
    pages: Dict[str, List[int]] = {}

    for pno in range(len(doc)):
        for w in get_widgets(doc[pno]):
            name = (w.field_name or "").strip()
            if not name:
                continue
            if name not in kinds:
                order.append(name)
                kinds[name] = w.field_type_string or ""
                pages[name] = []
            if pno not in pages[name]:
                pages[name].append(pno)

    return tuple(
        FieldCatalogEntry(name=n, normalized=normalize_name(n), kind=kinds[n], pages=tuple(pages[n]))
        for n in order
    )


def build_field_mapping(catalog: Iterable[FieldCatalogEntry],
                        patterns: Optional[Dict[str, List[str]]] = None) -> Dict[str, str]:
    """
    Resolve each logical key to a physical field name.

    An exact (case-insensitive) name match wins outright. Otherwise the
    fragments are tried in table order and the first one contained in some
    normalized name decides; among entries containing it, catalog order
    decides. Keys with no hit are left out.
    """
    entries = list(catalog)
    patterns = patterns if patterns is not None else FIELD_PATTERNS
    mapping: Dict[str, str] = {}

    for key, fragments in patterns.items():
        lowered = key.lower()
        exact = next((e for e in entries if e.name.lower() == lowered), None)
        if exact:
            mapping[key] = exact.name
            continue

        for frag in fragments:
            if not frag:
                continue
            hit = next((e for e in entries if frag in e.normalized), None)
            if hit:
                mapping[key] = hit.name
                break

    return mapping


def first_success(candidates: Iterable[str], attempt: Callable[[str], bool]) -> Optional[str]:
    """Return the first candidate `attempt` accepts; later ones are never tried."""
    for c in candidates:
        if attempt(c):
            return c
    return None


def logical_candidates(key: str, mapping: Dict[str, str]) -> List[str]:
    """Mapped physical name first, then the key itself as a literal name."""
    out = []
    mapped = mapping.get(key)
    if mapped:
        out.append(mapped)
    if key not in out:
        out.append(key)
    return out


def names_containing(catalog: Iterable[FieldCatalogEntry], keywords: Iterable[str]) -> List[str]:
    kws = [k.lower() for k in keywords]
    return [e.name for e in catalog if any(k in e.name.lower() for k in kws)]
