import argparse
import os
from typing import Dict, List, Optional

import pandas as pd
from rapidfuzz import fuzz, process

from expense_filler import list_template_fields
from field_patterns import FIELD_PATTERNS, load_pattern_overrides, normalize_name, pattern_rows
from form_catalog import build_field_mapping

FUZZ_THRESH = 80

MAP_COLUMNS = ["Field", "Normalized", "Kind", "Pages", "Mapped Keys", "Suggested Key"]


def _ensure_parent_dir(path: str):
    d = os.path.dirname(os.path.abspath(path))
    if d and not os.path.exists(d):
        os.makedirs(d, exist_ok=True)


def _write_sheet(df: pd.DataFrame, out_path: str) -> str:
    """Write Excel or CSV by extension (falls back to CSV if Excel fails)."""
    _ensure_parent_dir(out_path)
    if out_path.lower().endswith(".csv"):
        df.to_csv(out_path, index=False, encoding="utf-8-sig")
        return out_path
    try:
        df.to_excel(out_path, index=False)
    except Exception as e:
        fallback = os.path.splitext(out_path)[0] + ".csv"
        df.to_csv(fallback, index=False, encoding="utf-8-sig")
        print(f"⚠️  Could not write Excel ({e}). Wrote CSV instead: {fallback}")
        return fallback
    return out_path


def suggest_key(normalized: str, keys: List[str]) -> str:
    """Closest logical key by fuzzy name, or '' if nothing scores >= FUZZ_THRESH."""
    if not normalized or not keys:
        return ""
    choices = {k: normalize_name(k) for k in keys}
    best = process.extractOne(normalized, choices, scorer=fuzz.token_set_ratio)
    if best and best[1] >= FUZZ_THRESH:
        return best[2]
    return ""


def field_map_rows(template_bytes: bytes,
                   patterns: Optional[Dict[str, List[str]]] = None) -> List[Dict[str, str]]:
    """
    One row per template field:
    Field | Normalized | Kind | Pages | Mapped Keys | Suggested Key

    Mapped Keys lists the logical keys the name table resolves to the field,
    so an operator can see which values would land where (and which fields
    nothing points at). For those, Suggested Key is a fuzzy guess worth
    adding to the pattern sheet.
    """
    table = patterns if patterns is not None else FIELD_PATTERNS
    catalog = list_template_fields(template_bytes)
    mapping = build_field_mapping(catalog, table)

    by_field: Dict[str, List[str]] = {}
    for key, name in mapping.items():
        by_field.setdefault(name, []).append(key)

    rows = []
    for e in catalog:
        mapped = by_field.get(e.name, [])
        rows.append({
            "Field": e.name,
            "Normalized": e.normalized,
            "Kind": e.kind,
            "Pages": ", ".join(str(p + 1) for p in e.pages),
            "Mapped Keys": ", ".join(mapped),
            "Suggested Key": "" if mapped else suggest_key(e.normalized, list(table)),
        })
    return rows


def export_field_map(input_path: str,
                     out_path: str = "field_map.xlsx",
                     patterns: Optional[Dict[str, List[str]]] = None) -> str:
    with open(input_path, "rb") as f:
        template_bytes = f.read()

    rows = field_map_rows(template_bytes, patterns)
    df = pd.DataFrame(rows, columns=MAP_COLUMNS).fillna("")
    written = _write_sheet(df, out_path)

    unmapped = int((df["Mapped Keys"] == "").sum()) if len(df) else 0
    print(f"📤 Field map written to {written} with {len(df)} fields ({unmapped} not matched by any key).")
    if len(df) == 0:
        print("⚠️  No fields were detected. Is this a fillable (AcroForm) PDF?")
    return written


def export_pattern_sheet(out_path: str = "field_patterns.xlsx",
                         patterns: Optional[Dict[str, List[str]]] = None) -> str:
    """Dump the name table as Key/Pattern rows; edit it and pass it back with --patterns."""
    df = pd.DataFrame(pattern_rows(patterns), columns=["Key", "Pattern"])
    written = _write_sheet(df, out_path)
    print(f"📤 Pattern sheet written to {written} with {len(df)} rows.")
    return written


# ---------------------------
# CLI
# ---------------------------
def main():
    ap = argparse.ArgumentParser(
        description="Export the field map of a PDF template (which logical keys land on which fields)"
    )
    ap.add_argument("--input", help="Fillable PDF template")
    ap.add_argument("--make-map", metavar="OUT.xlsx", help="Write the field map (xlsx or csv)")
    ap.add_argument("--make-patterns", metavar="OUT.xlsx", help="Write the Key/Pattern name table (xlsx or csv)")
    ap.add_argument("--patterns", help="Existing Key/Pattern sheet to apply on top of the built-in table")
    args = ap.parse_args()

    patterns = load_pattern_overrides(args.patterns) if args.patterns else None

    did = False
    if args.make_patterns:
        export_pattern_sheet(args.make_patterns, patterns)
        did = True
    if args.make_map:
        if not args.input:
            ap.error("--make-map needs --input")
        export_field_map(args.input, args.make_map, patterns)
        did = True

    if not did:
        print("Nothing to do. Pass --make-map OUT.xlsx (with --input) or --make-patterns OUT.xlsx.")


if __name__ == "__main__":
    main()
