# field_patterns.py
# Name tables used to resolve logical expense-form values onto the physical
# AcroForm fields of an arbitrary template. Data only: supporting a new
# template means editing these tables (or passing an override sheet),
# not the matching code.

import os
import re
from typing import Dict, List, Optional

import pandas as pd

# ---------------------------
# Config / globals
# ---------------------------
MAX_ATTENDEES = 5

DEFAULT_EXPENSE_TYPE = "Financial Services"

# Logical key -> candidate fragments, tried in order against normalized names
FIELD_PATTERNS: Dict[str, List[str]] = {
    # Basic information
    "expenseType": ["expensetype", "type", "typeofexpense", "expense"],
    "location": ["location", "eventlocation", "place", "venue"],
    "eventDate": ["eventdate", "date", "event_date", "dateofmeeting"],
    "businessPurpose": ["businesspurpose", "purpose", "reason", "description", "justification"],
    "costCenter": ["costcenter", "cost", "center", "account", "accountnumber"],
    "poNumber": ["ponumber", "po", "purchaseorder", "ordernumber"],
    "totalAmount": ["totalamount", "amount", "total", "cost", "expense"],

    # Payment method
    "paymentMethodCard": ["card", "purchasingcard", "creditcard", "asucard"],
    "paymentMethodInvoice": ["invoice", "directinvoice", "supplier", "vendor"],
    "supplierName": ["suppliername", "supplier", "vendor", "vendorname"],

    # Large group information
    "largeGroupInfo": ["largegroup", "groupinfo", "attendeecount", "approximatecount"],

    # Required certification
    "requesterName": ["requestername", "requester", "name"],
    "requesterPhone": ["requesterphone", "phone", "phoneno", "phonenumber"],
    "requesterDate": ["requesterdate", "certificationdate", "certdate"],

    # Approvals
    "directInquiriesTo": ["directinquiriesto", "directinquiries", "inquiriesto"],
    "directInquiriesDate": ["directinquiriesdate", "inquiriesdate"],
    "costCenterManager": ["costcentermanager", "centermanager", "managername"],
    "costCenterManagerDate": ["costcentermanagerdate", "managerdate"],
    "deanDirector": ["deanordirector", "deandirector", "director"],
    "deanDirectorDate": ["deandirectordate", "directordate", "deandate"],
    "otherApprover": ["otherapprover", "otherapproval"],
    "otherApproverDate": ["otherapproverdate", "otherapprovaldate"],
}

# Attendee groups: sub-field -> literal physical-name templates ({n} is 1-based)
ATTENDEE_PATTERNS: Dict[str, Dict[str, List[str]]] = {
    "asu": {
        "name": [
            "asuName{n}", "asu_name_{n}", "asuAttendee{n}Name",
            "asuAttendee{n}", "asu{n}Name", "asu{n}",
        ],
        "department": [
            "asuDepartment{n}", "asu_dept_{n}", "asuAttendee{n}Department",
            "asuDept{n}", "asu{n}Department", "asu{n}Dept",
        ],
        "title": [
            "asuTitle{n}", "asu_title_{n}", "asuAttendee{n}Title", "asu{n}Title",
        ],
    },
    "other": {
        "name": [
            "otherName{n}", "other_name_{n}", "otherAttendee{n}Name",
            "otherAttendee{n}", "other{n}Name", "other{n}",
        ],
        "affiliation": [
            "otherAffiliation{n}", "other_affiliation_{n}", "otherAttendee{n}Affiliation",
            "otherAffil{n}", "other{n}Affiliation", "other{n}Affil",
        ],
        "title": [
            "otherTitle{n}", "other_title_{n}", "otherAttendee{n}Title", "other{n}Title",
        ],
    },
}

# Requester/certification date: literal names tried before any scan
DATE_FIELD_PATTERNS = [
    "date", "Date", "DATE",
    "requesterDate", "requester_date",
    "requestorDate", "requestor_date",
    "certificationDate", "certification_date",
    "requestDate", "request_date",
]
DATE_KEYWORD = "date"

# Blank-field scan runs only if some field looks like the requester block
REQUESTER_BLOCK_KEYWORDS = ("requester", "signature", "name", "phone")
BLANK_SCAN_EXCLUDE = ("name", "phone", "signature")

SIGNATURE_KEYWORDS = ("sign", "signature")

# Anchors for drawing text where no field exists
ANCHOR_KEYWORDS = {
    "date": ("signature", "sign"),
    "signature": ("date", "name", "requester", "certification"),
}

ANCHOR_GAP = 20.0

POSITIONAL_STYLES = {
    "date": {"x": 500.0, "y": 100.0, "fontsize": 10, "fontname": "helv"},
    "signature": {"x": 100.0, "y": 100.0, "fontsize": 12, "fontname": "tiit"},
}

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_name(name: str) -> str:
    """Lower-case and drop every non-alphanumeric character."""
    return _NON_ALNUM.sub("", str(name or "").lower())


def attendee_candidates(group: str, subfield: str, index: int) -> List[str]:
    """Literal physical names for attendee `index` (0-based) of `group`."""
    templates = ATTENDEE_PATTERNS[group][subfield]
    return [t.format(n=index + 1) for t in templates]


# ---------------------------
# Override sheet (Excel/CSV)
# ---------------------------
def load_pattern_overrides(path: str,
                           base: Optional[Dict[str, List[str]]] = None) -> Dict[str, List[str]]:
    """
    Read an operator sheet with columns Key, Pattern and return a new table.

    Fragments from the sheet go in front of the built-in ones for the same
    key (sheet order kept), so a template-specific name wins over the
    generic guesses. Unknown keys are added as new entries.
    """
    table = {k: list(v) for k, v in (base if base is not None else FIELD_PATTERNS).items()}

    if not os.path.exists(path):
        print(f"⚠️  Pattern sheet not found: {path}")
        return table

    if path.lower().endswith((".xlsx", ".xls")):
        df = pd.read_excel(path, dtype=str)
    else:
        df = pd.read_csv(path, dtype=str, encoding="utf-8-sig")

    if {"Key", "Pattern"} - set(df.columns):
        raise ValueError("Pattern sheet must have columns: Key, Pattern")

    df = df.fillna("")
    df["Key"] = df["Key"].map(lambda x: str(x).strip())
    df["Pattern"] = df["Pattern"].map(normalize_name)
    df = df[(df["Key"] != "") & (df["Pattern"] != "")]

    extra: Dict[str, List[str]] = {}
    for _, r in df.iterrows():
        extra.setdefault(r["Key"], []).append(r["Pattern"])

    for key, fragments in extra.items():
        merged = fragments + table.get(key, [])
        table[key] = list(dict.fromkeys(merged))

    return table


def pattern_rows(table: Optional[Dict[str, List[str]]] = None) -> List[Dict[str, str]]:
    """Flatten a table to Key/Pattern rows (the override sheet layout)."""
    table = table if table is not None else FIELD_PATTERNS
    return [{"Key": key, "Pattern": frag} for key, frags in table.items() for frag in frags]
