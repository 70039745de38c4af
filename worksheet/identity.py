from __future__ import annotations

from typing import Any


def normalize_name(name: Any) -> str:
    """
    "Last, First Middle" -> "LAST,FIRST".

    Equality key for matching roster rows against report rows; never displayed.
    Suffixes, hyphenation and typos are not handled.
    """
    if not isinstance(name, str) or not name:
        return ""
    upper = name.upper()
    if "," not in upper:
        return upper.replace(" ", "")
    parts = upper.split(",")
    last = parts[0].strip()
    first_part = parts[1]
    tokens = first_part.strip().split()
    first = tokens[0] if tokens else ""
    return f"{last},{first}".replace(" ", "")
