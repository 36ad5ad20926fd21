from __future__ import annotations

import re

_NON_ISBN_RE = re.compile(r"[^0-9X]")


def normalize_isbn(raw: str | None) -> str:
    """Keep only digits and the ISBN-10 check character X (uppercased)."""
    return _NON_ISBN_RE.sub("", str(raw or "").upper())


def is_valid_length(isbn: str) -> bool:
    return len(isbn) in (10, 13)


def isbn13_to_isbn10(isbn13: str) -> str | None:
    """Convert a 978-prefixed ISBN-13 to ISBN-10.

    Digits 4..12 are weighted 10..2; the check digit is (11 - sum % 11) % 11,
    with 10 written as X. 979 ISBNs have no ISBN-10 form.
    """
    s = normalize_isbn(isbn13)
    if len(s) != 13 or not s.isdigit() or not s.startswith("978"):
        return None

    base = s[3:12]
    total = sum(int(d) * (10 - i) for i, d in enumerate(base))
    check = (11 - total % 11) % 11
    return base + ("X" if check == 10 else str(check))
