# Overview: Cost extraction engine; recovers supplier/amount/date cost entries from product text.

"""
Cost Extraction

Store staff historically wrote purchase costs into POS product descriptions,
one note per line, e.g.:

    Paracetamol 500mg
    L $20.00 abril
    Rx $25 mayo
    15/06/23 Compra Center $ 19,50

extract_costs() turns such text into candidate entries. It is a pure
function (no DB, no clock, no randomness): identical input always yields
identical entries, confidences and selected cost, which is what makes
re-extraction of a window safe.

POLICY CONSTANTS:
SUPPLIER_MAX_CHARS, SUPPLIER_MAX_WORDS, MAX_AMOUNT and MONTH_ALIASES are tuned
values, not business law. Adjust them here; nothing else depends on the
specific numbers.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from ..money import to_cents


HIGH = "HIGH"
MEDIUM = "MEDIUM"
LOW = "LOW"

DEFAULT_SUPPLIER = "Unknown"
SUPPLIER_MAX_CHARS = 15
SUPPLIER_MAX_WORDS = 3
MIN_AMOUNT = Decimal("0")
MAX_AMOUNT = Decimal("10000")

AMOUNT_PATTERN = re.compile(r"[$💲]\s*(\d+(?:[.,]\d+)?)")
CURRENCY_PATTERN = re.compile(r"[$💲]")

# Matched against accent-folded, lowercased lines.
EXCLUDED_LINE_PATTERNS = [
    re.compile(r"^formula:"),
    re.compile(r"^descripcion:"),
    re.compile(r"^laboratorio:"),
    re.compile(r"^costo\s"),
    re.compile(r"^\d+$"),
]

# canonical name -> (month number, aliases incl. common typos)
MONTH_ALIASES: dict[str, tuple[int, tuple[str, ...]]] = {
    "enero": (1, ("enero", "ene", "enro", "ener")),
    "febrero": (2, ("febrero", "feb", "febreo", "febero", "frebero")),
    "marzo": (3, ("marzo", "marz", "marso")),
    "abril": (4, ("abril", "abr", "abirl", "abri", "abrl")),
    "mayo": (5, ("mayo", "mallo", "myo")),
    "junio": (6, ("junio", "jun", "junior", "juino", "jnio")),
    "julio": (7, ("julio", "jul", "juio", "julo", "jlio")),
    "agosto": (8, ("agosto", "ago", "agos", "agsto", "agoto")),
    "septiembre": (9, ("septiembre", "setiembre", "septiembr", "sept", "sep")),
    "octubre": (10, ("octubre", "oct", "otubre", "octbre")),
    "noviembre": (11, ("noviembre", "novienbre", "nov", "nobiembre")),
    "diciembre": (12, ("diciembre", "dicienbre", "dic", "dicembre")),
}

_ALIAS_TO_MONTH: dict[str, tuple[str, int]] = {
    alias: (canonical, number)
    for canonical, (number, aliases) in MONTH_ALIASES.items()
    for alias in aliases
}
# Longest alias first so "septiembre" wins over "sept" and "sep".
_MONTH_ALTERNATION = "|".join(
    re.escape(a) for a in sorted(_ALIAS_TO_MONTH, key=lambda a: (-len(a), a))
)
_MONTH_PATTERN = re.compile(r"(?<![a-z0-9])(" + _MONTH_ALTERNATION + r")(?![a-z0-9])")
_DAY_BEFORE = re.compile(r"(?<!\d)(\d{1,2})\s*(?:de\s+)?$")
_DAY_AFTER = re.compile(r"^\s*(?:de\s+)?(\d{1,2})(?!\d)")
_NUMERIC_DATE = re.compile(r"(?<![\d.,])(\d{1,2})[/\-.](\d{1,2})(?:[/\-.](\d{4}|\d{2}))?(?![\d.,])")
_MONTH_ONLY_LINE = re.compile(
    r"^(?:\d{1,2}\s*(?:de\s+)?)?(?:" + _MONTH_ALTERNATION + r")(?:\s*(?:de\s+)?\d{1,2})?[.,]?$"
)
_TOKEN_STRIP = ".,:;-–—()[]{}\"'*#/|"


@dataclass(frozen=True)
class CostEntry:
    supplier: str
    amount: Decimal
    month: str | None
    month_number: int | None
    day: int | None
    year: int | None
    line_number: int
    original_line: str
    confidence: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "supplier": self.supplier,
            "amount": float(self.amount),
            "amount_cents": to_cents(self.amount),
            "month": self.month,
            "month_number": self.month_number,
            "day": self.day,
            "year": self.year,
            "line_number": self.line_number,
            "original_line": self.original_line,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class ExtractionResult:
    entries: tuple[CostEntry, ...] = ()
    selected_cost: Decimal | None = None
    requires_manual_review: bool = True
    errors: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entries": [e.to_dict() for e in self.entries],
            "selected_cost": float(self.selected_cost) if self.selected_cost is not None else None,
            "selected_cost_cents": to_cents(self.selected_cost) if self.selected_cost is not None else None,
            "requires_manual_review": self.requires_manual_review,
            "errors": list(self.errors),
        }


def _fold(text: str) -> str:
    """Lowercase and strip accents while keeping a 1:1 character alignment with text."""
    out = []
    for ch in text:
        decomposed = unicodedata.normalize("NFKD", ch)
        base = "".join(c for c in decomposed if not unicodedata.combining(c)).lower()
        out.append(base[:1] if len(base) >= 1 else ch)
    return "".join(out)


def _blank(text: str, start: int, end: int) -> str:
    return text[:start] + " " * (end - start) + text[end:]


def _is_excluded(folded_line: str) -> bool:
    return any(p.search(folded_line) for p in EXCLUDED_LINE_PATTERNS)


def _split_lines(product_name: str | None, description: str | None) -> list[str]:
    raw = "\n".join(part for part in (product_name or "", description or "") if part)
    return [line.strip() for line in raw.splitlines() if line.strip()]


def _merge_wrapped_month_lines(lines: list[str]) -> list[str]:
    merged: list[str] = []
    for line in lines:
        if (
            merged
            and CURRENCY_PATTERN.search(merged[-1])
            and not CURRENCY_PATTERN.search(line)
            and _MONTH_ONLY_LINE.match(_fold(line))
        ):
            merged[-1] = f"{merged[-1]} {line}"
            continue
        merged.append(line)
    return merged


def _parse_amount(raw: str) -> Decimal | None:
    try:
        return Decimal(raw.replace(",", "."))
    except InvalidOperation:
        return None


@dataclass
class _DateMatch:
    month: str | None = None
    month_number: int | None = None
    day: int | None = None
    year: int | None = None
    # spans (in line coordinates) consumed by the date, excluded from supplier detection
    spans: tuple[tuple[int, int], ...] = ()


def _find_numeric_date(prefix: str) -> _DateMatch | None:
    for match in _NUMERIC_DATE.finditer(prefix):
        day, month = int(match.group(1)), int(match.group(2))
        if not (1 <= day <= 31 and 1 <= month <= 12):
            continue
        year = None
        if match.group(3):
            year = int(match.group(3))
            if year < 100:
                year += 2000
        canonical = next(name for name, (num, _) in MONTH_ALIASES.items() if num == month)
        return _DateMatch(canonical, month, day, year, ((match.start(), match.end()),))
    return None


def _find_month_name(folded: str) -> _DateMatch | None:
    match = _MONTH_PATTERN.search(folded)
    if not match:
        return None
    canonical, number = _ALIAS_TO_MONTH[match.group(1)]
    spans = [(match.start(), match.end())]
    day = None

    before = _DAY_BEFORE.search(folded[:match.start()])
    if before and 1 <= int(before.group(1)) <= 31:
        day = int(before.group(1))
        spans.append((before.start(), match.start()))
    else:
        after = _DAY_AFTER.match(folded[match.end():])
        if after and 1 <= int(after.group(1)) <= 31:
            day = int(after.group(1))
            spans.append((match.end(), match.end() + after.end()))
    return _DateMatch(canonical, number, day, None, tuple(spans))


def _find_supplier(prefix: str) -> str:
    """Shortest-reach token run right before the currency marker."""
    words: list[str] = []
    for token in reversed(prefix.split()):
        word = token.strip(_TOKEN_STRIP)
        if not word:
            continue
        if not any(ch.isalpha() for ch in word):
            break
        candidate = [word, *words]
        if len(candidate) > SUPPLIER_MAX_WORDS or len(" ".join(candidate)) > SUPPLIER_MAX_CHARS:
            break
        words = candidate
    return " ".join(words) if words else DEFAULT_SUPPLIER


def _confidence(has_month: bool, has_supplier: bool) -> str:
    if has_month and has_supplier:
        return HIGH
    if has_month or has_supplier:
        return MEDIUM
    return LOW


def _parse_line(line: str, line_number: int, errors: list[str]) -> CostEntry | None:
    amount_match = AMOUNT_PATTERN.search(line)
    if not amount_match:
        return None
    amount = _parse_amount(amount_match.group(1))
    if amount is None or amount < MIN_AMOUNT or amount > MAX_AMOUNT:
        errors.append(f"Line {line_number}: amount {amount_match.group(1)} is outside {MIN_AMOUNT}-{MAX_AMOUNT}")
        return None

    marker_at = amount_match.start()
    folded = _blank(_fold(line), amount_match.start(), amount_match.end())

    date = _find_numeric_date(folded[:marker_at]) or _find_month_name(folded) or _DateMatch()

    prefix = line[:marker_at]
    for start, end in date.spans:
        if start < marker_at:
            prefix = _blank(prefix, start, min(end, marker_at))
    supplier = _find_supplier(prefix)

    return CostEntry(
        supplier=supplier,
        amount=amount,
        month=date.month,
        month_number=date.month_number,
        day=date.day,
        year=date.year,
        line_number=line_number,
        original_line=line,
        confidence=_confidence(date.month_number is not None, supplier != DEFAULT_SUPPLIER),
    )


def extract_costs(product_name: str | None, description: str | None = None) -> ExtractionResult:
    """
    Extract candidate cost entries from a product's name + description.

    Review rules:
    - no entries -> manual review
    - 2+ entries -> manual review, last entry selected (notes are appended over time)
    - a single LOW-confidence entry -> manual review
    """
    lines = _merge_wrapped_month_lines(_split_lines(product_name, description))
    if not lines:
        return ExtractionResult(errors=("No text to extract costs from",))

    entries: list[CostEntry] = []
    errors: list[str] = []
    for line_number, line in enumerate(lines, start=1):
        if _is_excluded(_fold(line)) or not CURRENCY_PATTERN.search(line):
            continue
        entry = _parse_line(line, line_number, errors)
        if entry is not None:
            entries.append(entry)

    if not entries:
        errors.append("No cost entries found")
        return ExtractionResult(errors=tuple(errors))

    requires_review = len(entries) > 1 or entries[0].confidence == LOW
    return ExtractionResult(
        entries=tuple(entries),
        selected_cost=entries[-1].amount,
        requires_manual_review=requires_review,
        errors=tuple(errors),
    )
