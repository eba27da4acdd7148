"""
Address canonicalization.

``normalize_address`` produces the matching key used against the property
table; ``generate_variants`` produces the ordered list of spellings tried by
the matcher (raw first, normalized last).

Examples:
    normalize_address("123 Main St,  Springfield, IL 62704")
        -> "123 main st springfield il 62704"
    generate_variants("123 Main Street, Springfield, IL 62704")
        -> ("123 Main Street, Springfield, IL 62704",
            "123 Main St, Springfield, IL 62704",
            "123 Main Street Springfield IL 62704",
            ...,
            "123 main street springfield il 62704")
"""

from __future__ import annotations

import re
from dataclasses import dataclass

# Abbreviation -> expansion. Both directions are tried.
STREET_SUFFIXES = {
    "St": "Street",
    "Ave": "Avenue",
    "Rd": "Road",
    "Dr": "Drive",
    "Ln": "Lane",
    "Blvd": "Boulevard",
    "Ct": "Court",
    "Pl": "Place",
    "Cir": "Circle",
    "Ter": "Terrace",
    "Trl": "Trail",
    "Pkwy": "Parkway",
    "Hwy": "Highway",
    "Sq": "Square",
}

_SUBSTITUTIONS: tuple[tuple[str, str], ...] = tuple(
    pair
    for abbrev, full in STREET_SUFFIXES.items()
    for pair in ((abbrev, full), (full, abbrev))
)

_SEPARATORS = re.compile(r"[,;.#]")
_WHITESPACE = re.compile(r"\s+")
_TRAILING_ZIP = re.compile(r"\s+\d{5}(?:-\d{4})?\s*$")
_ZIP = re.compile(r"\b(\d{5}(?:-\d{4})?)\b")
_COMMA_SPACING = re.compile(r"\s*,\s*")


def _token_pattern(token: str) -> re.Pattern[str]:
    # Preceded by whitespace, followed by whitespace, a comma or the end.
    return re.compile(rf"(?<=\s){re.escape(token)}\.?(?=[\s,]|$)", re.IGNORECASE)


_TOKEN_PATTERNS = {token: _token_pattern(token) for token, _ in _SUBSTITUTIONS}


def normalize_address(raw: str | None) -> str:
    """Lowercase, drop separators/punctuation, collapse whitespace."""
    if not raw:
        return ""
    text = _SEPARATORS.sub(" ", raw)
    return _WHITESPACE.sub(" ", text).strip().lower()


def _suffix_variants(address: str) -> list[str]:
    variants: list[str] = []
    for token, replacement in _SUBSTITUTIONS:
        for match in _TOKEN_PATTERNS[token].finditer(address):
            variants.append(address[: match.start()] + replacement + address[match.end():])
    return variants


def generate_variants(raw: str | None) -> tuple[str, ...]:
    """Ordered, deduplicated spellings of ``raw``. Never empty."""
    raw = raw or ""
    trimmed = raw.strip()
    candidates: list[str] = [raw, trimmed]
    candidates.extend(_suffix_variants(trimmed))
    candidates.append(_WHITESPACE.sub(" ", trimmed.replace(",", " ")).strip())
    candidates.append(_COMMA_SPACING.sub(", ", trimmed))
    without_zip = _TRAILING_ZIP.sub("", trimmed)
    if without_zip != trimmed:
        candidates.append(without_zip.rstrip(", "))
    candidates.append(normalize_address(raw))
    return tuple(dict.fromkeys(candidates))


def parse_address(full_address: str | None) -> tuple[str, str]:
    """Split ``"street, city, ST 12345"`` into ``(street part, zipcode)``."""
    if not full_address:
        return "", ""
    parts = [p.strip() for p in full_address.split(",")]
    zip_match = _ZIP.search(parts[-1])
    if not zip_match:
        return full_address.strip(), ""
    zipcode = zip_match.group(1)
    street = ", ".join(parts[:-1]).strip()
    if not street:
        street = parts[-1].replace(zipcode, "").strip().rstrip(",").strip()
    return street or full_address.strip(), zipcode


def sanitize_filename(value: str) -> str:
    return re.sub(r"_+", "_", re.sub(r"[^A-Za-z0-9]", "_", value or "")).strip("_")


@dataclass(frozen=True, slots=True)
class Address:
    raw: str
    normalized: str
    variants: tuple[str, ...]

    @classmethod
    def from_raw(cls, raw: str) -> "Address":
        return cls(raw=raw, normalized=normalize_address(raw), variants=generate_variants(raw))
