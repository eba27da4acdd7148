"""
Pattern-based field extraction over recognized (OCR) text.

Two passes:
  1. Line by line. A line carrying an ``N/10`` score is attributed to the
     first field keyword it names. First hit per field wins.
  2. Whole text joined into one string, for fields still unset. Handles
     panels rendered on one visual line, e.g.
     ``"1/10 Fire Factor 2/10 Wind Factor 4/10 Air Factor"``.

Fields that are never found stay ``None``; partial extraction is a valid result.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from loguru import logger


@dataclass(frozen=True, slots=True)
class FieldRule:
    name: str
    keyword: str

    @property
    def keyword_pattern(self) -> re.Pattern[str]:
        return re.compile(rf"\b{re.escape(self.keyword)}\b", re.IGNORECASE)


RISK_FACTOR_RULES: tuple[FieldRule, ...] = (
    FieldRule("flood", "flood"),
    FieldRule("fire", "fire"),
    FieldRule("wind", "wind"),
    FieldRule("air", "air"),
    FieldRule("heat", "heat"),
)


class TextExtractionEngine:
    def __init__(self, rules: Sequence[FieldRule] = RISK_FACTOR_RULES, denominator: int = 10):
        if not rules:
            raise ValueError("At least one FieldRule is required")
        self.rules = tuple(rules)
        self.denominator = denominator
        self._score = re.compile(rf"(\d{{1,3}})\s*/\s*{denominator}\b")
        self._by_keyword = {rule.keyword.lower(): rule for rule in self.rules}
        keywords = "|".join(re.escape(rule.keyword) for rule in self.rules)
        self._joined = re.compile(
            rf"(\d{{1,3}})\s*/\s*{denominator}\s+({keywords})\b", re.IGNORECASE
        )

    def empty(self) -> Dict[str, Optional[str]]:
        return {rule.name: None for rule in self.rules}

    def _format(self, number: str) -> str:
        return f"{int(number)}/{self.denominator}"

    def _line_pass(self, lines: Sequence[str], values: Dict[str, Optional[str]]) -> None:
        for line in lines:
            hits = [(m.start(), rule) for rule in self.rules if (m := rule.keyword_pattern.search(line))]
            if not hits:
                continue
            _, rule = min(hits, key=lambda hit: hit[0])
            if values[rule.name] is not None:
                continue
            score = self._score.search(line)
            if score:
                values[rule.name] = self._format(score.group(1))
                logger.debug(f"Line pass: {rule.name} = {values[rule.name]}")

    def _joined_pass(self, text: str, values: Dict[str, Optional[str]]) -> None:
        joined = " ".join(text.split())
        for match in self._joined.finditer(joined):
            rule = self._by_keyword[match.group(2).lower()]
            if values[rule.name] is None:
                values[rule.name] = self._format(match.group(1))
                logger.debug(f"Joined pass: {rule.name} = {values[rule.name]}")

    def extract(self, text: str | None) -> Dict[str, Optional[str]]:
        values = self.empty()
        if not text:
            return values
        self._line_pass(text.splitlines(), values)
        if any(v is None for v in values.values()):
            self._joined_pass(text, values)
        found = sum(1 for v in values.values() if v is not None)
        logger.info(f"Extracted {found}/{len(values)} fields from recognized text")
        return values


def extract_risk_factors(text: str | None) -> Dict[str, Optional[str]]:
    return TextExtractionEngine().extract(text)
