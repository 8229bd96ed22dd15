"""
Status-page parsing for icewatch.

The authority publishes one free-text entry per lake, e.g.

    Drevvikens sjöisbana ... Aktuella upplysningar: Isen är plogad, 15 cm.
    Banans längd: 5 km ... Informationen uppdaterad: 5 januari 2026, klockan 15:00

There is no schema, so parsing is keyword based and every extraction is
allowed to miss: a missing field becomes None and an unrecognised message
classifies as uncertain. Keyword lists are matched against lower-cased text
with diacritics folded ("stängd" -> "stangd").
"""

import logging
import re
from typing import Iterable, List, Mapping, Optional, Pattern, Sequence, Tuple

from .lakes import LAKE_ALIASES
from .models import IceStatus, ParsedReport, SurfaceCondition
from .text import fold_diacritics, normalize_text

logger = logging.getLogger(__name__)

# Ordered decision list: the first category with a matching marker wins.
STATUS_RULES: Sequence[Tuple[Pattern, IceStatus]] = (
    (re.compile(r"inte tillr|\bej\b|ingen is|oppet vatten|smalt|stangd"
                r"|no ice|not thick enough|open water|closed"), IceStatus.NO_ICE),
    (re.compile(r"plogad|preparerad|oppen for|godkand|bra is"
                r"|plowed|prepared|approved|open for skating"), IceStatus.SAFE),
    (re.compile(r"varning|farlig|risk|undvik|tunn is|osaker"
                r"|danger|warning|thin ice|avoid|unsafe"), IceStatus.WARNING),
)

SURFACE_RULES: Sequence[Tuple[Pattern, SurfaceCondition]] = (
    (re.compile(r"plogad|preparerad|plowed|prepared"), SurfaceCondition.PLOWED),
    (re.compile(r"sno|snow"), SurfaceCondition.SNOW_COVERED),
    (re.compile(r"ojamn|grov|rough|bumpy"), SurfaceCondition.ROUGH),
    (re.compile(r"slat|blank|fin is|smooth"), SurfaceCondition.SMOOTH),
)

THICKNESS_RE = re.compile(r"(\d+)\s*(?:cm|centimeter)", re.IGNORECASE)
MAX_THICKNESS_CM = 100

LAST_UPDATED_RE = re.compile(
    r"(?:uppdaterad|updated)[:\s]+(\d+\s+\w+\s+\d{4})[,\s]+(?:klockan|kl\.?|time|at)\s+(\d{1,2}[:.]\d{2})",
    re.IGNORECASE
)

CURRENT_INFO_RE = re.compile(r"(?:aktuella upply?sningar|current info(?:rmation)?)[:\s]+", re.IGNORECASE)

# Fields that follow the message inside a lake's entry
SECTION_STOP_RE = re.compile(r"banans l|sjoisbana|soderort|vasterort|norrort", re.IGNORECASE)

GENERIC_NO_ICE_RE = re.compile(r"inte tillr", re.IGNORECASE)
GENERIC_NO_ICE_MESSAGE = "Isen är inte tillräckligt tjock för våra maskiner."


def _fold_lower(text: str) -> str:
    return fold_diacritics(text).lower()


def classify_status(message: str) -> IceStatus:
    """Map a lake's status message to an IceStatus using STATUS_RULES."""
    folded = _fold_lower(message)
    for pattern, status in STATUS_RULES:
        if pattern.search(folded):
            return status
    return IceStatus.UNCERTAIN


def extract_surface(message: str) -> Optional[SurfaceCondition]:
    folded = _fold_lower(message)
    for pattern, surface in SURFACE_RULES:
        if pattern.search(folded):
            return surface
    return None


def extract_thickness(message: str) -> Optional[int]:
    """First "<n> cm" in the message, if 0 < n < 100."""
    match = THICKNESS_RE.search(message)
    if not match:
        return None
    thickness = int(match.group(1))
    if 0 < thickness < MAX_THICKNESS_CM:
        return thickness
    return None


def extract_last_updated(text: str) -> Optional[str]:
    """"uppdaterad: 5 januari 2026, klockan 15:00" -> "5 januari 2026 15:00"."""
    match = LAST_UPDATED_RE.search(text)
    if match:
        return f"{match.group(1)} {match.group(2)}"
    return None


def _name_pattern(variants: Iterable[str]) -> Pattern:
    names = sorted({fold_diacritics(v) for v in variants}, key=len, reverse=True)
    return re.compile(r"(?<![\w-])(?:%s)" % "|".join(re.escape(n) for n in names), re.IGNORECASE)


class StatusPageParser:
    """
    Locate and classify each known lake's entry on the status page.

    A lake's block runs from a mention of its name to the next mention of
    another lake; the message is taken from the "Aktuella upplysningar"
    marker inside that block, up to the first sentence terminator or the
    next section field, whichever comes first.
    """

    def __init__(self, aliases: Mapping[str, Iterable[str]] = LAKE_ALIASES) -> None:
        self.patterns = {
            name: _name_pattern(set(variants) | {name})
            for name, variants in aliases.items()
        }

    def find_mentions(self, folded: str) -> List[Tuple[int, int, str]]:
        """
        All lake name mentions in folded text as sorted (start, end, lake) spans.

        Longer mentions claim their span first, so "Tyreso Flaten" is one
        mention of Tyresö-Flaten and never also a mention of Flaten.
        """
        found = [
            (match.start(), match.end(), name)
            for name, pattern in self.patterns.items()
            for match in pattern.finditer(folded)
        ]
        found.sort(key=lambda m: (m[0] - m[1], m[0]))

        claimed: List[Tuple[int, int, str]] = []
        for start, end, name in found:
            if any(start < c_end and c_start < end for c_start, c_end, _ in claimed):
                continue
            claimed.append((start, end, name))
        return sorted(claimed)

    def lake_block(self, text: str, lake_name: str) -> Optional[Tuple[int, int]]:
        """Span of the first block for the lake that carries a current-info marker."""
        folded = fold_diacritics(text)
        mentions = self.find_mentions(folded)
        first = None
        for i, (_, start, name) in enumerate(mentions):
            if name != lake_name:
                continue
            end = next((s for s, _, other in mentions[i + 1:] if other != lake_name), len(folded))
            if first is None:
                first = (start, end)
            if CURRENT_INFO_RE.search(folded, start, end):
                return start, end
        return first

    def extract_status_message(self, text: str, lake_name: str) -> str:
        """The lake's current-info message, or "" when there is none."""
        span = self.lake_block(text, lake_name)
        if span is None:
            return ""
        start, end = span
        folded = fold_diacritics(text)

        marker = CURRENT_INFO_RE.search(folded, start, end)
        if not marker:
            return ""

        sentence = re.compile(r"[^.!?]+[.!?]?").match(text, marker.end(), end)
        if not sentence:
            return ""
        message = sentence.group(0)

        stop = SECTION_STOP_RE.search(fold_diacritics(message))
        if stop and stop.start() > 0:
            message = message[:stop.start()]
        return message.strip()

    def mentions(self, text: str, lake_name: str) -> bool:
        return any(name == lake_name for _, _, name in self.find_mentions(fold_diacritics(text)))

    def parse(self, page: str) -> List[ParsedReport]:
        """Parse raw page HTML into one report per lake that has a message."""
        text = normalize_text(page)
        folded = fold_diacritics(text)
        ice_not_thick_enough = GENERIC_NO_ICE_RE.search(folded) is not None

        reports = []
        for lake_name in self.patterns:
            if not self.mentions(text, lake_name):
                continue

            message = self.extract_status_message(text, lake_name)
            if not message and ice_not_thick_enough:
                message = GENERIC_NO_ICE_MESSAGE

            if not message:
                logger.debug(f"No status message for {lake_name}")
                continue

            span = self.lake_block(text, lake_name)
            last_updated = None
            if span is not None:
                last_updated = extract_last_updated(folded[span[0]:span[1]])
            if last_updated is None:
                last_updated = extract_last_updated(folded)

            report = ParsedReport(
                lake_name=lake_name,
                status=classify_status(message),
                raw_text=message,
                surface_condition=extract_surface(message),
                ice_thickness_cm=extract_thickness(message),
                last_updated=last_updated,
            )
            reports.append(report)
            logger.info(f"Found {lake_name}: {report.status.value} - \"{report.raw_text}\"")

        return reports


def parse_ice_reports(page: str, aliases: Mapping[str, Iterable[str]] = LAKE_ALIASES) -> List[ParsedReport]:
    return StatusPageParser(aliases).parse(page)
