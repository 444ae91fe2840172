"""Hazard extraction from free-text safety analysis."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Iterable

from ..models.analysis import Hazard, HazardCategory, Severity

_EMPHASIS = r"(?:\*{1,2}|_{1,2})?"
_MARKER_PATTERN = re.compile(
    rf"\b(?P<marker>CRITICAL|HIGH|MEDIUM|LOW)\b{_EMPHASIS}(?:\s*:|\s){_EMPHASIS}\s*(?P<rest>.*)$"
)

_CATEGORY_KEYWORDS: tuple[tuple[HazardCategory, tuple[str, ...]], ...] = (
    (HazardCategory.FALL_HAZARD, ("fall", "ladder", "edge", "scaffold", "height", "guardrail")),
    (HazardCategory.ELECTRICAL, ("electric", "wire", "wiring", "voltage", "shock", "outlet")),
    (HazardCategory.CHEMICAL, ("chemical", "toxic", "fume", "solvent", "corrosive", "spill")),
    (HazardCategory.CONFINED_SPACE, ("confined space", "tank entry", "manhole")),
    (HazardCategory.FIRE, ("fire", "flammable", "ignition", "extinguisher", "combustible")),
    (HazardCategory.PPE_VIOLATION, ("ppe", "hard hat", "helmet", "glove", "goggle", "safety glasses", "vest", "boots")),
    (HazardCategory.MECHANICAL, ("machine", "machinery", "forklift", "pinch", "rotating", "guard", "conveyor")),
    (HazardCategory.ERGONOMIC, ("ergonomic", "lifting", "posture", "repetitive", "strain")),
    (HazardCategory.HOUSEKEEPING, ("housekeeping", "clutter", "debris", "trip", "obstruct")),
)


def categorise(description: str) -> HazardCategory:
    """Map a hazard description onto the frontend category vocabulary."""

    lowered = description.lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return HazardCategory.OTHER


class HazardExtractor(ABC):
    """Turns natural-language analysis into structured hazards."""

    @abstractmethod
    def extract(self, text: str) -> list[Hazard]:
        raise NotImplementedError


class SeverityMarkerExtractor(HazardExtractor):
    """Line-oriented heuristic keyed on upper-case severity markers.

    Each line yields at most one hazard: the first ``CRITICAL``, ``HIGH``,
    ``MEDIUM`` or ``LOW`` token followed by a colon or whitespace sets the
    severity and the rest of the line becomes the description.
    """

    def extract(self, text: str) -> list[Hazard]:
        return list(self._iter_hazards((text or "").splitlines()))

    def _iter_hazards(self, lines: Iterable[str]) -> Iterable[Hazard]:
        for line in lines:
            match = _MARKER_PATTERN.search(line)
            if not match:
                continue
            description = match.group("rest").strip().strip("*_").strip()
            if not description:
                continue
            yield Hazard(
                severity=Severity(match.group("marker").lower()),
                description=description,
                category=categorise(description),
            )


def critical_only(hazards: Iterable[Hazard]) -> list[Hazard]:
    return [hazard for hazard in hazards if hazard.severity is Severity.CRITICAL]


__all__ = ["HazardExtractor", "SeverityMarkerExtractor", "categorise", "critical_only"]
