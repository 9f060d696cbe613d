from __future__ import annotations

from dataclasses import dataclass


PRIORITIES: tuple[str, ...] = ("Low", "Moderate", "Urgent", "Critical")
PRIORITY_RANK: dict[str, int] = {p: i for i, p in enumerate(PRIORITIES)}


@dataclass(frozen=True)
class SeverityPolicy:
    # severity_score is 0..100; upper bounds are exclusive
    moderate_below: float = 25.0
    urgent_below: float = 75.0
    healthy_markers: tuple[str, ...] = ("healthy", "normal")


@dataclass(frozen=True)
class BlendPolicy:
    model_weight: float = 0.7
    classifier_weight: float = 0.3


@dataclass(frozen=True)
class SynthesisPolicy:
    temperature: float = 0.3
    default_language: str = "en"


@dataclass(frozen=True)
class Policies:
    severity: SeverityPolicy = SeverityPolicy()
    blend: BlendPolicy = BlendPolicy()
    synthesis: SynthesisPolicy = SynthesisPolicy()
