from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class NormalizedPrediction:
    label: str
    score: float            # probability in [0, 1]


@dataclass(frozen=True)
class NormalizedClassification:
    predicted_label: str
    top_3: list[NormalizedPrediction]

    @property
    def top1_score(self) -> float:
        return self.top_3[0].score if self.top_3 else 0.0


@dataclass(frozen=True)
class KnowledgeBaseEntry:
    id: str
    name: str
    label_aliases: tuple[str, ...]
    summary: str
    immediate_actions: tuple[str, ...]
    treatment_options: tuple[str, ...]
    prevention: tuple[str, ...]
    when_to_escalate: tuple[str, ...]
    default_priority: str   # "Low" | "Moderate" | "Urgent" | "Critical"


@dataclass(frozen=True)
class MatchResult:
    entry: KnowledgeBaseEntry
    matched_alias: str | None
    score: float            # 0 means nothing matched and the generic entry was used


@dataclass(frozen=True)
class KbAttribution:
    id: str
    name: str
    match_score: float
    matched_alias: str | None

    @classmethod
    def from_match(cls, match: MatchResult) -> KbAttribution:
        return cls(
            id=match.entry.id,
            name=match.entry.name,
            match_score=match.score,
            matched_alias=match.matched_alias,
        )


@dataclass(frozen=True)
class RecommendationContext:
    crop: str | None = None
    location: str | None = None
    notes: str | None = None
    language: str = "en"


@dataclass(frozen=True)
class SeveritySignal:
    severity_score: float | None
    category: str | None


@dataclass(frozen=True)
class RecommendationRequest:
    classification: Any
    context: RecommendationContext = field(default_factory=RecommendationContext)
    segmentation: SeveritySignal | None = None


@dataclass(frozen=True)
class AgentRecommendation:
    mode: str               # "generative" | "fallback"
    priority: str
    title: str
    summary: str
    confidence: float
    kb: KbAttribution
    immediate_actions: list[str]
    treatment_options: list[str]
    prevention: list[str]
    monitoring_plan: str
    questions_for_farmer: list[str]
    safety_notes: list[str]
    error: str | None = None
