from __future__ import annotations

from leafcare.core.knowledge_base import KnowledgeBase
from leafcare.core.normalization import clamp01
from leafcare.core.schemas import (
    AgentRecommendation,
    KbAttribution,
    MatchResult,
    NormalizedClassification,
    RecommendationContext,
)


DEFAULT_MONITORING_PLAN = (
    "Re-check symptoms in 48–72 hours. If symptoms spread to new leaves or neighboring plants, "
    "escalate and consider confirmatory diagnosis."
)

SAFETY_NOTES = (
    "Use only crop-registered products and follow label directions.",
    "Wear PPE (gloves, mask/respirator if required) when applying any pesticide.",
    "If you suspect late blight or a fast-spreading disease, contact local extension services promptly.",
)

SERVICE_UNAVAILABLE_NOTE = (
    "Note: AI recommendations service was unavailable; showing fallback guidance from the local "
    "knowledge base."
)


class FallbackBuilder:
    """Knowledge-base-only recommendation. No external calls, never fails."""

    def __init__(self, knowledge_base: KnowledgeBase):
        self.knowledge_base = knowledge_base

    def build(
        self,
        classification: NormalizedClassification,
        context: RecommendationContext | None = None,
        match: MatchResult | None = None,
    ) -> AgentRecommendation:
        context = context or RecommendationContext()
        match = match or self.knowledge_base.match(classification.predicted_label)
        entry = match.entry

        return AgentRecommendation(
            mode="fallback",
            priority=entry.default_priority,
            title=entry.name,
            summary=entry.summary,
            confidence=clamp01(classification.top1_score),
            kb=KbAttribution.from_match(match),
            immediate_actions=list(entry.immediate_actions),
            treatment_options=list(entry.treatment_options),
            prevention=list(entry.prevention),
            monitoring_plan=DEFAULT_MONITORING_PLAN,
            questions_for_farmer=self._questions(context),
            safety_notes=list(SAFETY_NOTES),
        )

    def _questions(self, context: RecommendationContext) -> list[str]:
        questions: list[str] = []
        if not context.crop:
            questions.append("What crop/variety is this?")
        if not context.location:
            questions.append("What is your location/region and current weather (rain/humidity)?")
        questions.append("How many plants are affected (single plant, patch, or the whole field)?")
        questions.append("Any recent changes in irrigation, fertilizer, or pesticide sprays?")
        return questions
