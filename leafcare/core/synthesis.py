from __future__ import annotations

import json
import logging
from typing import Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from leafcare.core.cancellation import CancellationToken
from leafcare.core.errors import GenerativeOutputError, GenerativeServiceError, RecommendationCancelled
from leafcare.core.normalization import clamp01
from leafcare.core.policies import Policies
from leafcare.core.schemas import (
    AgentRecommendation,
    KbAttribution,
    MatchResult,
    NormalizedClassification,
    RecommendationContext,
)


logger = logging.getLogger(__name__)


class CompletionClient(Protocol):
    def complete_json(self, prompt: str, temperature: float = 0.3) -> str: ...


class GenerativeRecommendation(BaseModel):
    """Shape the generative service must return. Anything else is rejected whole."""

    model_config = ConfigDict(strict=True)

    priority: Literal["Low", "Moderate", "Urgent", "Critical"]
    title: str = Field(min_length=1)
    summary: str = Field(min_length=1)
    confidence: float = Field(ge=0.0, le=1.0)
    immediate_actions: list[str] = Field(default_factory=list, alias="immediateActions")
    treatment_options: list[str] = Field(default_factory=list, alias="treatmentOptions")
    prevention: list[str] = Field(default_factory=list)
    monitoring_plan: str = Field(default="", alias="monitoringPlan")
    questions_for_farmer: list[str] = Field(default_factory=list, alias="questionsForFarmer")
    safety_notes: list[str] = Field(default_factory=list, alias="safetyNotes")


TARGET_SCHEMA: dict[str, Any] = {
    "priority": "Low | Moderate | Urgent | Critical",
    "title": "short title",
    "summary": "2-4 short sentences",
    "confidence": "number 0..1 (use classifier top-1 score as base, reduce if uncertainty is high)",
    "immediateActions": ["3-6 bullets"],
    "treatmentOptions": ["2-6 bullets"],
    "prevention": ["3-6 bullets"],
    "monitoringPlan": "1-3 sentences",
    "questionsForFarmer": ["2-6 bullets"],
    "safetyNotes": ["2-5 bullets"],
}


def extract_json(text: str) -> Any:
    """Parses model output, recovering a JSON object wrapped in prose or code fences."""
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        start = text.find("{") if isinstance(text, str) else -1
        end = text.rfind("}") if isinstance(text, str) else -1
        if start >= 0 and end > start:
            try:
                return json.loads(text[start:end + 1])
            except ValueError as exc:
                raise GenerativeOutputError("Failed to parse JSON from model output") from exc
        raise GenerativeOutputError("Failed to parse JSON from model output")


def blend_confidence(model_confidence: float, classifier_top1: float, policies: Policies) -> float:
    bp = policies.blend
    return clamp01(bp.model_weight * model_confidence + bp.classifier_weight * clamp01(classifier_top1))


class GenerativeSynthesizer:
    def __init__(self, client: CompletionClient, policies: Policies):
        self.client = client
        self.policies = policies

    def build_prompt(
        self,
        classification: NormalizedClassification,
        context: RecommendationContext,
        match: MatchResult,
    ) -> str:
        language = (context.language or "").strip() or self.policies.synthesis.default_language
        top_3 = [{"label": p.label, "score": clamp01(p.score)} for p in classification.top_3[:3]]
        entry = match.entry

        lines = [
            "You are an agronomy decision-support agent.",
            "You will be given a plant leaf classifier output and a SMALL internal knowledge base entry "
            "that best matches the label.",
            "Goal: produce safe, actionable, field-friendly recommendations.",
            "",
            "Rules:",
            "- Output MUST be valid JSON ONLY (no markdown, no backticks).",
            "- Be honest about uncertainty; do not overclaim diagnosis.",
            "- Do not propose illegal/unsafe chemicals. Always advise following local labels and regulations.",
            "- Prefer integrated pest management (IPM): cultural + sanitation + monitoring + then products if needed.",
            f"- Respond in language: {language}.",
            "",
            "Classifier output:",
            json.dumps({"predicted_label": classification.predicted_label, "top_3": top_3}, indent=2),
            "",
            "Context (optional):",
            json.dumps(
                {"crop": context.crop, "location": context.location, "notes": context.notes},
                indent=2,
                ensure_ascii=False,
            ),
            "",
            "Knowledge base match (use this to ground actions):",
            json.dumps(
                {
                    "id": entry.id,
                    "name": entry.name,
                    "summary": entry.summary,
                    "immediateActions": list(entry.immediate_actions),
                    "treatmentOptions": list(entry.treatment_options),
                    "prevention": list(entry.prevention),
                    "whenToEscalate": list(entry.when_to_escalate),
                    "defaultPriority": entry.default_priority,
                    "matchedAlias": match.matched_alias,
                    "matchScore": match.score,
                },
                indent=2,
                ensure_ascii=False,
            ),
            "",
            "Return JSON with EXACT keys:",
            json.dumps(TARGET_SCHEMA, indent=2),
        ]
        return "\n".join(lines)

    def validate(self, text: str) -> GenerativeRecommendation:
        data = extract_json(text)
        try:
            return GenerativeRecommendation.model_validate(data)
        except ValidationError as exc:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) or "<root>" for err in exc.errors())
            raise GenerativeOutputError(f"Model output failed schema validation ({fields})") from exc

    def synthesize(
        self,
        classification: NormalizedClassification,
        context: RecommendationContext,
        match: MatchResult,
        cancel_token: CancellationToken | None = None,
    ) -> AgentRecommendation:
        prompt = self.build_prompt(classification, context, match)

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        try:
            text = self.client.complete_json(prompt, temperature=self.policies.synthesis.temperature)
        except GenerativeServiceError:
            # A transport error caused by the caller going away is not a failure.
            if cancel_token is not None and cancel_token.cancelled:
                raise RecommendationCancelled("Recommendation request was cancelled") from None
            raise

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        validated = self.validate(text)

        return AgentRecommendation(
            mode="generative",
            priority=validated.priority,
            title=validated.title,
            summary=validated.summary,
            confidence=blend_confidence(validated.confidence, classification.top1_score, self.policies),
            kb=KbAttribution.from_match(match),
            immediate_actions=validated.immediate_actions,
            treatment_options=validated.treatment_options,
            prevention=validated.prevention,
            monitoring_plan=validated.monitoring_plan,
            questions_for_farmer=validated.questions_for_farmer,
            safety_notes=validated.safety_notes,
        )
