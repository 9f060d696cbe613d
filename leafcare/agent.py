from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from leafcare.config import Settings
from leafcare.core.cancellation import CancellationToken
from leafcare.core.fallback import FallbackBuilder
from leafcare.core.knowledge_base import KnowledgeBase
from leafcare.core.normalization import to_number
from leafcare.core.pipeline import RecommendationPipeline
from leafcare.core.policies import Policies, SynthesisPolicy
from leafcare.core.schemas import (
    AgentRecommendation,
    RecommendationContext,
    RecommendationRequest,
    SeveritySignal,
)
from leafcare.core.synthesis import CompletionClient, GenerativeSynthesizer
from leafcare.services.generative_service import ChatCompletionClient

logger = logging.getLogger(__name__)


def _optional_text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def severity_signal_from_result(raw: Any) -> SeveritySignal | None:
    """
    Reads the two fields we use from a segmentation result:
    ``severity.severity_score`` and ``category.label``.
    """
    if not isinstance(raw, Mapping):
        return None

    severity = raw.get("severity")
    score = severity.get("severity_score") if isinstance(severity, Mapping) else raw.get("severity_score")
    category = raw.get("category")
    label = category.get("label") if isinstance(category, Mapping) else category

    return SeveritySignal(
        severity_score=to_number(score, allow_str=True),
        category=_optional_text(label),
    )


def request_from_payload(payload: Any) -> RecommendationRequest:
    """
    Builds a request from a loosely shaped body. A bare classifier response
    is accepted as-is; the normalizer unwraps a ``classification`` key.
    """
    body = payload if isinstance(payload, Mapping) else {}

    return RecommendationRequest(
        classification=payload,
        context=RecommendationContext(
            crop=_optional_text(body.get("crop")),
            location=_optional_text(body.get("location")),
            notes=_optional_text(body.get("notes")),
            language=_optional_text(body.get("language")) or "en",
        ),
        segmentation=severity_signal_from_result(body.get("segmentation")),
    )


def recommendation_to_dict(rec: AgentRecommendation) -> dict[str, Any]:
    out: dict[str, Any] = {
        "mode": rec.mode,
        "priority": rec.priority,
        "title": rec.title,
        "summary": rec.summary,
        "confidence": rec.confidence,
        "kb": {
            "id": rec.kb.id,
            "name": rec.kb.name,
            "matchScore": rec.kb.match_score,
            "matchedAlias": rec.kb.matched_alias,
        },
        "immediateActions": list(rec.immediate_actions),
        "treatmentOptions": list(rec.treatment_options),
        "prevention": list(rec.prevention),
        "monitoringPlan": rec.monitoring_plan,
        "questionsForFarmer": list(rec.questions_for_farmer),
        "safetyNotes": list(rec.safety_notes),
    }
    if rec.error:
        out["error"] = rec.error
    return out


class LeafCareAgent:
    def __init__(
        self,
        knowledge_base: KnowledgeBase | None = None,
        client: CompletionClient | None = None,
        policies: Policies | None = None,
    ):
        self.knowledge_base = knowledge_base or KnowledgeBase()
        self.policies = policies or Policies()

        synthesizer = GenerativeSynthesizer(client=client, policies=self.policies) if client is not None else None

        self.pipeline = RecommendationPipeline(
            knowledge_base=self.knowledge_base,
            policies=self.policies,
            synthesizer=synthesizer,
            fallback=FallbackBuilder(knowledge_base=self.knowledge_base),
        )

        logger.info(
            "LeafCareAgent initialized (%s knowledge base entries, generative=%s)",
            len(self.knowledge_base.entries),
            "on" if synthesizer is not None else "off",
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> LeafCareAgent:
        if settings.knowledge_base_path:
            knowledge_base = KnowledgeBase.from_json(settings.knowledge_base_path)
        else:
            knowledge_base = KnowledgeBase()

        policies = Policies(synthesis=SynthesisPolicy(temperature=settings.generative_temperature))
        return cls(
            knowledge_base=knowledge_base,
            client=ChatCompletionClient.from_settings(settings),
            policies=policies,
        )

    def recommend(self, payload: Any, cancel_token: CancellationToken | None = None) -> dict[str, Any] | None:
        """Returns the response body, or None if the caller cancelled."""
        result = self.pipeline.run(request_from_payload(payload), cancel_token=cancel_token)
        if result is None:
            return None
        return recommendation_to_dict(result)
