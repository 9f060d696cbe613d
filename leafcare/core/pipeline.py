from __future__ import annotations

import dataclasses
import logging

from leafcare.core.cancellation import CancellationToken
from leafcare.core.errors import RecommendationCancelled
from leafcare.core.fallback import SERVICE_UNAVAILABLE_NOTE, FallbackBuilder
from leafcare.core.knowledge_base import KnowledgeBase
from leafcare.core.normalization import is_unknown_label, normalize_classification
from leafcare.core.policies import Policies
from leafcare.core.reasoning import ReasoningEngine
from leafcare.core.schemas import (
    AgentRecommendation,
    RecommendationContext,
    RecommendationRequest,
    SeveritySignal,
)
from leafcare.core.synthesis import GenerativeSynthesizer


logger = logging.getLogger(__name__)

UNPARSEABLE_CLASSIFICATION_ERROR = (
    "Could not parse classification payload; returned generic fallback recommendations."
)


def _with_segmentation_note(context: RecommendationContext, segmentation: SeveritySignal | None) -> RecommendationContext:
    if segmentation is None:
        return context

    score = f"{segmentation.severity_score:.2f}" if segmentation.severity_score is not None else "n/a"
    note = f"Segmentation severity_score={score}, category={segmentation.category or 'n/a'}"
    notes = f"{context.notes}\n{note}" if context.notes else note
    return dataclasses.replace(context, notes=notes)


class RecommendationPipeline:
    """
    Normalize -> match -> (generative | fallback) -> priority arbitration.

    Never raises for business-logic failures: every path ends in a complete
    recommendation, except cancellation, which ends in ``None``.
    """

    def __init__(
        self,
        knowledge_base: KnowledgeBase,
        policies: Policies,
        synthesizer: GenerativeSynthesizer | None = None,
        fallback: FallbackBuilder | None = None,
        reasoning: ReasoningEngine | None = None,
    ):
        self.knowledge_base = knowledge_base
        self.policies = policies
        self.synthesizer = synthesizer
        self.fallback = fallback or FallbackBuilder(knowledge_base=knowledge_base)
        self.reasoning = reasoning or ReasoningEngine(policies=policies)

    def run(
        self,
        request: RecommendationRequest,
        cancel_token: CancellationToken | None = None,
    ) -> AgentRecommendation | None:
        classification = normalize_classification(request.classification)
        context = request.context
        label = classification.predicted_label

        if is_unknown_label(label):
            logger.info("Classification payload had no usable label; returning fallback")
            recommendation = dataclasses.replace(
                self.fallback.build(classification, context),
                error=UNPARSEABLE_CLASSIFICATION_ERROR,
            )
            return self._reconcile(recommendation, label, request.segmentation)

        match = self.knowledge_base.match(label)
        logger.debug("Label %r matched %s (score=%.2f, alias=%r)", label, match.entry.id, match.score, match.matched_alias)

        if self.synthesizer is None:
            recommendation = self.fallback.build(classification, context, match)
        else:
            try:
                recommendation = self.synthesizer.synthesize(
                    classification,
                    _with_segmentation_note(context, request.segmentation),
                    match,
                    cancel_token=cancel_token,
                )
            except RecommendationCancelled:
                logger.info("Recommendation for %r cancelled by caller", label)
                return None
            except Exception as e:
                logger.warning("Generative recommendation failed, using fallback: %s", e)
                fallback = self.fallback.build(classification, context, match)
                recommendation = dataclasses.replace(
                    fallback,
                    safety_notes=[*fallback.safety_notes, SERVICE_UNAVAILABLE_NOTE],
                    error=str(e) or e.__class__.__name__,
                )

        if cancel_token is not None and cancel_token.cancelled:
            logger.info("Recommendation for %r cancelled by caller", label)
            return None

        return self._reconcile(recommendation, label, request.segmentation)

    def _reconcile(
        self,
        recommendation: AgentRecommendation,
        label: str,
        segmentation: SeveritySignal | None,
    ) -> AgentRecommendation:
        priority = self.reasoning.arbitrate(recommendation.priority, label, segmentation)
        if priority != recommendation.priority:
            logger.debug("Priority raised from %s to %s by severity signal", recommendation.priority, priority)
        return dataclasses.replace(recommendation, priority=priority)
