from __future__ import annotations

import json

import pytest

from leafcare.core.cancellation import CancellationToken
from leafcare.core.fallback import SERVICE_UNAVAILABLE_NOTE, FallbackBuilder
from leafcare.core.knowledge_base import KnowledgeBase
from leafcare.core.normalization import normalize_classification
from leafcare.core.pipeline import UNPARSEABLE_CLASSIFICATION_ERROR, RecommendationPipeline
from leafcare.core.policies import Policies
from leafcare.core.schemas import RecommendationContext, RecommendationRequest, SeveritySignal
from leafcare.core.synthesis import GenerativeSynthesizer


CALM_MODEL_OUTPUT = json.dumps(
    {
        "priority": "Low",
        "title": "Minor leaf spotting",
        "summary": "Looks mild; keep monitoring.",
        "confidence": 0.9,
    }
)


def _pipeline(knowledge_base: KnowledgeBase, policies: Policies, client=None) -> RecommendationPipeline:
    synthesizer = GenerativeSynthesizer(client, policies) if client is not None else None
    return RecommendationPipeline(knowledge_base=knowledge_base, policies=policies, synthesizer=synthesizer)


def test_scenario_healthy_without_segmentation_or_credential(knowledge_base, policies) -> None:
    request = RecommendationRequest(
        classification={"predicted_label": "healthy", "top_3": [{"label": "healthy", "score": 0.95}]}
    )

    rec = _pipeline(knowledge_base, policies).run(request)

    assert rec.priority == "Low"
    assert rec.mode == "fallback"
    assert rec.kb.id == "kb-healthy"
    assert rec.confidence == pytest.approx(0.95)
    assert rec.error is None


def test_scenario_late_blight_with_high_severity(knowledge_base, policies) -> None:
    request = RecommendationRequest(
        classification={"predicted_label": "late_blight"},
        segmentation=SeveritySignal(severity_score=80, category="Severe"),
    )
    pipeline = _pipeline(knowledge_base, policies)

    rec = pipeline.run(request)

    assert pipeline.reasoning.severity_priority("Late Blight", request.segmentation) == "Critical"
    assert knowledge_base.match("Late Blight").entry.default_priority == "Critical"
    assert rec.priority == "Critical"
    assert rec.kb.id == "kb-late-blight"


def test_unparseable_classification_still_returns_fallback(knowledge_base, policies, make_client) -> None:
    client = make_client(reply=CALM_MODEL_OUTPUT)

    rec = _pipeline(knowledge_base, policies, client).run(RecommendationRequest(classification="???"))

    assert rec.mode == "fallback"
    assert rec.error == UNPARSEABLE_CLASSIFICATION_ERROR
    assert rec.kb.id == "kb-generic-disease"
    assert rec.title and rec.summary
    assert client.prompts == []


def test_generative_success(knowledge_base, policies, make_client) -> None:
    client = make_client(reply=CALM_MODEL_OUTPUT)
    request = RecommendationRequest(classification={"label": "bacterial_spot", "top_3": [{"label": "bacterial_spot", "score": 0.5}]})

    rec = _pipeline(knowledge_base, policies, client).run(request)

    assert rec.mode == "generative"
    assert rec.title == "Minor leaf spotting"
    assert rec.confidence == pytest.approx(0.7 * 0.9 + 0.3 * 0.5)
    # no segmentation -> Moderate floor over the model's "Low"
    assert rec.priority == "Moderate"
    assert rec.kb.id == "kb-bacterial-spot"


def test_calm_generative_answer_cannot_suppress_severity(knowledge_base, policies, make_client) -> None:
    request = RecommendationRequest(
        classification={"label": "bacterial_spot"},
        segmentation=SeveritySignal(severity_score=92.5, category="Severe"),
    )

    rec = _pipeline(knowledge_base, policies, make_client(reply=CALM_MODEL_OUTPUT)).run(request)

    assert rec.mode == "generative"
    assert rec.priority == "Critical"


@pytest.mark.parametrize("reply", ["not json at all", json.dumps({"priority": "Whatever"})])
def test_invalid_generative_output_degrades_to_fallback(knowledge_base, policies, make_client, reply) -> None:
    classification = {"label": "early_blight", "top_3": [{"label": "early_blight", "score": 0.66}]}

    rec = _pipeline(knowledge_base, policies, make_client(reply=reply)).run(RecommendationRequest(classification=classification))
    direct = FallbackBuilder(knowledge_base).build(normalize_classification(classification))

    assert rec.mode == "fallback"
    assert rec.error
    assert rec.kb == direct.kb
    assert rec.safety_notes[-1] == SERVICE_UNAVAILABLE_NOTE
    assert rec.safety_notes[:-1] == direct.safety_notes


def test_generative_service_failure_degrades_to_fallback(knowledge_base, policies, failing_client) -> None:
    rec = _pipeline(knowledge_base, policies, failing_client).run(RecommendationRequest(classification={"label": "late_blight"}))

    assert rec.mode == "fallback"
    assert rec.error == "Generative service returned HTTP 429"
    assert SERVICE_UNAVAILABLE_NOTE in rec.safety_notes


def test_unexpected_exception_also_degrades(knowledge_base, policies, make_client) -> None:
    rec = _pipeline(knowledge_base, policies, make_client(error=RuntimeError("boom"))).run(
        RecommendationRequest(classification={"label": "late_blight"})
    )

    assert rec.mode == "fallback"
    assert rec.error == "boom"


def test_cancellation_yields_no_result(knowledge_base, policies, make_client) -> None:
    token = CancellationToken()
    client = make_client(reply=CALM_MODEL_OUTPUT, on_call=token.cancel)

    result = _pipeline(knowledge_base, policies, client).run(
        RecommendationRequest(classification={"label": "late_blight"}), cancel_token=token
    )

    assert result is None


def test_cancelled_service_failure_is_not_degraded(knowledge_base, policies, failing_client) -> None:
    token = CancellationToken()
    failing_client.on_call = token.cancel

    result = _pipeline(knowledge_base, policies, failing_client).run(
        RecommendationRequest(classification={"label": "late_blight"}), cancel_token=token
    )

    assert result is None


def test_segmentation_note_is_passed_to_prompt(knowledge_base, policies, make_client) -> None:
    client = make_client(reply=CALM_MODEL_OUTPUT)
    request = RecommendationRequest(
        classification={"label": "early_blight"},
        context=RecommendationContext(notes="Leaves wet since Monday"),
        segmentation=SeveritySignal(severity_score=41.237, category="Moderate"),
    )

    _pipeline(knowledge_base, policies, client).run(request)

    assert "Leaves wet since Monday" in client.prompts[0]
    assert "Segmentation severity_score=41.24, category=Moderate" in client.prompts[0]


def test_identical_requests_give_identical_results(knowledge_base, policies) -> None:
    pipeline = _pipeline(knowledge_base, policies)
    request = RecommendationRequest(classification={"top3": [{"class": "powdery_mildew", "score": 71}]})

    assert pipeline.run(request) == pipeline.run(request)
