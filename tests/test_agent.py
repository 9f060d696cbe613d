from __future__ import annotations

import json
from pathlib import Path

import pytest

from leafcare.agent import LeafCareAgent, request_from_payload, severity_signal_from_result
from leafcare.config import Settings
from leafcare.services.generative_service import ChatCompletionClient


SEGMENTATION_RESULT = {
    "severity": {"severity_score": 80.0, "Ssurf": 0.7, "Sdens": 0.5, "Sgrav": 0.9, "Sdisp": 0.4},
    "category": {"label": "Severe", "color": "#ff0000"},
    "stats": {"crop_size": 384, "veg_pixels": 90000, "veg_ratio": 0.61},
}


def test_severity_signal_reads_score_and_category() -> None:
    signal = severity_signal_from_result(SEGMENTATION_RESULT)

    assert signal.severity_score == 80.0
    assert signal.category == "Severe"


def test_severity_signal_tolerates_partial_results() -> None:
    assert severity_signal_from_result(None) is None
    assert severity_signal_from_result("n/a") is None

    signal = severity_signal_from_result({"category": {"label": "  "}})
    assert signal.severity_score is None
    assert signal.category is None


def test_request_from_payload_trims_context() -> None:
    request = request_from_payload(
        {"classification": {"label": "rust"}, "crop": "  Maize ", "location": "", "notes": 7, "language": " sw "}
    )

    assert request.context.crop == "Maize"
    assert request.context.location is None
    assert request.context.notes is None
    assert request.context.language == "sw"
    assert request.segmentation is None


def test_request_from_non_mapping_payload() -> None:
    request = request_from_payload(["late_blight"])

    assert request.classification == ["late_blight"]
    assert request.context.language == "en"


def test_recommend_serializes_camel_case_body() -> None:
    body = LeafCareAgent().recommend(
        {
            "classification": {"predicted_label": "late_blight", "top_3": [{"label": "late_blight", "score": 0.88}]},
            "segmentation": SEGMENTATION_RESULT,
        }
    )

    assert body["mode"] == "fallback"
    assert body["priority"] == "Critical"
    assert body["kb"] == {
        "id": "kb-late-blight",
        "name": "Late blight (Phytophthora)",
        "matchScore": 1.0,
        "matchedAlias": "late_blight",
    }
    assert set(body) >= {
        "title",
        "summary",
        "confidence",
        "immediateActions",
        "treatmentOptions",
        "prevention",
        "monitoringPlan",
        "questionsForFarmer",
        "safetyNotes",
    }
    assert "error" not in body
    json.dumps(body)


def test_recommend_empty_payload_carries_advisory_error() -> None:
    body = LeafCareAgent().recommend({})

    assert body["mode"] == "fallback"
    assert body["error"].startswith("Could not parse classification payload")


def test_from_settings_without_key_is_fallback_only() -> None:
    agent = LeafCareAgent.from_settings(Settings(openai_api_key=None, knowledge_base_path=None))

    assert agent.pipeline.synthesizer is None


def test_from_settings_with_key_enables_generative_path(tmp_path: Path) -> None:
    path = tmp_path / "kb.json"
    path.write_text(
        json.dumps(
            [
                {
                    "id": "kb-generic-disease",
                    "name": "Generic",
                    "labelAliases": ["disease"],
                    "summary": "Something is off.",
                    "immediateActions": [],
                    "treatmentOptions": [],
                    "prevention": [],
                    "whenToEscalate": [],
                    "defaultPriority": "Moderate",
                }
            ]
        ),
        encoding="utf-8",
    )

    agent = LeafCareAgent.from_settings(
        Settings(openai_api_key="sk-test", knowledge_base_path=str(path), generative_temperature=0.1)
    )

    assert isinstance(agent.pipeline.synthesizer.client, ChatCompletionClient)
    assert agent.policies.synthesis.temperature == pytest.approx(0.1)
    assert [e.id for e in agent.knowledge_base.entries] == ["kb-generic-disease"]
