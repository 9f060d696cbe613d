from __future__ import annotations

import math
import re
from collections.abc import Mapping
from typing import Any

from leafcare.core.schemas import NormalizedClassification, NormalizedPrediction


UNKNOWN_LABEL = "unknown"

# Probed in order; upstream classifiers disagree on naming.
SCORE_KEYS = ("probability", "confidence", "score", "prob", "likelihood")
LABEL_KEYS = ("class", "label", "name", "predicted_label", "predicted_class")
PREDICTION_LIST_KEYS = ("top_3", "top3", "top_k", "topk", "predictions")
PREDICTION_MAP_KEYS = ("probabilities", "scores")
PREDICTED_LABEL_KEYS = ("predicted_label", "predictedLabel", "label", "predicted", "predicted_class")

_SEPARATORS = re.compile(r"[_\-]+")
_WHITESPACE = re.compile(r"\s+")


def to_number(value: Any, allow_str: bool = False) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            number = float(value)
        elif allow_str and isinstance(value, str) and value.strip():
            number = float(value)
        else:
            return None
    except (ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def clamp01(value: float) -> float:
    if value is None or math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, float(value)))


def normalize_score(value: Any) -> float:
    """Accepts both 0..1 and 0..100 (percent) scores; anything else is clamped."""
    number = to_number(value, allow_str=True)
    if number is None:
        return 0.0
    if 1.0 < number <= 100.0:
        number = number / 100.0
    return clamp01(number)


def extract_score(value: Any) -> float:
    direct = to_number(value, allow_str=True)
    if direct is not None:
        return normalize_score(direct)

    if isinstance(value, Mapping):
        for key in SCORE_KEYS:
            number = to_number(value.get(key), allow_str=True)
            if number is not None:
                return normalize_score(number)

        numbers = [n for n in (to_number(v) for v in value.values()) if n is not None]
        if numbers:
            return normalize_score(max(numbers))

    return 0.0


def format_label(raw: str) -> str:
    """'early_blight' / 'Early-Blight' / ' early  blight ' -> 'Early Blight'"""
    text = _SEPARATORS.sub(" ", str(raw))
    words = [w for w in _WHITESPACE.split(text.strip()) if w]
    return " ".join(w[:1].upper() + w[1:].lower() for w in words)


def extract_label(value: Any, fallback_key: str = UNKNOWN_LABEL) -> str:
    if isinstance(value, str) and value.strip():
        return format_label(value)

    if isinstance(value, Mapping):
        for key in LABEL_KEYS:
            candidate = value.get(key)
            if isinstance(candidate, str) and candidate.strip():
                return format_label(candidate)

    return format_label(fallback_key) or format_label(UNKNOWN_LABEL)


def extract_prediction(value: Any, fallback_key: str = UNKNOWN_LABEL) -> NormalizedPrediction:
    return NormalizedPrediction(label=extract_label(value, fallback_key), score=extract_score(value))


def _is_blank(item: Any) -> bool:
    return item is None or (isinstance(item, (str, Mapping, list)) and len(item) == 0)


def _resolve_predictions(payload: Any) -> list[tuple[Any, str]]:
    if isinstance(payload, list):
        return [(item, UNKNOWN_LABEL) for item in payload]

    if not isinstance(payload, Mapping):
        return []

    for key in PREDICTION_LIST_KEYS:
        if isinstance(payload.get(key), list):
            return [(item, UNKNOWN_LABEL) for item in payload[key]]

    for value in payload.values():
        if isinstance(value, list):
            return [(item, UNKNOWN_LABEL) for item in value]

    # e.g. {"probabilities": {"healthy": 0.91, "late_blight": 0.05}}
    for key in PREDICTION_MAP_KEYS:
        mapping = payload.get(key)
        if isinstance(mapping, Mapping):
            return [(item, str(label)) for label, item in mapping.items()]

    return []


def _explicit_predicted_label(payload: Any) -> str | None:
    if not isinstance(payload, Mapping):
        return None
    for key in PREDICTED_LABEL_KEYS:
        candidate = payload.get(key)
        if isinstance(candidate, str) and candidate.strip():
            return format_label(candidate)
    return None


def normalize_classification(raw: Any, limit: int = 3) -> NormalizedClassification:
    """
    Adapts whatever the classification service returned into
    ``{predicted_label, top_3}``. Never raises; unusable input gives
    ``predicted_label="unknown"`` and an empty ``top_3``.
    """
    payload = raw
    if isinstance(payload, Mapping) and isinstance(payload.get("classification"), (Mapping, list)):
        payload = payload["classification"]

    predictions = [
        extract_prediction(item, fallback_key)
        for item, fallback_key in _resolve_predictions(payload)
        if not _is_blank(item)
    ]
    top = sorted(predictions, key=lambda p: p.score, reverse=True)[:limit]

    predicted_label = _explicit_predicted_label(payload)
    if predicted_label is None:
        predicted_label = top[0].label if top else UNKNOWN_LABEL

    return NormalizedClassification(predicted_label=predicted_label, top_3=top)


def is_unknown_label(label: str | None) -> bool:
    return not label or not label.strip() or label.strip().lower() == UNKNOWN_LABEL
