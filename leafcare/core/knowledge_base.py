from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from leafcare.core.policies import PRIORITY_RANK
from leafcare.core.schemas import KnowledgeBaseEntry, MatchResult


logger = logging.getLogger(__name__)

GENERIC_ENTRY_ID = "kb-generic-disease"
EXACT_MATCH_SCORE = 1.0
PARTIAL_MATCH_CAP = 0.9


# Catalog order is also the tie-break order for ambiguous labels.
DEFAULT_ENTRIES: tuple[KnowledgeBaseEntry, ...] = (
    KnowledgeBaseEntry(
        id="kb-healthy",
        name="Healthy leaf",
        label_aliases=("healthy", "normal"),
        summary=(
            "The leaf appears healthy. Continue good agronomic practices and keep monitoring "
            "to catch issues early."
        ),
        immediate_actions=(
            "Inspect 5–10 plants across the field to confirm the pattern is consistent.",
            "Record irrigation and fertilization schedules for the last 2 weeks.",
        ),
        treatment_options=(
            "No treatment needed if plants are vigorous and no spread is observed.",
        ),
        prevention=(
            "Avoid over-irrigation and prolonged leaf wetness where possible.",
            "Maintain balanced nutrition (N-P-K + micronutrients) based on soil/leaf tests.",
            "Scout weekly, especially after rain or rapid temperature shifts.",
        ),
        when_to_escalate=(
            "If symptoms appear on new growth or spread rapidly across multiple plots.",
        ),
        default_priority="Low",
    ),
    KnowledgeBaseEntry(
        id="kb-powdery-mildew",
        name="Powdery mildew (fungal)",
        label_aliases=("powdery", "mildew"),
        summary=(
            "Common fungal disease that often looks like white/gray powdery patches. Spreads fast "
            "in dense canopies with poor airflow."
        ),
        immediate_actions=(
            "Remove heavily infected leaves (do not compost if infection is active).",
            "Improve airflow: reduce canopy density and avoid overhead irrigation.",
        ),
        treatment_options=(
            "Use an approved fungicide for your crop (rotate modes of action to reduce resistance).",
            "Consider sulfur-based or biological options where appropriate and label-approved.",
        ),
        prevention=(
            "Avoid excess nitrogen that creates soft, dense growth.",
            "Space plants to improve airflow; prune if applicable.",
            "Irrigate early in the day to reduce humidity duration.",
        ),
        when_to_escalate=(
            "If infection spreads despite 2 treatment intervals.",
            "If you suspect fungicide resistance (no response to correct application).",
        ),
        default_priority="Urgent",
    ),
    KnowledgeBaseEntry(
        id="kb-early-blight",
        name="Early blight (Alternaria)",
        label_aliases=("early_blight", "alternaria", "target spot", "target_spot"),
        summary=(
            "Typically causes dark lesions that may show concentric rings. Often starts on older "
            "leaves and can reduce yield if unchecked."
        ),
        immediate_actions=(
            "Remove diseased lower leaves to reduce inoculum.",
            "Avoid wetting foliage; improve drainage and spacing.",
        ),
        treatment_options=(
            "Apply a crop-registered fungicide; rotate modes of action.",
            "Use preventive sprays when conditions are favorable (warm + humid).",
        ),
        prevention=(
            "Rotate crops (2–3 years) away from susceptible hosts if possible.",
            "Use clean seed/transplants and remove plant debris after harvest.",
        ),
        when_to_escalate=(
            "If lesions appear rapidly on upper canopy or stems.",
            "If you cannot distinguish from late blight (requires urgent management).",
        ),
        default_priority="Urgent",
    ),
    KnowledgeBaseEntry(
        id="kb-late-blight",
        name="Late blight (Phytophthora)",
        label_aliases=("late_blight", "phytophthora"),
        summary=(
            "High-risk disease that can spread explosively under cool, wet conditions. Requires "
            "fast action and correct identification."
        ),
        immediate_actions=(
            "Isolate affected area and avoid moving tools/workers through wet foliage.",
            "Remove and destroy heavily infected plants where recommended locally.",
        ),
        treatment_options=(
            "Use locally recommended, registered oomycete-targeting products for your crop.",
            "Follow strict spray intervals and rotate modes of action.",
        ),
        prevention=(
            "Avoid overhead irrigation; manage leaf wetness duration.",
            "Use resistant varieties if available and locally recommended.",
        ),
        when_to_escalate=(
            "Immediately contact an agronomist/extension service to confirm diagnosis.",
            "Consider lab confirmation if outbreaks are suspected in the region.",
        ),
        default_priority="Critical",
    ),
    KnowledgeBaseEntry(
        id="kb-bacterial-spot",
        name="Bacterial spot/speck (bacterial)",
        label_aliases=("bacterial", "spot", "speck"),
        summary=(
            "Often linked to splashing water, storms, and contaminated seed/transplants. Chemical "
            "control is limited; sanitation matters."
        ),
        immediate_actions=(
            "Avoid working in fields when leaves are wet to reduce spread.",
            "Remove severely affected leaves/plants if practical.",
        ),
        treatment_options=(
            "Use crop-registered bactericides/copper products only as label-approved; avoid overuse.",
            "Focus on cultural control: sanitation and moisture management.",
        ),
        prevention=(
            "Use certified disease-free seed/transplants.",
            "Disinfect tools; manage weeds and volunteer hosts.",
            "Reduce overhead irrigation and splash.",
        ),
        when_to_escalate=(
            "If symptoms worsen rapidly after rain and spread in hot weather.",
            "If you need lab confirmation to differentiate from fungal leaf spots.",
        ),
        default_priority="Urgent",
    ),
    KnowledgeBaseEntry(
        id="kb-nutrient-deficiency",
        name="Likely nutrient deficiency / stress",
        label_aliases=("deficiency", "chlorosis", "yellow", "nutrient", "stress"),
        summary=(
            "Yellowing or uneven coloration can be caused by nutrient imbalance, pH issues, water "
            "stress, or root problems."
        ),
        immediate_actions=(
            "Check irrigation uniformity and recent weather extremes (heat/cold).",
            "Inspect roots (if possible) for rot, compaction, or pests.",
            "If available, do a quick soil pH/EC check and review fertilizer history.",
        ),
        treatment_options=(
            "Correct nutrition based on soil/leaf test results; avoid large blind fertilizer applications.",
            "If micronutrient deficiency is suspected, consider a labeled foliar feed at recommended dose.",
        ),
        prevention=(
            "Use soil tests pre-season and adjust pH and base fertilization accordingly.",
            "Avoid overwatering; improve drainage and soil structure.",
        ),
        when_to_escalate=(
            "If new growth is severely affected or symptoms persist after corrective actions.",
            "If multiple plots show the same symptoms (possible irrigation/fertilizer issue).",
        ),
        default_priority="Moderate",
    ),
    KnowledgeBaseEntry(
        id=GENERIC_ENTRY_ID,
        name="Generic leaf disease (unclassified)",
        label_aliases=("disease", "leaf", "spot", "blight", "rust", "mosaic", "virus"),
        summary=(
            "A disease/stress pattern is suspected, but the exact cause is uncertain. Use "
            "integrated management and confirm with field checks."
        ),
        immediate_actions=(
            "Scout a wider area to estimate spread (edge vs. uniform).",
            "Remove badly affected leaves and improve airflow where possible.",
            "Avoid overhead irrigation and reduce leaf wetness duration.",
        ),
        treatment_options=(
            "If fungal disease is likely, use a crop-registered fungicide and rotate modes of action.",
            "If viral symptoms are suspected, focus on vector control and remove infected plants early.",
        ),
        prevention=(
            "Rotate crops and remove plant debris after harvest.",
            "Use clean planting material and sanitize tools.",
            "Monitor pests that can transmit diseases (aphids, whiteflies, thrips).",
        ),
        when_to_escalate=(
            "If symptoms spread rapidly or the crop is near a critical growth stage.",
            "If you need a confirmed diagnosis before applying treatments.",
        ),
        default_priority="Urgent",
    ),
)


def normalize_key(label: str | None) -> str:
    return re.sub(r"\s+", "_", (label or "").lower())


class KnowledgeBase:
    """
    Read-only catalog of agronomic guidance plus the alias matcher.

    Built once at startup and shared by every request; there is no mutation
    API, so concurrent readers need no locking.
    """

    def __init__(self, entries: tuple[KnowledgeBaseEntry, ...] = DEFAULT_ENTRIES):
        if not entries:
            raise ValueError("Knowledge base must contain at least one entry")
        self.entries = tuple(entries)
        self.generic_entry = next((e for e in self.entries if e.id == GENERIC_ENTRY_ID), self.entries[0])

    @classmethod
    def from_json(cls, path: str | Path) -> KnowledgeBase:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Knowledge base file not found: {path}")

        raw = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(raw, list):
            raise ValueError(f"Knowledge base file must hold a JSON list, got {type(raw).__name__}")

        entries = tuple(_entry_from_dict(item) for item in raw)
        logger.info("Loaded %s knowledge base entries from %s", len(entries), path)
        return cls(entries)

    def match(self, predicted_label: str) -> MatchResult:
        normalized = normalize_key(predicted_label)
        best: MatchResult | None = None

        for entry in self.entries:
            for alias in entry.label_aliases:
                key = normalize_key(alias)
                if not key:
                    continue

                if normalized == key:
                    score = EXACT_MATCH_SCORE
                elif key in normalized:
                    score = min(PARTIAL_MATCH_CAP, len(key) / max(1, len(normalized)))
                else:
                    continue

                # strict ">" keeps the earliest entry on ties
                if best is None or score > best.score:
                    best = MatchResult(entry=entry, matched_alias=alias, score=score)

        if best is not None:
            return best

        logger.debug("No knowledge base alias matched %r; using %s", predicted_label, self.generic_entry.id)
        return MatchResult(entry=self.generic_entry, matched_alias=None, score=0.0)


def _string_tuple(item: dict[str, Any], key: str) -> tuple[str, ...]:
    values = item.get(key, [])
    if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
        raise ValueError(f"Knowledge base field {key!r} must be a list of strings")
    return tuple(values)


def _entry_from_dict(item: Any) -> KnowledgeBaseEntry:
    if not isinstance(item, dict):
        raise ValueError("Knowledge base entries must be JSON objects")

    for key in ("id", "name", "summary", "defaultPriority"):
        if not isinstance(item.get(key), str) or not item[key].strip():
            raise ValueError(f"Knowledge base entry is missing {key!r}")

    priority = item["defaultPriority"]
    if priority not in PRIORITY_RANK:
        raise ValueError(f"Knowledge base entry {item['id']!r} has invalid priority {priority!r}")

    return KnowledgeBaseEntry(
        id=item["id"],
        name=item["name"],
        label_aliases=_string_tuple(item, "labelAliases"),
        summary=item["summary"],
        immediate_actions=_string_tuple(item, "immediateActions"),
        treatment_options=_string_tuple(item, "treatmentOptions"),
        prevention=_string_tuple(item, "prevention"),
        when_to_escalate=_string_tuple(item, "whenToEscalate"),
        default_priority=priority,
    )
