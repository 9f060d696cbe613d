from __future__ import annotations

from leafcare.core.policies import PRIORITY_RANK, Policies
from leafcare.core.schemas import SeveritySignal


def max_priority(*priorities: str) -> str:
    """Highest-ranked priority; unknown values are ignored (``Low`` if none are valid)."""
    valid = [p for p in priorities if p in PRIORITY_RANK]
    if not valid:
        return "Low"
    return max(valid, key=PRIORITY_RANK.__getitem__)


class ReasoningEngine:
    def __init__(self, policies: Policies):
        self.policies = policies

    def is_healthy(self, predicted_label: str | None) -> bool:
        label = (predicted_label or "").lower()
        return any(marker in label for marker in self.policies.severity.healthy_markers)

    def severity_priority(self, predicted_label: str | None, segmentation: SeveritySignal | None) -> str:
        if self.is_healthy(predicted_label):
            return "Low"
        if segmentation is None:
            return "Moderate"

        score = segmentation.severity_score or 0.0
        sp = self.policies.severity
        if score < sp.moderate_below:
            return "Moderate"
        if score < sp.urgent_below:
            return "Urgent"
        return "Critical"

    def arbitrate(
        self,
        recommended: str,
        predicted_label: str | None,
        segmentation: SeveritySignal | None,
    ) -> str:
        # A calm recommendation never suppresses the severity signal.
        return max_priority(self.severity_priority(predicted_label, segmentation), recommended)
