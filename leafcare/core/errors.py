from __future__ import annotations


class RecommendationError(Exception):
    """Base class for failures raised inside the recommendation engine."""


class GenerativeServiceError(RecommendationError):
    """The generative service could not be reached or answered with an error."""


class GenerativeOutputError(RecommendationError):
    """The generative service answered, but not with a usable recommendation."""


class RecommendationCancelled(RecommendationError):
    """The caller abandoned the request; no result should be produced."""
