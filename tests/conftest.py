from __future__ import annotations

import pytest

from leafcare.core.errors import GenerativeServiceError
from leafcare.core.knowledge_base import KnowledgeBase
from leafcare.core.policies import Policies


class FakeCompletionClient:
    """Stands in for the chat-completions client; records prompts it was given."""

    def __init__(self, reply: str | None = None, error: Exception | None = None, on_call=None):
        self.reply = reply
        self.error = error
        self.on_call = on_call
        self.prompts: list[str] = []

    def complete_json(self, prompt: str, temperature: float = 0.3) -> str:
        self.prompts.append(prompt)
        if self.on_call is not None:
            self.on_call()
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture()
def knowledge_base() -> KnowledgeBase:
    return KnowledgeBase()


@pytest.fixture()
def policies() -> Policies:
    return Policies()


@pytest.fixture()
def make_client():
    return FakeCompletionClient


@pytest.fixture()
def failing_client() -> FakeCompletionClient:
    return FakeCompletionClient(error=GenerativeServiceError("Generative service returned HTTP 429"))
