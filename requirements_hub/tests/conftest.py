"""
Shared fixtures: a scriptable reasoning client, test settings with no
backoff delays and an in-memory repository.
"""

import pytest

from requirements_hub.config import Settings
from requirements_hub.models.enums import RequirementType
from requirements_hub.models.schemas import CategoryMapping, Requirement
from requirements_hub.persistence import InMemoryRequirementRepository
from requirements_hub.services.llm_service import ReasoningClient


class FakeReasoningClient(ReasoningClient):
    """
    Answers from a list of scripted replies (consumed in order, the last one
    repeats) or from a ``responder(system, user)`` callable. Exceptions in
    the script are raised instead of returned.
    """

    def __init__(self, replies=None, responder=None):
        self.replies = list(replies or [])
        self.responder = responder
        self.calls: list[tuple[str, str]] = []

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        if self.responder is not None:
            reply = self.responder(system_prompt, user_prompt)
        elif len(self.replies) > 1:
            reply = self.replies.pop(0)
        elif self.replies:
            reply = self.replies[0]
        else:
            reply = ""
        if isinstance(reply, BaseException):
            raise reply
        return reply


def make_requirement(req_id: str, text: str, category: str, **fields) -> Requirement:
    return Requirement(
        id=req_id,
        text=text,
        requirement_type=fields.pop("requirement_type", RequirementType.MUST),
        requirement_category=category,
        canonical_category=fields.pop("canonical_category", category),
        **fields,
    )


@pytest.fixture
def settings():
    return Settings(
        mock_mode=True,
        groq_api_key="",
        grouping_backoff_base_seconds=0.0,
        auto_group_after_import=True,
        skip_first_sheet=True,
    )


@pytest.fixture
def fake_client():
    return FakeReasoningClient()


@pytest.fixture
def repository():
    return InMemoryRequirementRepository()


@pytest.fixture
def seeded_mappings():
    return [
        CategoryMapping(source_category=name, target_category=name)
        for name in ("Säkerhet", "Drift", "Avtal")
    ]
