"""Shared fixtures: an in-memory store seeded with one team and a scripted LLM."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from teamflow.app import create_app
from teamflow.errors import UpstreamGenerationError
from teamflow.models import User, TeamMember, MemberRole
from teamflow.store import InMemoryStore

TEAM_ID = "team-1"
OWNER_TOKEN = "owner-token"
OUTSIDER_TOKEN = "outsider-token"


class FakeLLM:
    """Scripted stand-in for GeminiClient; records every prompt it receives."""

    model_name = "fake-model"

    def __init__(self, stream_text="", generate_text="[]", tag_text='["Backend"]',
                 stream_error=False, generate_error=False, tag_error=False, chunk_size=16):
        self.stream_text = stream_text
        self.generate_text = generate_text
        self.tag_text = tag_text
        self.stream_error = stream_error
        self.generate_error = generate_error
        self.tag_error = tag_error
        self.chunk_size = chunk_size
        self.prompts = []

    async def generate(self, prompt):
        self.prompts.append(prompt)
        if "AVAILABLE TAGS" in prompt:
            if self.tag_error:
                raise UpstreamGenerationError("Failed to generate content")
            return self.tag_text
        if self.generate_error:
            raise UpstreamGenerationError("Failed to generate content")
        return self.generate_text

    async def stream(self, prompt):
        self.prompts.append(prompt)
        text = self.stream_text
        for i in range(0, len(text), self.chunk_size):
            if self.stream_error and i > 0:
                raise UpstreamGenerationError("Streaming error")
            yield text[i:i + self.chunk_size]
        if self.stream_error:
            raise UpstreamGenerationError("Streaming error")


def seed_members(store, team_id, count, start=None):
    """Add ``count`` members joined one minute apart; returns their users."""
    start = start or datetime(2025, 1, 1, tzinfo=timezone.utc)
    users = []
    for i in range(count):
        user = store.add_user(User(id=f"user-{i}", email=f"user{i}@example.com",
                                   user_metadata={"full_name": f"User {i}"}))
        store.add_member(TeamMember(team_id=team_id, user_id=user.id,
                                    role=MemberRole.MEMBER, joined_at=start + timedelta(minutes=i + 1)))
        users.append(user)
    return users


@pytest.fixture
def store():
    s = InMemoryStore()
    owner = s.add_user(User(id="owner", email="owner@example.com",
                            user_metadata={"full_name": "Olive Owner", "field": "Backend"}), token=OWNER_TOKEN)
    s.add_user(User(id="outsider", email="outsider@example.com"), token=OUTSIDER_TOKEN)
    s.add_team(TEAM_ID, name="Blog Team", created_by=owner.id, tech_stack={
        "frontend": {"framework": "nextjs"},
        "backend": {"language": "typescript", "database": "postgresql"},
    })
    s.add_member(TeamMember(team_id=TEAM_ID, user_id=owner.id, role=MemberRole.OWNER,
                            joined_at=datetime(2024, 12, 31, tzinfo=timezone.utc)))
    return s


@pytest.fixture
def owner(store):
    return store.users["owner"]


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def client(store, llm):
    return TestClient(create_app(store=store, llm=llm))


@pytest.fixture
def auth():
    return {"Authorization": f"Bearer {OWNER_TOKEN}"}
