"""
Pytest configuration and fixtures.
"""

import json
from typing import AsyncIterator, List, Optional

import pytest

from argument_coach import database
from argument_coach.agents.coach.agent import CoachPrompt


class ScriptedProvider:
    """Provider stand-in that replays a fixed reply as cumulative snapshots."""

    def __init__(self, reply: str = "", chunk_size: int = 12, fail_after: Optional[int] = None):
        self.reply = reply
        self.chunk_size = chunk_size
        self.fail_after = fail_after
        self.prompts: List[CoachPrompt] = []

    def set_reply(self, payload) -> None:
        self.reply = payload if isinstance(payload, str) else json.dumps(payload)

    async def stream(self, prompt: CoachPrompt) -> AsyncIterator[str]:
        self.prompts.append(prompt)
        for count, end in enumerate(range(self.chunk_size, len(self.reply) + self.chunk_size, self.chunk_size)):
            if self.fail_after is not None and count >= self.fail_after:
                raise ConnectionError("provider dropped the stream")
            yield self.reply[:end]


@pytest.fixture
def make_provider():
    return ScriptedProvider


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
async def db(tmp_path):
    """Fresh SQLite database per test."""
    database.init_engine(f"sqlite:///{tmp_path / 'coach.db'}", echo=False)
    await database.create_tables()
    yield database.get_session_maker()
    await database.dispose_engine()
