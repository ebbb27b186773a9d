"""
Shared fixtures for EquateGPT tests.

The scripted model replays a fixed list of streaming passes, so the turn
loop, the session manager and the WebSocket gateway can be exercised
without calling the OpenAI API.
"""

import copy
from typing import Iterable, List

import pytest
from equate_chat.agent import Agent, Environment
from equate_chat.config import Settings
from equate_chat.messages import ConversationState, Fragment, Message, ToolCallDelta
from equate_chat.model import ChatModel
from equate_chat.plugins.math_plugin import MathPlugin

# ===== HELPERS =====


def text(content: str) -> Fragment:
    return Fragment(text=content)


def tool_call(
    name: str, arguments: str, call_id: str = "call_1", index: int = 0
) -> Fragment:
    """A fragment carrying one complete tool call request."""
    return Fragment(
        tool_calls=(ToolCallDelta(index=index, id=call_id, name=name, arguments=arguments),)
    )


class ScriptedModel(ChatModel):
    """Stub model that streams one scripted pass per call."""

    def __init__(self, passes: Iterable[List[Fragment]]):
        self.passes = [list(fragments) for fragments in passes]
        self.calls = []

    async def stream(self, messages, tools):
        self.calls.append({"messages": copy.deepcopy(messages), "tools": tools})
        if not self.passes:
            raise AssertionError("Model called more times than scripted")
        for fragment in self.passes.pop(0):
            yield fragment


class ChunkRecorder:
    """Async chunk callback that remembers everything it was given."""

    def __init__(self):
        self.chunks = []

    async def __call__(self, chunk: str):
        self.chunks.append(chunk)


# ===== FIXTURES =====


@pytest.fixture
def settings() -> Settings:
    return Settings(openai_api_key="sk-test", max_tool_rounds=3, turn_timeout=5.0)


@pytest.fixture
def env() -> Environment:
    return Environment("You are a test assistant.", plugins=[MathPlugin()])


@pytest.fixture
def state() -> ConversationState:
    return ConversationState(
        session_id="test-session",
        messages=[Message.system("You are a test assistant."), Message.assistant("Hi!")],
    )


@pytest.fixture
def recorder() -> ChunkRecorder:
    return ChunkRecorder()


@pytest.fixture
def make_agent(env, state):
    """Build an agent over the shared state with a scripted model."""

    def _make(passes, max_tool_rounds=10, environment=None):
        model = ScriptedModel(passes)
        agent = Agent(environment or env, model, state, max_tool_rounds=max_tool_rounds)
        return agent, model

    return _make


# ===== CONFIGURATION =====


def pytest_configure(config):
    """Pytest configuration."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
