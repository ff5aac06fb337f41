"""Shared test fixtures for Shears.

Provides in-memory SQLite fixtures, a pruner wired with the char-based
token counter, and builders for request bodies in each wire format.
"""

from __future__ import annotations

import json
import threading

import pytest

from shears.engine.pruner import ContextPruner
from shears.engine.tokens import CharTokenCounter
from shears.models.config import PrunerConfig
from shears.models.state import ConversationState
from shears.state.store import StateStore
from shears.storage.engine import create_session_factory, create_shears_engine, init_db


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created."""
    eng = create_shears_engine(":memory:")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def session(session_factory):
    """Session with automatic rollback after each test."""
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def store(session_factory) -> StateStore:
    return StateStore(session_factory)


@pytest.fixture
def config() -> PrunerConfig:
    return PrunerConfig()


@pytest.fixture
def state() -> ConversationState:
    return ConversationState(conversation_id="conv-1")


@pytest.fixture
def pruner(config) -> ContextPruner:
    return make_pruner(config)


# ------------------------------------------------------------------
# Shared test helpers
# ------------------------------------------------------------------

def make_pruner(config: PrunerConfig | None = None, **kwargs) -> ContextPruner:
    """Memory-only pruner that never loads a tokenizer."""
    kwargs.setdefault("token_counter", CharTokenCounter())
    return ContextPruner(config or PrunerConfig(), **kwargs)


def openai_call(call_id: str, name: str, args: dict) -> dict:
    return {
        "id": call_id,
        "type": "function",
        "function": {"name": name, "arguments": json.dumps(args)},
    }


def openai_body(steps: list[tuple[str, str, dict, str]], *, model: str = "gpt-4o") -> dict:
    """OpenAI chat body with one assistant step per (id, tool, args, result).

    Every step becomes an assistant message with a single tool call
    followed by its tool message.  A user message opens the list.
    """
    messages: list[dict] = [
        {"role": "system", "content": "You are a coding agent."},
        {"role": "user", "content": "Fix the bug."},
    ]
    for call_id, name, args, result in steps:
        messages.append({"role": "assistant", "content": None, "tool_calls": [openai_call(call_id, name, args)]})
        messages.append({"role": "tool", "tool_call_id": call_id, "content": result})
    return {"model": model, "messages": messages}


def tool_message(body: dict, call_id: str) -> dict:
    """The tool message answering ``call_id`` in an OpenAI chat body."""
    for message in body["messages"]:
        if message.get("role") == "tool" and message.get("tool_call_id") == call_id:
            return message
    raise KeyError(call_id)


def call_arguments(body: dict, call_id: str) -> dict:
    """Decoded arguments of ``call_id`` in an OpenAI chat body."""
    for message in body["messages"]:
        for call in message.get("tool_calls") or []:
            if call["id"] == call_id:
                return json.loads(call["function"]["arguments"])
    raise KeyError(call_id)


def anthropic_body(steps: list[tuple[str, str, dict, str, bool]]) -> dict:
    """Anthropic body; steps are (id, tool, input, result, is_error)."""
    messages: list[dict] = [{"role": "user", "content": "Fix the bug."}]
    for call_id, name, args, result, is_error in steps:
        messages.append({
            "role": "assistant",
            "content": [
                {"type": "text", "text": f"Running {name}."},
                {"type": "tool_use", "id": call_id, "name": name, "input": args},
            ],
        })
        block = {"type": "tool_result", "tool_use_id": call_id, "content": result}
        if is_error:
            block["is_error"] = True
        messages.append({"role": "user", "content": [block]})
    return {
        "model": "claude-sonnet-4-5",
        "max_tokens": 4096,
        "system": "You are a coding agent.",
        "messages": messages,
    }


def gemini_body(turns: list[list[tuple[str, dict, dict]]]) -> dict:
    """Gemini body; each turn is a list of (tool, args, response) calls."""
    contents: list[dict] = [{"role": "user", "parts": [{"text": "Fix the bug."}]}]
    for calls in turns:
        contents.append({
            "role": "model",
            "parts": [{"functionCall": {"name": name, "args": args}} for name, args, _ in calls],
        })
        contents.append({
            "role": "user",
            "parts": [
                {"functionResponse": {"name": name, "response": response}}
                for name, _, response in calls
            ],
        })
    return {"contents": contents, "generationConfig": {"temperature": 0}}


class RecordingNotifier:
    """Notifier that keeps everything it was asked to show."""

    def __init__(self, fail: bool = False) -> None:
        self.messages: list[tuple[str, str]] = []
        self.toasts: list[tuple[str, str, str, int]] = []
        self._fail = fail

    def send_ignored_message(self, conversation_id: str, text: str) -> None:
        if self._fail:
            raise ConnectionError("host unreachable")
        self.messages.append((conversation_id, text))

    def show_toast(self, title: str, message: str, variant: str = "info", duration_ms: int = 3000) -> None:
        if self._fail:
            raise ConnectionError("host unreachable")
        self.toasts.append((title, message, variant, duration_ms))


class BlockingNotifier(RecordingNotifier):
    """Notifier whose deliveries wait until ``release`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.release = threading.Event()

    def send_ignored_message(self, conversation_id: str, text: str) -> None:
        self.release.wait(timeout=5)
        super().send_ignored_message(conversation_id, text)

    def show_toast(self, title: str, message: str, variant: str = "info", duration_ms: int = 3000) -> None:
        self.release.wait(timeout=5)
        super().show_toast(title, message, variant, duration_ms)
