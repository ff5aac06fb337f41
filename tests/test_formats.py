"""Tests for wire format detection, tool-call extraction and pairing.

Covers:
- detect_format picks the right descriptor for each provider layout
- call/result extraction and correlation keys per format
- pair resolution refuses half-resolvable invocations
- auxiliary content injection per role
"""

from __future__ import annotations

import dataclasses
import json

import pytest

from shears.exceptions import FormatError, PairingError
from shears.formats import detect_format, get_format
from shears.models.state import ConversationState
from shears.models.invocation import ToolStatus
from shears.prompts import PRUNED_INPUT_PLACEHOLDER
from tests.conftest import anthropic_body, gemini_body, openai_body


def _bedrock_body() -> dict:
    return {
        "system": [{"text": "You are a coding agent."}],
        "inferenceConfig": {"maxTokens": 1024},
        "messages": [
            {"role": "user", "content": [{"text": "Fix the bug."}]},
            {"role": "assistant", "content": [
                {"toolUse": {"toolUseId": "TOOLU_01", "name": "read", "input": {"filePath": "/repo/a.ts"}}},
            ]},
            {"role": "user", "content": [
                {"toolResult": {"toolUseId": "toolu_01", "content": [{"text": "export {}"}], "status": "success"}},
                {"cachePoint": {"type": "default"}},
            ]},
        ],
    }


def _responses_body() -> dict:
    return {
        "model": "gpt-5",
        "instructions": "You are a coding agent.",
        "input": [
            {"role": "user", "content": "Fix the bug."},
            {"type": "reasoning", "summary": []},
            {"type": "function_call", "call_id": "fc_1", "name": "read",
             "arguments": json.dumps({"filePath": "/repo/a.ts"})},
            {"type": "function_call", "call_id": "fc_2", "name": "grep",
             "arguments": json.dumps({"pattern": "TODO", "path": "/repo"})},
            {"type": "function_call_output", "call_id": "fc_1", "output": "export {}"},
            {"type": "function_call_output", "call_id": "fc_2", "output": "a.ts:1: TODO"},
        ],
    }


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


class TestDetection:
    """detect_format returns the most specific matching descriptor."""

    def test_openai_chat(self):
        body = openai_body([("call_1", "read", {"filePath": "/a"}, "x")])
        assert detect_format(body).name == "openai-chat"

    def test_openai_only_keys_without_model(self):
        body = {"messages": [], "max_completion_tokens": 100}
        assert detect_format(body).name == "openai-chat"

    def test_anthropic(self):
        body = anthropic_body([("toolu_1", "read", {"filePath": "/a"}, "x", False)])
        assert detect_format(body).name == "anthropic"

    def test_gemini(self):
        assert detect_format(gemini_body([])).name == "gemini"

    def test_bedrock_before_anthropic(self):
        """Bedrock's list-valued system must not be taken for Anthropic."""
        assert detect_format(_bedrock_body()).name == "bedrock"

    def test_responses(self):
        assert detect_format(_responses_body()).name == "openai-responses"

    @pytest.mark.parametrize(
        "model, expected",
        [
            ("mistral-large-latest", "mistral"),
            ("codestral-2501", "mistral"),
            ("command-r-plus", "cohere"),
            ("llama3.1:70b", "openai-compatible"),
        ],
    )
    def test_chat_family(self, model, expected):
        assert detect_format({"model": model, "messages": []}).name == expected

    def test_unrecognized(self):
        assert detect_format({"prompt": "hello"}) is None
        assert detect_format(["not", "a", "dict"]) is None

    def test_get_format(self):
        assert get_format("gemini").positional is True
        with pytest.raises(FormatError, match="known: bedrock"):
            get_format("nope")


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


class TestExtraction:
    def test_openai_calls_and_outputs(self):
        body = openai_body([
            ("call_1", "read", {"filePath": "/repo/a.ts"}, "aaaa"),
            ("call_2", "bash", {"command": "ls"}, "a.ts b.ts"),
        ])
        fmt = detect_format(body)
        data = fmt.get_data_array(body)
        calls = fmt.iter_tool_calls(data)
        assert [c.key for c in calls] == ["call_1", "call_2"]
        assert [c.turn for c in calls] == [1, 2]
        assert calls[0].parameters == {"filePath": "/repo/a.ts"}
        outputs = fmt.extract_tool_outputs(data)
        assert [(o.key, o.tool_name, o.size) for o in outputs] == [
            ("call_1", "read", 4), ("call_2", "bash", 9),
        ]
        assert fmt.count_turns(data) == 2

    def test_malformed_arguments_skipped(self):
        body = openai_body([("call_1", "read", {"filePath": "/a"}, "x")])
        body["messages"][2]["tool_calls"][0]["function"]["arguments"] = "{not json"
        fmt = detect_format(body)
        assert fmt.iter_tool_calls(body["messages"]) == []

    def test_anthropic_error_results(self):
        body = anthropic_body([
            ("toolu_1", "bash", {"command": "make"}, "make: *** Error 2", True),
            ("toolu_2", "read", {"filePath": "/a"}, "ok", False),
        ])
        fmt = detect_format(body)
        state = ConversationState(conversation_id="c")
        keys = fmt.cache_tool_parameters(body["messages"], state)
        assert keys == ["toolu_1", "toolu_2"]
        assert state.invocations["toolu_1"].status == ToolStatus.ERROR
        assert state.invocations["toolu_2"].status == ToolStatus.COMPLETED

    def test_bedrock_ids_case_insensitive(self):
        body = _bedrock_body()
        fmt = detect_format(body)
        pair = fmt.locate_pair(body["messages"], "toolu_01")
        assert pair.call.tool_name == "read"
        assert pair.output.container_index == 2

    def test_responses_step_grouping(self):
        """Consecutive assistant-side items form one step."""
        body = _responses_body()
        fmt = detect_format(body)
        data = fmt.get_data_array(body)
        assert fmt.count_turns(data) == 1
        assert [c.key for c in fmt.iter_tool_calls(data)] == ["fc_1", "fc_2"]
        assert [o.key for o in fmt.extract_tool_outputs(data)] == ["fc_1", "fc_2"]

    def test_gemini_positional_keys(self):
        body = gemini_body([
            [("read", {"filePath": "/a"}, {"output": "A"}), ("grep", {"pattern": "x"}, {"output": "B"})],
            [("bash", {"command": "ls"}, {"output": "C"})],
        ])
        fmt = detect_format(body)
        data = fmt.get_data_array(body)
        assert [c.key for c in fmt.iter_tool_calls(data)] == ["gemini:1:0", "gemini:1:1", "gemini:3:0"]
        assert [o.tool_name for o in fmt.extract_tool_outputs(data)] == ["read", "grep", "bash"]

    def test_compatible_id_less_calls_pair_by_order(self):
        body = {
            "model": "llama3",
            "messages": [
                {"role": "user", "content": "go"},
                {"role": "assistant", "tool_calls": [
                    {"function": {"name": "read", "arguments": "{\"path\": \"/a\"}"}},
                    {"function": {"name": "read", "arguments": "{\"path\": \"/b\"}"}},
                ]},
                {"role": "tool", "content": "A"},
                {"role": "tool", "content": "B"},
            ],
        }
        fmt = detect_format(body)
        outputs = fmt.extract_tool_outputs(body["messages"])
        assert [(o.key, o.container_index) for o in outputs] == [
            ("openai-compatible:1:0", 2), ("openai-compatible:1:1", 3),
        ]

    def test_compatible_short_results_refused(self):
        """Two id-less calls answered by one tool message pair with nothing."""
        body = {
            "model": "llama3",
            "messages": [
                {"role": "user", "content": "go"},
                {"role": "assistant", "tool_calls": [
                    {"function": {"name": "read", "arguments": "{\"path\": \"/a\"}"}},
                    {"function": {"name": "grep", "arguments": "{\"pattern\": \"x\"}"}},
                ]},
                {"role": "tool", "content": "A"},
            ],
        }
        fmt = detect_format(body)
        assert fmt.extract_tool_outputs(body["messages"]) == []
        assert fmt.replace_tool_output(body["messages"], "openai-compatible:1:0", "gone") is False
        assert body["messages"][2]["content"] == "A"

    def test_compatible_named_results_must_match(self):
        body = {
            "model": "llama3",
            "messages": [
                {"role": "user", "content": "go"},
                {"role": "assistant", "tool_calls": [
                    {"function": {"name": "read", "arguments": "{}"}},
                    {"function": {"name": "grep", "arguments": "{}"}},
                ]},
                {"role": "tool", "name": "grep", "content": "B"},
                {"role": "tool", "name": "read", "content": "A"},
            ],
        }
        fmt = detect_format(body)
        assert fmt.extract_tool_outputs(body["messages"]) == []

    def test_shifted_positional_key_replaces_record(self):
        """When earlier contents are dropped, the record follows the live call."""
        body = gemini_body([
            [("read", {"filePath": "/a"}, {"output": "A"})],
            [("grep", {"pattern": "x"}, {"output": "B"})],
        ])
        fmt = detect_format(body)
        state = ConversationState("conv")
        fmt.cache_tool_parameters(body["contents"], state)
        state.seen_results.add("gemini:1:0")
        state.accounted.add("gemini:1:0")

        shifted = body["contents"][:1] + body["contents"][3:]
        assert fmt.cache_tool_parameters(shifted, state) == ["gemini:1:0"]
        record = state.invocations["gemini:1:0"]
        assert (record.tool_name, record.parameters) == ("grep", {"pattern": "x"})
        assert "gemini:1:0" not in state.accounted
        assert "gemini:1:0" not in state.seen_results

    def test_collapsed_input_still_matches(self):
        body = gemini_body([[("write", {"filePath": "/a", "content": "long"}, {"output": "ok"})]])
        fmt = detect_format(body)
        state = ConversationState("conv")
        fmt.cache_tool_parameters(body["contents"], state)
        ref = fmt.iter_tool_calls(body["contents"])[0]
        collapsed = dataclasses.replace(
            ref, parameters={"filePath": "/a", "content": PRUNED_INPUT_PLACEHOLDER},
        )
        assert fmt.still_matches(collapsed, state.invocations[ref.key])


# ---------------------------------------------------------------------------
# Pairing
# ---------------------------------------------------------------------------


class TestPairing:
    def test_missing_result_refused(self):
        body = openai_body([("call_1", "read", {"filePath": "/a"}, "x")])
        body["messages"].pop()
        fmt = detect_format(body)
        with pytest.raises(PairingError, match="tool result not found"):
            fmt.locate_pair(body["messages"], "call_1")
        assert fmt.replace_tool_output(body["messages"], "call_1", "gone") is False

    def test_duplicate_ids_refused(self):
        body = openai_body([
            ("call_1", "read", {"filePath": "/a"}, "x"),
            ("call_1", "read", {"filePath": "/b"}, "y"),
        ])
        fmt = detect_format(body)
        resolved = fmt.resolve_pairs(body["messages"], ["call_1"])
        assert isinstance(resolved["call_1"], PairingError)

    def test_gemini_shuffled_responses_refused(self):
        """Responses in a different order than their calls are never paired."""
        body = gemini_body([
            [("read", {"filePath": "/a"}, {"output": "A"}), ("grep", {"pattern": "x"}, {"output": "B"})],
        ])
        body["contents"][2]["parts"].reverse()
        fmt = detect_format(body)
        data = fmt.get_data_array(body)
        assert fmt.extract_tool_outputs(data) == []
        before = json.dumps(data)
        assert fmt.replace_tool_output(data, "gemini:1:0", "gone") is False
        assert json.dumps(data) == before

    def test_gemini_count_mismatch_refused(self):
        body = gemini_body([
            [("read", {"filePath": "/a"}, {"output": "A"}), ("grep", {"pattern": "x"}, {"output": "B"})],
        ])
        body["contents"][2]["parts"].pop()
        fmt = detect_format(body)
        assert fmt.extract_tool_outputs(body["contents"]) == []

    def test_rewrite_does_not_touch_caller_containers(self):
        body = openai_body([("call_1", "read", {"filePath": "/a"}, "original")])
        original_message = body["messages"][3]
        fmt = detect_format(body)
        assert fmt.replace_tool_output(body["messages"], "call_1", "replaced") is True
        assert body["messages"][3]["content"] == "replaced"
        assert original_message["content"] == "original"

    def test_cohere_document_shape_kept(self):
        body = {
            "model": "command-r",
            "messages": [
                {"role": "user", "content": "go"},
                {"role": "assistant", "tool_calls": [
                    {"id": "c1", "type": "function", "function": {"name": "read", "arguments": "{}"}},
                ]},
                {"role": "tool", "tool_call_id": "c1",
                 "content": [{"type": "document", "document": {"data": "long text"}}]},
            ],
        }
        fmt = detect_format(body)
        fmt.replace_tool_output(body["messages"], "c1", "short")
        assert body["messages"][2]["content"] == [{"type": "document", "document": {"data": "short"}}]


# ---------------------------------------------------------------------------
# Injection
# ---------------------------------------------------------------------------


class TestInjection:
    def test_appends_to_last_user_turn(self):
        body = openai_body([("call_1", "read", {"filePath": "/a"}, "x")])
        fmt = detect_format(body)
        assert fmt.inject_auxiliary_content(body["messages"], "NOTE")
        assert body["messages"][1]["content"] == "Fix the bug.\n\nNOTE"

    def test_assistant_injection_appends_turn(self):
        body = openai_body([("call_1", "read", {"filePath": "/a"}, "x")])
        fmt = detect_format(body)
        fmt.inject_auxiliary_content(body["messages"], "NOTE", as_assistant=True)
        assert body["messages"][-1] == {"role": "assistant", "content": "NOTE"}

    def test_mistral_never_ends_on_assistant(self):
        body = {"model": "mistral-large", "messages": [{"role": "user", "content": "hi"}]}
        fmt = detect_format(body)
        fmt.inject_auxiliary_content(body["messages"], "NOTE", as_assistant=True)
        assert body["messages"] == [{"role": "user", "content": "hi\n\nNOTE"}]

    def test_bedrock_keeps_cache_point_last(self):
        body = _bedrock_body()
        fmt = detect_format(body)
        fmt.inject_auxiliary_content(body["messages"], "NOTE")
        assert body["messages"][-1]["content"][-1] == {"cachePoint": {"type": "default"}}
        assert body["messages"][-1]["content"][-2] == {"text": "NOTE"}
        assert fmt.count_cache_markers(body) == 1

    def test_cache_cap(self):
        body = _bedrock_body()
        fmt = detect_format(body)
        assert fmt.max_cache_markers == 4
        assert not fmt.exceeds_cache_cap(body, markers_before=1)
        body["messages"][0]["content"].extend({"cachePoint": {"type": "default"}} for _ in range(4))
        assert fmt.count_cache_markers(body) == 5
        assert fmt.exceeds_cache_cap(body, markers_before=1)
        assert not fmt.exceeds_cache_cap(body, markers_before=5)

    def test_anthropic_string_content_becomes_blocks(self):
        body = anthropic_body([])
        fmt = detect_format(body)
        fmt.inject_auxiliary_content(body["messages"], "NOTE")
        assert body["messages"][0]["content"] == [
            {"type": "text", "text": "Fix the bug."},
            {"type": "text", "text": "NOTE"},
        ]
