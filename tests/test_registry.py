"""Tests for ToolRegistry."""

from __future__ import annotations

import json
import threading

import pytest

from storyforge.errors import ErrorCode, ToolArgumentsError, UnknownToolError
from storyforge.tools.base import ToolDefinition
from storyforge.tools.registry import ToolRegistry

ECHO_SCHEMA = {
    "type": "object",
    "properties": {"message": {"type": "string"}},
    "required": ["message"],
}


def echo(arguments: str) -> str:
    return json.loads(arguments)["message"]


async def async_echo(arguments: str) -> str:
    return "async:" + json.loads(arguments)["message"]


class TestRegistration:
    def test_register_and_get(self):
        reg = ToolRegistry()
        defn = reg.register("echo", "Echo a message", ECHO_SCHEMA, echo)
        assert reg.get("echo") is defn
        assert "echo" in reg
        assert len(reg) == 1

    def test_get_returns_none_for_unknown(self):
        assert ToolRegistry().get("nonexistent") is None

    def test_require_raises_for_unknown(self):
        with pytest.raises(UnknownToolError, match="nonexistent") as exc_info:
            ToolRegistry().require("nonexistent")
        assert exc_info.value.code == ErrorCode.UNKNOWN_TOOL
        assert exc_info.value.name == "nonexistent"

    def test_reregistration_replaces(self):
        reg = ToolRegistry()
        reg.register("t", "first", {}, lambda a: "one")
        reg.register("t", "second", {}, lambda a: "two")
        assert reg.dispatch("t", "{}") == "two"
        assert reg.get("t").description == "second"

    def test_register_definition(self):
        reg = ToolRegistry()
        defn = ToolDefinition(name="echo", description="Echo", callback=echo)
        reg.register_definition(defn)
        assert reg.require("echo") is defn

    def test_unregister_then_dispatch_fails(self):
        reg = ToolRegistry()
        reg.register("echo", "Echo", ECHO_SCHEMA, echo)
        reg.unregister("echo")
        with pytest.raises(UnknownToolError):
            reg.dispatch("echo", '{"message": "x"}')

    def test_unregister_absent_is_noop(self):
        reg = ToolRegistry()
        reg.unregister("never-registered")
        assert len(reg) == 0

    def test_clear(self):
        reg = ToolRegistry()
        reg.register("a", "", {}, echo)
        reg.register("b", "", {}, echo)
        reg.clear()
        assert reg.list_names() == []

    def test_list_names_sorted_snapshot(self):
        reg = ToolRegistry()
        for name in ("zeta", "alpha", "mid"):
            reg.register(name, "", {}, echo)
        names = reg.list_names()
        assert names == ["alpha", "mid", "zeta"]
        reg.register("beta", "", {}, echo)
        assert names == ["alpha", "mid", "zeta"]


class TestDispatch:
    def test_dispatch_calls_callback_with_raw_arguments(self):
        seen = []
        reg = ToolRegistry()
        reg.register("spy", "", {}, lambda a: seen.append(a) or "ok")
        raw = '{ "x" : 1 }'
        assert reg.dispatch("spy", raw) == "ok"
        assert seen == [raw]

    def test_non_string_result_is_stringified(self):
        reg = ToolRegistry()
        reg.register("count", "", {}, lambda a: 42)
        assert reg.dispatch("count", "{}") == "42"

    def test_unknown_tool(self):
        with pytest.raises(UnknownToolError):
            ToolRegistry().dispatch("missing", "{}")

    def test_callback_exception_propagates(self):
        def boom(arguments):
            raise RuntimeError("tool exploded")

        reg = ToolRegistry()
        reg.register("boom", "", {}, boom)
        with pytest.raises(RuntimeError, match="tool exploded"):
            reg.dispatch("boom", "{}")

    def test_sync_dispatch_rejects_async_tool(self):
        reg = ToolRegistry()
        reg.register("aecho", "", ECHO_SCHEMA, async_echo)
        with pytest.raises(TypeError, match="adispatch"):
            reg.dispatch("aecho", '{"message": "x"}')

    async def test_adispatch_awaits_async_tool(self):
        reg = ToolRegistry()
        reg.register("aecho", "", ECHO_SCHEMA, async_echo)
        assert await reg.adispatch("aecho", '{"message": "hi"}') == "async:hi"

    async def test_adispatch_runs_sync_tool(self):
        reg = ToolRegistry()
        reg.register("echo", "", ECHO_SCHEMA, echo)
        assert await reg.adispatch("echo", '{"message": "hi"}') == "hi"

    def test_concurrent_dispatch_and_registration(self):
        reg = ToolRegistry()
        reg.register("echo", "", ECHO_SCHEMA, echo)
        errors = []

        def dispatcher():
            try:
                for _ in range(200):
                    assert reg.dispatch("echo", '{"message": "m"}') == "m"
            except Exception as e:  # pragma: no cover
                errors.append(e)

        def registrar():
            for i in range(200):
                reg.register(f"t{i}", "", {}, echo)

        threads = [threading.Thread(target=dispatcher) for _ in range(4)]
        threads.append(threading.Thread(target=registrar))
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert errors == []
        assert len(reg) == 201


class TestArgumentValidation:
    def test_off_by_default(self):
        reg = ToolRegistry()
        reg.register("t", "", ECHO_SCHEMA, lambda a: "ran")
        assert reg.dispatch("t", '{"wrong": 1}') == "ran"

    def test_invalid_arguments_rejected(self):
        reg = ToolRegistry(validate_arguments=True)
        reg.register("echo", "", ECHO_SCHEMA, echo)
        with pytest.raises(ToolArgumentsError, match="required") as exc_info:
            reg.dispatch("echo", "{}")
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR

    def test_malformed_json_rejected(self):
        reg = ToolRegistry(validate_arguments=True)
        reg.register("echo", "", ECHO_SCHEMA, echo)
        with pytest.raises(ToolArgumentsError, match="not valid JSON"):
            reg.dispatch("echo", "{oops")

    def test_valid_arguments_pass(self):
        reg = ToolRegistry(validate_arguments=True)
        reg.register("echo", "", ECHO_SCHEMA, echo)
        assert reg.dispatch("echo", '{"message": "ok"}') == "ok"


class TestSchemaExport:
    def test_to_openai_schema(self):
        reg = ToolRegistry()
        reg.register("echo", "Echo a message", ECHO_SCHEMA, echo)
        reg.register("noargs", "No arguments", None, echo)
        schemas = reg.to_openai_schema()
        assert [s["function"]["name"] for s in schemas] == ["echo", "noargs"]
        assert schemas[0] == {
            "type": "function",
            "function": {
                "name": "echo",
                "description": "Echo a message",
                "parameters": ECHO_SCHEMA,
            },
        }
        assert schemas[1]["function"]["parameters"] == {"type": "object", "properties": {}}
