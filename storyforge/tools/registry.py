"""
Tool registry and dispatcher.

The registry is an explicitly constructed object shared by whoever needs
dispatch; there is no process-wide instance.  Each operation is atomic
under a lock, and callbacks run outside it so a slow tool never blocks
registration or other dispatches.  Re-registering a name replaces the
previous definition (last writer wins).
"""

from __future__ import annotations

import inspect
import logging
import threading

from storyforge.errors import ToolArgumentsError, UnknownToolError
from storyforge.tools.base import ToolCallback, ToolDefinition
from storyforge.tools.validation import ToolValidator

logger = logging.getLogger(__name__)


class ToolRegistry:
    """
    Parameters
    ----------
    validate_arguments:
        When true, arguments are checked against the tool's JSON schema before
        the callback runs; a mismatch raises ``ToolArgumentsError``.
    """

    def __init__(self, *, validate_arguments: bool = False) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        self._lock = threading.Lock()
        self.validate_arguments = validate_arguments

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        description: str,
        parameters: dict | None,
        callback: ToolCallback,
    ) -> ToolDefinition:
        defn = ToolDefinition(
            name=name,
            description=description,
            callback=callback,
            parameters=dict(parameters or {}),
        )
        self.register_definition(defn)
        return defn

    def register_definition(self, defn: ToolDefinition) -> None:
        with self._lock:
            self._tools[defn.name] = defn
        logger.info("Registered tool name=%s description=%s", defn.name, defn.description)

    def unregister(self, name: str) -> None:
        with self._lock:
            removed = self._tools.pop(name, None)
        if removed is not None:
            logger.info("Unregistered tool name=%s", name)

    def clear(self) -> None:
        with self._lock:
            self._tools = {}
        logger.info("Cleared all tools")

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, name: str) -> ToolDefinition | None:
        with self._lock:
            return self._tools.get(name)

    def require(self, name: str) -> ToolDefinition:
        t = self.get(name)
        if t is None:
            raise UnknownToolError(name)
        return t

    def list_names(self) -> list[str]:
        with self._lock:
            return sorted(self._tools)

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._tools)

    def to_openai_schema(self) -> list[dict]:
        with self._lock:
            tools = sorted(self._tools.values(), key=lambda t: t.name)
        return [t.to_openai_schema() for t in tools]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, name: str, arguments: str) -> str:
        """Run a synchronous tool callback and return its result."""
        tool = self._prepare(name, arguments)
        try:
            result = tool.callback(arguments)
            if inspect.isawaitable(result):
                close = getattr(result, "close", None)
                if close is not None:
                    close()
                raise TypeError(f"tool {name!r} is async; use adispatch()")
        except Exception:
            logger.exception("Tool call failed tool=%s arguments=%s", name, arguments)
            raise
        return self._finish(name, result)

    async def adispatch(self, name: str, arguments: str) -> str:
        """Run a tool callback, awaiting it if it is a coroutine."""
        tool = self._prepare(name, arguments)
        try:
            result = tool.callback(arguments)
            if inspect.isawaitable(result):
                result = await result
        except Exception:
            logger.exception("Tool call failed tool=%s arguments=%s", name, arguments)
            raise
        return self._finish(name, result)

    def _prepare(self, name: str, arguments: str) -> ToolDefinition:
        tool = self.get(name)
        if tool is None:
            logger.error("Dispatch to unknown tool=%s arguments=%s", name, arguments)
            raise UnknownToolError(name)

        if self.validate_arguments:
            ok, err = ToolValidator.validate(tool, arguments)
            if not ok:
                logger.error(
                    "Rejected arguments tool=%s arguments=%s error=%s", name, arguments, err
                )
                raise ToolArgumentsError(f"invalid arguments for {name}: {err}")

        logger.info("Handling tool call tool=%s arguments=%s", name, arguments)
        return tool

    def _finish(self, name: str, result: object) -> str:
        text = result if isinstance(result, str) else str(result)
        logger.info("Tool call succeeded tool=%s result=%s", name, text[:200])
        return text
