import json

import jsonschema

from storyforge.tools.base import ToolDefinition, normalize_schema


class ToolValidator:
    @staticmethod
    def validate(tool: ToolDefinition, arguments: str) -> tuple[bool, str | None]:
        try:
            instance = json.loads(arguments or "{}")
        except ValueError as e:
            return False, f"arguments are not valid JSON: {e}"
        try:
            jsonschema.validate(
                instance=instance,
                schema=normalize_schema(tool.parameters),
            )
            return True, None
        except jsonschema.ValidationError as e:
            return False, str(e.message)
