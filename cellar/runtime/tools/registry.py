from __future__ import annotations

from typing import Any, Iterable

from jsonschema import Draft202012Validator

from ..models.tool_spec import ToolDefinition


class ToolRegistry:
    """
    Holds tool definitions and validates call arguments/results against their schemas.

    Validators are compiled on first use and cached per tool name. Unknown tools
    validate as False.
    """

    def __init__(self, definitions: Iterable[ToolDefinition] = ()) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        for definition in definitions:
            if definition.name in self._tools:
                raise ValueError(f"Duplicate tool name: {definition.name}")
            self._tools[definition.name] = definition
        self._input_validators: dict[str, Draft202012Validator] = {}
        self._output_validators: dict[str, Draft202012Validator] = {}

    def list(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def _input_validator(self, tool: ToolDefinition) -> Draft202012Validator:
        validator = self._input_validators.get(tool.name)
        if validator is None:
            validator = Draft202012Validator(tool.input_schema.to_json_schema())
            self._input_validators[tool.name] = validator
        return validator

    def _output_validator(self, tool: ToolDefinition) -> Draft202012Validator:
        validator = self._output_validators.get(tool.name)
        if validator is None:
            validator = Draft202012Validator(tool.output_schema.to_json_schema())
            self._output_validators[tool.name] = validator
        return validator

    def validate_input(self, name: str, args: Any) -> bool:
        tool = self._tools.get(name)
        if tool is None:
            return False
        return self._input_validator(tool).is_valid(args)

    def validate_output(self, name: str, output: Any) -> bool:
        tool = self._tools.get(name)
        if tool is None:
            return False
        return self._output_validator(tool).is_valid(output)

    def input_errors(self, name: str, args: Any) -> list[str]:
        tool = self._tools.get(name)
        if tool is None:
            return [f"Unknown tool: {name}"]
        errors = sorted(self._input_validator(tool).iter_errors(args), key=lambda e: list(e.path))
        return [f"{'/'.join(str(p) for p in e.path) or '<root>'}: {e.message}" for e in errors]
