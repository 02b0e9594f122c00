from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class _SchemaNode(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    description: str | None = None

    def to_json_schema(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class StringSchema(_SchemaNode):
    type: Literal["string"] = "string"
    enum: list[str] | None = None
    min_length: int | None = Field(default=None, alias="minLength", ge=0)
    max_length: int | None = Field(default=None, alias="maxLength", ge=0)


class NumberSchema(_SchemaNode):
    type: Literal["number", "integer"] = "number"
    minimum: float | None = None
    maximum: float | None = None


class BooleanSchema(_SchemaNode):
    type: Literal["boolean"] = "boolean"


class ArraySchema(_SchemaNode):
    type: Literal["array"] = "array"
    items: ToolSchema | None = None
    max_items: int | None = Field(default=None, alias="maxItems", ge=0)


class ObjectSchema(_SchemaNode):
    type: Literal["object"] = "object"
    properties: dict[str, ToolSchema] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)
    additional_properties: bool | ToolSchema | None = Field(default=None, alias="additionalProperties")


ToolSchema = Annotated[
    Union[StringSchema, NumberSchema, BooleanSchema, ArraySchema, ObjectSchema],
    Field(discriminator="type"),
]

ArraySchema.model_rebuild()
ObjectSchema.model_rebuild()


def any_object() -> ObjectSchema:
    """Schema for free-form structured output."""

    return ObjectSchema(additional_properties=None)
