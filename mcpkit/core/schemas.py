from __future__ import annotations

import copy
import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Protocol, runtime_checkable

from jsonschema import Draft202012Validator
from pydantic import BaseModel, TypeAdapter, ValidationError, create_model


@dataclass(frozen=True)
class FieldViolation:
    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


class SchemaValidationError(Exception):
    def __init__(self, violations: Iterable[FieldViolation]) -> None:
        self.violations: List[FieldViolation] = list(violations)
        summary = "; ".join(str(violation) for violation in self.violations[:5])
        super().__init__(summary or "schema validation failed")


@runtime_checkable
class Schema(Protocol):
    """Validator contract shared by every tool input and output."""

    def validate(self, raw: Any) -> Any:
        """Return the validated value or raise ``SchemaValidationError``."""

    def json_schema(self) -> Dict[str, Any]:
        """JSON Schema document advertised to clients."""

    def serialize(self, value: Any) -> str:
        """Compact JSON text of an already validated value."""


class ModelSchema:
    """Schema backed by a pydantic ``TypeAdapter``.

    Validation is strict: values of the wrong type are rejected, never
    coerced. With ``exclude_none`` unset optional fields are left out of
    the serialized result.
    """

    def __init__(self, annotation: Any, exclude_none: bool = False) -> None:
        self.annotation = annotation
        self.exclude_none = exclude_none
        self._adapter: TypeAdapter[Any] = TypeAdapter(annotation)

    def validate(self, raw: Any) -> Any:
        try:
            return self._adapter.validate_python(raw, strict=True)
        except ValidationError as exc:
            raise SchemaValidationError(_pydantic_violations(exc)) from exc

    def json_schema(self) -> Dict[str, Any]:
        return self._adapter.json_schema()

    def serialize(self, value: Any) -> str:
        return self._adapter.dump_json(
            value, by_alias=True, exclude_none=self.exclude_none
        ).decode("utf-8")


class JsonSchema:
    """Schema backed by a JSON Schema (2020-12) document."""

    def __init__(self, schema: Dict[str, Any]) -> None:
        Draft202012Validator.check_schema(schema)
        self._schema = copy.deepcopy(schema)
        self._validator = Draft202012Validator(self._schema)

    def validate(self, raw: Any) -> Any:
        errors = sorted(
            self._validator.iter_errors(raw),
            key=lambda err: [str(part) for part in err.absolute_path],
        )
        if errors:
            raise SchemaValidationError(
                FieldViolation(_join_path(err.absolute_path), err.message) for err in errors
            )
        return raw

    def json_schema(self) -> Dict[str, Any]:
        return copy.deepcopy(self._schema)

    def serialize(self, value: Any) -> str:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def object_schema(shape: Mapping[str, Any], model_name: str = "ToolInput") -> ModelSchema:
    """Compile a field shape into an object schema.

    Values are annotations (required fields), ``(annotation, default)``
    tuples, or ``Annotated[..., Field(...)]``.
    """
    fields: Dict[str, Any] = {}
    for field_name, spec in shape.items():
        fields[field_name] = spec if isinstance(spec, tuple) else (spec, ...)
    model = create_model(model_name, **fields)
    return ModelSchema(model)


def as_input_schema(value: Any, tool_name: str) -> Schema:
    if isinstance(value, Schema):
        return value
    if isinstance(value, type) and issubclass(value, BaseModel):
        return ModelSchema(value)
    if isinstance(value, Mapping):
        return object_schema(value, model_name=_model_name(tool_name, "Input"))
    raise TypeError(f"unsupported input schema for tool '{tool_name}': {value!r}")


def as_output_schema(value: Any) -> Schema:
    if isinstance(value, Schema):
        return value
    return ModelSchema(value)


def _pydantic_violations(exc: ValidationError) -> List[FieldViolation]:
    return [FieldViolation(_join_path(err["loc"]), err["msg"]) for err in exc.errors()]


def _join_path(parts: Iterable[Any]) -> str:
    return "/".join(str(part) for part in parts) or "<root>"


def _model_name(tool_name: str, suffix: str) -> str:
    words = [word for word in re.split(r"[^0-9A-Za-z]+", tool_name) if word]
    return "".join(word[:1].upper() + word[1:] for word in words) + suffix
