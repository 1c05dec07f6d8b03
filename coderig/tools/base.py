# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Tool contract: descriptors, calls, responses and typed parameter decoding.

Each tool declares a dataclass for its input. The raw JSON the model sends
is decoded into that dataclass before the tool runs, so tool bodies never
handle untyped dicts. Model-visible failures (ParamError,
PreconditionError) become error responses; everything else propagates.
"""

import dataclasses
import json
import logging
import types
import typing
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from ..errors import (
    Cancelled,
    ExternalFailure,
    ParamError,
    PermissionDenied,
    PreconditionError,
)

logger = logging.getLogger(__name__)

TEXT = "text"
IMAGE = "image"


@dataclass
class ToolInfo:
    name: str
    description: str
    parameters: dict
    required: list[str] = field(default_factory=list)

    def to_definition(self):
        """Tool definition in the shape the model clients send."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": {
                "type": "object",
                "properties": self.parameters,
                "required": list(self.required),
            },
        }


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    input: Any = "{}"


@dataclass
class ToolResponse:
    type: str = TEXT
    content: str = ""
    is_error: bool = False
    metadata: Any = None

    @classmethod
    def text(cls, content):
        return cls(TEXT, content)

    @classmethod
    def error(cls, content):
        return cls(TEXT, content, is_error=True)

    @classmethod
    def image(cls, content):
        return cls(IMAGE, content)

    def with_metadata(self, metadata):
        return dataclasses.replace(self, metadata=metadata)

    def to_dict(self):
        envelope = {"type": self.type, "content": self.content, "is_error": self.is_error}
        if self.metadata is not None:
            envelope["metadata"] = self.metadata
        return envelope


# Parameter decoding

_JSON_TYPE_NAMES = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
}


def _describe(value):
    for python_type, name in _JSON_TYPE_NAMES.items():
        if type(value) is python_type:
            return name
    return "null" if value is None else type(value).__name__


def _coerce(annotation, value, where):
    """Check value against a field annotation; returns the decoded value."""
    if annotation is Any:
        return value

    origin = typing.get_origin(annotation)
    if origin in (typing.Union, types.UnionType):
        options = typing.get_args(annotation)
        if value is None and type(None) in options:
            return None
        errors = []
        for option in options:
            if option is type(None):
                continue
            try:
                return _coerce(option, value, where)
            except ParamError as error:
                errors.append(str(error))
        raise ParamError(errors[0] if errors else f"invalid parameters: {where} has the wrong type")

    if origin is list or annotation is list:
        if not isinstance(value, list):
            raise ParamError(f"invalid parameters: {where} must be an array, got {_describe(value)}")
        args = typing.get_args(annotation)
        if not args:
            return list(value)
        return [_coerce(args[0], item, f"{where}[{index}]") for index, item in enumerate(value)]

    if origin is dict or annotation is dict:
        if not isinstance(value, dict):
            raise ParamError(f"invalid parameters: {where} must be an object, got {_describe(value)}")
        return dict(value)

    if dataclasses.is_dataclass(annotation):
        if not isinstance(value, dict):
            raise ParamError(f"invalid parameters: {where} must be an object, got {_describe(value)}")
        return decode_params(annotation, value, where)

    if annotation is bool:
        if not isinstance(value, bool):
            raise ParamError(f"invalid parameters: {where} must be a boolean, got {_describe(value)}")
        return value

    if annotation is int:
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ParamError(f"invalid parameters: {where} must be an integer, got {_describe(value)}")
        return value

    if annotation is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ParamError(f"invalid parameters: {where} must be a number, got {_describe(value)}")
        return float(value)

    if annotation is str:
        if not isinstance(value, str):
            raise ParamError(f"invalid parameters: {where} must be a string, got {_describe(value)}")
        return value

    return value


def decode_params(params_type, raw, where="input"):
    """Decode raw JSON (text or already parsed) into a params dataclass.

    Unknown keys are ignored. Raises ParamError on malformed JSON, a
    non-object input, a missing required field or a type mismatch.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw or "{}")
        except json.JSONDecodeError as error:
            raise ParamError(f"invalid parameters: {error}") from error

    if not isinstance(raw, dict):
        raise ParamError(f"invalid parameters: {where} must be a JSON object")

    hints = typing.get_type_hints(params_type)
    values = {}
    for param in dataclasses.fields(params_type):
        if param.name not in raw:
            has_default = (
                param.default is not dataclasses.MISSING
                or param.default_factory is not dataclasses.MISSING
            )
            if not has_default:
                raise ParamError(f"invalid parameters: missing required field '{param.name}'")
            continue
        values[param.name] = _coerce(hints.get(param.name, Any), raw[param.name], param.name)

    return params_type(**values)


@dataclass
class NoParams:
    """Input for tools that take no arguments."""


class BaseTool(ABC):
    """A named, schema-described primitive the model can invoke."""

    params_type = NoParams

    @property
    def name(self):
        return self.info().name

    @abstractmethod
    def info(self) -> ToolInfo:
        """Name, description and parameter schema."""

    @abstractmethod
    def execute(self, ctx, params) -> ToolResponse:
        """Run with decoded parameters."""

    def run(self, ctx, call: ToolCall) -> ToolResponse:
        """Decode, execute and convert model-visible failures."""
        try:
            params = decode_params(self.params_type, call.input)
            return self.execute(ctx, params)
        except (ParamError, PreconditionError) as error:
            return ToolResponse.error(str(error))
        except (PermissionDenied, ExternalFailure, Cancelled):
            raise
        except Exception as error:
            logger.exception("Tool %s failed", call.name)
            raise ExternalFailure(f"{call.name}: {error}") from error
