"""工具输入结构（input schema）的解析与参数解码。

注册方可以用两种方式声明工具的输入：

1. 手写的 JSON schema 字典（OpenAI function calling 的 ``parameters`` 格式）。
   这里会把它编译成一个 pydantic 模型，用来校验模型给出的 arguments，
   校验通过后以 dict 形式交给工具函数。
2. 直接给出 pydantic BaseModel 子类。schema 由 ``model_json_schema()`` 生成，
   工具函数收到的是模型实例。

支持的 JSON schema 子集：
- type: string / integer / number / boolean / null / array / object，以及类型列表；
- enum / const、required、default、description；
- string 的 minLength / maxLength / pattern，数值的 minimum / maximum /
  exclusiveMinimum / exclusiveMaximum，array 的 items / minItems / maxItems；
- additionalProperties: false 时拒绝未声明字段，否则未声明字段原样保留。
"""

from __future__ import annotations

import copy
import inspect
import json
import re
from typing import Annotated, Any, Dict, FrozenSet, List, Literal, Optional, Set, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field, create_model
from pydantic import PydanticUserError
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import SchemaError

from toolcall_core.domain.exceptions import ArgumentDecodeError, InvalidSchemaError


_SCALAR_TYPES: Dict[str, Any] = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "null": type(None),
}

# JSON schema 约束关键字 -> pydantic Field 参数
_CONSTRAINTS: Dict[str, Dict[str, str]] = {
    "string": {"minLength": "min_length", "maxLength": "max_length", "pattern": "pattern"},
    "integer": {
        "minimum": "ge",
        "maximum": "le",
        "exclusiveMinimum": "gt",
        "exclusiveMaximum": "lt",
    },
    "number": {
        "minimum": "ge",
        "maximum": "le",
        "exclusiveMinimum": "gt",
        "exclusiveMaximum": "lt",
    },
    "array": {"minItems": "min_length", "maxItems": "max_length"},
}

MAX_RAW_PREVIEW = 200


def _model_name(tool_name: str) -> str:
    parts = [p for p in re.split(r"[^0-9A-Za-z]+", tool_name) if p]
    base = "".join(p[:1].upper() + p[1:] for p in parts) or "Tool"
    if base[0].isdigit():
        base = f"Tool{base}"
    return f"{base}Arguments"


class _ModelBuilder:
    """把 JSON schema 递归编译为 pydantic 模型。

    显式声明了 default 的字段会被记录下来，解码后即使模型没有传这个字段，
    也会把默认值交给工具函数；未声明 default 的可选字段则保持缺省。
    """

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        self.explicit_defaults: Dict[Type[BaseModel], FrozenSet[str]] = {}

    def fail(self, path: str, message: str) -> InvalidSchemaError:
        return InvalidSchemaError(
            f"Tool '{self.tool_name}' has an invalid input schema at {path or '<root>'}: {message}",
            details={"tool_name": self.tool_name, "path": path},
        )

    def build_object(self, model_name: str, schema: Dict[str, Any], path: str) -> Type[BaseModel]:
        properties = schema.get("properties") or {}
        if not isinstance(properties, dict):
            raise self.fail(path, "'properties' must be an object")
        required = schema.get("required") or []
        if not isinstance(required, list):
            raise self.fail(path, "'required' must be an array")
        missing = [name for name in required if name not in properties]
        if missing:
            raise self.fail(path, f"required fields not declared in properties: {missing}")

        fields: Dict[str, Any] = {}
        defaults: Set[str] = set()
        for index, (prop_name, prop_schema) in enumerate(properties.items()):
            prop_path = f"{path}.{prop_name}" if path else prop_name
            if not isinstance(prop_schema, dict):
                raise self.fail(prop_path, "property schema must be an object")
            annotation = self.annotation_for(f"{model_name}_{index}", prop_schema, prop_path)
            # 属性名可能不是合法标识符，统一用位置字段名 + alias
            field_name = f"f_{index}"
            if prop_name in required:
                default: Any = ...
            elif "default" in prop_schema:
                default = copy.deepcopy(prop_schema["default"])
                defaults.add(field_name)
            else:
                default = None
            fields[field_name] = (
                annotation,
                Field(default, alias=prop_name, description=prop_schema.get("description")),
            )

        extra = "forbid" if schema.get("additionalProperties") is False else "allow"

        model = create_model(
            model_name,
            __config__=ConfigDict(extra=extra),
            **fields,
        )
        self.explicit_defaults[model] = frozenset(defaults)
        return model

    def annotation_for(self, model_name: str, schema: Dict[str, Any], path: str) -> Any:
        if "const" in schema:
            try:
                return Literal[schema["const"]]
            except TypeError:
                raise self.fail(path, "'const' must be a JSON scalar")
        if "enum" in schema:
            values = schema["enum"]
            if not isinstance(values, list) or not values:
                raise self.fail(path, "'enum' must be a non-empty array")
            try:
                return Literal[tuple(values)]
            except TypeError:
                raise self.fail(path, "'enum' values must be JSON scalars")

        type_ = schema.get("type")
        if isinstance(type_, list):
            if not type_:
                raise self.fail(path, "'type' list must not be empty")
            members = tuple(self.annotation_for(model_name, {**schema, "type": t}, path) for t in type_)
            return members[0] if len(members) == 1 else Union[members]
        if type_ is None:
            if "properties" in schema:
                type_ = "object"
            else:
                return Any

        if type_ in _SCALAR_TYPES:
            return self._constrained(_SCALAR_TYPES[type_], type_, schema)
        if type_ == "array":
            items = schema.get("items")
            if items is None:
                item_annotation: Any = Any
            elif isinstance(items, dict):
                item_annotation = self.annotation_for(f"{model_name}_item", items, f"{path}[]")
            else:
                raise self.fail(path, "'items' must be an object")
            return self._constrained(List[item_annotation], type_, schema)
        if type_ == "object":
            if schema.get("properties"):
                return self.build_object(model_name, schema, path)
            additional = schema.get("additionalProperties")
            if isinstance(additional, dict):
                value_annotation = self.annotation_for(f"{model_name}_value", additional, f"{path}{{}}")
                return Dict[str, value_annotation]
            return Dict[str, Any]
        raise self.fail(path, f"unsupported type {type_!r}")

    @staticmethod
    def _constrained(annotation: Any, type_: str, schema: Dict[str, Any]) -> Any:
        kwargs = {
            target: schema[source]
            for source, target in _CONSTRAINTS.get(type_, {}).items()
            if source in schema
        }
        if not kwargs:
            return annotation
        return Annotated[annotation, Field(**kwargs)]


def build_argument_model(
    tool_name: str,
    schema: Dict[str, Any],
) -> Tuple[Type[BaseModel], Dict[Type[BaseModel], FrozenSet[str]]]:
    """把顶层 JSON schema 编译为参数模型。

    Returns:
        (参数模型类, 每个（嵌套）模型类显式声明了 default 的字段集合)

    Raises:
        InvalidSchemaError: schema 顶层不是 object，或包含不支持的结构。
    """

    builder = _ModelBuilder(tool_name)
    if not isinstance(schema, dict):
        raise builder.fail("", "schema must be a JSON object")
    top_type = schema.get("type", "object")
    if top_type != "object":
        raise builder.fail("", f"top-level type must be 'object', got {top_type!r}")
    try:
        model = builder.build_object(_model_name(tool_name), schema, "")
    except (TypeError, ValueError, PydanticUserError, SchemaError) as exc:
        raise builder.fail("", str(exc))
    return model, builder.explicit_defaults


def _is_model_class(value: Any) -> bool:
    return inspect.isclass(value) and issubclass(value, BaseModel)


def _format_errors(exc: PydanticValidationError) -> Tuple[str, List[Dict[str, Any]]]:
    errors: List[Dict[str, Any]] = []
    parts: List[str] = []
    for err in exc.errors(include_url=False, include_context=False, include_input=False):
        loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
        errors.append({"loc": loc, "msg": err.get("msg", ""), "type": err.get("type", "")})
        parts.append(f"{loc}: {err.get('msg', '')}")
    return "; ".join(parts), errors


class ArgumentShape:
    """某个工具的输入结构：对外的 JSON schema + 对内的解码器。"""

    def __init__(
        self,
        tool_name: str,
        json_schema: Dict[str, Any],
        model: Type[BaseModel],
        returns_model: bool,
        explicit_defaults: Optional[Dict[Type[BaseModel], FrozenSet[str]]] = None,
    ):
        self.tool_name = tool_name
        self.json_schema = json_schema
        self.model = model
        self.returns_model = returns_model
        self._explicit_defaults = explicit_defaults or {}

    @classmethod
    def from_schema(cls, tool_name: str, schema: Any) -> "ArgumentShape":
        if _is_model_class(schema):
            return cls(tool_name, schema.model_json_schema(), schema, returns_model=True)
        if isinstance(schema, dict):
            model, defaults = build_argument_model(tool_name, schema)
            json_schema = copy.deepcopy(schema)
            json_schema.setdefault("type", "object")
            json_schema.setdefault("properties", {})
            return cls(tool_name, json_schema, model, returns_model=False, explicit_defaults=defaults)
        raise InvalidSchemaError(
            f"Tool '{tool_name}' input schema must be a dict or a pydantic model class, "
            f"got {type(schema).__name__}",
            details={"tool_name": tool_name},
        )

    def decode(self, raw_arguments: Optional[str], strict: bool = True) -> Any:
        """解码模型给出的 arguments JSON 文本。

        空字符串视为 ``{}``。

        Raises:
            ArgumentDecodeError: JSON 非法、不是对象，或不满足 schema。
        """

        text = raw_arguments if raw_arguments and raw_arguments.strip() else "{}"
        preview = text[:MAX_RAW_PREVIEW]
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ArgumentDecodeError(
                f"Arguments for '{self.tool_name}' are not valid JSON: {exc.msg}",
                details={"raw": preview},
            )
        if not isinstance(payload, dict):
            raise ArgumentDecodeError(
                f"Arguments for '{self.tool_name}' must be a JSON object, got {type(payload).__name__}",
                details={"raw": preview},
            )
        try:
            instance = self.model.model_validate_json(text, strict=strict)
        except PydanticValidationError as exc:
            message, errors = _format_errors(exc)
            raise ArgumentDecodeError(
                f"Invalid arguments for '{self.tool_name}': {message}",
                details={"errors": errors},
            )
        if self.returns_model:
            return instance
        return self._dump(instance)

    def _dump(self, value: Any) -> Any:
        if isinstance(value, BaseModel):
            model_cls = type(value)
            keep = self._explicit_defaults.get(model_cls, frozenset())
            out: Dict[str, Any] = {}
            for name, info in model_cls.model_fields.items():
                if name in value.model_fields_set or name in keep:
                    out[info.alias or name] = self._dump(getattr(value, name))
            for key, extra_value in (value.model_extra or {}).items():
                out[key] = self._dump(extra_value)
            return out
        if isinstance(value, list):
            return [self._dump(v) for v in value]
        if isinstance(value, dict):
            return {k: self._dump(v) for k, v in value.items()}
        return value
