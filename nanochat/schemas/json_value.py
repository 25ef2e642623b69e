"""
Dynamic JSON value used for provider-specific model parameters whose shape is
not known statically.

Equality and hashing are intentionally shallow for composite values: two
arrays are equal when they have the same length, two objects when they have
the same key set. Callers must not rely on deep structural equality.
"""
import enum
import json
from typing import Any, Dict, List, Optional

from pydantic_core import core_schema


class JSONKind(str, enum.Enum):
    NULL = "null"
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    STRING = "string"
    ARRAY = "array"
    OBJECT = "object"


class JSONValue:
    """Tagged JSON variant: one explicit kind per JSON type"""

    __slots__ = ("kind", "_value")

    def __init__(self, kind: JSONKind, value: Any = None):
        self.kind = kind
        self._value = value

    # Constructors

    @classmethod
    def null(cls) -> "JSONValue":
        return cls(JSONKind.NULL, None)

    @classmethod
    def from_python(cls, value: Any) -> "JSONValue":
        if isinstance(value, JSONValue):
            return value
        if value is None:
            return cls(JSONKind.NULL, None)
        # bool before int: bool is an int subclass
        if isinstance(value, bool):
            return cls(JSONKind.BOOL, value)
        if isinstance(value, int):
            return cls(JSONKind.INT, value)
        if isinstance(value, float):
            return cls(JSONKind.FLOAT, value)
        if isinstance(value, str):
            return cls(JSONKind.STRING, value)
        if isinstance(value, (list, tuple)):
            return cls(JSONKind.ARRAY, [cls.from_python(item) for item in value])
        if isinstance(value, dict):
            items = {}
            for key, item in value.items():
                if not isinstance(key, str):
                    raise TypeError(f"JSON object keys must be strings, got {type(key).__name__}")
                items[key] = cls.from_python(item)
            return cls(JSONKind.OBJECT, items)
        raise TypeError(f"JSONValue cannot wrap {type(value).__name__}")

    @classmethod
    def loads(cls, text: str) -> "JSONValue":
        return cls.from_python(json.loads(text))

    # Conversions

    def to_python(self) -> Any:
        if self.kind is JSONKind.ARRAY:
            return [item.to_python() for item in self._value]
        if self.kind is JSONKind.OBJECT:
            return {key: item.to_python() for key, item in self._value.items()}
        return self._value

    def dumps(self) -> str:
        return json.dumps(self.to_python())

    # Typed accessors

    @property
    def value(self) -> Any:
        return self._value

    @property
    def is_null(self) -> bool:
        return self.kind is JSONKind.NULL

    @property
    def string_value(self) -> Optional[str]:
        return self._value if self.kind is JSONKind.STRING else None

    @property
    def int_value(self) -> Optional[int]:
        return self._value if self.kind is JSONKind.INT else None

    @property
    def float_value(self) -> Optional[float]:
        return self._value if self.kind is JSONKind.FLOAT else None

    @property
    def bool_value(self) -> Optional[bool]:
        return self._value if self.kind is JSONKind.BOOL else None

    @property
    def array_value(self) -> Optional[List["JSONValue"]]:
        return self._value if self.kind is JSONKind.ARRAY else None

    @property
    def object_value(self) -> Optional[Dict[str, "JSONValue"]]:
        return self._value if self.kind is JSONKind.OBJECT else None

    def __getitem__(self, key):
        if self.kind in (JSONKind.ARRAY, JSONKind.OBJECT):
            return self._value[key]
        raise TypeError(f"{self.kind.value} value is not subscriptable")

    # Shallow equality

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, JSONValue):
            return NotImplemented
        if self.kind is not other.kind:
            return False
        if self.kind is JSONKind.ARRAY:
            return len(self._value) == len(other._value)
        if self.kind is JSONKind.OBJECT:
            return self._value.keys() == other._value.keys()
        return self._value == other._value

    def __hash__(self) -> int:
        if self.kind in (JSONKind.ARRAY, JSONKind.OBJECT):
            return hash(self.kind)
        return hash((self.kind, self._value))

    def __repr__(self) -> str:
        return f"JSONValue({self.kind.value}, {self.to_python()!r})"

    def __str__(self) -> str:
        return str(self.to_python())

    # pydantic integration

    @classmethod
    def __get_pydantic_core_schema__(cls, source_type: Any, handler: Any) -> core_schema.CoreSchema:
        return core_schema.no_info_plain_validator_function(
            cls._validate,
            serialization=core_schema.plain_serializer_function_ser_schema(
                lambda v: v.to_python(),
            ),
        )

    @classmethod
    def _validate(cls, value: Any) -> "JSONValue":
        try:
            return cls.from_python(value)
        except TypeError as e:
            raise ValueError(str(e))
