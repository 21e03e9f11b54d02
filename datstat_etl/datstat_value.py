""" DATStat payload generic value """
from __future__ import annotations
from enum import Enum
import json


class DatStatValueKind(str, Enum):
    """
    Enum class for generic payload value variants
    """
    NULL = 'null'
    TEXT = 'text'
    NUMBER = 'number'
    BOOL = 'bool'
    LIST = 'list'
    OBJECT = 'object'

    def __str__(self):
        return self.value


class DatStatValue:
    """
    Generic value decoded once from a DATStat response payload (JSON-like tree) so that
    metadata and data parsing never have to inspect raw python types
    """
    def __init__(self, kind: DatStatValueKind, value: any = None) -> None:
        self._kind: DatStatValueKind = kind
        self._value: any = value

    def __repr__(self) -> str:
        return f'{DatStatValue.__name__}({self._kind}, {self._value!r})'

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DatStatValue):
            return NotImplemented
        return self._kind == other._kind and self._value == other._value

    @property
    def kind(self) -> DatStatValueKind:
        """ Get variant of this value """
        return self._kind

    @staticmethod
    def null() -> DatStatValue:
        """ Get null value """
        return DatStatValue(DatStatValueKind.NULL)

    @staticmethod
    def decode(obj: any) -> DatStatValue:
        """ Convert decoded JSON data (dict/list/str/int/float/bool/None) to generic value """
        if obj is None:
            return DatStatValue.null()
        # bool is subclass of int so must be checked before number
        if isinstance(obj, bool):
            return DatStatValue(DatStatValueKind.BOOL, obj)
        if isinstance(obj, (int, float)):
            return DatStatValue(DatStatValueKind.NUMBER, obj)
        if isinstance(obj, str):
            return DatStatValue(DatStatValueKind.TEXT, obj)
        if isinstance(obj, (list, tuple)):
            return DatStatValue(DatStatValueKind.LIST, [DatStatValue.decode(e) for e in obj])
        if isinstance(obj, dict):
            members: dict[str, DatStatValue] = {}
            key: any
            value: any
            for key, value in obj.items():
                if not isinstance(key, str):
                    raise RuntimeError(f'Unable to decode payload object, key {key!r} is not a string')
                members[key] = DatStatValue.decode(value)
            return DatStatValue(DatStatValueKind.OBJECT, members)
        raise RuntimeError(f'Unable to decode payload value of unsupported type "{type(obj).__name__}"')

    @staticmethod
    def loads(content: str | bytes | bytearray) -> DatStatValue:
        """ Parse JSON text and decode to generic value """
        try:
            return DatStatValue.decode(json.loads(content))
        except json.decoder.JSONDecodeError as err:
            raise RuntimeError(f'Unable to decode payload as JSON: {err}') from err

    def is_null(self) -> bool:
        """ Determine whether this is the null value """
        return self._kind == DatStatValueKind.NULL

    def is_object(self) -> bool:
        """ Determine whether this is an object (map) value """
        return self._kind == DatStatValueKind.OBJECT

    def is_list(self) -> bool:
        """ Determine whether this is a list value """
        return self._kind == DatStatValueKind.LIST

    def get(self, key: str) -> DatStatValue:
        """ Get member of object value, or null value if not an object or member not present """
        if self._kind != DatStatValueKind.OBJECT:
            return DatStatValue.null()
        return self._value.get(key, DatStatValue.null())

    def items(self) -> list[tuple[str, DatStatValue]]:
        """ Get members of object value in source order, empty if not an object """
        return list(self._value.items()) if self._kind == DatStatValueKind.OBJECT else []

    def elements(self) -> list[DatStatValue]:
        """ Get elements of list value, empty if not a list """
        return list(self._value) if self._kind == DatStatValueKind.LIST else []

    def as_text(self) -> str | None:
        """ Get text value, None for any other variant """
        return self._value if self._kind == DatStatValueKind.TEXT else None

    def as_string(self) -> str | None:
        """ Render scalar value as string the way the export delivers it; None for null, lists and objects """
        if self._kind == DatStatValueKind.TEXT:
            return self._value
        if self._kind == DatStatValueKind.BOOL:
            return str(self._value).lower()
        if self._kind == DatStatValueKind.NUMBER:
            if isinstance(self._value, float) and self._value.is_integer():
                return str(int(self._value))
            return str(self._value)
        return None

    def to_python(self) -> any:
        """ Convert back to plain python data """
        if self._kind == DatStatValueKind.LIST:
            return [e.to_python() for e in self._value]
        if self._kind == DatStatValueKind.OBJECT:
            return {k: v.to_python() for k, v in self._value.items()}
        return self._value
