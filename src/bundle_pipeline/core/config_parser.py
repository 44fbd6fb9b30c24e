"""
Parsing of the declarations embedded in a bundle's configuration document.

The document is free text (usually an HTML page with inline script). Only
declarations of the form ``<keyword> <name> = <value>;`` are read; everything
else is ignored. Parsing happens in two isolated steps:

1. ``scan_declarations`` walks the text and yields ``(name, raw value)`` pairs.
   A value runs up to the first ``;`` that is not inside a quoted string.
2. ``coerce_value`` turns one raw value into a typed ``ConfigValue``, trying,
   in order: quoted string, boolean, number, empty object, raw text.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Union

DECLARATION_KEYWORDS = ("var", "let", "const")

_DECLARATION = re.compile(
    r"\b(?:%s)\s+([A-Za-z_$][\w$]*)\s*=" % "|".join(DECLARATION_KEYWORDS)
)
_DECIMAL = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")
_RADIX = re.compile(r"^0(?:[xX][0-9a-fA-F]+|[oO][0-7]+|[bB][01]+)$")
_EMPTY_OBJECT = re.compile(r"^\{\s*\}$")
_QUOTES = ('"', "'")
_MAX_EXACT_INTEGER = 2**53


class ValueKind(Enum):
    """Type tag of a parsed configuration value."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    EMPTY_OBJECT = "empty_object"
    RAW = "raw"


@dataclass(frozen=True)
class ConfigValue:
    """A typed configuration value together with its source text."""

    kind: ValueKind
    value: Union[str, int, float, bool, None]
    raw: str

    def to_python(self) -> Any:
        if self.kind is ValueKind.EMPTY_OBJECT:
            return {}
        return self.value


@dataclass(frozen=True)
class Declaration:
    name: str
    raw_value: str


def _find_terminator(text: str, start: int) -> Optional[int]:
    quote = None
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if quote:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
        elif char in _QUOTES:
            quote = char
        elif char == ";":
            return index
    # Unbalanced quote: fall back to the first semicolon.
    fallback = text.find(";", start)
    return fallback if fallback != -1 else None


def scan_declarations(text: str) -> Iterator[Declaration]:
    """Yield every ``<keyword> <name> = <value>;`` declaration in order."""
    position = 0
    while True:
        match = _DECLARATION.search(text, position)
        if match is None:
            return
        end = _find_terminator(text, match.end())
        if end is None:
            return
        position = end + 1
        raw_value = text[match.end() : end].strip()
        if raw_value:
            yield Declaration(name=match.group(1), raw_value=raw_value)


def _parse_number(raw: str) -> Optional[Union[int, float]]:
    if _RADIX.match(raw):
        return int(raw, 0)
    if not _DECIMAL.match(raw):
        return None
    if any(marker in raw for marker in ".eE"):
        value = float(raw)
        # "36.0" and "1e3" are whole numbers; keep them ints like "36".
        if value.is_integer() and abs(value) <= _MAX_EXACT_INTEGER:
            return int(value)
        return value
    return int(raw)


def coerce_value(raw: str) -> ConfigValue:
    """
    Convert the raw text of a declaration value into a typed value.

    Examples:
        >>> coerce_value('"abc"').value
        'abc'
        >>> coerce_value("36").value
        36
        >>> coerce_value("true").kind
        <ValueKind.BOOLEAN: 'boolean'>
    """
    raw = raw.strip()

    if len(raw) >= 2 and raw[0] in _QUOTES and raw[-1] == raw[0]:
        return ConfigValue(ValueKind.STRING, raw[1:-1], raw)

    if raw in ("true", "false"):
        return ConfigValue(ValueKind.BOOLEAN, raw == "true", raw)

    number = _parse_number(raw)
    if number is not None:
        return ConfigValue(ValueKind.NUMBER, number, raw)

    if _EMPTY_OBJECT.match(raw):
        return ConfigValue(ValueKind.EMPTY_OBJECT, None, raw)

    return ConfigValue(ValueKind.RAW, raw, raw)


class ConfigurationMap(Mapping):
    """Read-only mapping of declaration name to plain Python value."""

    def __init__(self, values: Optional[Dict[str, ConfigValue]] = None):
        self._values: Dict[str, ConfigValue] = dict(values or {})

    def __getitem__(self, name: str) -> Any:
        return self._values[name].to_python()

    def __iter__(self):
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"ConfigurationMap({self.as_dict()!r})"

    def typed(self, name: str) -> ConfigValue:
        return self._values[name]

    def as_dict(self) -> Dict[str, Any]:
        return {name: value.to_python() for name, value in self._values.items()}


def parse_configuration(text: str) -> ConfigurationMap:
    """
    Build the configuration map of a document.

    Later declarations of the same name overwrite earlier ones. A document
    without declarations gives an empty map.
    """
    values: Dict[str, ConfigValue] = {}
    for declaration in scan_declarations(text):
        values[declaration.name] = coerce_value(declaration.raw_value)
    return ConfigurationMap(values)
