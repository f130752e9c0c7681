"""
Formatter registry.

Formatters are named transformation functions consulted by the rendering
engine during substitution (``{{ d.total | formatC(2, 'EUR') }}``). The
registry holds:

- a baseline set, loaded once at process start and frozen by
  ``mark_baseline()``;
- per-request custom formatters, armed on top of the baseline for the
  duration of a single render and discarded afterwards.

The registry is one shared, mutable table. ``armed()`` is the only
supported way for request code to touch it: it serializes the whole
"reduce to defaults, merge custom, render, restore defaults" sequence
behind a process-wide lock.

Custom formatters arrive over the wire as a JSON object mapping a name to
a sandboxed Jinja2 expression, evaluated with ``value`` (the piped value)
and ``args`` (extra positional arguments) bound:

    {"shout": "value | upper ~ '!'", "pick": "args[value]"}
"""

import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, Mapping, Optional

from jinja2 import TemplateSyntaxError
from jinja2.defaults import DEFAULT_FILTERS
from jinja2.sandbox import SandboxedEnvironment

logger = logging.getLogger(__name__)

Formatter = Callable[..., Any]


# ---------------------------------------------------------------------------
# Built-in formatters
# ---------------------------------------------------------------------------


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def uc_first(value: Any) -> str:
    text = str(value)
    return text[:1].upper() + text[1:]


def uc_words(value: Any) -> str:
    return " ".join(uc_first(word) if word else word for word in str(value).split(" "))


def print_message(value: Any, message: Any = "") -> Any:
    return message


def if_empty(value: Any, message: Any = "") -> Any:
    return message if _is_empty(value) else value


def format_number(value: Any, precision: int = 3) -> Any:
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return value
    return f"{number:,.{int(precision)}f}"


def format_currency(value: Any, precision: int = 2, currency: str = "") -> Any:
    formatted = format_number(value, precision)
    if formatted is value or not currency:
        return formatted
    return f"{formatted} {currency}"


def format_date(value: Any, pattern: str = "%Y-%m-%d") -> Any:
    if isinstance(value, (date, datetime)):
        return value.strftime(pattern)
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        return value
    return parsed.strftime(pattern)


def pad_left(value: Any, length: int, char: str = " ") -> str:
    return str(value).rjust(int(length), str(char)[:1] or " ")


def pad_right(value: Any, length: int, char: str = " ") -> str:
    return str(value).ljust(int(length), str(char)[:1] or " ")


def substring(value: Any, begin: int, end: Optional[int] = None) -> str:
    return str(value)[int(begin):None if end is None else int(end)]


def array_join(value: Any, separator: str = ", ") -> Any:
    if isinstance(value, (list, tuple)):
        return separator.join(str(item) for item in value)
    return value


def length(value: Any) -> int:
    try:
        return len(value)
    except TypeError:
        return 0


ENGINE_FORMATTERS: Dict[str, Formatter] = {
    "ucFirst": uc_first,
    "ucWords": uc_words,
    "lowerCase": lambda value: str(value).lower(),
    "upperCase": lambda value: str(value).upper(),
    "print": print_message,
    "ifEmpty": if_empty,
    "formatN": format_number,
    "formatC": format_currency,
    "formatD": format_date,
    "padl": pad_left,
    "padr": pad_right,
    "substr": substring,
    "arrayJoin": array_join,
    "len": length,
}

DEFAULT_FORMATTERS: Dict[str, Formatter] = {
    **DEFAULT_FILTERS,
    **ENGINE_FORMATTERS,
}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FormatterEntry:
    name: str
    function: Formatter
    is_default: bool = False


class FormatterRegistry:
    """Process-wide formatter table with request-scoped overrides."""

    def __init__(self, formatters: Optional[Mapping[str, Formatter]] = None) -> None:
        self._entries: Dict[str, FormatterEntry] = {
            name: FormatterEntry(name, function)
            for name, function in (formatters or {}).items()
        }
        self._baseline: Optional[Mapping[str, FormatterEntry]] = None
        self._lock = threading.Lock()

    def mark_baseline(self) -> None:
        """
        Flag every registered formatter as default and freeze the baseline.

        Must be called exactly once, after the engine's built-in
        formatters are loaded. Every later restore uses this snapshot.
        """
        if self._baseline is not None:
            raise RuntimeError("formatter baseline already marked")

        entries = {
            name: FormatterEntry(name, entry.function, is_default=True)
            for name, entry in self._entries.items()
        }
        self._baseline = MappingProxyType(dict(entries))
        self._entries = entries

    def snapshot_defaults(self) -> Dict[str, Formatter]:
        if self._baseline is None:
            raise RuntimeError("formatter baseline has not been marked")
        return {name: entry.function for name, entry in self._baseline.items()}

    def replace_all(self, new_set: Mapping[str, Formatter]) -> None:
        baseline = self._baseline or {}
        entries = {}
        for name, function in new_set.items():
            default = baseline.get(name)
            entries[name] = FormatterEntry(
                name,
                function,
                is_default=default is not None and default.function is function,
            )
        # Single assignment: readers see either the old or the new table.
        self._entries = entries

    def add_custom(self, entries: Mapping[str, Formatter]) -> None:
        merged = dict(self._entries)
        for name, function in entries.items():
            merged[name] = FormatterEntry(name, function, is_default=False)
        self._entries = merged

    def live(self) -> Dict[str, Formatter]:
        """Return a copy of the table the engine currently consults."""
        return {name: entry.function for name, entry in self._entries.items()}

    def entries(self) -> Dict[str, FormatterEntry]:
        return dict(self._entries)

    @contextmanager
    def armed(self, custom: Mapping[str, Formatter]) -> Iterator[Dict[str, Formatter]]:
        """
        Critical section for one render.

        Reduces the table to the baseline, merges ``custom`` on top and
        yields the merged table. On exit, successful or not, the table is
        restored to the baseline. At most one caller is inside at a time.
        """
        with self._lock:
            self.replace_all(self.snapshot_defaults())
            self.add_custom(custom)
            try:
                yield self.live()
            finally:
                self.replace_all(self.snapshot_defaults())


def load_default_registry() -> FormatterRegistry:
    registry = FormatterRegistry(DEFAULT_FORMATTERS)
    registry.mark_baseline()
    return registry


# ---------------------------------------------------------------------------
# Custom formatter wire format
# ---------------------------------------------------------------------------

_EXPRESSION_ENV = SandboxedEnvironment()


class ExpressionFormatter:
    """A custom formatter backed by a sandboxed Jinja2 expression."""

    def __init__(self, name: str, source: str) -> None:
        self.name = name
        self.source = source
        self._expression = _EXPRESSION_ENV.compile_expression(source)

    def __call__(self, value: Any, *args: Any) -> Any:
        return self._expression(value=value, args=list(args))

    def __repr__(self) -> str:
        return f"ExpressionFormatter({self.name!r}, {self.source!r})"


def parse_custom_formatters(raw: Optional[str]) -> Dict[str, Formatter]:
    """
    Decode a request's custom formatter set.

    Anything that is not a JSON object yields an empty set. Individual
    entries with an invalid name or an expression that does not compile
    are dropped.
    """
    if not raw:
        return {}

    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        logger.debug("formatters: payload is not JSON, ignoring")
        return {}

    if not isinstance(payload, dict):
        logger.debug("formatters: payload is not an object, ignoring")
        return {}

    custom: Dict[str, Formatter] = {}
    for name, source in payload.items():
        if not name.isidentifier() or not isinstance(source, str):
            logger.warning("formatters: skipping invalid entry %r", name)
            continue
        try:
            custom[name] = ExpressionFormatter(name, source)
        except TemplateSyntaxError as exc:
            logger.warning("formatters: skipping %r: %s", name, exc)
    return custom
