from __future__ import annotations

import math
import re
from typing import Callable, Optional

from fritzbox_models import MetricValue, ServiceResults, WireKind, WireValue
from fritzbox_utils import NIL

_INT_RE = re.compile(r"[+-]?[0-9]+")
_FLOAT_RE = re.compile(
    r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?"
    r"|[+-]?(?:inf|infinity|nan)",
    re.IGNORECASE,
)

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1


def _is_integer(raw: str) -> bool:
    if not _INT_RE.fullmatch(raw):
        return False
    return INT64_MIN <= int(raw) <= INT64_MAX


def _is_float(raw: str) -> bool:
    if not _FLOAT_RE.fullmatch(raw):
        return False
    if raw.lstrip("+-")[:1].isalpha():
        return True
    # overflowing literals are rejected rather than turned into inf
    return not math.isinf(float(raw))


# Tried in order, first match wins; TEXT always matches.
COERCION_ORDER: tuple[tuple[WireKind, Callable[[str], bool]], ...] = (
    (WireKind.INTEGER, _is_integer),
    (WireKind.FLOAT, _is_float),
    (WireKind.TEXT, lambda raw: True),
)


def coerce(raw: str) -> Optional[WireValue]:
    """Infer the wire type of a textual value.

    Returns ``None`` for the ``<nil>`` marker, meaning the field is dropped.
    """
    if raw == NIL:
        return None
    for kind, matches in COERCION_ORDER:
        if matches(raw):
            return WireValue(kind=kind, text=raw)
    raise AssertionError("unreachable: TEXT accepts every value")


def influx_field(value: MetricValue) -> Optional[str]:
    wire = coerce(value.value)
    if wire is None:
        return None
    return f"{value.name}={wire.render()}"


def format_line(bucket: str, host: str, batch: ServiceResults) -> str:
    """Render one batch as a line protocol record, without trailing newline.

    Format::

        fritzbox,host="192.168.178.1",source=wan some_int=23i,some_float=32.3,some_string="some string"
    """
    prefix = f'{bucket},host="{host}",source={batch.name} '
    fields = [f for f in (influx_field(r) for r in batch.results) if f is not None]
    return prefix + ",".join(fields)
