"""Typed access to the open-ended ``Part.specs`` map.

Every rule reads spec data through these helpers so that unit stripping and
the "missing means unknown" policy live in one place. ``None`` always means
"cannot judge", never zero.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from ..schemas import Part

logger = logging.getLogger(__name__)

# "450", "450W", " 450 w ", "12.5W"
_WATTS_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*[wW]?\s*$")


def parse_watts(value: object) -> Optional[float]:
    """Coerce a number or an optionally ``W``-suffixed string to watts.

    NaN, infinities and digit strings too long for a float are unknown,
    the same as any other value that does not parse.
    """
    if value is None or isinstance(value, bool):
        return None
    result: Optional[float] = None
    if isinstance(value, (int, float)):
        try:
            result = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        match = _WATTS_RE.match(value)
        if match:
            result = float(match.group(1))
    if result is None or not math.isfinite(result):
        return None
    return result


def format_watts(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def _text_spec(part: Optional["Part"], key: str) -> Optional[str]:
    if part is None:
        return None
    value = part.specs.get(key)
    # strings only: a numeric 1700 never equals the socket "1700"
    if not isinstance(value, str):
        return None
    return value or None


def socket_of(part: Optional["Part"]) -> Optional[str]:
    return _text_spec(part, "socket")


def memory_type_of(motherboard: Optional["Part"]) -> Optional[str]:
    return _text_spec(motherboard, "memoryType")


def ram_type_of(ram: Optional["Part"]) -> Optional[str]:
    return _text_spec(ram, "type")


def tdp_of(gpu: Optional["Part"]) -> Optional[float]:
    if gpu is None:
        return None
    return parse_watts(gpu.specs.get("tdp"))


def wattage_of(psu: Optional["Part"]) -> Optional[float]:
    if psu is None:
        return None
    return parse_watts(psu.specs.get("wattage"))


def supported_sockets(cooler: Optional["Part"]) -> List[str]:
    if cooler is None:
        return []
    return list(cooler.compatibility)


@dataclass(frozen=True)
class RoleParts:
    """At most one part per role the engine reasons about."""

    cpu: Optional["Part"] = None
    motherboard: Optional["Part"] = None
    ram: Optional["Part"] = None
    gpu: Optional["Part"] = None
    psu: Optional["Part"] = None
    cooling: Optional["Part"] = None


ROLES = ("cpu", "motherboard", "ram", "gpu", "psu", "cooling")


def locate_roles(parts: Sequence["Part"]) -> RoleParts:
    """Pick the first part of each role; later duplicates are ignored."""
    found = {}
    for part in parts:
        if part.type not in ROLES:
            continue
        if part.type in found:
            logger.debug(
                "duplicate %s part %s ignored, keeping %s",
                part.type,
                part.id,
                found[part.type].id,
            )
            continue
        found[part.type] = part
    return RoleParts(**found)
