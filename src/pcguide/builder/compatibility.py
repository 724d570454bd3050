"""Compatibility checks over an arbitrary set of selected parts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Union, TYPE_CHECKING

from ..schemas import CheckedPart, CompatibilityVerdict
from .accessors import (
    RoleParts,
    locate_roles,
    memory_type_of,
    ram_type_of,
    socket_of,
    supported_sockets,
)
from .power import headroom_warning

if TYPE_CHECKING:
    from ..schemas import Part


@dataclass(frozen=True)
class Hard:
    """The build cannot work as selected."""

    message: str


@dataclass(frozen=True)
class Advisory:
    """Worth flagging, but the build still works."""

    message: str


RuleOutcome = Union[Hard, Advisory]
Rule = Callable[[RoleParts], Optional[RuleOutcome]]


def check_cpu_socket(roles: RoleParts) -> Optional[RuleOutcome]:
    if roles.cpu is None or roles.motherboard is None:
        return None
    cpu_socket = socket_of(roles.cpu)
    mobo_socket = socket_of(roles.motherboard)
    if cpu_socket and mobo_socket and cpu_socket != mobo_socket:
        return Hard(
            f"CPU socket ({cpu_socket}) is not compatible with motherboard socket ({mobo_socket})"
        )
    return None


def check_memory_type(roles: RoleParts) -> Optional[RuleOutcome]:
    if roles.ram is None or roles.motherboard is None:
        return None
    ram_type = ram_type_of(roles.ram)
    mobo_memory_type = memory_type_of(roles.motherboard)
    if ram_type and mobo_memory_type and ram_type != mobo_memory_type:
        return Hard(
            f"RAM type ({ram_type}) is not compatible with motherboard memory type ({mobo_memory_type})"
        )
    return None


def check_cooler_socket(roles: RoleParts) -> Optional[RuleOutcome]:
    if roles.cpu is None or roles.cooling is None:
        return None
    cpu_socket = socket_of(roles.cpu)
    sockets = supported_sockets(roles.cooling)
    # An empty list means the cooler fits any socket.
    if cpu_socket and sockets and cpu_socket not in sockets:
        return Hard(f"CPU cooler may not be compatible with {cpu_socket} socket")
    return None


def check_psu_headroom(roles: RoleParts) -> Optional[RuleOutcome]:
    warning = headroom_warning(roles)
    if warning is None:
        return None
    return Advisory(warning)


# Evaluation order is also the order of ``issues`` in the verdict.
RULES: tuple[Rule, ...] = (
    check_cpu_socket,
    check_memory_type,
    check_cooler_socket,
    check_psu_headroom,
)


def evaluate_outcomes(parts: Sequence["Part"]) -> List[RuleOutcome]:
    roles = locate_roles(parts)
    outcomes: List[RuleOutcome] = []
    for rule in RULES:
        outcome = rule(roles)
        if outcome is not None:
            outcomes.append(outcome)
    return outcomes


def evaluate(parts: Sequence["Part"]) -> CompatibilityVerdict:
    """Check hardware compatibility of the given parts.

    Args:
        parts: the selected parts, at most one per role is considered
            (the first one found).

    Returns:
        The verdict. ``compatible`` is false only when a hard rule fired;
        a PSU headroom warning is listed in ``issues`` but stays advisory.
    """
    outcomes = evaluate_outcomes(parts)
    return CompatibilityVerdict(
        compatible=not any(isinstance(o, Hard) for o in outcomes),
        issues=[o.message for o in outcomes],
        checked_parts=[CheckedPart(id=p.id, name=p.name, type=p.type) for p in parts],
    )
