"""
Power budget estimator.

A fixed heuristic, not a simulation: the catalog carries no per-model CPU
TDP, so every CPU counts as the same average figure.
"""

from __future__ import annotations

from typing import Optional, Sequence, TYPE_CHECKING

from .accessors import RoleParts, format_watts, locate_roles, tdp_of, wattage_of

if TYPE_CHECKING:
    from ..schemas import Part


# Motherboard, storage, fans and the rest of the system.
BASE_SYSTEM_WATTS = 100
# Average desktop CPU TDP, used for every CPU.
CPU_AVERAGE_WATTS = 125
# The PSU should run at no more than 80% of its rating under the estimate.
HEADROOM_RATIO = 0.8


def estimate_power(parts: Sequence["Part"]) -> int:
    """Estimated total system draw in watts, rounded for display."""
    return round(role_power_draw(locate_roles(parts)))


def role_power_draw(roles: RoleParts) -> float:
    """Unrounded draw; headroom checks compare against this value."""
    watts = float(BASE_SYSTEM_WATTS)
    if roles.cpu is not None:
        watts += CPU_AVERAGE_WATTS
    gpu_tdp = tdp_of(roles.gpu)
    if gpu_tdp is not None:
        watts += gpu_tdp
    return watts


def has_headroom(estimated: float, psu_wattage: float) -> bool:
    return estimated <= psu_wattage * HEADROOM_RATIO


def headroom_warning(roles: RoleParts) -> Optional[str]:
    """Advisory message when the PSU lacks headroom, else ``None``.

    Skipped when there is no PSU or its wattage does not resolve to a
    positive number. The comparison uses the unrounded draw; only the
    message rounds it to whole watts.
    """
    psu_wattage = wattage_of(roles.psu)
    if psu_wattage is None or psu_wattage <= 0:
        return None
    draw = role_power_draw(roles)
    if has_headroom(draw, psu_wattage):
        return None
    return (
        f"PSU ({format_watts(psu_wattage)}W) may be insufficient for estimated "
        f"power draw (~{round(draw)}W). Consider 20% headroom."
    )
