import pytest

from pcguide.builder import BASE_SYSTEM_WATTS, CPU_AVERAGE_WATTS, estimate_power, evaluate, has_headroom
from pcguide.builder.accessors import locate_roles, parse_watts, socket_of, tdp_of, wattage_of

from conftest import make_part


def test_base_draw_always_counted():
    assert estimate_power([]) == BASE_SYSTEM_WATTS
    assert estimate_power([make_part("storage")]) == BASE_SYSTEM_WATTS


def test_cpu_adds_flat_average():
    assert estimate_power([make_part("cpu", {"tdp": 65})]) == BASE_SYSTEM_WATTS + CPU_AVERAGE_WATTS


def test_gpu_tdp_numeric_and_suffixed():
    cpu = make_part("cpu")
    assert estimate_power([cpu, make_part("gpu", {"tdp": 300})]) == 525
    assert estimate_power([cpu, make_part("gpu", {"tdp": "450W"})]) == 675


def test_unresolvable_gpu_tdp_adds_nothing():
    assert estimate_power([make_part("gpu", {"tdp": "n/a"})]) == BASE_SYSTEM_WATTS
    assert estimate_power([make_part("gpu", {})]) == BASE_SYSTEM_WATTS


def test_headroom_threshold_is_eighty_percent():
    assert has_headroom(800, 1000)
    assert not has_headroom(801, 1000)
    assert not has_headroom(525, 450)
    assert has_headroom(675, 1000)


@pytest.mark.parametrize(
    "raw, expected",
    [
        (450, 450.0),
        (12.5, 12.5),
        ("450W", 450.0),
        ("450", 450.0),
        (" 750 w ", 750.0),
        ("80+ Gold", None),
        ("W", None),
        ("", None),
        (None, None),
        (True, None),
    ],
)
def test_parse_watts(raw, expected):
    assert parse_watts(raw) == expected


def test_accessors_treat_missing_as_unknown():
    assert socket_of(None) is None
    assert socket_of(make_part("cpu", {"socket": ""})) is None
    assert tdp_of(make_part("gpu")) is None
    assert wattage_of(make_part("psu", {"wattage": "1000W"})) == 1000.0


def test_locate_roles_ignores_non_role_types():
    roles = locate_roles([make_part("case"), make_part("storage"), make_part("psu")])
    assert roles.psu is not None
    assert roles.cpu is None


@pytest.mark.parametrize(
    "raw",
    ["9" * 400, "9" * 400 + "W", float("nan"), float("inf"), float("-inf"), 10**400],
)
def test_parse_watts_rejects_non_finite_values(raw):
    assert parse_watts(raw) is None


def test_overflowing_tdp_counts_as_unknown():
    cpu = make_part("cpu")
    assert estimate_power([cpu, make_part("gpu", {"tdp": "9" * 400 + "W"})]) == 225
    assert estimate_power([cpu, make_part("gpu", {"tdp": float("nan")})]) == 225


def test_headroom_compares_unrounded_draw():
    cpu = make_part("cpu")
    psu = make_part("psu", {"wattage": 607})
    # 100 + 125 + 260.5 = 485.5 against a 485.6 threshold
    fits = [cpu, make_part("gpu", {"tdp": 260.5}), psu]
    assert evaluate(fits).issues == []

    over = [cpu, make_part("gpu", {"tdp": 260.7}), psu]
    assert evaluate(over).issues == [
        "PSU (607W) may be insufficient for estimated power draw (~486W). Consider 20% headroom."
    ]
