from pathlib import Path

import pytest

from pcguide.db import PartsRepository
from pcguide.schemas import Part


ROOT = Path(__file__).resolve().parents[1]
PARTS_PATH = ROOT / "data" / "parts.json"


def make_part(part_type, specs=None, compatibility=None, part_id=None, price=100.0):
    return Part(
        id=part_id or f"{part_type}-test",
        type=part_type,
        name=f"Test {part_type}",
        brand="Generic",
        price=price,
        specs=specs or {},
        compatibility=compatibility or [],
    )


@pytest.fixture
def repo():
    return PartsRepository(PARTS_PATH)
