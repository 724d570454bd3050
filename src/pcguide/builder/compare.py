"""Side-by-side comparison of catalog parts."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, TYPE_CHECKING

from ..errors import InvalidRequestError
from ..schemas import ComparedPart, PartComparison

if TYPE_CHECKING:
    from ..schemas import Part, SpecValue


def compare_parts(parts: Sequence["Part"]) -> PartComparison:
    """Build a comparison table over two or more parts.

    ``spec_keys`` is the union of spec keys in first-seen order; each row holds
    one value per part, ``None`` where a part lacks the key. ``cheapest`` is
    the id of the lowest-priced part.

    Raises:
        InvalidRequestError: fewer than two parts were given.
    """
    if len(parts) < 2:
        raise InvalidRequestError("At least two parts are required for comparison")

    spec_keys: List[str] = []
    for part in parts:
        for key in part.specs:
            if key not in spec_keys:
                spec_keys.append(key)

    rows: Dict[str, List[Optional["SpecValue"]]] = {
        key: [part.specs.get(key) for part in parts] for key in spec_keys
    }
    # Ties go to the earlier part.
    cheapest = min(parts, key=lambda p: p.price)

    return PartComparison(
        parts=[
            ComparedPart(id=p.id, name=p.name, type=p.type, brand=p.brand, price=p.price)
            for p in parts
        ],
        spec_keys=spec_keys,
        rows=rows,
        cheapest=cheapest.id,
        same_type=len({p.type for p in parts}) == 1,
    )
