from __future__ import annotations

from typing import List, Optional, Protocol

from langchain_core.tools import tool
from pydantic import BaseModel, Field

from .builder import evaluate
from .builder.accessors import locate_roles, wattage_of
from .builder.power import has_headroom, role_power_draw
from .schemas import Part, PowerEstimate


class PartsRepoProtocol(Protocol):
    def search_parts(
        self,
        type: Optional[str] = None,
        brand: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        query: Optional[str] = None,
    ) -> List[Part]: ...
    def get_parts_by_ids(self, ids: List[str]) -> List[Part]: ...


class SearchPartsInput(BaseModel):
    type: str = Field(description="Part type such as cpu, gpu, motherboard, cooling")
    max_price: Optional[float] = Field(default=None, description="Max acceptable price")
    brand: Optional[str] = Field(default=None, description="Exact brand name")
    query: Optional[str] = Field(default=None, description="Substring of the part name")
    limit: int = Field(default=5, ge=1, le=50)


class PartIdsInput(BaseModel):
    part_ids: List[str] = Field(description="Catalog ids of the selected parts")


class Toolset:
    """Catalog and compatibility functions exposed as LangChain tools.

    The recommendation agent calls these by name; the HTTP API reuses
    ``estimate_power`` for its power endpoint.
    """

    def __init__(self, repo: PartsRepoProtocol):
        self.repo = repo

    def register(self):
        repo = self.repo

        @tool("search_parts", args_schema=SearchPartsInput)
        def search_parts(
            type: str,
            max_price: Optional[float] = None,
            brand: Optional[str] = None,
            query: Optional[str] = None,
            limit: int = 5,
        ) -> List[dict]:
            """Search catalog parts by type and price ceiling, cheapest first."""
            candidates = repo.search_parts(type=type, brand=brand, max_price=max_price, query=query)
            candidates = sorted(candidates, key=lambda p: (p.price, p.name))
            return [c.model_dump(by_alias=True) for c in candidates[:limit]]

        @tool("estimate_power", args_schema=PartIdsInput)
        def estimate_power(part_ids: List[str]) -> dict:
            """Estimate system power draw and check the selected PSU for 20% headroom."""
            roles = locate_roles(repo.get_parts_by_ids(part_ids))
            draw = role_power_draw(roles)
            psu_wattage = wattage_of(roles.psu)
            headroom = None
            if psu_wattage is not None and psu_wattage > 0:
                headroom = has_headroom(draw, psu_wattage)
            return PowerEstimate(
                estimated_power=round(draw),
                psu_wattage=psu_wattage,
                has_headroom=headroom,
            ).model_dump(by_alias=True)

        @tool("check_compatibility", args_schema=PartIdsInput)
        def check_compatibility(part_ids: List[str]) -> dict:
            """Check socket, memory, cooler and PSU compatibility of the selected parts."""
            return evaluate(repo.get_parts_by_ids(part_ids)).model_dump(by_alias=True)

        return {
            "search_parts": search_parts,
            "estimate_power": estimate_power,
            "check_compatibility": check_compatibility,
        }
