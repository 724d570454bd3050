from __future__ import annotations

import json
import logging
import math
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

from .errors import GuideNotFoundError, InvalidRequestError
from .schemas import Guide, GuideCreate, GuideUpdate, Part, PartCreate, PartFilters, PartsPage

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {"name", "price", "brand", "type"}


class PartsRepository:
    """
    Parts catalog backed by a JSON file.

    The file holds an array of part records. It is read once on construction
    (and on ``reload``); parts added at runtime live in memory only. The list
    is replaced rather than mutated, so callers always hold a consistent
    snapshot.
    """

    def __init__(self, data_path: Path):
        self.data_path = data_path
        self._parts: List[Part] = []
        self._write_lock = threading.Lock()
        self.reload()

    def reload(self) -> None:
        """Re-read the JSON file, dropping parts added at runtime."""
        with self.data_path.open("r", encoding="utf-8") as f:
            raw = json.load(f)
        self._parts = [Part.model_validate(item) for item in raw]
        logger.info("loaded %d parts from %s", len(self._parts), self.data_path)

    def all_parts(self) -> List[Part]:
        """Current catalog snapshot, in file order."""
        return self._parts

    def by_type(self, part_type: str) -> List[Part]:
        """Parts of one type, exact match."""
        return [p for p in self._parts if p.type == part_type]

    def find_by_id(self, part_id: str) -> Part | None:
        """Part with this id, or ``None``."""
        for part in self._parts:
            if part.id == part_id:
                return part
        return None

    def get_parts_by_ids(self, ids: Iterable[str]) -> List[Part]:
        """Parts whose id is listed, in catalog order. Unknown ids are ignored."""
        wanted = set(ids)
        return [p for p in self._parts if p.id in wanted]

    def search_parts(
        self,
        type: Optional[str] = None,
        brand: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        query: Optional[str] = None,
    ) -> List[Part]:
        """
        Simple catalog search used by the listing endpoint and the agent tool.

        ``type`` and ``brand`` match exactly, prices are inclusive bounds and
        ``query`` is a case-insensitive substring of the part name.
        """
        needle = (query or "").strip().lower()
        return [
            p
            for p in self._filter(type, brand, min_price, max_price)
            if not needle or needle in p.name.lower()
        ]

    def search_parts_advanced(self, filters: PartFilters) -> PartsPage:
        """
        Filter, sort and page the catalog.

        ``query`` matches name, brand or description case-insensitively.
        Unknown ``sort_by`` fields fall back to ``name``.
        """
        needle = (filters.query or "").strip().lower()
        matches = [
            p
            for p in self._filter(filters.type, filters.brand, filters.min_price, filters.max_price)
            if (not needle or _matches_text(p, needle))
            and (filters.in_stock is None or p.in_stock == filters.in_stock)
        ]

        sort_field = filters.sort_by if filters.sort_by in SORTABLE_FIELDS else "name"
        matches.sort(key=lambda p: getattr(p, sort_field), reverse=filters.sort_order == "desc")

        total = len(matches)
        start = (filters.page - 1) * filters.limit
        return PartsPage(
            parts=matches[start:start + filters.limit],
            total=total,
            page=filters.page,
            total_pages=math.ceil(total / filters.limit),
        )

    def all_brands(self) -> List[str]:
        """Distinct brands, sorted."""
        return sorted({p.brand for p in self._parts})

    def all_types(self) -> List[str]:
        """Distinct part types present in the catalog, sorted."""
        return sorted({p.type for p in self._parts})

    def add_part(self, data: PartCreate) -> Part:
        """
        Add a part to the in-memory catalog.

        Without an explicit id one is generated as ``<type>-<8 hex>``. A
        duplicate id raises ``InvalidRequestError``.
        """
        payload = data.model_dump()
        if not payload.get("id"):
            payload["id"] = f"{data.type}-{uuid.uuid4().hex[:8]}"
        part = Part.model_validate(payload)
        with self._write_lock:
            if self.find_by_id(part.id) is not None:
                raise InvalidRequestError(f"Part {part.id} already exists")
            self._parts = [*self._parts, part]
        logger.info("added part %s (%s)", part.id, part.type)
        return part

    def _filter(
        self,
        type: Optional[str],
        brand: Optional[str],
        min_price: Optional[float],
        max_price: Optional[float],
    ) -> List[Part]:
        return [
            p
            for p in self._parts
            if (not type or p.type == type)
            and (not brand or p.brand == brand)
            and (min_price is None or p.price >= min_price)
            and (max_price is None or p.price <= max_price)
        ]


def _matches_text(part: Part, needle: str) -> bool:
    return (
        needle in part.name.lower()
        or needle in part.brand.lower()
        or needle in part.description.lower()
    )


class GuidesRepository:
    """
    Build guides seeded from a JSON file and edited in memory.

    Same snapshot discipline as ``PartsRepository``: writes replace the
    list under a lock.
    """

    def __init__(self, data_path: Path):
        self.data_path = data_path
        self._guides: List[Guide] = []
        self._write_lock = threading.Lock()
        self.reload()

    def reload(self) -> None:
        with self.data_path.open("r", encoding="utf-8") as f:
            raw = json.load(f)
        self._guides = [Guide.model_validate(item) for item in raw]
        logger.info("loaded %d guides from %s", len(self._guides), self.data_path)

    def all_guides(self) -> List[Guide]:
        return self._guides

    def search(self, query: str) -> List[Guide]:
        """Case-insensitive substring match on title, description or any tag."""
        needle = query.strip().lower()
        return [
            g
            for g in self._guides
            if needle in g.title.lower()
            or needle in g.description.lower()
            or any(needle in tag.lower() for tag in g.tags)
        ]

    def get(self, guide_id: str) -> Guide:
        for guide in self._guides:
            if guide.id == guide_id:
                return guide
        raise GuideNotFoundError(guide_id)

    def create(self, data: GuideCreate) -> Guide:
        now = datetime.now(timezone.utc)
        guide = Guide(id=uuid.uuid4().hex, **data.model_dump(), published_at=now, updated_at=now)
        with self._write_lock:
            self._guides = [*self._guides, guide]
        logger.info("added guide %s", guide.id)
        return guide

    def update(self, guide_id: str, changes: GuideUpdate) -> Guide:
        """Apply the fields present in ``changes``; ``readTime`` may be cleared with null."""
        with self._write_lock:
            current = self.get(guide_id)
            updates = {
                key: value
                for key, value in changes.model_dump(exclude_unset=True).items()
                if value is not None or key == "read_time"
            }
            updates["updated_at"] = datetime.now(timezone.utc)
            updated = current.model_copy(update=updates)
            self._guides = [updated if g.id == guide_id else g for g in self._guides]
        return updated

    def delete(self, guide_id: str) -> None:
        with self._write_lock:
            self.get(guide_id)
            self._guides = [g for g in self._guides if g.id != guide_id]
        logger.info("deleted guide %s", guide_id)
