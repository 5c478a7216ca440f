"""
Editor-side slide list for one wine

The canonical order always comes from the server. A drag only creates a
pending overlay; committing sends the section's new order to the
reconcile endpoint. On a position conflict the overlay is thrown away and
canonical state is fetched again, never merged.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import httpx

from ..errors import DuplicatePosition, InvalidMove, TastingError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingMove:
    section: str
    ordered_ids: tuple
    moved_slide_id: str
    expected_positions: Dict[str, int]


def _section(slide: dict) -> str:
    return slide.get("sectionType") or "intro"


class EditorSlideList:
    def __init__(self, client: httpx.AsyncClient, package_code: str, wine_id: str):
        self.client = client
        self.package_code = package_code
        self.wine_id = str(wine_id)
        self.canonical: List[dict] = []
        self.pending: Optional[PendingMove] = None

    async def refresh(self) -> List[dict]:
        response = await self.client.get(f"/packages/{self.package_code}/slides")
        response.raise_for_status()
        data = response.json()
        self.canonical = [slide for slide in data["slides"] if slide.get("packageWineId") == self.wine_id]
        return self.canonical

    def section_ids(self, section: str) -> List[str]:
        return [slide["id"] for slide in self.canonical if _section(slide) == section]

    @property
    def slides(self) -> List[dict]:
        """Canonical order with the pending overlay applied"""
        if self.pending is None:
            return list(self.canonical)
        by_id = {slide["id"]: slide for slide in self.canonical}
        overlay = iter(self.pending.ordered_ids)
        return [
            by_id[next(overlay)] if _section(slide) == self.pending.section else slide
            for slide in self.canonical
        ]

    def move(self, slide_id: str, to_index: int) -> PendingMove:
        """Stage a drag of ``slide_id`` to ``to_index`` within its section"""
        slide = next((s for s in self.canonical if s["id"] == slide_id), None)
        if slide is None:
            raise InvalidMove(f"Slide {slide_id} is not in this wine")
        section = _section(slide)
        ids = self.section_ids(section)
        if not 0 <= to_index < len(ids):
            raise InvalidMove(f"Target index {to_index} is outside the section", slide_id=slide_id)

        ids.remove(slide_id)
        ids.insert(to_index, slide_id)
        positions = {s["id"]: s["position"] for s in self.canonical if _section(s) == section}
        self.pending = PendingMove(section, tuple(ids), slide_id, positions)
        return self.pending

    def discard(self):
        self.pending = None

    async def commit(self) -> List[dict]:
        """
        Send the pending move. Returns the applied position updates.

        Raises:
            DuplicatePosition: canonical state changed underneath; the overlay was
                discarded and canonical state re-fetched
            InvalidMove: the server rejected the move; the overlay was discarded
        """
        if self.pending is None:
            return []
        pending = self.pending
        response = await self.client.post(
            f"/wines/{self.wine_id}/slides/reconcile",
            json={
                "orderedSlideIds": list(pending.ordered_ids),
                "movedSlideId": pending.moved_slide_id,
                "expectedPositions": pending.expected_positions,
            },
        )

        if response.is_success:
            self.pending = None
            await self.refresh()
            return response.json()["updated"]

        detail = response.json().get("detail") if response.headers.get("content-type", "").startswith(
            "application/json") else None
        code = detail.get("code") if isinstance(detail, dict) else None
        message = detail.get("message") if isinstance(detail, dict) else str(detail)

        self.pending = None
        if code == DuplicatePosition.code:
            logger.info("Reorder conflict in wine %s; refreshing canonical order", self.wine_id)
            await self.refresh()
            raise DuplicatePosition(message)
        if code == InvalidMove.code:
            raise InvalidMove(message)
        raise TastingError(message or f"Reorder failed with HTTP {response.status_code}")
