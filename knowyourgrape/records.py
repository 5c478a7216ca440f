"""
Immutable snapshots of slide and wine rows

The ordering core works on these instead of ORM instances so a built
sequence can be cached and shared across requests after the database
session that loaded it is gone.
"""
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .models import PackageWine, Slide, SlideType, SectionType, SECTION_RANK


@dataclass(frozen=True)
class WineRecord:
    id: uuid.UUID
    position: int
    wine_name: str = ""
    data: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_model(cls, wine: PackageWine) -> "WineRecord":
        return cls(id=wine.id, position=wine.position, wine_name=wine.wine_name, data=wine.to_dict())

    def to_dict(self):
        return dict(self.data) or {'id': str(self.id), 'position': self.position, 'wineName': self.wine_name}


@dataclass(frozen=True)
class SlideRecord:
    id: uuid.UUID
    package_wine_id: Optional[uuid.UUID]
    position: int
    type: SlideType = SlideType.QUESTION
    section_type: Optional[SectionType] = None
    payload: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    data: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_model(cls, slide: Slide) -> "SlideRecord":
        return cls(
            id=slide.id,
            package_wine_id=slide.package_wine_id,
            position=slide.position,
            type=slide.type,
            section_type=slide.section_type,
            payload=dict(slide.payload_json or {}),
            data=slide.to_dict(),
        )

    @property
    def section(self) -> SectionType:
        return self.section_type or SectionType.INTRO

    @property
    def section_rank(self) -> int:
        return SECTION_RANK[self.section]

    @property
    def is_package_intro(self) -> bool:
        return bool(self.payload.get('is_package_intro')) or self.package_wine_id is None

    @property
    def is_host_only(self) -> bool:
        return bool(self.payload.get('for_host'))

    @property
    def is_welcome(self) -> bool:
        if self.is_package_intro:
            return True
        title = str(self.payload.get('title') or '')
        return (self.type == SlideType.INTERLUDE and
                self.section == SectionType.INTRO and
                'welcome' in title.lower())

    def with_position(self, position: int) -> "SlideRecord":
        data = dict(self.data)
        if data:
            data['position'] = position
        return SlideRecord(self.id, self.package_wine_id, position, self.type,
                           self.section_type, self.payload, data)

    def to_dict(self):
        if self.data:
            return dict(self.data)
        return {
            'id': str(self.id),
            'packageWineId': str(self.package_wine_id) if self.package_wine_id else None,
            'position': self.position,
            'type': self.type.value,
            'sectionType': self.section_type.value if self.section_type else None,
            'payloadJson': self.payload,
        }
