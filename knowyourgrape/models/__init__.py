"""
SQLAlchemy models for Know Your Grape
"""
from .base import Base, BaseModel, GUID, JSONType, as_uuid, iso, utcnow
from .package import Package, PackageWine, Slide, SlideType, SectionType, SECTION_RANK
from .session import Session, SessionStatus, SessionWineSelection, Participant, Response

# Export all models for Alembic to discover
__all__ = [
    'Base',
    'BaseModel',
    'GUID',
    'JSONType',
    'as_uuid',
    'iso',
    'utcnow',
    'Package',
    'PackageWine',
    'Slide',
    'SlideType',
    'SectionType',
    'SECTION_RANK',
    'Session',
    'SessionStatus',
    'SessionWineSelection',
    'Participant',
    'Response',
]
