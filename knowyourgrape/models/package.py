"""
Tasting package content models: packages, their wines and slides
"""
import enum

from sqlalchemy import Column, String, Integer, Text, ForeignKey, UniqueConstraint, Index, Enum as SQLEnum
from sqlalchemy.orm import relationship

from .base import BaseModel, GUID, JSONType, iso


class SlideType(enum.Enum):
    """Kind of slide content"""
    QUESTION = "question"
    MEDIA = "media"
    INTERLUDE = "interlude"
    VIDEO_MESSAGE = "video_message"
    AUDIO_MESSAGE = "audio_message"
    TRANSITION = "transition"


class SectionType(enum.Enum):
    """Phase of a wine's slides, in presentation order"""
    INTRO = "intro"
    DEEP_DIVE = "deep_dive"
    ENDING = "ending"


SECTION_RANK = {
    SectionType.INTRO: 0,
    SectionType.DEEP_DIVE: 1,
    SectionType.ENDING: 2,
}


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Package(BaseModel):
    """Authored collection of wines and their slides"""
    __tablename__ = 'packages'

    code = Column(String(10), unique=True, nullable=False, index=True, comment="Short package code (e.g., WINE01)")
    name = Column(Text, nullable=False, comment="Package name")
    description = Column(Text, comment="Package description")
    image_url = Column(Text, comment="Cover image reference")

    wines = relationship("PackageWine", back_populates="package", cascade="all, delete-orphan",
                         order_by="PackageWine.position")
    slides = relationship("Slide", back_populates="package", cascade="all, delete-orphan",
                          foreign_keys="Slide.package_id")

    def __repr__(self):
        return f"<Package(code='{self.code}', name='{self.name}')>"

    def to_dict(self):
        return {
            'id': str(self.id),
            'code': self.code,
            'name': self.name,
            'description': self.description,
            'imageUrl': self.image_url,
            'active': self.active,
            'createdAt': iso(self.created_at),
            'updatedAt': iso(self.updated_at),
        }


class PackageWine(BaseModel):
    """One tasting subject within a package"""
    __tablename__ = 'package_wines'
    __table_args__ = (
        UniqueConstraint('package_id', 'position', name='uq_package_wines_package_position'),
    )

    package_id = Column(GUID, ForeignKey('packages.id', ondelete='CASCADE'), nullable=False, index=True,
                        comment="Reference to package")
    package = relationship("Package", back_populates="wines")

    position = Column(Integer, nullable=False, comment="Presentation order within the package")
    wine_name = Column(Text, nullable=False, comment="Wine name")
    wine_description = Column(Text, comment="Wine description")
    wine_image_url = Column(Text, comment="Wine image reference")
    wine_type = Column(String(50), comment="red, white, rosé, sparkling, dessert")
    vintage = Column(Integer, comment="Wine vintage year")
    region = Column(Text, comment="Wine region")
    producer = Column(Text, comment="Wine producer/winery")

    slides = relationship("Slide", back_populates="wine", cascade="all, delete-orphan",
                          foreign_keys="Slide.package_wine_id")

    def __repr__(self):
        return f"<PackageWine(name='{self.wine_name}', position={self.position})>"

    def to_dict(self):
        return {
            'id': str(self.id),
            'packageId': str(self.package_id),
            'position': self.position,
            'wineName': self.wine_name,
            'wineDescription': self.wine_description,
            'wineImageUrl': self.wine_image_url,
            'wineType': self.wine_type,
            'vintage': self.vintage,
            'region': self.region,
            'producer': self.producer,
        }


class Slide(BaseModel):
    """
    One unit of content shown to a participant.

    Every slide belongs to a package. Wine slides also carry the wine they
    belong to; package-level slides (the package intro) have no wine.
    ``position`` orders slides inside a wine and is unique per wine.
    ``global_position`` is a legacy denormalized hint and is never used to sort.
    """
    __tablename__ = 'slides'
    __table_args__ = (
        UniqueConstraint('package_wine_id', 'position', name='uq_slides_wine_position'),
        Index('idx_slides_package_wine_position', 'package_wine_id', 'position'),
    )

    package_id = Column(GUID, ForeignKey('packages.id', ondelete='CASCADE'), nullable=False, index=True,
                        comment="Owning package")
    package = relationship("Package", back_populates="slides", foreign_keys=[package_id])

    package_wine_id = Column(GUID, ForeignKey('package_wines.id', ondelete='CASCADE'), nullable=True, index=True,
                             comment="Owning wine; null for package-level slides")
    wine = relationship("PackageWine", back_populates="slides", foreign_keys=[package_wine_id])

    position = Column(Integer, nullable=False, comment="Integer-scaled fractional position within the wine")
    global_position = Column(Integer, nullable=False, default=0, comment="Legacy package-wide ordering hint")
    type = Column(SQLEnum(SlideType, native_enum=False, length=50, values_callable=_enum_values),
                  nullable=False, comment="Slide type")
    section_type = Column(SQLEnum(SectionType, native_enum=False, length=20, values_callable=_enum_values),
                          nullable=True, comment="Section within the wine")
    payload_json = Column(JSONType, nullable=False, default=dict, comment="Type-specific payload")

    def __repr__(self):
        return f"<Slide(id={self.id}, type='{self.type}', position={self.position})>"

    def to_dict(self):
        return {
            'id': str(self.id),
            'packageId': str(self.package_id),
            'packageWineId': str(self.package_wine_id) if self.package_wine_id else None,
            'position': self.position,
            'globalPosition': self.global_position,
            'type': self.type.value if self.type else None,
            'sectionType': self.section_type.value if self.section_type else None,
            'payloadJson': self.payload_json,
            'createdAt': iso(self.created_at),
        }
