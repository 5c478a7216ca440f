"""
Live tasting session models: sessions, wine selections, participants and responses
"""
import enum

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, ForeignKey, UniqueConstraint, Index, Enum as SQLEnum
)
from sqlalchemy.orm import relationship

from .base import BaseModel, GUID, JSONType, utcnow, iso


class SessionStatus(enum.Enum):
    """Lifecycle of a live session"""
    WAITING = "waiting"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class Session(BaseModel):
    """One live playthrough of a package by a group"""
    __tablename__ = 'sessions'

    package_id = Column(GUID, ForeignKey('packages.id'), nullable=False, index=True, comment="Package being tasted")
    package = relationship("Package")

    short_code = Column(String(8), unique=True, nullable=False, index=True, comment="Join code shown to guests")
    status = Column(SQLEnum(SessionStatus, native_enum=False, length=20,
                            values_callable=lambda e: [m.value for m in e]),
                    nullable=False, default=SessionStatus.WAITING, comment="Session status")
    completed_at = Column(DateTime(timezone=True), comment="When the session was completed")
    active_participants = Column(Integer, nullable=False, default=0, comment="Joined participant count")

    participants = relationship("Participant", back_populates="session", cascade="all, delete-orphan")
    wine_selections = relationship("SessionWineSelection", back_populates="session", cascade="all, delete-orphan",
                                   order_by="SessionWineSelection.position")

    def __repr__(self):
        return f"<Session(short_code='{self.short_code}', status='{self.status}')>"

    def to_dict(self):
        return {
            'id': str(self.id),
            'packageId': str(self.package_id),
            'shortCode': self.short_code,
            'status': self.status.value if self.status else None,
            'completedAt': iso(self.completed_at),
            'activeParticipants': self.active_participants,
            'createdAt': iso(self.created_at),
            'updatedAt': iso(self.updated_at),
        }


class SessionWineSelection(BaseModel):
    """Per-session override of wine inclusion and order"""
    __tablename__ = 'session_wine_selections'
    __table_args__ = (
        UniqueConstraint('session_id', 'package_wine_id', name='uq_session_wine'),
        Index('idx_session_wines_session_position', 'session_id', 'position'),
    )

    session_id = Column(GUID, ForeignKey('sessions.id', ondelete='CASCADE'), nullable=False, index=True,
                        comment="Reference to session")
    session = relationship("Session", back_populates="wine_selections")

    package_wine_id = Column(GUID, ForeignKey('package_wines.id', ondelete='CASCADE'), nullable=False,
                             comment="Reference to package wine")
    wine = relationship("PackageWine")

    position = Column(Integer, nullable=False, comment="Host-chosen order")
    is_included = Column(Boolean, nullable=False, default=True, comment="Wine is part of this session")

    def to_dict(self):
        return {
            'id': str(self.id),
            'sessionId': str(self.session_id),
            'packageWineId': str(self.package_wine_id),
            'position': self.position,
            'isIncluded': self.is_included,
            'wine': self.wine.to_dict() if self.wine else None,
        }


class Participant(BaseModel):
    """One user within a session"""
    __tablename__ = 'participants'

    session_id = Column(GUID, ForeignKey('sessions.id', ondelete='CASCADE'), nullable=False, index=True,
                        comment="Reference to session")
    session = relationship("Session", back_populates="participants")

    email = Column(String(255), comment="Optional email")
    display_name = Column(String(100), nullable=False, comment="Name shown to the group")
    is_host = Column(Boolean, nullable=False, default=False, comment="Host controls pacing")
    progress_ptr = Column(Integer, nullable=False, default=0, comment="Playback cursor (step index, -1 once complete)")
    current_slide_id = Column(GUID, nullable=True, comment="Slide at the cursor, used to resume after content changes")
    last_active = Column(DateTime(timezone=True), nullable=False, default=utcnow, comment="Last navigation or answer")

    responses = relationship("Response", back_populates="participant", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Participant(name='{self.display_name}', host={self.is_host})>"

    def to_dict(self):
        return {
            'id': str(self.id),
            'sessionId': str(self.session_id),
            'email': self.email,
            'displayName': self.display_name,
            'isHost': self.is_host,
            'progressPtr': self.progress_ptr,
            'currentSlideId': str(self.current_slide_id) if self.current_slide_id else None,
            'lastActive': iso(self.last_active),
            'createdAt': iso(self.created_at),
        }


class Response(BaseModel):
    """A participant's answer to one slide; one row per (participant, slide)"""
    __tablename__ = 'responses'
    __table_args__ = (
        UniqueConstraint('participant_id', 'slide_id', name='uq_responses_participant_slide'),
    )

    participant_id = Column(GUID, ForeignKey('participants.id', ondelete='CASCADE'), nullable=False, index=True,
                            comment="Reference to participant")
    participant = relationship("Participant", back_populates="responses")

    slide_id = Column(GUID, ForeignKey('slides.id', ondelete='CASCADE'), nullable=False, index=True,
                      comment="Reference to slide")
    slide = relationship("Slide")

    answer_json = Column(JSONType, nullable=False, comment="Answer payload")
    answered_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, comment="Last time answered")
    synced = Column(Boolean, nullable=False, default=True, index=True, comment="False while queued offline")

    def to_dict(self):
        return {
            'id': str(self.id),
            'participantId': str(self.participant_id),
            'slideId': str(self.slide_id),
            'answerJson': self.answer_json,
            'answeredAt': iso(self.answered_at),
            'synced': self.synced,
        }
