"""pytest configuration: in-memory database, API client and package factories."""

import logging
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from knowyourgrape.aggregator import SlideSequenceCache
from knowyourgrape.database import _enable_sqlite_foreign_keys, get_db
from knowyourgrape.handler import app, sequence_cache
from knowyourgrape.models import (
    Base, Package, PackageWine, Participant, SectionType, SessionStatus, SessionWineSelection, Slide, SlideType,
)
from knowyourgrape.models import Session as TastingSession
from knowyourgrape.positions import POSITION_GAP


@pytest.fixture(autouse=True, scope="session")
def _silence_logs():
    logging.getLogger("knowyourgrape").setLevel(logging.WARNING)
    yield


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def cache():
    return SlideSequenceCache()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    sequence_cache.clear()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    sequence_cache.clear()


def question_payload(title, question_type="text"):
    return {"title": title, "question_type": question_type}


@pytest.fixture
def make_package(db):
    """
    Build a package with ``wine_counts`` slides per wine (all deep_dive) and
    an optional package-level intro slide.
    """
    counter = {"n": 0}

    def _make(wine_counts=(5, 4, 6), intro=True, code=None, section=SectionType.DEEP_DIVE):
        counter["n"] += 1
        package = Package(code=code or f"PKG{counter['n']:03d}", name="Test Package")
        db.add(package)
        db.flush()

        intro_slide = None
        if intro:
            intro_slide = Slide(package_id=package.id, package_wine_id=None, position=POSITION_GAP,
                                type=SlideType.INTERLUDE, section_type=SectionType.INTRO,
                                payload_json={"title": "Welcome", "is_package_intro": True})
            db.add(intro_slide)

        wines = []
        slides = {}
        for wine_number, count in enumerate(wine_counts, start=1):
            wine = PackageWine(package_id=package.id, position=wine_number, wine_name=f"Wine {wine_number}")
            db.add(wine)
            db.flush()
            wines.append(wine)
            slides[wine.id] = []
            for index in range(count):
                slide = Slide(package_id=package.id, package_wine_id=wine.id, position=(index + 1) * POSITION_GAP,
                              type=SlideType.QUESTION, section_type=section,
                              payload_json=question_payload(f"Wine {wine_number} question {index + 1}"))
                db.add(slide)
                slides[wine.id].append(slide)

        db.commit()
        return SimpleNamespace(package=package, wines=wines, slides=slides, intro=intro_slide)

    return _make


@pytest.fixture
def make_session(db):
    """Active session with a host, default wine selections and one guest"""

    def _make(package, status=SessionStatus.ACTIVE, short_code="ABC123"):
        session = TastingSession(package_id=package.id, short_code=short_code, status=status)
        db.add(session)
        db.flush()
        for wine in package.wines:
            db.add(SessionWineSelection(session_id=session.id, package_wine_id=wine.id,
                                        position=wine.position, is_included=True))
        host = Participant(session_id=session.id, display_name="Host", is_host=True)
        guest = Participant(session_id=session.id, display_name="Guest", is_host=False)
        db.add_all([host, guest])
        db.commit()
        return SimpleNamespace(session=session, host=host, guest=guest)

    return _make
