"""
Know Your Grape API
FastAPI application served through Mangum on AWS Lambda
"""
import logging
import os
import secrets
import time

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from . import __version__
from .aggregator import SlideSequenceCache, load_sequence, refresh_global_positions
from .config import get_environment, get_settings
from .database import db_service, get_db
from .errors import SessionStateError, TastingError, ValidationFailed
from .migrations import run_alembic_command
from .models import (
    Package, PackageWine, Participant, SectionType, SessionStatus, SessionWineSelection, Slide, SlideType,
    as_uuid, utcnow,
)
from .models import Session as TastingSession
from .navigator import PlaybackService
from .positions import allocate_between
from .reorder import ReorderService, move_wine, scope_owner, wine_lock
from .responses import record_response, responses_for_participant, responses_for_slide
from .schemas import normalize_payload

logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

settings = get_settings()

# Initialize FastAPI app
app = FastAPI(title="Know Your Grape API", version=__version__)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

sequence_cache = SlideSequenceCache(enabled=settings.sequence_cache_enabled)
reorder_service = ReorderService(cache=sequence_cache)
playback_service = PlaybackService(cache=sequence_cache)

SHORT_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

# Optional wine fields accepted by the wine endpoints, keyed by request name
WINE_FIELDS = {
    "wineDescription": "wine_description",
    "wineImageUrl": "wine_image_url",
    "wineType": "wine_type",
    "vintage": "vintage",
    "region": "region",
    "producer": "producer",
}


def domain_error(error: TastingError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.to_dict())


async def read_body(request: Request) -> dict:
    """Parse JSON body manually; anything but an object is a 400"""
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be valid JSON")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return body


def require_fields(body: dict, fields):
    for field in fields:
        if field not in body or body[field] in (None, ""):
            raise HTTPException(status_code=400, detail=f"Missing required field: {field}")


def get_or_404(db: Session, model, raw_id, label):
    item_id = as_uuid(raw_id)
    item = db.get(model, item_id) if item_id is not None else None
    if item is None:
        raise HTTPException(status_code=404, detail=f"{label} {raw_id} not found")
    return item


def package_by_code(db: Session, code: str) -> Package:
    package = db.execute(select(Package).where(Package.code == code.upper())).scalar_one_or_none()
    if package is None:
        raise HTTPException(status_code=404, detail=f"Package {code} not found")
    return package


def find_session(db: Session, id_or_code) -> TastingSession:
    session_id = as_uuid(id_or_code)
    if session_id is not None:
        session = db.get(TastingSession, session_id)
        if session is not None:
            return session
    session = db.execute(
        select(TastingSession).where(TastingSession.short_code == str(id_or_code).upper())
    ).scalar_one_or_none()
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {id_or_code} not found")
    return session


def parse_enum(enum_cls, value, field):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise HTTPException(status_code=400, detail=f"Invalid {field}: {value}. Expected one of: {allowed}")


def generate_short_code(db: Session, length=6) -> str:
    while True:
        code = "".join(secrets.choice(SHORT_CODE_ALPHABET) for _ in range(length))
        exists = db.execute(select(TastingSession.id).where(TastingSession.short_code == code)).first()
        if not exists:
            return code


def next_slide_position(db: Session, package_id, wine_id, section: SectionType) -> int:
    """Position after the last slide of ``section`` that collides with nothing else in the wine"""
    if wine_id is not None:
        siblings = db.execute(select(Slide).where(Slide.package_wine_id == wine_id)).scalars().all()
    else:
        siblings = db.execute(
            select(Slide).where(Slide.package_id == package_id, Slide.package_wine_id.is_(None))
        ).scalars().all()
    in_section = [slide.position for slide in siblings if (slide.section_type or SectionType.INTRO) == section]
    prev = max(in_section) if in_section else None
    return allocate_between(prev, None, taken={slide.position for slide in siblings})


@app.get("/")
def root():
    """Root endpoint"""
    return {
        "message": "Know Your Grape API",
        "status": "online",
        "timestamp": time.time(),
    }


@app.get("/health")
def health_check():
    """Health check endpoint"""
    env, _ = get_environment()
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "environment": env,
        "version": __version__,
    }


@app.get("/db/test")
def test_database():
    """Test database connection"""
    result = db_service.test_connection()
    if result["status"] != "connected":
        raise HTTPException(status_code=500, detail=f"Database test failed: {result['error']}")
    return {"status": "success", "database_test": result["result"], "timestamp": time.time()}


# Package endpoints
@app.post("/packages")
async def create_package(request: Request, db: Session = Depends(get_db)):
    """Create a tasting package"""
    try:
        body = await read_body(request)
        require_fields(body, ["code", "name"])

        code = str(body["code"]).strip().upper()
        if len(code) > 10:
            raise HTTPException(status_code=400, detail="Package code must be at most 10 characters")
        existing = db.execute(select(Package.id).where(Package.code == code)).first()
        if existing:
            raise HTTPException(status_code=400, detail=f"Package code {code} already exists")

        package = Package(
            code=code,
            name=body["name"],
            description=body.get("description"),
            image_url=body.get("imageUrl"),
        )
        db.add(package)
        db.commit()
        db.refresh(package)
        logger.info("Created package %s", package.code)

        return {"status": "success", "package": package.to_dict()}

    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Failed to create package: {str(e)}")


@app.get("/packages/{code}")
def get_package(code: str, db: Session = Depends(get_db)):
    """Get a package with its wines"""
    try:
        package = package_by_code(db, code)
        data = package.to_dict()
        data["wines"] = [wine.to_dict() for wine in package.wines]
        return {"package": data}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


@app.patch("/packages/{package_id}")
async def update_package(package_id: str, request: Request, db: Session = Depends(get_db)):
    """Update package details; the code is frozen once a session references it"""
    try:
        body = await read_body(request)
        package = get_or_404(db, Package, package_id, "Package")

        if "code" in body and str(body["code"]).strip().upper() != package.code:
            in_use = db.execute(
                select(func.count(TastingSession.id)).where(TastingSession.package_id == package.id)
            ).scalar()
            if in_use:
                raise HTTPException(status_code=409, detail="Package code cannot change once sessions exist")
            new_code = str(body["code"]).strip().upper()
            if db.execute(select(Package.id).where(Package.code == new_code)).first():
                raise HTTPException(status_code=400, detail=f"Package code {new_code} already exists")
            package.code = new_code

        if "name" in body:
            if not body["name"]:
                raise HTTPException(status_code=400, detail="Package name cannot be empty")
            package.name = body["name"]
        if "description" in body:
            package.description = body["description"]
        if "imageUrl" in body:
            package.image_url = body["imageUrl"]

        db.commit()
        sequence_cache.invalidate_package(package.id)
        return {"status": "success", "package": package.to_dict()}

    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


@app.get("/packages/{code}/slides")
def get_package_slides(code: str, participantId: str = None, db: Session = Depends(get_db)):
    """
    Aggregated slide order for a package.

    With ``participantId`` the participant's session wine selections apply and
    host-only slides are hidden from guests.
    """
    try:
        package = package_by_code(db, code)

        participant = None
        if participantId:
            participant = get_or_404(db, Participant, participantId, "Participant")
            if participant.session.package_id != package.id:
                raise HTTPException(status_code=400, detail="Participant does not belong to this package")

        sequence = load_sequence(db, package, participant, cache=sequence_cache)
        return sequence.to_dict()

    except HTTPException:
        raise
    except TastingError as e:
        raise domain_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


# Wine endpoints
@app.post("/packages/{package_id}/wines")
async def create_wine(package_id: str, request: Request, db: Session = Depends(get_db)):
    """Add a wine to a package"""
    try:
        body = await read_body(request)
        require_fields(body, ["wineName"])
        package = get_or_404(db, Package, package_id, "Package")

        taken = {wine.position for wine in package.wines}
        position = body.get("position")
        if position is None:
            position = max(taken, default=0) + 1
        elif isinstance(position, bool) or not isinstance(position, int) or position <= 0:
            raise HTTPException(status_code=400, detail="position must be a positive integer")
        if position in taken:
            raise HTTPException(status_code=400, detail=f"Wine position {position} is already used")

        wine = PackageWine(
            package_id=package.id,
            position=position,
            wine_name=body["wineName"],
            wine_description=body.get("wineDescription"),
            wine_image_url=body.get("wineImageUrl"),
            wine_type=body.get("wineType"),
            vintage=body.get("vintage"),
            region=body.get("region"),
            producer=body.get("producer"),
        )
        db.add(wine)
        db.commit()
        db.refresh(wine)
        sequence_cache.invalidate_package(package.id)

        return {"status": "success", "wine": wine.to_dict()}

    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Failed to create wine: {str(e)}")


@app.get("/packages/{package_id}/wines")
def list_wines(package_id: str, db: Session = Depends(get_db)):
    """List a package's wines in package order"""
    try:
        package = get_or_404(db, Package, package_id, "Package")
        return {"wines": [wine.to_dict() for wine in package.wines]}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


def wine_of_package(db: Session, package_id, wine_id) -> PackageWine:
    package = get_or_404(db, Package, package_id, "Package")
    wine = get_or_404(db, PackageWine, wine_id, "Wine")
    if wine.package_id != package.id:
        raise HTTPException(status_code=404, detail=f"Wine {wine_id} not found in package {package_id}")
    return wine


@app.patch("/packages/{package_id}/wines/{wine_id}")
async def update_wine(package_id: str, wine_id: str, request: Request, db: Session = Depends(get_db)):
    """Update wine details; ``position`` moves the wine to that slot and shifts the others"""
    try:
        body = await read_body(request)
        wine = wine_of_package(db, package_id, wine_id)

        if "wineName" in body:
            if not body["wineName"]:
                raise HTTPException(status_code=400, detail="Wine name cannot be empty")
            wine.wine_name = body["wineName"]
        for field, attribute in WINE_FIELDS.items():
            if field in body:
                setattr(wine, attribute, body[field])

        if "position" in body and body["position"] != wine.position:
            move_wine(db, wine, body["position"])
        refresh_global_positions(db, wine.package)
        db.commit()
        sequence_cache.invalidate_package(wine.package_id)

        return {"status": "success", "wine": wine.to_dict()}

    except HTTPException:
        raise
    except TastingError as e:
        db.rollback()
        raise domain_error(e)
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


@app.delete("/packages/{package_id}/wines/{wine_id}")
def delete_wine(package_id: str, wine_id: str, db: Session = Depends(get_db)):
    """Delete a wine and its slides; refused while an unfinished session includes it"""
    try:
        wine = wine_of_package(db, package_id, wine_id)
        package = wine.package

        in_use = db.execute(
            select(func.count(SessionWineSelection.id))
            .join(TastingSession, SessionWineSelection.session_id == TastingSession.id)
            .where(
                SessionWineSelection.package_wine_id == wine.id,
                SessionWineSelection.is_included.is_(True),
                TastingSession.status != SessionStatus.COMPLETED,
            )
        ).scalar()
        if in_use:
            raise HTTPException(status_code=409, detail="Wine is part of a session that has not completed")

        db.delete(wine)
        refresh_global_positions(db, package)
        db.commit()
        sequence_cache.invalidate_package(package.id)
        logger.info("Deleted wine %s from package %s", wine_id, package.code)

        return {"status": "success", "deleted": wine_id}

    except HTTPException:
        raise
    except TastingError as e:
        db.rollback()
        raise domain_error(e)
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


# Slide endpoints
async def _create_slide(db: Session, request: Request, package: Package, wine=None):
    body = await read_body(request)
    require_fields(body, ["type"])

    slide_type = parse_enum(SlideType, body["type"], "type")
    section = parse_enum(SectionType, body.get("sectionType") or "intro", "sectionType")
    payload = normalize_payload(slide_type, body.get("payloadJson") or {})
    wine_id = wine.id if wine is not None else None

    with wine_lock(db, wine_id or package.id):
        slide = Slide(
            package_id=package.id,
            package_wine_id=wine_id,
            position=next_slide_position(db, package.id, wine_id, section),
            type=slide_type,
            section_type=section,
            payload_json=payload,
        )
        db.add(slide)
        refresh_global_positions(db, package)
        db.commit()
    db.refresh(slide)
    sequence_cache.invalidate_package(package.id)
    return {"status": "success", "slide": slide.to_dict()}


@app.post("/wines/{wine_id}/slides")
async def create_wine_slide(wine_id: str, request: Request, db: Session = Depends(get_db)):
    """Add a slide at the end of its section"""
    try:
        wine = get_or_404(db, PackageWine, wine_id, "Wine")
        return await _create_slide(db, request, wine.package, wine)

    except HTTPException:
        raise
    except TastingError as e:
        db.rollback()
        raise domain_error(e)
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Failed to create slide: {str(e)}")


@app.post("/packages/{package_id}/slides")
async def create_package_slide(package_id: str, request: Request, db: Session = Depends(get_db)):
    """Add a package-level slide (package introduction)"""
    try:
        package = get_or_404(db, Package, package_id, "Package")
        return await _create_slide(db, request, package)

    except HTTPException:
        raise
    except TastingError as e:
        db.rollback()
        raise domain_error(e)
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Failed to create slide: {str(e)}")


@app.patch("/slides/{slide_id}")
async def update_slide(slide_id: str, request: Request, db: Session = Depends(get_db)):
    """Update slide content; a section change moves the slide to the end of the new section"""
    try:
        body = await read_body(request)
        slide = get_or_404(db, Slide, slide_id, "Slide")

        slide_type = parse_enum(SlideType, body["type"], "type") if "type" in body else slide.type
        payload = body["payloadJson"] if "payloadJson" in body else slide.payload_json

        with wine_lock(db, scope_owner(slide)):
            if "sectionType" in body:
                section = parse_enum(SectionType, body["sectionType"], "sectionType")
                if section != (slide.section_type or SectionType.INTRO):
                    slide.position = next_slide_position(db, slide.package_id, slide.package_wine_id, section)
                slide.section_type = section
            slide.type = slide_type
            slide.payload_json = normalize_payload(slide_type, payload)
            refresh_global_positions(db, slide.package)
            db.commit()

        sequence_cache.invalidate_package(slide.package_id)
        return {"status": "success", "slide": slide.to_dict()}

    except HTTPException:
        raise
    except TastingError as e:
        db.rollback()
        raise domain_error(e)
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


@app.delete("/slides/{slide_id}")
def delete_slide(slide_id: str, db: Session = Depends(get_db)):
    """Delete a slide and its responses"""
    try:
        slide = get_or_404(db, Slide, slide_id, "Slide")
        package = slide.package
        db.delete(slide)
        refresh_global_positions(db, package)
        db.commit()
        sequence_cache.invalidate_package(package.id)
        return {"status": "success", "deleted": slide_id}

    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


@app.put("/slides/{slide_id}/position")
async def update_slide_position(slide_id: str, request: Request, db: Session = Depends(get_db)):
    """Set one slide's position; 400 when not positive or already used in the wine"""
    try:
        body = await read_body(request)
        require_fields(body, ["newPosition"])
        slide = get_or_404(db, Slide, slide_id, "Slide")

        slide = reorder_service.set_position(db, slide.id, body["newPosition"])
        return {"status": "success", "slide": slide.to_dict()}

    except HTTPException:
        raise
    except TastingError as e:
        db.rollback()
        raise domain_error(e)
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


@app.post("/slides/reorder")
async def reorder_slides(request: Request, db: Session = Depends(get_db)):
    """Apply a batch of slide positions atomically"""
    try:
        body = await read_body(request)
        updates = body.get("updates")
        if not isinstance(updates, list):
            raise HTTPException(status_code=400, detail="updates must be a list")

        applied = reorder_service.apply_batch(db, updates)
        return {"status": "success", "updated": [update.to_dict() for update in applied]}

    except HTTPException:
        raise
    except TastingError as e:
        db.rollback()
        raise domain_error(e)
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


@app.post("/wines/{wine_id}/slides/reconcile")
async def reconcile_wine_slides(wine_id: str, request: Request, db: Session = Depends(get_db)):
    """Turn a dragged section order into the minimal set of position updates and apply them"""
    try:
        body = await read_body(request)
        ordered = body.get("orderedSlideIds")
        if not isinstance(ordered, list) or not ordered:
            raise HTTPException(status_code=400, detail="orderedSlideIds must be a non-empty list")
        expected = body.get("expectedPositions")
        if expected is not None and not isinstance(expected, dict):
            raise HTTPException(status_code=400, detail="expectedPositions must be an object")

        wine = get_or_404(db, PackageWine, wine_id, "Wine")
        updates = reorder_service.reconcile_and_apply(
            db,
            ordered,
            moved_slide_id=body.get("movedSlideId"),
            expected_positions=expected,
            wine_id=wine.id,
        )
        return {"status": "success", "updated": [update.to_dict() for update in updates]}

    except HTTPException:
        raise
    except TastingError as e:
        db.rollback()
        raise domain_error(e)
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


# Session endpoints
@app.post("/sessions")
async def create_session(request: Request, db: Session = Depends(get_db)):
    """Create a session for a package, optionally with its host"""
    try:
        body = await read_body(request)
        require_fields(body, ["packageCode"])
        package = package_by_code(db, str(body["packageCode"]))

        session = TastingSession(package_id=package.id, short_code=generate_short_code(db),
                                 status=SessionStatus.WAITING)
        db.add(session)
        db.flush()

        for wine in package.wines:
            db.add(SessionWineSelection(session_id=session.id, package_wine_id=wine.id,
                                        position=wine.position, is_included=True))

        host = None
        if body.get("hostDisplayName"):
            host = Participant(session_id=session.id, display_name=body["hostDisplayName"],
                               email=body.get("hostEmail"), is_host=True)
            db.add(host)
            session.active_participants = 1

        db.commit()
        db.refresh(session)
        logger.info("Created session %s for package %s", session.short_code, package.code)

        return {
            "status": "success",
            "session": session.to_dict(),
            "host": host.to_dict() if host is not None else None,
        }

    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Failed to create session: {str(e)}")


@app.get("/sessions/{session_id}")
def get_session(session_id: str, db: Session = Depends(get_db)):
    """Get a session by id or short code"""
    try:
        session = find_session(db, session_id)
        data = session.to_dict()
        data["packageCode"] = session.package.code
        return {"session": data}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


@app.patch("/sessions/{session_id}/status")
async def update_session_status(session_id: str, request: Request, db: Session = Depends(get_db)):
    """Move a session through waiting / active / paused / completed"""
    try:
        body = await read_body(request)
        require_fields(body, ["status"])
        session = find_session(db, session_id)
        status = parse_enum(SessionStatus, body["status"], "status")

        if session.status == SessionStatus.COMPLETED and status != SessionStatus.COMPLETED:
            raise SessionStateError("A completed session cannot be reopened", session_id=str(session.id))

        session.status = status
        session.completed_at = utcnow() if status == SessionStatus.COMPLETED else None
        db.commit()
        return {"status": "success", "session": session.to_dict()}

    except HTTPException:
        raise
    except TastingError as e:
        db.rollback()
        raise domain_error(e)
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


@app.post("/sessions/{session_id}/participants")
async def join_session(session_id: str, request: Request, db: Session = Depends(get_db)):
    """Join a session; guests need an active session that already has a host"""
    try:
        body = await read_body(request)
        require_fields(body, ["displayName"])
        session = find_session(db, session_id)
        is_host = bool(body.get("isHost"))

        if session.status == SessionStatus.COMPLETED:
            raise SessionStateError("Session has already completed", session_id=str(session.id))
        if not is_host:
            has_host = any(participant.is_host for participant in session.participants)
            if session.status != SessionStatus.ACTIVE or not has_host:
                raise SessionStateError("Session is not active yet; wait for the host to start it",
                                        session_id=str(session.id), status=session.status.value)

        participant = Participant(session_id=session.id, display_name=body["displayName"],
                                  email=body.get("email"), is_host=is_host)
        db.add(participant)
        session.active_participants = (session.active_participants or 0) + 1
        db.commit()
        db.refresh(participant)

        return {"status": "success", "participant": participant.to_dict()}

    except HTTPException:
        raise
    except TastingError as e:
        db.rollback()
        raise domain_error(e)
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Failed to join session: {str(e)}")


@app.get("/sessions/{session_id}/participants")
def list_participants(session_id: str, db: Session = Depends(get_db)):
    """List a session's participants"""
    try:
        session = find_session(db, session_id)
        return {"participants": [participant.to_dict() for participant in session.participants]}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


@app.get("/sessions/{session_id}/wine-selections")
def list_wine_selections(session_id: str, db: Session = Depends(get_db)):
    """Session wine order and inclusion"""
    try:
        session = find_session(db, session_id)
        return {"selections": [selection.to_dict() for selection in session.wine_selections]}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


@app.post("/sessions/{session_id}/wine-selections")
async def replace_wine_selections(session_id: str, request: Request, db: Session = Depends(get_db)):
    """Replace the session's wine ordering/inclusion override"""
    try:
        body = await read_body(request)
        selections = body.get("selections")
        if not isinstance(selections, list):
            raise HTTPException(status_code=400, detail="selections must be a list")

        session = find_session(db, session_id)
        package_wines = {wine.id for wine in session.package.wines}

        parsed = []
        seen = set()
        for item in selections:
            if not isinstance(item, dict):
                raise ValidationFailed("Each selection must be an object")
            wine_id = as_uuid(item.get("packageWineId"))
            if wine_id not in package_wines:
                raise ValidationFailed(f"Wine {item.get('packageWineId')} is not part of this package")
            if wine_id in seen:
                raise ValidationFailed(f"Wine {wine_id} is selected twice")
            position = item.get("position")
            if isinstance(position, bool) or not isinstance(position, int) or position < 0:
                raise ValidationFailed(f"Position for wine {wine_id} must be a non-negative integer")
            seen.add(wine_id)
            parsed.append((wine_id, position, bool(item.get("isIncluded", True))))
        if not any(is_included for _, _, is_included in parsed):
            raise ValidationFailed("At least one wine must be included", session_id=str(session.id))

        for selection in list(session.wine_selections):
            db.delete(selection)
        db.flush()
        for wine_id, position, is_included in parsed:
            db.add(SessionWineSelection(session_id=session.id, package_wine_id=wine_id,
                                        position=position, is_included=is_included))
        db.commit()
        db.refresh(session)
        sequence_cache.invalidate_package(session.package_id)

        return {"status": "success", "selections": [selection.to_dict() for selection in session.wine_selections]}

    except HTTPException:
        raise
    except TastingError as e:
        db.rollback()
        raise domain_error(e)
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


# Playback endpoints
@app.get("/participants/{participant_id}/playback")
def get_playback(participant_id: str, db: Session = Depends(get_db)):
    """Participant's current playback step"""
    try:
        return playback_service.state(db, participant_id)

    except HTTPException:
        raise
    except TastingError as e:
        raise domain_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


@app.post("/participants/{participant_id}/playback/advance")
def advance_playback(participant_id: str, db: Session = Depends(get_db)):
    """Move to the next step"""
    try:
        return playback_service.advance(db, participant_id)

    except HTTPException:
        raise
    except TastingError as e:
        db.rollback()
        raise domain_error(e)
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


@app.post("/participants/{participant_id}/playback/back")
def back_playback(participant_id: str, db: Session = Depends(get_db)):
    """Move to the previous step"""
    try:
        return playback_service.back(db, participant_id)

    except HTTPException:
        raise
    except TastingError as e:
        db.rollback()
        raise domain_error(e)
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


@app.post("/participants/{participant_id}/playback/jump")
async def jump_playback(participant_id: str, request: Request, db: Session = Depends(get_db)):
    """Jump to a slide index; the sequence length means the end of the tasting"""
    try:
        body = await read_body(request)
        slide_index = body.get("slideIndex")
        if isinstance(slide_index, bool) or not isinstance(slide_index, int):
            raise HTTPException(status_code=400, detail="slideIndex must be an integer")
        return playback_service.jump(db, participant_id, slide_index)

    except HTTPException:
        raise
    except TastingError as e:
        db.rollback()
        raise domain_error(e)
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


# Response endpoints
@app.post("/responses")
async def save_response(request: Request, db: Session = Depends(get_db)):
    """Upsert a participant's answer to a slide"""
    try:
        body = await read_body(request)
        require_fields(body, ["participantId", "slideId"])
        if "answerJson" not in body:
            raise HTTPException(status_code=400, detail="Missing required field: answerJson")

        response = record_response(db, body["participantId"], body["slideId"], body["answerJson"],
                                   synced=body.get("synced", True))
        return {"status": "success", "response": response.to_dict()}

    except HTTPException:
        raise
    except TastingError as e:
        db.rollback()
        raise domain_error(e)
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Failed to save response: {str(e)}")


@app.get("/participants/{participant_id}/responses")
def list_participant_responses(participant_id: str, db: Session = Depends(get_db)):
    try:
        responses = responses_for_participant(db, participant_id)
        return {"responses": [response.to_dict() for response in responses]}

    except TastingError as e:
        raise domain_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


@app.get("/slides/{slide_id}/responses")
def list_slide_responses(slide_id: str, db: Session = Depends(get_db)):
    try:
        responses = responses_for_slide(db, slide_id)
        return {"responses": [response.to_dict() for response in responses]}

    except TastingError as e:
        raise domain_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


# Migration endpoints
@app.post("/migrate/upgrade")
async def upgrade_database():
    """Run all pending migrations (alembic upgrade head)"""
    result = run_alembic_command(["upgrade", "head"])

    if result["success"]:
        return {
            "status": "success",
            "message": "Database upgraded successfully",
            "output": result["stdout"],
            "command": result["command"],
        }
    raise HTTPException(
        status_code=500,
        detail={
            "message": "Migration failed",
            "error": result["stderr"],
            "output": result["stdout"],
            "command": result["command"],
        },
    )


@app.get("/migrate/current")
async def current_revision():
    """Get current database revision"""
    result = run_alembic_command(["current"])

    if result["success"]:
        return {
            "status": "success",
            "current_revision": result["stdout"].strip(),
            "output": result["stdout"],
        }
    raise HTTPException(
        status_code=500,
        detail={
            "message": "Failed to get current revision",
            "error": result["stderr"],
        },
    )


# Create the Lambda handler
handler = Mangum(app)
