"""Tests for the operational scripts: demo fixtures, corruption detection and repair."""

import importlib.util
from pathlib import Path

import pytest

from knowyourgrape.aggregator import load_sequence
from knowyourgrape.models import Participant, SectionType, Slide, SlideType
from knowyourgrape.schemas import parse_slide_payload

SCRIPTS = Path(__file__).resolve().parent.parent / "scripts"


def load_script(relative_path):
    path = SCRIPTS / relative_path
    spec = importlib.util.spec_from_file_location(path.stem, path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture(scope="module")
def detector():
    return load_script("detect_position_corruption.py")


@pytest.fixture(scope="module")
def repair():
    return load_script("fix_global_positions.py")


@pytest.fixture(scope="module")
def fixtures():
    return load_script("fixtures/tasting_fixtures.py")


@pytest.fixture
def duplicated_intro(db, make_package):
    content = make_package((2, 2))
    db.add(Slide(package_id=content.package.id, package_wine_id=None, position=content.intro.position,
                 type=SlideType.INTERLUDE, section_type=SectionType.INTRO,
                 payload_json={"title": "Second welcome", "is_package_intro": True}))
    db.commit()
    return content


def test_clean_package_reports_nothing(db, make_package, detector):
    make_package((3, 3))
    assert detector.detect_corruption(db) == {}


def test_duplicate_package_slides_detected(db, duplicated_intro, detector):
    report = detector.detect_corruption(db)

    assert report == {duplicated_intro.package.code: {"wines": {"package": [1000]}, "global": []}}


def test_repair_renumbers_and_rewrites_global_positions(db, duplicated_intro, detector, repair):
    package = duplicated_intro.package

    changed = repair.repair_package(db, package)

    assert changed == 1
    assert detector.detect_corruption(db) == {}
    sequence = load_sequence(db, package, bypass_cache=True)
    globals_in_order = [db.get(Slide, item.slide_id).global_position for item in sequence]
    assert globals_in_order == [(index + 1) * 1000 for index in range(len(sequence))]


def test_dry_run_leaves_rows_alone(db, duplicated_intro, detector, repair):
    repair.repair_package(db, duplicated_intro.package, dry_run=True)
    assert detector.detect_corruption(db) != {}


def test_demo_fixtures_load_once(db, fixtures):
    package = fixtures.load_fixtures(db)
    assert fixtures.load_fixtures(db).id == package.id

    host_view = load_sequence(db, package)
    assert host_view.total_count == 1 + 3 * 6
    assert host_view[0].is_package_intro
    assert [item.slide.data["globalPosition"] for item in host_view] == [
        (index + 1) * 1000 for index in range(host_view.total_count)
    ]

    guest = Participant(display_name="Guest", is_host=False)
    assert load_sequence(db, package, guest).total_count == 1 + 3 * 5


def test_demo_payloads_are_valid(fixtures):
    package = fixtures.generate_package_fixture()
    wines = fixtures.generate_wine_fixtures(package["id"])
    for slide in fixtures.generate_slide_fixtures(package["id"], wines):
        parse_slide_payload(slide["type"], slide["payload_json"])
