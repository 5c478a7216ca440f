#!/usr/bin/env python3
"""
Demo tasting package fixtures
A three-wine Bordeaux flight with a package introduction, ready to host
"""
import argparse
import sys
import uuid
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from knowyourgrape.positions import POSITION_GAP  # noqa: E402

DEMO_PACKAGE_CODE = "BORDX1"


def generate_package_fixture():
    """Package row for the demo flight"""
    return {
        'id': uuid.uuid4(),
        'code': DEMO_PACKAGE_CODE,
        'name': 'Bordeaux Left Bank Discovery',
        'description': 'Three wines from Pauillac, Margaux and Saint-Julien, tasted side by side',
        'image_url': None,
    }


def generate_wine_fixtures(package_id):
    """Three wines in tasting order"""
    wines = [
        ('Château Lynch-Bages 2016', 'Pauillac', 'Château Lynch-Bages', 2016),
        ('Château Palmer Alter Ego 2018', 'Margaux', 'Château Palmer', 2018),
        ('Château Talbot 2015', 'Saint-Julien', 'Château Talbot', 2015),
    ]
    return [
        {
            'id': uuid.uuid4(),
            'package_id': package_id,
            'position': index,
            'wine_name': name,
            'wine_description': f'Classic {region} blend led by Cabernet Sauvignon',
            'wine_type': 'red',
            'vintage': vintage,
            'region': region,
            'producer': producer,
        }
        for index, (name, region, producer, vintage) in enumerate(wines, start=1)
    ]


def _question(title, question_type, **extra):
    payload = {'title': title, 'question_type': question_type}
    payload.update(extra)
    return payload


def generate_slide_fixtures(package_id, wines):
    """Package intro plus intro / deep dive / ending slides for every wine"""
    slides = [{
        'id': uuid.uuid4(),
        'package_id': package_id,
        'package_wine_id': None,
        'position': POSITION_GAP,
        'type': 'interlude',
        'section_type': 'intro',
        'payload_json': {
            'title': 'Welcome to your Bordeaux tasting',
            'description': 'Pour all three glasses before we start',
            'is_package_intro': True,
        },
    }]

    for wine in wines:
        wine_slides = [
            ('interlude', 'intro', {'title': f"Meet {wine['wine_name']}", 'wine_name': wine['wine_name']}),
            ('question', 'intro', _question('What colour do you see?', 'multiple_choice', options=[
                {'id': '1', 'text': 'Ruby'}, {'id': '2', 'text': 'Garnet'}, {'id': '3', 'text': 'Purple'},
            ])),
            ('question', 'deep_dive', _question('Rate the aroma intensity', 'scale',
                                                scale_min=1, scale_max=10,
                                                scale_labels=['Very Light', 'Very Intense'])),
            ('question', 'deep_dive', _question('Describe the finish', 'text')),
            ('question', 'ending', _question('Would you buy this wine?', 'boolean')),
            ('interlude', 'ending', {'title': 'Host notes', 'description': 'Reveal the price', 'for_host': True}),
        ]
        for index, (slide_type, section, payload) in enumerate(wine_slides, start=1):
            slides.append({
                'id': uuid.uuid4(),
                'package_id': package_id,
                'package_wine_id': wine['id'],
                'position': index * POSITION_GAP,
                'type': slide_type,
                'section_type': section,
                'payload_json': payload,
            })
    return slides


def load_fixtures(db):
    """Insert the demo package; returns the Package row"""
    from knowyourgrape.aggregator import refresh_global_positions
    from knowyourgrape.models import Package, PackageWine, Slide, SlideType, SectionType

    existing = db.query(Package).filter(Package.code == DEMO_PACKAGE_CODE).first()
    if existing:
        print(f"⚠️  Package {DEMO_PACKAGE_CODE} already exists, skipping")
        return existing

    package_data = generate_package_fixture()
    package = Package(**package_data)
    db.add(package)

    wines = generate_wine_fixtures(package.id)
    for wine in wines:
        db.add(PackageWine(**wine))
    db.flush()

    slides = generate_slide_fixtures(package.id, wines)
    for slide in slides:
        slide = dict(slide)
        slide['type'] = SlideType(slide['type'])
        slide['section_type'] = SectionType(slide['section_type'])
        db.add(Slide(**slide))

    refresh_global_positions(db, package)
    db.commit()
    print(f"✅ Created package {package.code} with {len(wines)} wines and {len(slides)} slides")
    return package


def main():
    parser = argparse.ArgumentParser(description="Seed the demo tasting package")
    parser.add_argument("--database-url", help="Database URL (defaults to environment configuration)")
    parser.add_argument("--create-tables", action="store_true", help="Create tables before seeding")
    args = parser.parse_args()

    from knowyourgrape.database import DatabaseService

    service = DatabaseService(args.database_url)
    if args.create_tables:
        service.create_all()

    db = service.get_session()
    try:
        load_fixtures(db)
    finally:
        db.close()


if __name__ == "__main__":
    main()
