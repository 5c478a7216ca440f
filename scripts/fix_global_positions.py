#!/usr/bin/env python3
"""
Position Repair Tool
Renumbers wines whose slides share a position, then rewrites the legacy
global_position column from the aggregated playback order
"""
import argparse
import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from knowyourgrape.aggregator import refresh_global_positions, slide_sort_key  # noqa: E402
from knowyourgrape.database import DatabaseService  # noqa: E402
from knowyourgrape.models import Package, PackageWine, Slide  # noqa: E402
from knowyourgrape.positions import find_duplicate_positions, renumber  # noqa: E402
from knowyourgrape.records import SlideRecord  # noqa: E402
from knowyourgrape.reorder import PositionUpdate, apply_position_updates, wine_lock  # noqa: E402


def repair_scope(db, scope_id, slides, dry_run=False):
    """Renumber one wine (or the package-level slides) in its current deterministic order"""
    records = sorted((SlideRecord.from_model(slide) for slide in slides), key=slide_sort_key)
    if not find_duplicate_positions(record.position for record in records):
        return 0

    updates = [
        PositionUpdate(record.id, position)
        for record, position in zip(records, renumber(len(records)))
        if record.position != position
    ]
    print(f"   🔧 {scope_id}: {len(updates)} slides renumbered")
    if not dry_run:
        with wine_lock(db, scope_id):
            apply_position_updates(db, updates)
    return len(updates)


def repair_package(db, package, dry_run=False):
    print(f"🔸 Package {package.code}")
    changed = 0

    package_level = db.query(Slide).filter(Slide.package_id == package.id, Slide.package_wine_id.is_(None)).all()
    changed += repair_scope(db, package.id, package_level, dry_run)
    for wine in db.query(PackageWine).filter(PackageWine.package_id == package.id).all():
        changed += repair_scope(db, wine.id, wine.slides, dry_run)

    if not dry_run:
        count = refresh_global_positions(db, package)
        db.commit()
        print(f"   ✅ global_position rewritten for {count} slides")
    return changed


def main():
    parser = argparse.ArgumentParser(description="Repair duplicate slide positions")
    parser.add_argument("--database-url", help="Database URL (defaults to environment configuration)")
    parser.add_argument("--package", help="Only repair this package code")
    parser.add_argument("--dry-run", action="store_true", help="Report what would change without writing")
    args = parser.parse_args()

    print("🛠️ Slide Position Repair")
    print("=" * 50)

    db = DatabaseService(args.database_url).get_session()
    try:
        query = db.query(Package).order_by(Package.code)
        if args.package:
            query = query.filter(Package.code == args.package.upper())
        total = sum(repair_package(db, package, args.dry_run) for package in query.all())
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    print()
    print(f"🎉 Done: {total} slide positions {'would change' if args.dry_run else 'changed'}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
