#!/usr/bin/env python3
"""
Position Corruption Detector
Reports slides sharing a position inside one wine and packages whose legacy
global_position values collide (0 means never assigned)
"""
import argparse
import sys
from collections import defaultdict
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from knowyourgrape.database import DatabaseService  # noqa: E402
from knowyourgrape.models import Package, Slide  # noqa: E402
from knowyourgrape.positions import find_duplicate_positions  # noqa: E402


def detect_corruption(db):
    """Return ``{package_code: {'wines': {scope: [positions]}, 'global': [positions]}}`` for corrupted packages"""
    report = {}
    for package in db.query(Package).order_by(Package.code).all():
        scopes = defaultdict(list)
        global_positions = []
        for slide in db.query(Slide).filter(Slide.package_id == package.id).all():
            scope = str(slide.package_wine_id) if slide.package_wine_id else 'package'
            scopes[scope].append(slide.position)
            if slide.global_position:
                global_positions.append(slide.global_position)

        wine_duplicates = {
            scope: duplicates
            for scope, duplicates in ((scope, find_duplicate_positions(positions)) for scope, positions in scopes.items())
            if duplicates
        }
        global_duplicates = find_duplicate_positions(global_positions)
        if wine_duplicates or global_duplicates:
            report[package.code] = {'wines': wine_duplicates, 'global': global_duplicates}
    return report


def main():
    parser = argparse.ArgumentParser(description="Detect duplicate slide positions")
    parser.add_argument("--database-url", help="Database URL (defaults to environment configuration)")
    args = parser.parse_args()

    print("🔍 Slide Position Corruption Check")
    print("=" * 50)

    db = DatabaseService(args.database_url).get_session()
    try:
        report = detect_corruption(db)
    finally:
        db.close()

    if not report:
        print("✅ No duplicate positions found")
        return 0

    for code, problems in report.items():
        print(f"🔸 Package {code}")
        for scope, duplicates in problems['wines'].items():
            print(f"   ❌ {scope}: duplicate positions {duplicates}")
        if problems['global']:
            print(f"   ⚠️  global_position collisions: {len(problems['global'])} values")
    print()
    print("💡 Run scripts/fix_global_positions.py to renumber affected packages")
    return 1


if __name__ == "__main__":
    sys.exit(main())
