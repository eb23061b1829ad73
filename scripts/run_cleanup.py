"""
Run the expired-gallery sweep against the configured blob store.
Dry run by default: lists what would be deleted. Pass --delete to remove files.
Run from project root; settings are read from the environment / .env.
"""
import argparse
import json
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import get_settings
from services.blob_store import build_blob_store
from services.cleanup import CleanupService
from services.gallery_service import GalleryService


def main() -> int:
    p = argparse.ArgumentParser(description="Delete files of expired, unpurchased galleries")
    p.add_argument("--delete", action="store_true", help="Actually delete (default is a dry run)")
    args = p.parse_args()

    settings = get_settings()
    store = build_blob_store(settings)
    galleries = GalleryService(store, ttl_days=settings.gallery_ttl_days)
    try:
        report = CleanupService(store, galleries).run(dry_run=not args.delete)
    except Exception as e:
        print(f"Cleanup failed: {e}")
        return 1

    print(json.dumps(report, indent=2))
    if not args.delete and report["processed"]:
        print(f"\n{report['processed']} expired galleries. Re-run with --delete to remove them.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
