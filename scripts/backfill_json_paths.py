#!/usr/bin/env python3
"""Fill exports.json_path for rows created before the column existed.

The sidecar location is guessed by swapping the ``.usdz`` extension for
``.json``; a row is only updated when that object actually exists.
Run with ``--apply`` to write changes, otherwise the script only reports.
"""

import argparse
import sys

from sqlalchemy import select

from app.core.exceptions import ObjectNotFoundError
from app.core.settings import settings
from app.db.models import ExportRecord
from app.db.session import get_sessionmaker, init_engine
from app.services.storage import get_legacy_store, get_object_store, init_storage
from app.services.storage_uri import StorageUri, legacy_json_path_for, locate


def _exists(raw: str) -> bool:
    location = locate(raw)
    try:
        if isinstance(location, StorageUri):
            get_object_store().download(location.bucket, location.path)
        elif location is not None and not location.is_absolute_url:
            get_legacy_store().read(location.value)
        else:
            return False
    except ObjectNotFoundError:
        return False
    return True


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--apply", action="store_true", help="write json_path values")
    parser.add_argument("--limit", type=int, default=1000)
    args = parser.parse_args()

    init_engine(settings.database_url)
    init_storage(settings)

    updated = 0
    with get_sessionmaker()() as db:
        rows = db.execute(
            select(ExportRecord).where(ExportRecord.json_path.is_(None)).limit(args.limit)
        ).scalars().all()
        for record in rows:
            candidate = legacy_json_path_for(record.usdz_path)
            if candidate is None or not _exists(candidate):
                continue
            print(f"{record.id} -> {candidate}")
            if args.apply:
                record.json_path = candidate
            updated += 1
        if args.apply:
            db.commit()

    action = "updated" if args.apply else "would update"
    print(f"{action} {updated} of {len(rows)} exports", file=sys.stderr)


if __name__ == "__main__":
    main()
