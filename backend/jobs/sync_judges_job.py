"""
Run one CourtListener sync batch from the command line.

    python -m jobs.sync_judges_job --phase decisions --limit 10            # dry run
    python -m jobs.sync_judges_job --phase judges --limit 25 --execute
    python -m jobs.sync_judges_job --phase judges --discover --execute     # new people
    python -m jobs.sync_judges_job --phase judges --ids 1213,4551 --execute

Without --execute the job only reports which ids it would sync.
BATCH_SIZE (env) sets the default --limit.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import List, Optional

from judgefinder.core.logger import logger
from judgefinder.db.database import SessionLocal
from judgefinder.db.models import Court, Judge
from judgefinder.services.background_jobs import SYNC_PHASES, select_due_ids
from judgefinder.services.courtlistener_client import courtlistener_client
from judgefinder.services.sync_batch import SyncOptions
from judgefinder.utils.exceptions import JudgeFinderError


def _default_limit() -> int:
    try:
        return max(1, int(os.getenv("BATCH_SIZE", "10")))
    except ValueError:
        return 10


async def discover_new_ids(phase: str, limit: int, max_pages: int = 5) -> List[str]:
    """CourtListener ids not yet stored locally, in listing order."""
    db = SessionLocal()
    try:
        if phase == "courts":
            known = {r[0] for r in db.query(Court.courtlistener_id).filter(Court.courtlistener_id.isnot(None))}
            listing = courtlistener_client.list_courts({"in_use": "true"}, max_pages=max_pages)
        else:
            known = {r[0] for r in db.query(Judge.courtlistener_id).filter(Judge.courtlistener_id.isnot(None))}
            listing = courtlistener_client.list_judges({"positions__position_type": "jud"}, max_pages=max_pages)
    finally:
        db.close()

    found: List[str] = []
    async for item in listing:
        external_id = str(item.get("id") or "")
        if external_id and external_id not in known and external_id not in found:
            found.append(external_id)
            if len(found) >= limit:
                break
    return found


async def run_sync_judges_job(
    phase: str,
    limit: int,
    execute: bool = False,
    ids: Optional[List[str]] = None,
    discover: bool = False,
    skip_if_exists: bool = False,
) -> dict:
    manager = SYNC_PHASES[phase]
    limit = min(limit, manager.batch_max)

    if ids:
        targets = ids[:limit]
    elif discover:
        if phase == "decisions":
            raise JudgeFinderError("--discover applies to courts and judges only")
        targets = await discover_new_ids(phase, limit)
    else:
        db = SessionLocal()
        try:
            targets = select_due_ids(db, phase, limit)
        finally:
            db.close()

    if not execute:
        logger.info("Dry run: %d %s would be synced", len(targets), phase)
        return {"phase": phase, "dry_run": True, "ids": targets}

    try:
        result = await manager.sync_batch(targets, SyncOptions(skip_if_exists=skip_if_exists))
    finally:
        await courtlistener_client.aclose()
    return {"phase": phase, "dry_run": False, **result.to_dict()}


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Sync courts, judges or decisions from CourtListener")
    parser.add_argument("--phase", choices=sorted(SYNC_PHASES), default="decisions")
    parser.add_argument("--limit", type=int, default=_default_limit(), help="Max items (env BATCH_SIZE)")
    parser.add_argument("--execute", action="store_true", help="Write changes (default is a dry run)")
    parser.add_argument("--ids", help="Comma-separated entity ids instead of the due queue")
    parser.add_argument("--discover", action="store_true", help="Pick ids not yet stored locally")
    parser.add_argument("--skip-existing", action="store_true", help="Skip judges already fully enriched")
    args = parser.parse_args(argv)

    ids = [i.strip() for i in (args.ids or "").split(",") if i.strip()]
    try:
        summary = asyncio.run(
            run_sync_judges_job(
                args.phase,
                max(1, args.limit),
                execute=args.execute,
                ids=ids or None,
                discover=args.discover,
                skip_if_exists=args.skip_existing,
            )
        )
    except JudgeFinderError as exc:
        logger.error("Sync job failed: %s", exc.message)
        return 1
    except Exception:
        logger.exception("Sync job crashed")
        return 1

    print(json.dumps(summary, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
