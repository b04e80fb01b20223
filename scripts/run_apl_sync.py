"""
Run one jurisdiction's APL sync from the CLI.

    python -m scripts.run_apl_sync --state MI
    python -m scripts.run_apl_sync --state FL --local-file ./data/fl_apl.xlsx

Exit codes: 0 success, 1 failed or partially failed run, 2 unknown state,
3 a run for the state is already in flight (here or in the API process).
"""

from __future__ import annotations

import argparse
import json
import logging
import os
from dataclasses import replace

from app.errors import ScheduleConflictError, UnknownJurisdictionError
from app.jurisdictions import get_jurisdiction, get_jurisdictions
from app.scheduler.jobs import APLSyncScheduler
from app.services.apl_ingestion_service import APLIngestionService
from db.models.apl_sync_run import SyncRunStatus, SyncTrigger
from db.session import SessionLocal


def main() -> int:
    parser = argparse.ArgumentParser(description="Run an APL sync for one state immediately.")
    parser.add_argument(
        "--state",
        dest="state",
        required=True,
        help="Two-letter state code, e.g. MI, NC, FL, OR.",
    )
    parser.add_argument(
        "--local-file",
        dest="local_file",
        default=None,
        help="Optional path to an APL file; bypasses the download.",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").strip().upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    try:
        config = get_jurisdiction(args.state)
    except UnknownJurisdictionError as exc:
        print(json.dumps({"error": str(exc), "known_states": sorted(get_jurisdictions())}))
        return 2

    if args.local_file:
        config = replace(config, local_file_path=args.local_file, use_local_file=True)

    sync_scheduler = APLSyncScheduler(
        session_factory=SessionLocal,
        jurisdictions={config.state: config},
        ingestion_service=APLIngestionService(session_factory=SessionLocal),
    )
    try:
        summary = sync_scheduler.run_sync(config.state, triggered_by=SyncTrigger.MANUAL)
    except ScheduleConflictError as exc:
        print(json.dumps({"error": str(exc)}))
        return 3

    print(json.dumps(summary.to_dict(), indent=2, default=str))
    return 0 if summary.status == SyncRunStatus.SUCCESS else 1


if __name__ == "__main__":
    raise SystemExit(main())
