import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parents[1] / ".env")

BASE_DIR = Path(__file__).resolve().parents[1]
sys.path.append(str(BASE_DIR))

from dispatch_worker import config  # noqa: E402
from dispatch_worker.db import SessionLocal, get_engine  # noqa: E402
from dispatch_worker.exceptions import DispatchWorkerError  # noqa: E402
from dispatch_worker.services.incident_store import IncidentStore  # noqa: E402
from dispatch_worker.services.process_calls import process_calls_once  # noqa: E402

log = logging.getLogger("run_worker")


def main() -> int:
    parser = argparse.ArgumentParser(description="Run one dispatch worker cycle.")
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create the tables and seed the feed cursor, then exit.",
    )
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="Logging level.")
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        get_engine()
    except DispatchWorkerError as e:
        log.error("%s", e)
        return 1

    db = SessionLocal()
    try:
        if args.init_db:
            IncidentStore(db).init_db()
            print("Database initialized.")
            return 0

        result = asyncio.run(process_calls_once(db))
        print(json.dumps(result.as_dict()))
        return 0
    except DispatchWorkerError as e:
        log.error("Worker error: %s", e)
        print(json.dumps({"error": str(e)}))
        return 1
    except Exception as e:
        log.exception("Unexpected worker failure")
        print(json.dumps({"error": str(e) or type(e).__name__}))
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
