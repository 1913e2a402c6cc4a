# dispatch_worker/routers/worker.py

import logging
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..db import get_db
from ..exceptions import DispatchWorkerError
from ..services.process_calls import DispatchPipeline, process_calls_once

log = logging.getLogger(__name__)

router = APIRouter()


class CycleSummary(BaseModel):
    processed: int
    skipped: int
    fetched: int
    parsed: int
    reconciled: int
    cursor: Optional[int] = None


@lru_cache(maxsize=1)
def get_pipeline() -> DispatchPipeline:
    # one pipeline per process so the rate limiters and the credential
    # cache outlive a single request
    return DispatchPipeline.from_config()


@router.post("/process-calls", response_model=CycleSummary)
async def process_calls(db: Session = Depends(get_db)):
    """
    Run one worker cycle. Meant to be hit by an external scheduler
    (cron, pg_cron, Cloud Scheduler) at most once at a time.
    """
    try:
        pipeline = get_pipeline()
        result = await process_calls_once(db, pipeline=pipeline)
    except DispatchWorkerError as e:
        log.error("Worker error: %s", e)
        return JSONResponse(status_code=500, content={"error": str(e)})
    except Exception as e:
        log.exception("Unexpected worker failure")
        return JSONResponse(status_code=500, content={"error": str(e) or type(e).__name__})

    return result.as_dict()
