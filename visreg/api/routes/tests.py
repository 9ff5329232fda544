from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status

from visreg.api.dependencies import get_platform
from visreg.api.schemas import RunTestRequest, RunTestResponse
from visreg.errors import NotFoundError
from visreg.execution.queue import QueueStatus
from visreg.models.test_result import TestResult
from visreg.models.test_run import RunConfig, TestRun
from visreg.orchestrator import Platform

logger = logging.getLogger(__name__)

router = APIRouter(tags=["tests"])


@router.post("/tests/run", response_model=RunTestResponse, status_code=status.HTTP_202_ACCEPTED)
async def run_test(body: RunTestRequest, platform: Platform = Depends(get_platform)):
    """Queue a visual test and return immediately."""
    config = RunConfig(
        url=body.url,
        viewport=body.viewport,
        wait_conditions=body.wait_conditions,
        dynamic_content=body.dynamic_content or platform.settings.default_dynamic_content(),
        baseline_id=body.baseline_id,
    )
    run, _ = platform.submit_run(body.project_id, config, body.priority)
    return RunTestResponse(
        test_id=run.id,
        status=run.status.value,
        priority=run.priority,
        queue_position=platform.queue.queue_position(run.id),
    )


@router.get("/tests/{test_id}", response_model=TestRun)
async def get_test(test_id: str, platform: Platform = Depends(get_platform)):
    return platform.runs.require(test_id)


@router.get("/queue/status", response_model=QueueStatus)
async def queue_status(platform: Platform = Depends(get_platform)):
    return platform.queue.get_queue_status()


@router.get("/tests/{test_id}/result", response_model=TestResult)
async def get_test_result(test_id: str, platform: Platform = Depends(get_platform)):
    platform.runs.require(test_id)
    result = platform.results.find_by_run(test_id)
    if result is None:
        raise NotFoundError(f"no result recorded for test {test_id}")
    return result


@router.post("/results/{result_id}/unresolve", response_model=TestResult)
async def mark_result_unresolved(result_id: str, platform: Platform = Depends(get_platform)):
    """Flag a result for human review."""
    result = platform.results.require(result_id).mark_unresolved()
    platform.results.update(result)
    logger.info("Result %s marked UNRESOLVED", result_id)
    return result
