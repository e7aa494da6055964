from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas.common import APIResponse, PaginatedResponse
from app.schemas.roll_job import RollJobCreate, RollJobResponse
from app.services.roll_job import RollJobService

router = APIRouter(prefix="/roll-jobs", tags=["roll-jobs"])


@router.post("/", status_code=status.HTTP_202_ACCEPTED)
async def submit_roll_job(
    payload: RollJobCreate,
    service: Annotated[RollJobService, Depends()],
    wait: Annotated[bool, Query(description="Wait for the roll to finish")] = False,
) -> APIResponse[RollJobResponse]:
    """Queue a Wonderspin roll.

    With `wait`, the response holds the finished job unless it takes longer than the configured
    wait timeout, in which case the job is returned still queued and can be polled.
    """
    job = await service.submit(payload)
    if wait:
        job = await service.wait_for_job(job.id) or job

    return APIResponse(data=RollJobResponse.model_validate(job, from_attributes=True))


@router.get("/{job_id}")
async def get_roll_job(
    job_id: str, service: Annotated[RollJobService, Depends()]
) -> APIResponse[RollJobResponse]:
    job = await service.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Roll job not found")
    return APIResponse(data=RollJobResponse.model_validate(job, from_attributes=True))


@router.get("/")
async def get_user_roll_jobs(
    user_id: Annotated[int, Query()],
    service: Annotated[RollJobService, Depends()],
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 10,
) -> PaginatedResponse[list[RollJobResponse]]:
    """Get a user's roll jobs, newest first."""
    jobs, pagination = await service.get_user_jobs(user_id, page=page, page_size=page_size)
    data = [RollJobResponse.model_validate(job, from_attributes=True) for job in jobs]
    return PaginatedResponse(data=data, pagination=pagination)
