from __future__ import annotations

from fastapi import APIRouter, Depends, status

from visreg.api.dependencies import get_platform
from visreg.api.schemas import BaselineCreate
from visreg.diff.imaging import decode_image, to_base64
from visreg.models.project import Baseline, BaselineMetadata
from visreg.orchestrator import Platform

router = APIRouter(tags=["baselines"])


@router.post("/baselines", response_model=Baseline, status_code=status.HTTP_201_CREATED)
async def create_baseline(body: BaselineCreate, platform: Platform = Depends(get_platform)):
    """Store a new baseline version; the previous active version for the name is retired."""
    platform.projects.require(body.project_id)
    decode_image(body.image, platform.settings.max_image_bytes)
    baseline = platform.baselines.add_version(
        project_id=body.project_id,
        name=body.name,
        image=to_base64(body.image),
        metadata=BaselineMetadata(viewport=body.viewport, url=body.url),
        mask_config=body.mask_config,
        dom_snapshot=body.dom_snapshot,
        tags=body.tags,
    )
    platform.files.save_baseline(baseline)
    return baseline


@router.get("/projects/{project_id}/baselines", response_model=list[Baseline])
async def list_baselines(
    project_id: str,
    active_only: bool = False,
    platform: Platform = Depends(get_platform),
):
    platform.projects.require(project_id)
    return platform.baselines.find_by_project(project_id, active_only=active_only)


@router.get("/baselines/{baseline_id}", response_model=Baseline)
async def get_baseline(baseline_id: str, platform: Platform = Depends(get_platform)):
    return platform.baselines.require(baseline_id)
