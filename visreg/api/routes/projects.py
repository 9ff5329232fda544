from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status

from visreg.api.dependencies import get_platform
from visreg.api.schemas import ProjectCreate
from visreg.models.project import Project
from visreg.orchestrator import Platform

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])


@router.post("", response_model=Project, status_code=status.HTTP_201_CREATED)
async def create_project(body: ProjectCreate, platform: Platform = Depends(get_platform)):
    project = platform.projects.create(
        Project(name=body.name, base_url=body.base_url, config=body.config)
    )
    logger.info("Created project %s (%s)", project.id, project.name)
    return project


@router.get("", response_model=list[Project])
async def list_projects(include_inactive: bool = False, platform: Platform = Depends(get_platform)):
    if include_inactive:
        return platform.projects.list()
    return platform.projects.find_active()


@router.get("/{project_id}", response_model=Project)
async def get_project(project_id: str, platform: Platform = Depends(get_platform)):
    return platform.projects.require(project_id)


@router.delete("/{project_id}", response_model=Project)
async def delete_project(project_id: str, platform: Platform = Depends(get_platform)):
    """Soft delete: the project is deactivated, never removed."""
    project = platform.projects.require(project_id)
    deactivated = platform.projects.update(project.deactivate())
    logger.info("Deactivated project %s", project_id)
    return deactivated
