"""
Project API routes.

Provides the sheet sync for projects using the VCS workflow.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.concurrency import run_in_threadpool

from backend.dependencies import get_sheet_sync_service
from gitops.sheet_sync import SheetSyncService
from models.data_models import SYSTEM_BOT_ID
from utils.errors import GitOpsError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["project"])


@router.post("/project/{project_id}/sync-sheet")
async def sync_sheet(
    project_id: int,
    x_principal_id: Optional[int] = Header(default=None),
    service: SheetSyncService = Depends(get_sheet_sync_service),
):
    """
    Create or refresh the project's sheets from the files of its repository.

    Path Parameters:
    - project_id: Project using the VCS workflow

    Headers:
    - X-Principal-ID: Principal recorded on the sheets (default: system bot)

    Returns:
    - synced: Number of sheets created or patched
    - sheets: Names of those sheets

    Raises:
    - 400: If the project is not in VCS workflow or a sheet path has no name
    - 404: If the project, its repository or VCS is not found
    """
    principal_id = x_principal_id if x_principal_id is not None else SYSTEM_BOT_ID
    try:
        sheets = await run_in_threadpool(service.sync_sheets, project_id, principal_id)
    except GitOpsError as e:
        logger.warning(f"Sheet sync for project {project_id} failed ({e.status_code}): {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Failed to sync sheets for project {project_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to sync sheets: {str(e)}")

    logger.info(f"Synced {len(sheets)} sheets for project {project_id}")
    return {
        "synced": len(sheets),
        "sheets": [sheet.name for sheet in sheets],
    }
