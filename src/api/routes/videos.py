"""Generated video API routes.

Records of videos rendered from agent visual prompts, scoped to the user.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from src.api.auth import get_current_user
from src.executor.schemas import SaveVideoRequest
from src.executor.video_store import (
    build_video_map,
    delete_video,
    delete_video_by_prompt,
    list_videos,
    save_video,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/generated-videos", tags=["generated-videos"])


@router.get("")
def get_generated_videos(
    workflow_id: Optional[str] = Query(None, alias="workflowId"),
    agent_type: Optional[str] = Query(None, alias="agentType"),
    user_id: str = Depends(get_current_user),
) -> dict:
    """Completed videos for a workflow, plus a per-agent map for the editor."""
    if not workflow_id:
        raise HTTPException(status_code=400, detail="workflowId is required")

    videos = list_videos(workflow_id, user_id, agent_type=agent_type)
    return {
        "success": True,
        "videos": [v.model_dump() for v in videos],
        "video_map": build_video_map(videos),
        "count": len(videos),
    }


@router.post("")
def save_generated_video(
    request: SaveVideoRequest,
    user_id: str = Depends(get_current_user),
) -> dict:
    """Record a generated video; re-saving the same prompt updates it."""
    if not request.workflow_id or not request.agent_type or not request.local_path:
        raise HTTPException(
            status_code=400,
            detail="workflow_id, agent_type, and local_path are required",
        )

    video, created = save_video(user_id, request)
    return {
        "success": True,
        "video": video.model_dump(),
        "message": "Video saved successfully" if created else "Video updated successfully",
    }


@router.delete("")
def delete_generated_video(
    video_id: Optional[str] = Query(None, alias="videoId"),
    workflow_id: Optional[str] = Query(None, alias="workflowId"),
    agent_type: Optional[str] = Query(None, alias="agentType"),
    prompt_key: Optional[str] = Query(None, alias="promptKey"),
    user_id: str = Depends(get_current_user),
) -> dict:
    """Delete by videoId, or by workflowId + agentType + promptKey."""
    if video_id:
        deleted = delete_video(video_id, user_id)
    elif workflow_id and agent_type and prompt_key:
        deleted = delete_video_by_prompt(workflow_id, agent_type, prompt_key, user_id)
    else:
        raise HTTPException(
            status_code=400,
            detail="Either videoId or (workflowId, agentType, promptKey) is required",
        )

    if not deleted:
        raise HTTPException(status_code=404, detail="Video not found")
    return {"success": True, "message": "Video deleted successfully"}
