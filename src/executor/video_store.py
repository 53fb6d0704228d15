"""Store records of videos generated from agent visual prompts.

One record per (workflow, agent type, prompt key, user). Saving the same
prompt again updates the existing record. The video files themselves live
elsewhere; only their paths are stored.
"""

import logging
from typing import Optional

from src.executor.db import _json_dumps, _json_loads, execute
from src.executor.schemas import GeneratedVideo, SaveVideoRequest, utc_now

logger = logging.getLogger(__name__)


def _row_to_video(row: dict) -> GeneratedVideo:
    return GeneratedVideo.model_validate(_json_loads(row["document"]))


def _find_by_prompt(
    workflow_id: str, agent_type: str, prompt_key: str, user_id: str
) -> Optional[GeneratedVideo]:
    row = execute(
        """SELECT document FROM generated_videos
           WHERE workflow_id = %s AND agent_type = %s
             AND prompt_key = %s AND user_id = %s""",
        (workflow_id, agent_type, prompt_key, user_id),
        fetch="one",
    )
    return _row_to_video(row) if row else None


def _write(video: GeneratedVideo, insert: bool) -> None:
    document = _json_dumps(video.model_dump(mode="json"))
    if insert:
        execute(
            """INSERT INTO generated_videos
               (video_id, workflow_id, user_id, agent_type, prompt_key,
                prompt_index, status, document, generated_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)""",
            (video.video_id, video.workflow_id, video.user_id, video.agent_type,
             video.prompt_key, video.prompt_index, video.status, document,
             video.generated_at),
        )
    else:
        execute(
            """UPDATE generated_videos
               SET status = %s, document = %s, generated_at = %s
               WHERE video_id = %s""",
            (video.status, document, video.generated_at, video.video_id),
        )


def save_video(user_id: str, request: SaveVideoRequest) -> tuple[GeneratedVideo, bool]:
    """Insert or update the record for this prompt.

    Returns (video, created). The caller validates that workflow_id,
    agent_type and local_path are present.
    """
    prompt_index = request.prompt_index or 0
    prompt_key = request.prompt_key or f"prompt_{prompt_index}"

    existing = _find_by_prompt(
        request.workflow_id, request.agent_type, prompt_key, user_id
    )
    if existing is not None:
        existing.local_path = request.local_path
        existing.file_name = request.file_name
        existing.file_size = request.file_size
        existing.prompt = request.prompt or existing.prompt
        existing.scene_name = request.scene_name or existing.scene_name
        existing.scene_details = request.scene_details or existing.scene_details
        existing.config = request.config or existing.config
        existing.status = "completed"
        existing.generated_at = utc_now()
        _write(existing, insert=False)
        logger.info(f"Updated video record {existing.video_id} ({prompt_key})")
        return existing, False

    video = GeneratedVideo(
        workflow_id=request.workflow_id,
        user_id=user_id,
        agent_id=request.agent_id or "unknown",
        agent_type=request.agent_type,
        prompt_index=prompt_index,
        prompt_key=prompt_key,
        prompt=request.prompt or "",
        scene_name=request.scene_name,
        scene_details=request.scene_details,
        local_path=request.local_path,
        file_name=request.file_name,
        file_size=request.file_size,
        config=request.config or {},
        operation_id=request.operation_id,
        project_name=request.project_name,
        draft_name=request.draft_name,
    )
    _write(video, insert=True)
    logger.info(
        f"Saved video record {video.video_id}: workflow={video.workflow_id}, "
        f"agent={video.agent_type}, prompt={prompt_key}"
    )
    return video, True


def list_videos(
    workflow_id: str,
    user_id: str,
    agent_type: Optional[str] = None,
) -> list[GeneratedVideo]:
    """Completed videos for a workflow, ordered by agent type then prompt index."""
    if agent_type:
        rows = execute(
            """SELECT document FROM generated_videos
               WHERE workflow_id = %s AND user_id = %s
                 AND status = 'completed' AND agent_type = %s
               ORDER BY agent_type, prompt_index""",
            (workflow_id, user_id, agent_type),
            fetch="all",
        )
    else:
        rows = execute(
            """SELECT document FROM generated_videos
               WHERE workflow_id = %s AND user_id = %s AND status = 'completed'
               ORDER BY agent_type, prompt_index""",
            (workflow_id, user_id),
            fetch="all",
        )
    return [_row_to_video(row) for row in rows]


def build_video_map(videos: list[GeneratedVideo]) -> dict[str, dict]:
    """Group videos for the editor: agent_type -> {videos, statuses} keyed by prompt."""
    video_map: dict[str, dict] = {}
    for video in videos:
        entry = video_map.setdefault(video.agent_type, {"videos": {}, "statuses": {}})
        entry["videos"][video.prompt_key] = video.local_path
        entry["statuses"][video.prompt_key] = {
            "status": video.status,
            "message": "Video ready" if video.status == "completed" else video.status,
            "scene_name": video.scene_name,
            "generated_at": video.generated_at,
        }
    return video_map


def delete_video(video_id: str, user_id: str) -> bool:
    """Delete by id. Returns True if a record was removed."""
    deleted = execute(
        "DELETE FROM generated_videos WHERE video_id = %s AND user_id = %s",
        (video_id, user_id),
        fetch="rowcount",
    )
    if deleted:
        logger.info(f"Deleted video record {video_id}")
    return bool(deleted)


def delete_video_by_prompt(
    workflow_id: str, agent_type: str, prompt_key: str, user_id: str
) -> bool:
    """Delete the record for one prompt. Returns True if a record was removed."""
    deleted = execute(
        """DELETE FROM generated_videos
           WHERE workflow_id = %s AND agent_type = %s
             AND prompt_key = %s AND user_id = %s""",
        (workflow_id, agent_type, prompt_key, user_id),
        fetch="rowcount",
    )
    if deleted:
        logger.info(f"Deleted video record for {workflow_id}/{agent_type}/{prompt_key}")
    return bool(deleted)
