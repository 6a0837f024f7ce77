"""Job handlers for different task types."""
import logging
from typing import Callable

from clipora.pipeline.runner import process_video

logger = logging.getLogger(__name__)

PROCESS_VIDEO = "process_video"


async def handle_process_video(
    job_id: str,
    video_id: str,
    progress_callback: Callable,
    **kwargs
) -> dict:
    """
    Handle the full processing pipeline for one uploaded video.

    Args:
        job_id: Job key (the video id)
        video_id: Video to process
        progress_callback: Async callback for progress updates

    Returns:
        Result dictionary with clip count
    """
    logger.info(f"Job {job_id}: processing video {video_id}")
    return await process_video(video_id, progress_callback=progress_callback)
