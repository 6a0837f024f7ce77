#!/usr/bin/env python3
"""
CLI tool to process one uploaded video in the foreground, bypassing Pub/Sub.

Usage:
    python scripts/process_local.py <video_id> [--reanalyze "<feedback>"]

Example:
    python scripts/process_local.py 6f1c2a9e-0d4b-4a57-9a8f-2c0f2f3f6a10
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from clipora.db.database import async_session_maker, close_db, init_db
from clipora.errors import ClipporaError
from clipora.pipeline.reanalyzer import ClipReanalyzer
from clipora.pipeline.runner import process_video


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
)
logger = logging.getLogger(__name__)


async def print_progress(progress: float, message: str = None):
    logger.info(f"[{progress:5.1f}%] {message or ''}")


async def run(video_id: str, feedback: str = None) -> dict:
    """Run processing (or re-analysis when feedback is given) for one video."""
    await init_db()
    try:
        if feedback:
            async with async_session_maker() as session:
                clips = await ClipReanalyzer(session).reanalyze(video_id, feedback)
                return {"video_id": video_id, "clips": [clip.to_dict() for clip in clips]}
        return await process_video(video_id, progress_callback=print_progress)
    finally:
        await close_db()


def main():
    parser = argparse.ArgumentParser(
        description="Process one uploaded video with the Clipora pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run the full pipeline for a PENDING video
    python scripts/process_local.py <video_id>

    # Replace a COMPLETED video's clips using feedback
    python scripts/process_local.py <video_id> --reanalyze "shorter clips, focus on the jokes"
        """
    )

    parser.add_argument(
        "video_id",
        help="ID of the video record to process"
    )

    parser.add_argument(
        "--reanalyze", "-r",
        metavar="FEEDBACK",
        default=None,
        help="Re-run clip selection with this feedback instead of full processing"
    )

    args = parser.parse_args()

    try:
        result = asyncio.run(run(args.video_id, args.reanalyze))
    except ClipporaError as e:
        logger.error(f"{e.__class__.__name__}: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(130)
    except Exception as e:
        logger.exception(f"Error: {e}")
        sys.exit(1)

    print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
