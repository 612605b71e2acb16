"""
Transcode one local video file into an HLS package.

Usage:
    cd backend
    python -m scripts.transcode_file <source> <output-dir> [--job-id ID]

Settings are read from the environment and .env (FFMPEG_PATH,
WORKER_POOL_SIZE, SEGMENT_DURATION_SECONDS, ...).
"""

import argparse
import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from abrpipe.core.config import settings
from abrpipe.core.logging import setup_logging
from abrpipe.modules.transcoding.errors import ToolInvocationError
from abrpipe.modules.transcoding.ffmpeg import FFmpegToolkit
from abrpipe.modules.transcoding.models import JobStatus
from abrpipe.modules.transcoding.service import TranscodingService


def print_snapshot(snapshot) -> None:
    print(f"\n{'='*60}")
    print(f"Job {snapshot.job_id}: {snapshot.status.value} ({snapshot.progress_percent}%)")
    print(f"{'='*60}")
    for name in snapshot.selected_qualities:
        info = snapshot.rendition_results[name]
        line = f"  {name:>6}: {info.state.value}, {info.attempts} attempt(s)"
        if info.segment_count:
            line += f", {info.segment_count} segments"
        if info.reason:
            line += f" - {info.reason}"
        print(line)
    if snapshot.master_manifest_path:
        print(f"  Master playlist: {snapshot.master_manifest_path}")
    for preview in (snapshot.thumbnail, snapshot.poster):
        if preview:
            print(f"  Preview: {preview.path} ({preview.width}x{preview.height})")
    for kind, error in snapshot.preview_errors.items():
        print(f"  Preview {kind} failed: {error}")
    if snapshot.failure_reason:
        print(f"  Failed ({snapshot.failure_kind.value}): {snapshot.failure_reason}")


async def transcode_file(source: str, output_dir: str, job_id: str = None) -> int:
    toolkit = FFmpegToolkit.from_settings(settings)
    try:
        await toolkit.verify()
    except ToolInvocationError as e:
        print(f"\n❌ {e}")
        return 2

    service = TranscodingService(config=settings, toolkit=toolkit)
    job_id = await service.submit(source, output_dir, job_id=job_id)

    last_status = None
    try:
        while True:
            snapshot = service.get_status(job_id)
            if snapshot.status != last_status:
                print(f"[{snapshot.progress_percent:3d}%] {snapshot.status.value}")
                last_status = snapshot.status
            if snapshot.is_terminal:
                break
            await asyncio.sleep(0.5)
    except asyncio.CancelledError:
        service.cancel(job_id)
    finally:
        snapshot = await service.wait(job_id)

    print_snapshot(snapshot)
    return 0 if snapshot.status == JobStatus.COMPLETED else 1


def main():
    parser = argparse.ArgumentParser(description="Transcode a video file into adaptive bitrate HLS")
    parser.add_argument("source", help="Path to the source video")
    parser.add_argument("output_dir", help="Directory receiving the HLS package")
    parser.add_argument("--job-id", "-j", type=str, help="Job id (generated when omitted)")
    parser.add_argument("--log-level", default=settings.LOG_LEVEL, help="Log level")
    parser.add_argument("--plain-logs", action="store_true", help="Human-readable logs instead of JSON")
    args = parser.parse_args()

    setup_logging(level=args.log_level, json_format=settings.LOG_JSON and not args.plain_logs)
    sys.exit(asyncio.run(transcode_file(args.source, args.output_dir, args.job_id)))


if __name__ == "__main__":
    main()
