#!/usr/bin/env python3
"""
CutRoom montage render

Renders a project's montage with ffmpeg and prints progress until the job
finishes. The plan is read from a JSON file, or generated from the
project's approved shots when --project-file is given instead.

Output:
    <projects_dir>/<project_id>/montage/renders/<job_id>.mp4

Usage:
    python scripts/render_montage.py my-project --plan montage/plan.json
    python scripts/render_montage.py my-project --project-file project.json --voiceover-seconds 42
    python scripts/render_montage.py my-project --plan plan.json --quality final

Prerequisites:
    ffmpeg installed
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from cutroom.common.config import get_settings
from cutroom.common.errors import CutroomError
from cutroom.common.logging import bind_log_context, get_logger, setup_logging
from cutroom.common.models import MontagePlan, Project, RenderQuality, RenderStatus
from cutroom.montage import RenderJobWorker, generate_montage_plan

logger = get_logger(__name__)


def load_plan(args: argparse.Namespace, project_dir: Path) -> MontagePlan:
    """Plan from --plan, or generated from --project-file."""
    if args.plan:
        path = Path(args.plan)
        if not path.is_absolute():
            path = project_dir / path
        return MontagePlan.model_validate_json(path.read_text(encoding="utf-8"))

    project = Project.model_validate_json(Path(args.project_file).read_text(encoding="utf-8"))
    return generate_montage_plan(project, args.voiceover_seconds)


async def run_render(args: argparse.Namespace) -> bool:
    settings = get_settings()
    projects_dir = Path(args.projects_dir or settings.projects_dir)
    project_dir = projects_dir / args.project_id
    bind_log_context(project_id=args.project_id)

    plan = load_plan(args, project_dir)
    print(f"Plan: {len(plan.timeline)} clips, {plan.total_duration_sec:.1f}s")

    worker = RenderJobWorker(projects_dir)
    job_id = worker.start(args.project_id, plan, RenderQuality(args.quality))
    print(f"Job: {job_id}")

    waiter = asyncio.create_task(worker.wait(job_id))
    try:
        while not waiter.done():
            job = worker.get_status(job_id)
            phase = job.phase.value if job.phase else "queued"
            print(f"  {phase:<12} {job.progress:5.1f}%  {job.rendered_frames}/{job.total_frames} frames")
            await asyncio.wait({waiter}, timeout=args.poll_interval)
        job = waiter.result()
    except asyncio.CancelledError:
        await worker.shutdown()
        raise

    if job.status != RenderStatus.DONE:
        print(f"Render failed: {job.error_message}")
        return False

    print(f"Output: {worker.get_output(job_id)}")
    return True


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="CutRoom - Montage render",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("project_id", help="Project directory name under the projects dir")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--plan",
        type=str,
        help="Montage plan JSON (relative paths are taken from the project dir)",
    )
    source.add_argument(
        "--project-file",
        type=str,
        help="Project JSON to generate a plan from",
    )
    parser.add_argument(
        "--voiceover-seconds",
        type=float,
        default=0.0,
        help="Voiceover length used when generating a plan (default: sum of shot durations)",
    )
    parser.add_argument(
        "--quality",
        type=str,
        choices=[q.value for q in RenderQuality],
        default=RenderQuality.PREVIEW.value,
        help="Render quality (default: preview)",
    )
    parser.add_argument(
        "--projects-dir",
        type=str,
        default=None,
        help="Projects root (default: PROJECTS_DIR setting)",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=1.0,
        help="Seconds between progress lines (default: 1.0)",
    )
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON logs")
    args = parser.parse_args()

    setup_logging(json_logs=args.json_logs or None)

    try:
        success = asyncio.run(run_render(args))
    except CutroomError as exc:
        logger.error("render_aborted", error=exc.message)
        success = False

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
