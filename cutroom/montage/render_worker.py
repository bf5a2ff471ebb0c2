"""Background montage renders.

``RenderJobWorker`` owns the job records: it starts each render as an
asyncio task, walks it through ``bundling -> compositing -> encoding ->
finalizing`` and is the only code that updates progress. Callers poll
``get_status``. The actual encode is delegated to a ``RenderBackend``;
``FFmpegRenderBackend`` drives the ffmpeg CLI.
"""

from __future__ import annotations

import asyncio
import shutil
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from cutroom.common.errors import (
    RenderBackendError,
    RenderJobNotFoundError,
    RenderNotCompleteError,
)
from cutroom.common.logging import get_logger
from cutroom.common.models import (
    MontagePlan,
    RenderJob,
    RenderPhase,
    RenderQuality,
    RenderStatus,
    ResolvedTimeline,
    TransitionKind,
    utc_now,
)
from cutroom.montage.resolver import resolve_plan

logger = get_logger(__name__)

RENDERS_DIR = Path("montage") / "renders"

ProgressCallback = Callable[[int, "float | None"], None]


@dataclass(frozen=True)
class RenderPreset:
    """Encoder settings for a quality tier.

    ``width``/``height`` of None means the timeline's native size.
    """

    quality: RenderQuality
    crf: int
    encoder_preset: str
    width: int | None = None
    height: int | None = None
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    audio_bitrate: str = "192k"

    def dimensions(self, timeline: ResolvedTimeline) -> tuple[int, int]:
        return (self.width or timeline.width, self.height or timeline.height)

    def resolution(self, timeline: ResolvedTimeline) -> str:
        width, height = self.dimensions(timeline)
        return f"{width}x{height}"


RENDER_QUALITY_PRESETS = {
    RenderQuality.PREVIEW: RenderPreset(
        quality=RenderQuality.PREVIEW,
        crf=28,
        encoder_preset="veryfast",
        width=1280,
        height=720,
    ),
    RenderQuality.FINAL: RenderPreset(
        quality=RenderQuality.FINAL,
        crf=18,
        encoder_preset="slow",
    ),
}


# ============================================================================
# Backends
# ============================================================================


class RenderBackend(ABC):
    """Turns a resolved timeline into a video file."""

    def prepare(self, timeline: ResolvedTimeline) -> None:
        """Check that every input the timeline references exists.

        Raises:
            RenderBackendError: listing the missing files
        """
        files = [clip.file for clip in timeline.clips]
        files += [f for f in (timeline.voiceover_file, timeline.music_file) if f]
        missing = [f for f in files if not Path(f).is_file()]
        if missing:
            raise RenderBackendError(f"Missing input files: {', '.join(missing)}")

    @abstractmethod
    async def render(
        self,
        timeline: ResolvedTimeline,
        preset: RenderPreset,
        output_path: Path,
        on_progress: ProgressCallback,
    ) -> None:
        """Encode ``timeline`` to ``output_path``.

        ``on_progress(rendered_frames, encoding_fps)`` is called as frames
        are written.

        Raises:
            RenderBackendError: if no output could be produced
        """


def _ffmpeg_color(value: str) -> str:
    return "0x" + value[1:] if value.startswith("#") else value


def _escape_text(text: str) -> str:
    return (
        text.replace("\\", "\\\\")
        .replace("'", "’")
        .replace(":", "\\:")
        .replace("%", "\\%")
    )


class FFmpegRenderBackend(RenderBackend):
    """Render with a single ffmpeg filter graph.

    Title cards are generated from the style colors, clips are scaled and
    padded to the output size, held on their last frame when short and
    cut to their exact frame count. ``fade`` transitions fade the incoming
    clip from black; other transition types render as cuts.
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg"):
        self.ffmpeg_path = ffmpeg_path

    def prepare(self, timeline: ResolvedTimeline) -> None:
        if shutil.which(self.ffmpeg_path) is None:
            logger.warning("ffmpeg_not_found", path=self.ffmpeg_path)
            raise RenderBackendError("FFmpeg not available")
        super().prepare(timeline)

    def _title_filter(self, title: str, timeline: ResolvedTimeline, height: int) -> str:
        if not title:
            return ""
        style = timeline.style
        return (
            f",drawtext=text='{_escape_text(title)}':font='{style.font_family}'"
            f":fontcolor={_ffmpeg_color(style.text_color)}:fontsize={height // 12}"
            f":x=(w-text_w)/2:y=(h-text_h)/2"
        )

    def build_command(
        self,
        timeline: ResolvedTimeline,
        preset: RenderPreset,
        output_path: Path,
    ) -> list[str]:
        """ffmpeg argument list for the whole montage."""
        width, height = preset.dimensions(timeline)
        fps = timeline.fps
        background = _ffmpeg_color(timeline.style.primary_color)

        inputs: list[str] = []
        filters: list[str] = []
        segments: list[str] = []
        index = 0

        def card(frames: int, title: str, label: str) -> None:
            nonlocal index
            if frames <= 0:
                return
            seconds = frames / timeline.fps
            inputs.extend([
                "-f", "lavfi",
                "-i", f"color=c={background}:s={width}x{height}:r={fps}:d={seconds:.3f}",
            ])
            filters.append(
                f"[{index}:v]trim=end_frame={frames},setsar=1"
                f"{self._title_filter(title, timeline, height)}"
                f",fade=t=in:st=0:d=0.5[{label}]"
            )
            segments.append(f"[{label}]")
            index += 1

        fades = {
            t.to_shot_id: t.duration_frames
            for t in timeline.transitions
            if t.type == TransitionKind.FADE and t.duration_frames > 0
        }

        card(timeline.intro_frames, timeline.intro_title, "intro")

        for position, clip in enumerate(timeline.clips):
            inputs.extend(["-i", clip.file])
            chain = (
                f"[{index}:v]scale={width}:{height}:force_original_aspect_ratio=decrease"
                f",pad={width}:{height}:(ow-iw)/2:(oh-ih)/2:color={background}"
                f",fps={fps},setsar=1"
                f",tpad=stop_mode=clone:stop={clip.duration_frames}"
                f",trim=end_frame={clip.duration_frames},setpts=PTS-STARTPTS"
            )
            if clip.shot_id in fades:
                chain += f",fade=t=in:s=0:n={fades[clip.shot_id]}"
            filters.append(f"{chain}[c{position}]")
            segments.append(f"[c{position}]")
            index += 1

        card(timeline.outro_frames, timeline.outro_title, "outro")

        if not segments:
            raise RenderBackendError("Timeline has nothing to render")

        video_label = "joined"
        filters.append(f"{''.join(segments)}concat=n={len(segments)}:v=1:a=0[{video_label}]")

        for number, lower_third in enumerate(timeline.lower_thirds):
            start = lower_third.appear_at_frame
            end = start + lower_third.duration_frames
            style = timeline.style
            filters.append(
                f"[{video_label}]drawtext=text='{_escape_text(lower_third.text)}'"
                f":font='{style.font_family}':fontcolor={_ffmpeg_color(style.text_color)}"
                f":fontsize={height // 24}:box=1:boxcolor={_ffmpeg_color(style.secondary_color)}@0.6"
                f":x=w/20:y=h-h/6:enable='between(n,{start},{end})'[lt{number}]"
            )
            video_label = f"lt{number}"

        audio_label = self._audio_filters(timeline, inputs, filters, index)

        command = [self.ffmpeg_path, "-y", "-nostats", "-progress", "pipe:1", *inputs]
        command += ["-filter_complex", ";".join(filters), "-map", f"[{video_label}]"]
        if audio_label:
            command += ["-map", f"[{audio_label}]", "-c:a", preset.audio_codec, "-b:a", preset.audio_bitrate]
        command += [
            "-frames:v", str(timeline.total_duration_frames),
            "-r", str(fps),
            "-c:v", preset.video_codec,
            "-preset", preset.encoder_preset,
            "-crf", str(preset.crf),
            "-pix_fmt", "yuv420p",
            str(output_path),
        ]
        return command

    def _audio_filters(
        self,
        timeline: ResolvedTimeline,
        inputs: list[str],
        filters: list[str],
        index: int,
    ) -> str | None:
        """Add voiceover/music chains; returns the output label or None."""
        delay_ms = round(timeline.intro_frames * 1000 / timeline.fps)
        voice = music = None

        if timeline.voiceover_file:
            inputs.extend(["-i", timeline.voiceover_file])
            filters.append(
                f"[{index}:a]volume={timeline.voiceover_gain_db}dB"
                f",adelay={delay_ms}:all=1[voice]"
            )
            voice = "voice"
            index += 1

        if timeline.music_file:
            inputs.extend(["-stream_loop", "-1", "-i", timeline.music_file])
            filters.append(f"[{index}:a]volume={timeline.music_gain_db}dB[music]")
            music = "music"

        if voice and music:
            ratio = min(20.0, max(1.0, 10 ** (abs(timeline.music_ducking_db) / 20)))
            filters.append("[voice]asplit=2[voice_mix][voice_key]")
            filters.append(
                f"[music][voice_key]sidechaincompress=threshold=0.02:ratio={ratio:.2f}"
                f":attack=20:release={timeline.music_duck_fade_ms}[ducked]"
            )
            filters.append("[voice_mix][ducked]amix=inputs=2:duration=longest:normalize=0[audio]")
            return "audio"
        return voice or music

    async def render(
        self,
        timeline: ResolvedTimeline,
        preset: RenderPreset,
        output_path: Path,
        on_progress: ProgressCallback,
    ) -> None:
        command = self.build_command(timeline, preset, output_path)
        logger.debug("ffmpeg_command", cmd=" ".join(command))

        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stderr_task = asyncio.create_task(process.stderr.read())

        try:
            frame = 0
            speed: float | None = None
            async for raw in process.stdout:
                key, _, value = raw.decode(errors="replace").strip().partition("=")
                if key == "frame":
                    frame = int(value or 0)
                elif key == "fps":
                    try:
                        speed = float(value)
                    except ValueError:
                        speed = None
                elif key == "progress":
                    on_progress(frame, speed)
            returncode = await process.wait()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
            await process.wait()
            raise
        finally:
            stderr = await stderr_task

        if returncode != 0:
            tail = stderr.decode(errors="replace")[-500:]
            raise RenderBackendError(f"FFmpeg failed ({returncode}): {tail}")


# ============================================================================
# Worker
# ============================================================================


class RenderJobWorker:
    """Runs montage renders in the background and tracks their progress."""

    def __init__(self, projects_root: str | Path, backend: RenderBackend | None = None):
        self.projects_root = Path(projects_root)
        self.backend = backend or FFmpegRenderBackend()
        self._jobs: dict[str, RenderJob] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def _new_job_id(self, quality: RenderQuality) -> str:
        stamp = int(time.time() * 1000)
        while f"render-{stamp}-{quality.value}" in self._jobs:
            stamp += 1
        return f"render-{stamp}-{quality.value}"

    def start(
        self,
        project_id: str,
        plan: MontagePlan | ResolvedTimeline,
        quality: RenderQuality | str = RenderQuality.PREVIEW,
    ) -> str:
        """Queue a render and return its job id immediately.

        Must be called from a running event loop. A ``MontagePlan`` is
        validated and resolved against the project directory first.

        Raises:
            PlanValidationError: if the plan is structurally invalid
        """
        quality = RenderQuality(quality)
        project_dir = self.projects_root / project_id
        if isinstance(plan, MontagePlan):
            timeline = resolve_plan(plan.validate_structure(), project_dir)
        else:
            timeline = plan

        preset = RENDER_QUALITY_PRESETS[quality]
        job_id = self._new_job_id(quality)
        self._jobs[job_id] = RenderJob(
            id=job_id,
            project_id=project_id,
            quality=quality,
            resolution=preset.resolution(timeline),
            total_frames=timeline.total_duration_frames,
        )
        task = asyncio.create_task(self._run(job_id, timeline, preset))
        task.add_done_callback(lambda _: self._tasks.pop(job_id, None))
        self._tasks[job_id] = task

        logger.info("render_queued", project_id=project_id, **self._jobs[job_id].summary())
        return job_id

    def get_status(self, job_id: str) -> RenderJob | None:
        return self._jobs.get(job_id)

    def list_jobs(self, project_id: str | None = None) -> list[RenderJob]:
        """Jobs, newest first, optionally for one project."""
        jobs = [j for j in self._jobs.values() if project_id is None or j.project_id == project_id]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    def get_output(self, job_id: str) -> Path:
        """Absolute path of a finished render.

        Raises:
            RenderJobNotFoundError: if the job is unknown
            RenderNotCompleteError: unless the job is done
        """
        job = self._jobs.get(job_id)
        if job is None:
            raise RenderJobNotFoundError(job_id)
        if job.status != RenderStatus.DONE or not job.output_file:
            raise RenderNotCompleteError(job_id, job.status.value)
        return self.projects_root / job.project_id / job.output_file

    async def wait(self, job_id: str) -> RenderJob:
        """Wait for a job to reach a terminal status and return it."""
        if job_id not in self._jobs:
            raise RenderJobNotFoundError(job_id)
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)
        return self._jobs[job_id]

    async def shutdown(self) -> None:
        """Cancel every running render."""
        running = [task for task in self._tasks.values() if not task.done()]
        for task in running:
            task.cancel()
        await asyncio.gather(*running, return_exceptions=True)

    def _update(self, job_id: str, **changes) -> RenderJob:
        job = self._jobs[job_id].model_copy(update=changes)
        self._jobs[job_id] = job
        return job

    def _enter(self, job_id: str, phase: RenderPhase, progress: float) -> None:
        job = self._update(job_id, phase=phase, progress=progress)
        logger.debug("render_phase", job_id=job_id, phase=phase.value, progress=job.progress)

    async def _run(self, job_id: str, timeline: ResolvedTimeline, preset: RenderPreset) -> None:
        job = self._update(job_id, status=RenderStatus.RENDERING, started_at=utc_now())
        relative_output = RENDERS_DIR / f"{job_id}.mp4"
        output_path = self.projects_root / job.project_id / relative_output
        total = max(timeline.total_duration_frames, 1)

        def on_progress(rendered_frames: int, encoding_fps: float | None) -> None:
            if self._jobs[job_id].phase != RenderPhase.ENCODING:
                self._enter(job_id, RenderPhase.ENCODING, 10.0)
            rendered = max(0, min(rendered_frames, total))
            self._update(
                job_id,
                rendered_frames=rendered,
                encoding_fps=encoding_fps,
                progress=round(10.0 + 85.0 * rendered / total, 1),
            )

        try:
            self._enter(job_id, RenderPhase.BUNDLING, 0.0)
            await asyncio.to_thread(self.backend.prepare, timeline)
            output_path.parent.mkdir(parents=True, exist_ok=True)

            self._enter(job_id, RenderPhase.COMPOSITING, 5.0)
            await self.backend.render(timeline, preset, output_path, on_progress)

            self._enter(job_id, RenderPhase.FINALIZING, 95.0)
            if not output_path.is_file():
                raise RenderBackendError(f"Render produced no output: {relative_output}")

            job = self._update(
                job_id,
                status=RenderStatus.DONE,
                progress=100.0,
                rendered_frames=timeline.total_duration_frames,
                output_file=relative_output.as_posix(),
                completed_at=utc_now(),
            )
            logger.info(
                "render_completed",
                **job.summary(),
                output=job.output_file,
                size=output_path.stat().st_size,
            )
        except asyncio.CancelledError:
            self._update(
                job_id,
                status=RenderStatus.FAILED,
                error_message="Render cancelled",
                completed_at=utc_now(),
            )
            logger.info("render_cancelled", job_id=job_id)
            raise
        except Exception as exc:
            job = self._update(
                job_id,
                status=RenderStatus.FAILED,
                error_message=str(exc) or type(exc).__name__,
                completed_at=utc_now(),
            )
            logger.error("render_failed", **job.summary(), error=job.error_message)
