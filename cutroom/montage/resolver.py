"""Convert a seconds-based montage plan into a frame-accurate timeline."""

from __future__ import annotations

import math
from pathlib import Path

from cutroom.common.models import (
    INTRO_ID,
    OUTRO_ID,
    MontagePlan,
    ResolvedClip,
    ResolvedLowerThird,
    ResolvedTimeline,
    ResolvedTransition,
)


def frames_from_seconds(seconds: float, fps: int) -> int:
    """Nearest whole frame, with halves rounded up."""
    return math.floor(seconds * fps + 0.5)


def _absolute(root: Path, file: str) -> str:
    if not file:
        return ""
    return str(root / file)


def resolve_plan(plan: MontagePlan, project_root: str | Path) -> ResolvedTimeline:
    """Resolve a plan against a project directory.

    Every clip start and duration is rounded from its own seconds fields so
    rounding error never accumulates along the timeline. A transition starts
    at the boundary frame of the clip it leads into; a transition into the
    outro starts where the last clip ends.
    """
    fps = plan.format.fps
    root = Path(project_root).resolve()
    intro = plan.motion_graphics.intro
    outro = plan.motion_graphics.outro

    def frames(seconds: float) -> int:
        return frames_from_seconds(seconds, fps)

    clips = [
        ResolvedClip(
            shot_id=entry.shot_id,
            file=_absolute(root, entry.clip_file),
            start_frame=frames(entry.start_sec),
            duration_frames=frames(entry.duration_sec),
            trim_end_sec=entry.trim_end_sec,
            motion_effect=entry.motion_effect,
        )
        for entry in plan.timeline
    ]

    if clips:
        intro_frames = clips[0].start_frame
    else:
        intro_frames = frames(intro.duration_sec) if intro else 0
    outro_frames = frames(outro.duration_sec) if outro else 0
    clips_end = clips[-1].end_frame if clips else intro_frames

    boundaries = {clip.shot_id: clip.start_frame for clip in clips}
    boundaries[OUTRO_ID] = clips_end

    transitions = [
        ResolvedTransition(
            from_shot_id=transition.from_shot_id,
            to_shot_id=transition.to_shot_id,
            type=transition.type,
            start_frame=boundaries.get(transition.to_shot_id, intro_frames),
            duration_frames=frames(transition.duration_sec),
        )
        for transition in plan.transitions
    ]

    starts = {clip.shot_id: clip.start_frame for clip in clips}
    starts[INTRO_ID] = 0
    lower_thirds = [
        ResolvedLowerThird(
            shot_id=lower_third.shot_id,
            text=lower_third.text,
            position=lower_third.position,
            appear_at_frame=starts.get(lower_third.shot_id, 0) + frames(lower_third.appear_at_sec),
            duration_frames=frames(lower_third.duration_sec),
        )
        for lower_third in plan.motion_graphics.lower_thirds
    ]

    voiceover = plan.audio.voiceover
    music = plan.audio.music

    return ResolvedTimeline(
        fps=fps,
        width=plan.format.width,
        height=plan.format.height,
        total_duration_frames=clips_end + outro_frames,
        intro_frames=intro_frames,
        outro_frames=outro_frames,
        intro_title=intro.title if intro else "",
        outro_title=outro.title if outro else "",
        clips=clips,
        transitions=transitions,
        lower_thirds=lower_thirds,
        voiceover_file=_absolute(root, voiceover.file),
        voiceover_gain_db=voiceover.gain_db,
        music_file=_absolute(root, music.file),
        music_gain_db=music.gain_db,
        music_ducking_db=music.ducking_db,
        music_duck_fade_ms=music.duck_fade_ms,
        style=plan.style,
    )
