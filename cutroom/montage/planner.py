"""Build a montage plan from a project's approved shots.

Clip durations are fitted to the voiceover: each approved shot gets a share
proportional to its source duration, never less than ``MIN_CLIP_SECONDS``.
Transitions and lower thirds are picked from keywords in the scene text.
"""

from __future__ import annotations

import math

from cutroom.common.errors import InvalidRequestError
from cutroom.common.logging import get_logger
from cutroom.common.models import (
    INTRO_ID,
    CardAnimation,
    LowerThird,
    MontagePlan,
    MotionEffect,
    MotionGraphics,
    MusicTrack,
    PlanAudio,
    PlanFormat,
    PlanStyle,
    Project,
    Shot,
    TimelineEntry,
    TitleCard,
    TransitionEntry,
    TransitionKind,
    VoiceoverTrack,
)

logger = get_logger(__name__)

INTRO_SECONDS = 3.0
OUTRO_SECONDS = 4.0
MIN_CLIP_SECONDS = 2.0

# Scene keywords (English and Russian stems)
EXTERIOR_KEYWORDS = (
    "exterior", "экстерьер", "фасад", "двор", "улиц", "аэриал",
    "дрон", "бассейн", "парк", "площад", "панорам",
)
INTERIOR_KEYWORDS = (
    "interior", "интерьер", "лобби", "гостин", "кухн", "спальн",
    "ванн", "холл", "ресепшн", "коридор", "лифт",
)
AERIAL_KEYWORDS = ("дрон", "аэриал", "панорам", "фасад", "exterior")
DETAIL_KEYWORDS = ("деталь", "крупный", "текстур", "close")


def _mentions(scene: str, keywords: tuple[str, ...]) -> bool:
    text = scene.lower()
    return any(keyword in text for keyword in keywords)


def is_exterior(scene: str) -> bool:
    return _mentions(scene, EXTERIOR_KEYWORDS)


def is_interior(scene: str) -> bool:
    return _mentions(scene, INTERIOR_KEYWORDS)


def detect_area(scene: str) -> str:
    """Coarse area of a scene: ``interior``, ``exterior`` or ``other``."""
    if is_interior(scene):
        return "interior"
    if is_exterior(scene):
        return "exterior"
    return "other"


def area_label(scene: str) -> str:
    """Lower-third caption: the first four words of the scene."""
    return " ".join(scene.split()[:4]) or scene


def select_transition(previous: Shot | None, current: Shot) -> tuple[TransitionKind, float]:
    """Transition type and duration into ``current``.

    ``previous`` is None for the first clip after the intro card.
    """
    if previous is None:
        return TransitionKind.FADE, 0.5
    if _mentions(current.scene, AERIAL_KEYWORDS):
        return TransitionKind.FADE, 0.5
    if _mentions(current.scene, DETAIL_KEYWORDS):
        return TransitionKind.CUT, 0.0

    switched = (is_interior(previous.scene) and is_exterior(current.scene)) or (
        is_exterior(previous.scene) and is_interior(current.scene)
    )
    if switched:
        return TransitionKind.CROSSFADE, 0.8
    return TransitionKind.CROSSFADE, 0.5


def allocate_durations(source_durations: list[float], available: float) -> list[float]:
    """Split ``available`` seconds across clips in proportion to their sources.

    Every clip gets at least ``MIN_CLIP_SECONDS``. The result sums to
    ``available`` unless the minimums alone exceed it, in which case every
    clip keeps the minimum.
    """
    if not source_durations:
        return []
    if available < MIN_CLIP_SECONDS * len(source_durations):
        return [MIN_CLIP_SECONDS] * len(source_durations)

    total_source = sum(source_durations)
    allocated = [
        max(duration / total_source * available, MIN_CLIP_SECONDS)
        for duration in source_durations
    ]

    total = sum(allocated)
    if not math.isclose(total, available):
        scale = available / total
        allocated = [max(duration * scale, MIN_CLIP_SECONDS) for duration in allocated]
        # Remainder goes to the first clip
        remainder = available - sum(allocated)
        if allocated[0] + remainder >= MIN_CLIP_SECONDS:
            allocated[0] += remainder

    return allocated


def generate_montage_plan(project: Project, voiceover_duration_sec: float) -> MontagePlan:
    """Build a plan that fits the approved shots to the voiceover.

    Args:
        project: Project whose approved shots are placed in order
        voiceover_duration_sec: Seconds of voiceover the clips must cover;
            a non-positive value falls back to the sum of the shot durations

    Returns:
        MontagePlan with intro/outro cards at 3840x2160@30

    Raises:
        InvalidRequestError: if the project has no approved shots
    """
    shots = project.approved_shots()
    if not shots:
        raise InvalidRequestError("No approved shots to generate montage plan")

    available = voiceover_duration_sec
    if available <= 0:
        available = sum(shot.duration for shot in shots)

    durations = allocate_durations([shot.duration for shot in shots], available)

    timeline = []
    cursor = INTRO_SECONDS
    for shot, duration in zip(shots, durations):
        timeline.append(
            TimelineEntry(
                shot_id=shot.id,
                clip_file=f"montage/normalized/{shot.id}.mp4",
                start_sec=cursor,
                duration_sec=duration,
                motion_effect=MotionEffect.KEN_BURNS if shot.duration < duration else None,
                trim_end_sec=shot.duration - duration if shot.duration > duration else None,
            )
        )
        cursor += duration

    transitions = []
    previous = None
    for shot in shots:
        kind, seconds = select_transition(previous, shot)
        transitions.append(
            TransitionEntry(
                from_shot_id=previous.id if previous else INTRO_ID,
                to_shot_id=shot.id,
                type=kind,
                duration_sec=seconds,
            )
        )
        previous = shot

    lower_thirds = []
    last_area = ""
    for shot in shots:
        area = detect_area(shot.scene)
        if area != last_area:
            lower_thirds.append(LowerThird(shot_id=shot.id, text=area_label(shot.scene)))
            last_area = area

    plan = MontagePlan(
        format=PlanFormat(width=3840, height=2160, fps=30),
        timeline=timeline,
        transitions=transitions,
        motion_graphics=MotionGraphics(
            intro=TitleCard(
                title=project.name,
                duration_sec=INTRO_SECONDS,
                animation=CardAnimation.FADE_IN,
            ),
            outro=TitleCard(
                title=project.name,
                duration_sec=OUTRO_SECONDS,
                animation=CardAnimation.FADE_IN,
            ),
            lower_thirds=lower_thirds,
        ),
        audio=PlanAudio(
            voiceover=VoiceoverTrack(file=project.voiceover_file, gain_db=0.0),
            music=MusicTrack(file=project.music_file),
        ),
        style=PlanStyle(),
    )

    logger.info("montage_plan_generated", project_id=project.id, **plan.summary())
    return plan
