"""Unit tests for montage plan resolution."""

from pathlib import Path

import pytest

from cutroom.common.models import (
    LowerThird,
    MontagePlan,
    MotionGraphics,
    MusicTrack,
    PlanAudio,
    PlanFormat,
    TimelineEntry,
    TitleCard,
    TransitionEntry,
    TransitionKind,
    VoiceoverTrack,
)
from cutroom.montage.resolver import frames_from_seconds, resolve_plan


def make_plan(fps=30, outro=4.0, **overrides) -> MontagePlan:
    fields = {
        "format": PlanFormat(width=3840, height=2160, fps=fps),
        "timeline": [
            TimelineEntry(shot_id="a", clip_file="montage/normalized/a.mp4", start_sec=3.0, duration_sec=4.0),
            TimelineEntry(shot_id="b", clip_file="montage/normalized/b.mp4", start_sec=7.0, duration_sec=2.51),
            TimelineEntry(shot_id="c", clip_file="montage/normalized/c.mp4", start_sec=9.51, duration_sec=3.333),
        ],
        "transitions": [
            TransitionEntry(from_shot_id="intro", to_shot_id="a", type=TransitionKind.FADE, duration_sec=0.5),
            TransitionEntry(from_shot_id="a", to_shot_id="b", type=TransitionKind.CROSSFADE, duration_sec=0.8),
            TransitionEntry(from_shot_id="b", to_shot_id="c", type=TransitionKind.CUT, duration_sec=0.0),
            TransitionEntry(from_shot_id="c", to_shot_id="outro", type=TransitionKind.FADE, duration_sec=1.0),
        ],
        "motion_graphics": MotionGraphics(
            intro=TitleCard(title="Riverside", duration_sec=3.0),
            outro=TitleCard(title="Riverside", duration_sec=outro) if outro else None,
            lower_thirds=[LowerThird(shot_id="b", text="Lobby", appear_at_sec=0.5, duration_sec=3.0)],
        ),
        "audio": PlanAudio(
            voiceover=VoiceoverTrack(file="audio/voiceover.mp3"),
            music=MusicTrack(file=""),
        ),
    }
    fields.update(overrides)
    return MontagePlan(**fields)


class TestFramesFromSeconds:
    """Tests for seconds-to-frames conversion."""

    @pytest.mark.parametrize(
        "seconds,fps,expected",
        [(0.0, 30, 0), (1.0, 30, 30), (2.51, 30, 75), (3.333, 30, 100), (0.05, 30, 2), (0.25, 30, 8), (0.5, 25, 13)],
    )
    def test_rounds_half_up(self, seconds, fps, expected):
        """Test nearest-frame rounding with halves rounded up."""
        assert frames_from_seconds(seconds, fps) == expected


class TestResolvePlan:
    """Tests for resolve_plan."""

    def test_clip_frames_are_independent(self, tmp_path):
        """Test that each clip is rounded from its own seconds fields."""
        timeline = resolve_plan(make_plan(), tmp_path)

        assert [(c.start_frame, c.duration_frames) for c in timeline.clips] == [
            (90, 120),
            (210, 75),
            (285, 100),
        ]

    def test_intro_outro_and_total(self, tmp_path):
        """Test intro from the first clip start and total from the outro."""
        timeline = resolve_plan(make_plan(), tmp_path)

        assert timeline.intro_frames == 90
        assert timeline.outro_frames == 120
        assert timeline.total_duration_frames == 385 + 120
        assert timeline.duration_seconds == pytest.approx(505 / 30)

    def test_total_without_outro(self, tmp_path):
        """Test that a missing outro contributes no frames."""
        timeline = resolve_plan(make_plan(outro=None), tmp_path)

        assert timeline.outro_frames == 0
        assert timeline.total_duration_frames == 385
        assert timeline.outro_title == ""

    def test_transition_start_frames(self, tmp_path):
        """Test transition placement at each boundary."""
        timeline = resolve_plan(make_plan(), tmp_path)

        starts = {(t.from_shot_id, t.to_shot_id): t.start_frame for t in timeline.transitions}
        durations = [t.duration_frames for t in timeline.transitions]
        assert starts == {
            ("intro", "a"): 90,
            ("a", "b"): 210,
            ("b", "c"): 285,
            ("c", "outro"): 385,
        }
        assert durations == [15, 24, 0, 30]

    def test_lower_third_is_relative_to_its_clip(self, tmp_path):
        """Test lower-third placement."""
        timeline = resolve_plan(make_plan(), tmp_path)

        lower_third = timeline.lower_thirds[0]
        assert lower_third.appear_at_frame == 210 + 15
        assert lower_third.duration_frames == 90

    def test_paths_are_absolute(self, tmp_path):
        """Test path resolution and the empty-file signal."""
        timeline = resolve_plan(make_plan(), tmp_path / "project")

        root = (tmp_path / "project").resolve()
        assert timeline.clips[0].file == str(root / "montage/normalized/a.mp4")
        assert Path(timeline.voiceover_file).is_absolute()
        assert timeline.voiceover_file == str(root / "audio/voiceover.mp3")
        assert timeline.music_file == ""

    def test_deterministic(self, tmp_path):
        """Test that resolving twice gives identical timelines."""
        plan = make_plan(fps=24)

        assert resolve_plan(plan, tmp_path) == resolve_plan(plan, tmp_path)

    def test_empty_timeline_uses_intro_card(self, tmp_path):
        """Test a plan with cards only."""
        plan = make_plan(timeline=[], transitions=[])
        timeline = resolve_plan(plan, tmp_path)

        assert timeline.intro_frames == 90
        assert timeline.total_duration_frames == 90 + 120
        assert timeline.clips == []

    def test_carries_audio_and_style(self, tmp_path):
        """Test that mix settings and style pass through."""
        timeline = resolve_plan(make_plan(), tmp_path)

        assert timeline.music_gain_db == -18.0
        assert timeline.music_ducking_db == -10.0
        assert timeline.music_duck_fade_ms == 500
        assert timeline.style.font_family == "Montserrat"
        assert timeline.intro_title == "Riverside"
