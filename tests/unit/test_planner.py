"""Unit tests for montage plan generation."""

import pytest

from cutroom.common.errors import InvalidRequestError
from cutroom.common.models import MotionEffect, Project, Shot, ShotStatus, TransitionKind
from cutroom.montage.planner import (
    MIN_CLIP_SECONDS,
    allocate_durations,
    area_label,
    detect_area,
    generate_montage_plan,
    select_transition,
)


def approved(shot_id, order, scene, duration=5.0) -> Shot:
    return Shot(
        id=shot_id,
        order=order,
        scene=scene,
        duration=duration,
        status=ShotStatus.APPROVED,
        video_file=f"{shot_id}.mp4",
    )


@pytest.fixture
def project():
    return Project(
        id="p1",
        name="Riverside Residence",
        voiceover_file="audio/vo.mp3",
        music_file="audio/music.mp3",
        shots=[
            approved("s3", 3, "Close texture of oak panels", duration=4.0),
            approved("s1", 1, "Фасад комплекса с дрона", duration=6.0),
            approved("s2", 2, "Interior lobby with reception", duration=5.0),
            Shot(id="draft", order=0, scene="Unused"),
        ],
    )


class TestSceneHeuristics:
    """Tests for area detection and transition choice."""

    @pytest.mark.parametrize(
        "scene,area",
        [
            ("Interior lobby", "interior"),
            ("Просторная гостиная", "interior"),
            ("Фасад здания", "exterior"),
            ("Exterior pool deck", "exterior"),
            ("Интерьер двора", "interior"),
            ("Product on a table", "other"),
        ],
    )
    def test_detect_area(self, scene, area):
        """Test keyword area detection with interior taking precedence."""
        assert detect_area(scene) == area

    def test_area_label_takes_four_words(self):
        """Test lower-third text."""
        assert area_label("Interior lobby with marble floors") == "Interior lobby with marble"
        assert area_label("Lobby") == "Lobby"

    def test_transition_rules(self):
        """Test transition selection order."""
        exterior = Shot(scene="Exterior garden")
        interior = Shot(scene="Interior kitchen")
        aerial = Shot(scene="Панорама с дрона")
        detail = Shot(scene="Close up of tiles")
        plain = Shot(scene="Living space")

        assert select_transition(None, detail) == (TransitionKind.FADE, 0.5)
        assert select_transition(plain, aerial) == (TransitionKind.FADE, 0.5)
        assert select_transition(interior, detail) == (TransitionKind.CUT, 0.0)
        assert select_transition(exterior, interior) == (TransitionKind.CROSSFADE, 0.8)
        assert select_transition(plain, interior) == (TransitionKind.CROSSFADE, 0.5)


class TestAllocateDurations:
    """Tests for voiceover time allocation."""

    def test_proportional_split(self):
        """Test a split with no minimum clamping."""
        assert allocate_durations([6.0, 4.0], 20.0) == pytest.approx([12.0, 8.0])

    def test_minimum_is_enforced(self):
        """Test that short shots still get the minimum and the sum holds."""
        durations = allocate_durations([10.0, 1.0, 9.0], 20.0)

        assert all(d >= MIN_CLIP_SECONDS for d in durations)
        assert sum(durations) == pytest.approx(20.0)

    def test_minimums_exceed_voiceover(self):
        """Test that every clip keeps the minimum when time is too short."""
        assert allocate_durations([5.0, 5.0, 5.0], 4.0) == [2.0, 2.0, 2.0]

    def test_empty(self):
        """Test no shots."""
        assert allocate_durations([], 10.0) == []


class TestGenerateMontagePlan:
    """Tests for generate_montage_plan."""

    def test_uses_approved_shots_in_order(self, project):
        """Test shot selection and clip layout."""
        plan = generate_montage_plan(project, 30.0)

        assert [e.shot_id for e in plan.timeline] == ["s1", "s2", "s3"]
        assert plan.timeline[0].start_sec == 3.0
        assert plan.timeline[0].clip_file == "montage/normalized/s1.mp4"
        assert sum(e.duration_sec for e in plan.timeline) == pytest.approx(30.0)
        assert plan.total_duration_sec == pytest.approx(3.0 + 30.0 + 4.0)
        plan.validate_structure()

    def test_trim_and_stretch(self, project):
        """Test ken_burns on stretched clips and trim on shortened ones."""
        long_plan = generate_montage_plan(project, 30.0)
        short_plan = generate_montage_plan(project, 7.5)

        assert all(e.motion_effect == MotionEffect.KEN_BURNS for e in long_plan.timeline)
        assert all(e.trim_end_sec is None for e in long_plan.timeline)
        first = short_plan.timeline[0]
        assert first.motion_effect is None
        assert first.trim_end_sec == pytest.approx(6.0 - first.duration_sec)

    def test_transitions_chain_from_intro(self, project):
        """Test one transition into every clip, starting at the intro."""
        plan = generate_montage_plan(project, 30.0)

        assert [(t.from_shot_id, t.to_shot_id) for t in plan.transitions] == [
            ("intro", "s1"),
            ("s1", "s2"),
            ("s2", "s3"),
        ]
        assert plan.transitions[0].type == TransitionKind.FADE
        assert plan.transitions[2].type == TransitionKind.CUT

    def test_lower_thirds_on_area_change(self, project):
        """Test lower thirds only where the area changes."""
        plan = generate_montage_plan(project, 30.0)

        lower_thirds = plan.motion_graphics.lower_thirds
        assert [lt.shot_id for lt in lower_thirds] == ["s1", "s2", "s3"]
        assert lower_thirds[1].text == "Interior lobby with reception"

        same_area = project.model_copy(
            update={"shots": [approved("a", 1, "Interior hall"), approved("b", 2, "Interior kitchen")]}
        )
        assert len(generate_montage_plan(same_area, 10.0).motion_graphics.lower_thirds) == 1

    def test_cards_audio_and_format(self, project):
        """Test the fixed plan envelope."""
        plan = generate_montage_plan(project, 30.0)

        assert (plan.format.width, plan.format.height, plan.format.fps) == (3840, 2160, 30)
        assert plan.motion_graphics.intro.title == "Riverside Residence"
        assert plan.motion_graphics.intro.duration_sec == 3.0
        assert plan.motion_graphics.outro.duration_sec == 4.0
        assert plan.audio.voiceover.file == "audio/vo.mp3"
        assert plan.audio.voiceover.gain_db == 0.0
        assert plan.audio.music.file == "audio/music.mp3"
        assert plan.audio.music.gain_db == -18.0

    def test_missing_voiceover_uses_shot_durations(self, project):
        """Test the fallback when no voiceover length is known."""
        plan = generate_montage_plan(project, 0)

        assert [e.duration_sec for e in plan.timeline] == pytest.approx([6.0, 5.0, 4.0])

    def test_no_approved_shots(self):
        """Test that a plan needs at least one approved shot."""
        with pytest.raises(InvalidRequestError, match="No approved shots"):
            generate_montage_plan(Project(shots=[Shot(scene="x")]), 10.0)
