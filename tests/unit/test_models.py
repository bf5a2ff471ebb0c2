"""Unit tests for data models and schema validation."""

import pytest
from pydantic import TypeAdapter, ValidationError

from cutroom.common.errors import (
    GenerationCancelledError,
    InvalidRequestError,
    PlanValidationError,
    ProviderError,
    RenderNotCompleteError,
    UnknownModelError,
)
from cutroom.common.models import (
    GenerationModel,
    ImageModel,
    MontagePlan,
    MotionGraphics,
    PlanFormat,
    Project,
    Provider,
    RenderJob,
    RenderQuality,
    RenderStatus,
    Shot,
    ShotStatus,
    TimelineEntry,
    TitleCard,
    TransitionEntry,
    VideoModel,
    generate_id,
    is_external_media_ref,
    recover_stale_shots,
)


class TestShotModel:
    """Tests for the Shot model."""

    def test_defaults(self):
        """Test a freshly created shot."""
        shot = Shot(scene="Facade")

        assert shot.id.startswith("shot_")
        assert shot.status == ShotStatus.DRAFT
        assert shot.duration == 5.0
        assert shot.best_image is None

    def test_shot_is_frozen(self):
        """Test that shots cannot be mutated in place."""
        shot = Shot()

        with pytest.raises(ValidationError):
            shot.status = ShotStatus.APPROVED

    def test_duration_must_be_positive(self):
        """Test duration validation."""
        with pytest.raises(ValidationError):
            Shot(duration=0)

    def test_best_image_prefers_enhanced(self):
        """Test best image selection."""
        shot = Shot(generated_images=["gen_1.png", "gen_2.png"])
        assert shot.best_image == "gen_2.png"

        shot = shot.model_copy(update={"enhanced_images": ["enh_1.png"]})
        assert shot.best_image == "enh_1.png"

    def test_cleared_removes_artifacts(self):
        """Test resetting a shot to draft."""
        shot = Shot(
            status=ShotStatus.VID_REVIEW,
            generated_images=["gen_1.png"],
            enhanced_images=["enh_1.png"],
            selected_image="gen_1.png",
            video_file="vid_1.mp4",
        )

        cleared = shot.cleared()

        assert cleared.status == ShotStatus.DRAFT
        assert cleared.generated_images == []
        assert cleared.enhanced_images == []
        assert cleared.selected_image is None
        assert cleared.video_file is None
        assert cleared.id == shot.id

    def test_status_order(self):
        """Test pipeline ordering and transient states."""
        assert ShotStatus.DRAFT.rank < ShotStatus.IMG_REVIEW.rank < ShotStatus.APPROVED.rank
        assert [s for s in ShotStatus if s.is_transient] == [ShotStatus.IMG_GEN, ShotStatus.VID_GEN]

    def test_summary(self):
        """Test shot summary for logging."""
        summary = Shot(id="shot_1", generated_images=["a.png"], video_file="v.mp4").summary()

        assert summary["id"] == "shot_1"
        assert summary["images"] == 1
        assert summary["has_video"] is True

    @pytest.mark.parametrize(
        "value,external",
        [
            ("https://cdn.example.com/a.png", True),
            ("http://cdn.example.com/a.png", True),
            ("data:image/png;base64,AAAA", True),
            ("gen_1.png", False),
        ],
    )
    def test_external_media_ref(self, value, external):
        """Test detection of remote and inline references."""
        assert is_external_media_ref(value) is external


class TestProjectModel:
    """Tests for Project and stale shot recovery."""

    def test_approved_shots_sorted_by_order(self):
        """Test approved shot selection."""
        project = Project(
            shots=[
                Shot(id="b", order=2, status=ShotStatus.APPROVED),
                Shot(id="x", order=0, status=ShotStatus.VID_REVIEW),
                Shot(id="a", order=1, status=ShotStatus.APPROVED),
            ]
        )

        assert [s.id for s in project.approved_shots()] == ["a", "b"]
        assert project.get_shot("x").status == ShotStatus.VID_REVIEW
        assert project.get_shot("missing") is None

    def test_recover_stale_shots(self):
        """Test that transient states are reset after a restart."""
        shots = [
            Shot(id="i", status=ShotStatus.IMG_GEN),
            Shot(id="v", status=ShotStatus.VID_GEN, generated_images=["gen_1.png"]),
            Shot(id="r", status=ShotStatus.IMG_REVIEW),
        ]

        recovered = recover_stale_shots(shots)

        assert [s.status for s in recovered] == [
            ShotStatus.DRAFT,
            ShotStatus.IMG_REVIEW,
            ShotStatus.IMG_REVIEW,
        ]
        assert recovered[1].generated_images == ["gen_1.png"]
        assert recovered[2] is shots[2]

    def test_generate_id(self):
        """Test prefixed id generation."""
        first, second = generate_id("project"), generate_id("project")

        assert first.startswith("project_")
        assert len(first) == len("project_") + 12
        assert first != second


class TestModelDescriptors:
    """Tests for image and video model descriptors."""

    def test_discriminated_union(self):
        """Test that descriptors are parsed by category."""
        adapter = TypeAdapter(GenerationModel)

        image = adapter.validate_python(
            {"id": "flux", "provider": "fal", "endpoint": "fal-ai/flux", "name": "Flux", "category": "image"}
        )
        video = adapter.validate_python(
            {
                "id": "kling",
                "provider": "replicate",
                "endpoint": "kwaivgi/kling",
                "name": "Kling",
                "category": "video",
                "quality_values": {"low": "720p"},
            }
        )

        assert isinstance(image, ImageModel)
        assert image.provider == Provider.FAL
        assert isinstance(video, VideoModel)
        assert video.supports_duration is None
        assert video.quality_values["low"] == "720p"

    def test_unknown_provider_rejected(self):
        """Test provider validation."""
        with pytest.raises(ValidationError):
            ImageModel(id="x", provider="acme", endpoint="x", name="X")


def plan(*entries, transitions=(), fps=30, outro=4.0) -> MontagePlan:
    return MontagePlan(
        format=PlanFormat(fps=fps),
        timeline=[
            TimelineEntry(shot_id=shot_id, clip_file=f"{shot_id}.mp4", start_sec=start, duration_sec=duration)
            for shot_id, start, duration in entries
        ],
        transitions=[TransitionEntry(from_shot_id=a, to_shot_id=b) for a, b in transitions],
        motion_graphics=MotionGraphics(
            intro=TitleCard(title="Intro"),
            outro=TitleCard(title="Outro", duration_sec=outro) if outro else None,
        ),
    )


class TestMontagePlan:
    """Tests for MontagePlan structure checks."""

    def test_valid_plan(self):
        """Test a contiguous plan with adjacent transitions."""
        montage = plan(
            ("a", 3.0, 4.0),
            ("b", 7.0, 2.0),
            transitions=[("intro", "a"), ("a", "b"), ("b", "outro")],
        )

        assert montage.validate_structure() is montage
        assert montage.boundary_sequence() == ["intro", "a", "b", "outro"]
        assert montage.total_duration_sec == pytest.approx(13.0)
        assert montage.summary()["clips"] == 2

    def test_gap_within_half_frame_is_tolerated(self):
        """Test contiguity tolerance."""
        plan(("a", 3.0, 4.0), ("b", 7.01, 2.0)).validate_structure()

    def test_gap_rejected(self):
        """Test that a gap larger than half a frame fails."""
        with pytest.raises(PlanValidationError, match="gap or overlap"):
            plan(("a", 3.0, 4.0), ("b", 7.5, 2.0)).validate_structure()

    def test_overlap_rejected(self):
        """Test that overlapping clips fail."""
        with pytest.raises(PlanValidationError):
            plan(("a", 3.0, 4.0), ("b", 6.0, 2.0)).validate_structure()

    def test_non_adjacent_transition_rejected(self):
        """Test transition adjacency."""
        montage = plan(("a", 3.0, 4.0), ("b", 7.0, 2.0), transitions=[("intro", "b")])

        with pytest.raises(PlanValidationError, match="intro -> b"):
            montage.validate_structure()

    def test_total_duration(self):
        """Test totals with and without an outro."""
        assert plan().total_duration_sec == 0.0
        assert plan(("a", 3.0, 4.0), outro=None).total_duration_sec == pytest.approx(7.0)

    def test_plan_round_trips_through_json(self):
        """Test that a plan file can be read back."""
        montage = plan(("a", 3.0, 4.0), transitions=[("intro", "a")])

        assert MontagePlan.model_validate_json(montage.model_dump_json()) == montage


class TestRenderJob:
    """Tests for render job state."""

    def test_terminal_statuses(self):
        """Test which statuses end a job."""
        assert RenderStatus.DONE.is_terminal
        assert RenderStatus.FAILED.is_terminal
        assert not RenderStatus.QUEUED.is_terminal
        assert not RenderStatus.RENDERING.is_terminal

    def test_progress_bounds(self):
        """Test progress validation."""
        with pytest.raises(ValidationError):
            RenderJob(id="r", project_id="p", quality=RenderQuality.PREVIEW, resolution="1280x720", progress=101)

    def test_summary(self):
        """Test job summary for logging."""
        job = RenderJob(id="r", project_id="p", quality="final", resolution="3840x2160")

        assert job.summary() == {
            "id": "r",
            "quality": "final",
            "status": "queued",
            "phase": None,
            "progress": 0.0,
        }


class TestErrors:
    """Tests for the error taxonomy."""

    @pytest.mark.parametrize(
        "status,transient,client",
        [(None, True, False), (429, True, False), (500, True, False), (400, False, True), (422, False, True)],
    )
    def test_provider_error_classification(self, status, transient, client):
        """Test transient and client error classification."""
        error = ProviderError("fal", "message", status=status)

        assert error.is_transient is transient
        assert error.recoverable is transient
        assert error.is_client_error is client
        assert str(error) == "message"

    def test_invalid_request_family(self):
        """Test that request errors share a base class."""
        assert isinstance(UnknownModelError("nope", "image"), InvalidRequestError)
        assert isinstance(PlanValidationError("bad"), InvalidRequestError)
        assert str(UnknownModelError("nope", "video")) == "Video model not found: nope"

    def test_cancellation_is_recoverable(self):
        """Test that cancellation is not treated as a failure."""
        assert GenerationCancelledError().recoverable is True
        assert "not complete" in str(RenderNotCompleteError("r", "rendering"))
