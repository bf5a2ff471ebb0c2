"""Shot generation pipeline.

The pipeline owns the authoritative state of every shot in a project
session and drives each shot through its lifecycle:

    draft -> img_gen -> img_review -> vid_gen -> vid_review -> approved

``*_gen`` states exist only while a provider call is running. Failure or
cancellation rolls ``img_gen`` back to ``draft`` and ``vid_gen`` back to
``img_review`` so that generated images survive a failed video attempt.
Enhancement runs beside the main lifecycle and never changes status.
"""

from __future__ import annotations

import asyncio
import threading
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable

from cutroom.common.config import Settings, get_settings
from cutroom.common.errors import (
    ConfigurationError,
    GenerationCancelledError,
    GenerationInProgressError,
    InvalidRequestError,
    InvalidTransitionError,
    NoMediaInResponseError,
    ProviderError,
    UnknownModelError,
)
from cutroom.common.logging import get_logger
from cutroom.common.models import (
    Project,
    Shot,
    ShotStatus,
    recover_stale_shots,
    utc_now,
)
from cutroom.generation.media import MediaStore
from cutroom.generation.pool import Settled, coerce_limit, map_with_concurrency
from cutroom.generation.quality import (
    normalize_quality_tier,
    resolve_provider_image_resolution,
)
from cutroom.generation.registry import (
    resolve_image_model,
    resolve_openrouter_fallback_model,
    resolve_video_model,
)
from cutroom.providers.cancellation import CancellationToken

if TYPE_CHECKING:
    from cutroom.providers.dispatch import ProviderDispatcher

logger = get_logger(__name__)


class Operation(str, Enum):
    """Kinds of provider work tracked per shot."""

    IMAGE = "image"
    VIDEO = "video"
    ENHANCE = "enhance"


# Status a shot returns to when its generation fails or is cancelled
ROLLBACK_TARGETS: dict[ShotStatus, ShotStatus] = {
    ShotStatus.IMG_GEN: ShotStatus.DRAFT,
    ShotStatus.VID_GEN: ShotStatus.IMG_REVIEW,
}

_VIDEO_SOURCE_STATES = (ShotStatus.IMG_REVIEW, ShotStatus.VID_REVIEW)


class InFlightRegistry:
    """Shots with a running provider call, one set per operation.

    Entries hold the call's cancellation token. All methods are safe to
    call from any thread.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[Operation, dict[str, CancellationToken]] = {
            operation: {} for operation in Operation
        }

    def add(self, operation: Operation, shot_id: str) -> CancellationToken:
        """Register a call and return its token.

        Raises:
            GenerationInProgressError: if the shot already has one running
        """
        with self._lock:
            entries = self._entries[operation]
            if shot_id in entries:
                raise GenerationInProgressError(shot_id, operation.value)
            token = CancellationToken()
            entries[shot_id] = token
            return token

    def remove(self, operation: Operation, shot_id: str, token: CancellationToken) -> None:
        with self._lock:
            if self._entries[operation].get(shot_id) is token:
                del self._entries[operation][shot_id]

    def contains(self, operation: Operation, shot_id: str) -> bool:
        with self._lock:
            return shot_id in self._entries[operation]

    def is_busy(self, shot_id: str) -> bool:
        with self._lock:
            return any(shot_id in entries for entries in self._entries.values())

    def cancel(self, shot_id: str) -> list[Operation]:
        """Fire every token registered for a shot."""
        with self._lock:
            tokens = [
                (operation, entries[shot_id])
                for operation, entries in self._entries.items()
                if shot_id in entries
            ]
        for _, token in tokens:
            token.cancel()
        return [operation for operation, _ in tokens]

    def cancel_all(self) -> int:
        with self._lock:
            tokens = [token for entries in self._entries.values() for token in entries.values()]
        return sum(1 for token in tokens if token.cancel())

    def snapshot(self) -> dict[str, list[str]]:
        with self._lock:
            return {
                operation.value: sorted(entries)
                for operation, entries in self._entries.items()
            }


class ShotPipeline:
    """Generation state machine for the shots of one project.

    Args:
        project: Project to operate on. Shots left in a transient state by
            a previous process are reset on construction.
        generator: Provider dispatcher used for every generation call
        media_store: Where results are saved and sources are loaded from
        settings: Defaults for models, quality and batch concurrency
        on_change: Called with the updated project after every change
    """

    def __init__(
        self,
        project: Project,
        generator: ProviderDispatcher,
        media_store: MediaStore,
        settings: Settings | None = None,
        on_change: Callable[[Project], None] | None = None,
    ):
        recovered = recover_stale_shots(project.shots)
        self._project = project.model_copy(update={"shots": recovered})
        self.generator = generator
        self.media_store = media_store
        self.settings = settings or get_settings()
        self.on_change = on_change

        self._lock = asyncio.Lock()
        self._in_flight = InFlightRegistry()

        stale = [s.id for s, r in zip(project.shots, recovered) if s.status != r.status]
        if stale:
            logger.warning("stale_shots_recovered", project_id=project.id, shots=stale)

    @property
    def project(self) -> Project:
        return self._project

    def get_shot(self, shot_id: str) -> Shot:
        shot = self._project.get_shot(shot_id)
        if shot is None:
            raise InvalidRequestError(f"Shot not found: {shot_id}")
        return shot

    def is_busy(self, shot_id: str) -> bool:
        return self._in_flight.is_busy(shot_id)

    def in_flight(self) -> dict[str, list[str]]:
        """Shot ids with a running call, keyed by operation."""
        return self._in_flight.snapshot()

    # =========================================================================
    # State helpers
    # =========================================================================

    def _replace(self, shot: Shot) -> Shot:
        shots = [shot if s.id == shot.id else s for s in self._project.shots]
        self._project = self._project.model_copy(update={"shots": shots})
        if self.on_change is not None:
            self.on_change(self._project)
        return shot

    def _begin(self, shot: Shot, operation: Operation, status: ShotStatus) -> CancellationToken:
        """Enter a ``*_gen`` state and register the call. Caller holds the lock."""
        if shot.status.is_transient or self._in_flight.contains(operation, shot.id):
            raise GenerationInProgressError(shot.id, operation.value)
        if operation != Operation.ENHANCE and (
            self._in_flight.contains(Operation.IMAGE, shot.id)
            or self._in_flight.contains(Operation.VIDEO, shot.id)
        ):
            raise GenerationInProgressError(shot.id, operation.value)

        token = self._in_flight.add(operation, shot.id)
        self._replace(shot.with_status(status))
        return token

    async def _rollback(self, shot_id: str, from_status: ShotStatus) -> None:
        async with self._lock:
            shot = self._project.get_shot(shot_id)
            if shot is not None and shot.status == from_status:
                self._replace(shot.with_status(ROLLBACK_TARGETS[from_status]))

    async def _finish(
        self,
        shot_id: str,
        token: CancellationToken,
        expected: ShotStatus | None,
        update: Callable[[Shot], dict],
    ) -> Shot:
        """Apply a successful result unless the call was cancelled meanwhile."""
        async with self._lock:
            token.raise_if_cancelled()
            shot = self.get_shot(shot_id)
            if expected is not None and shot.status != expected:
                raise GenerationCancelledError()
            return self._replace(shot.model_copy(update={**update(shot), "updated_at": utc_now()}))

    # =========================================================================
    # Image generation
    # =========================================================================

    async def generate_image(
        self,
        shot_id: str,
        model_id: str | None = None,
        prompt: str | None = None,
    ) -> str:
        """Generate an image for a shot and move it to ``img_review``.

        Returns:
            Stored image reference (filename, or URL if it could not be saved)
        """
        async with self._lock:
            shot = self.get_shot(shot_id)
            token = self._begin(shot, Operation.IMAGE, ShotStatus.IMG_GEN)

        model_id = model_id or self.settings.default_image_model
        logger.info("image_generation_started", shot_id=shot_id, model=model_id)

        try:
            result = await self._produce_image(shot, model_id, prompt or shot.image_prompt, token)
            token.raise_if_cancelled()
            stored = await self.media_store.save_image(self._project.id, shot_id, result)
            updated = await self._finish(
                shot_id,
                token,
                ShotStatus.IMG_GEN,
                lambda current: {
                    "generated_images": [*current.generated_images, stored],
                    "status": ShotStatus.IMG_REVIEW,
                },
            )
        except GenerationCancelledError:
            await self._rollback(shot_id, ShotStatus.IMG_GEN)
            logger.info("image_generation_cancelled", shot_id=shot_id)
            raise
        except Exception as exc:
            await self._rollback(shot_id, ShotStatus.IMG_GEN)
            logger.error("image_generation_failed", shot_id=shot_id, error=str(exc))
            raise
        finally:
            self._in_flight.remove(Operation.IMAGE, shot_id, token)

        logger.info("image_generation_completed", **updated.summary())
        return stored

    async def _produce_image(
        self,
        shot: Shot,
        model_id: str,
        prompt: str,
        token: CancellationToken,
    ) -> str:
        settings = self.settings
        references = await self.media_store.load_references(self._project.id, shot.asset_refs)
        fallback_id = resolve_openrouter_fallback_model(
            model_id, settings.default_openrouter_image_model
        )
        resolution = resolve_provider_image_resolution(settings.image_quality)

        async def via_openrouter(target: str) -> str:
            return await self.generator.generate_openrouter_image(
                target,
                prompt,
                reference_images=references,
                size=settings.image_size or None,
                quality=normalize_quality_tier(settings.image_quality).value,
                cancel=token,
            )

        async def via_provider(model, reference: str | None) -> str:
            return await self.generator.generate_image(
                model,
                prompt,
                reference_image=reference,
                aspect_ratio=settings.image_aspect_ratio or None,
                resolution=resolution,
                cancel=token,
            )

        model = resolve_image_model(model_id)
        if model is None:
            logger.info("image_model_not_in_registry", model=model_id, using=fallback_id)
            return await via_openrouter(fallback_id)

        if model.requires_image_input and not references:
            return await self._produce_without_references(
                model_id, fallback_id, via_provider, via_openrouter
            )

        try:
            return await via_provider(model, references[0] if references else None)
        except ConfigurationError as exc:
            logger.warning("image_provider_unavailable", model=model_id, error=exc.message)
            return await via_openrouter(fallback_id)
        except ProviderError as exc:
            if not _is_missing_image_input(exc):
                raise
            logger.warning("image_input_rejected", model=model_id, error=exc.message)
            return await via_openrouter(fallback_id)

    async def _produce_without_references(
        self,
        model_id: str,
        fallback_id: str,
        via_provider: Callable[..., Awaitable[str]],
        via_openrouter: Callable[[str], Awaitable[str]],
    ) -> str:
        """Model needs a reference image but the shot has none."""
        no_ref_id = self.settings.default_image_no_ref_model.strip()
        if not no_ref_id:
            logger.warning("reference_required_using_openrouter", model=model_id)
            return await via_openrouter(fallback_id)

        no_ref_model = resolve_image_model(no_ref_id)
        if no_ref_model is not None and no_ref_model.requires_image_input:
            logger.warning("no_reference_model_requires_image", model=no_ref_id)
            return await via_openrouter(fallback_id)

        try:
            if no_ref_model is None:
                return await via_openrouter(no_ref_id)
            return await via_provider(no_ref_model, None)
        except (ConfigurationError, ProviderError, NoMediaInResponseError) as exc:
            logger.warning("no_reference_model_failed", model=no_ref_id, error=exc.message)
            return await via_openrouter(fallback_id)

    # =========================================================================
    # Video generation
    # =========================================================================

    async def generate_video(
        self,
        shot_id: str,
        model_id: str | None = None,
        prompt: str | None = None,
        quality: str | None = None,
    ) -> str:
        """Generate a video from the shot's best image and move it to ``vid_review``."""
        model_id = model_id or self.settings.default_video_model
        model = resolve_video_model(model_id)
        if model is None:
            raise UnknownModelError(model_id, "video")

        async with self._lock:
            shot = self.get_shot(shot_id)
            if shot.status.is_transient:
                raise GenerationInProgressError(shot_id, Operation.VIDEO.value)
            if shot.status not in _VIDEO_SOURCE_STATES:
                raise InvalidTransitionError(shot_id, shot.status.value, ShotStatus.VID_GEN.value)
            source_ref = shot.best_image
            if source_ref is None:
                raise InvalidTransitionError(
                    shot_id,
                    shot.status.value,
                    ShotStatus.VID_GEN.value,
                    "no source image, generate an image first",
                )
            token = self._begin(shot, Operation.VIDEO, ShotStatus.VID_GEN)

        quality = quality or self.settings.video_quality
        logger.info("video_generation_started", shot_id=shot_id, model=model_id, quality=quality)

        try:
            source = await self.media_store.load_image(self._project.id, shot_id, source_ref)
            url = await self.generator.generate_video_from_image(
                model,
                prompt or shot.video_prompt,
                source,
                duration=shot.duration,
                quality=quality,
                cancel=token,
            )
            token.raise_if_cancelled()
            stored = await self.media_store.save_video(self._project.id, shot_id, url)
            updated = await self._finish(
                shot_id,
                token,
                ShotStatus.VID_GEN,
                lambda current: {"video_file": stored, "status": ShotStatus.VID_REVIEW},
            )
        except GenerationCancelledError:
            await self._rollback(shot_id, ShotStatus.VID_GEN)
            logger.info("video_generation_cancelled", shot_id=shot_id)
            raise
        except Exception as exc:
            await self._rollback(shot_id, ShotStatus.VID_GEN)
            logger.error("video_generation_failed", shot_id=shot_id, error=str(exc))
            raise
        finally:
            self._in_flight.remove(Operation.VIDEO, shot_id, token)

        logger.info("video_generation_completed", **updated.summary())
        return stored

    # =========================================================================
    # Enhancement
    # =========================================================================

    async def enhance_image(self, shot_id: str, source_image: str | None = None) -> str:
        """Post-process an existing image; the shot's status is not touched."""
        async with self._lock:
            shot = self.get_shot(shot_id)
            source_ref = source_image or (
                shot.generated_images[-1] if shot.generated_images else None
            )
            if source_ref is None:
                raise InvalidRequestError(f"Shot {shot_id} has no image to enhance")
            token = self._in_flight.add(Operation.ENHANCE, shot_id)

        settings = self.settings
        logger.info("enhance_started", shot_id=shot_id, model=settings.default_enhance_model)

        try:
            source = await self.media_store.load_image(self._project.id, shot_id, source_ref)
            result = await self.generator.generate_openrouter_image(
                settings.default_enhance_model,
                settings.enhance_prompt,
                reference_images=[source],
                size=settings.enhance_size or None,
                quality=settings.enhance_quality or None,
                cancel=token,
            )
            token.raise_if_cancelled()
            stored = await self.media_store.save_image(
                self._project.id, shot_id, result, prefix="enh"
            )
            await self._finish(
                shot_id,
                token,
                None,
                lambda current: {"enhanced_images": [*current.enhanced_images, stored]},
            )
        except GenerationCancelledError:
            logger.info("enhance_cancelled", shot_id=shot_id)
            raise
        except Exception as exc:
            logger.error("enhance_failed", shot_id=shot_id, error=str(exc))
            raise
        finally:
            self._in_flight.remove(Operation.ENHANCE, shot_id, token)

        logger.info("enhance_completed", shot_id=shot_id, file=stored)
        return stored

    # =========================================================================
    # Reviewer actions
    # =========================================================================

    async def approve(self, shot_id: str) -> Shot:
        """``vid_review -> approved``."""
        async with self._lock:
            shot = self.get_shot(shot_id)
            if shot.status != ShotStatus.VID_REVIEW:
                raise InvalidTransitionError(shot_id, shot.status.value, ShotStatus.APPROVED.value)
            return self._replace(shot.with_status(ShotStatus.APPROVED))

    async def send_back(self, shot_id: str) -> Shot:
        """``vid_review -> img_review``; the video is discarded."""
        async with self._lock:
            shot = self.get_shot(shot_id)
            if shot.status != ShotStatus.VID_REVIEW:
                raise InvalidTransitionError(
                    shot_id, shot.status.value, ShotStatus.IMG_REVIEW.value
                )
            return self._replace(
                shot.model_copy(
                    update={
                        "status": ShotStatus.IMG_REVIEW,
                        "video_file": None,
                        "updated_at": utc_now(),
                    }
                )
            )

    async def reject(self, shot_id: str) -> Shot:
        """Any state -> ``draft``, clearing every generated artifact.

        Running calls for the shot are cancelled first.
        """
        cancelled = self._in_flight.cancel(shot_id)
        async with self._lock:
            shot = self.get_shot(shot_id)
            updated = self._replace(shot.cleared())
        logger.info("shot_rejected", shot_id=shot_id, cancelled=[op.value for op in cancelled])
        return updated

    async def set_status(self, shot_id: str, status: ShotStatus | str) -> Shot:
        """Explicit reviewer move to any non-transient state.

        Moving to ``draft`` behaves like ``reject``. Moving back to
        ``img_review`` discards the video.
        """
        status = ShotStatus(status)
        if status == ShotStatus.DRAFT:
            return await self.reject(shot_id)

        async with self._lock:
            shot = self.get_shot(shot_id)
            if status.is_transient:
                raise InvalidTransitionError(
                    shot_id, shot.status.value, status.value, "generation states are not settable"
                )
            if shot.status.is_transient:
                raise GenerationInProgressError(shot_id, shot.status.value)

            if status == ShotStatus.IMG_REVIEW:
                if not shot.generated_images and not shot.enhanced_images:
                    raise InvalidTransitionError(
                        shot_id, shot.status.value, status.value, "no generated image"
                    )
                update: dict = {"status": status, "updated_at": utc_now()}
                if shot.status.rank > ShotStatus.IMG_REVIEW.rank:
                    update["video_file"] = None
                return self._replace(shot.model_copy(update=update))

            if shot.video_file is None:
                raise InvalidTransitionError(shot_id, shot.status.value, status.value, "no video")
            return self._replace(shot.with_status(status))

    # =========================================================================
    # Cancellation
    # =========================================================================

    async def cancel(self, shot_id: str) -> bool:
        """Cancel running calls for a shot and roll back its status now.

        Returns True if anything was cancelled or rolled back.
        """
        cancelled = self._in_flight.cancel(shot_id)
        rolled_back = False
        async with self._lock:
            shot = self.get_shot(shot_id)
            target = ROLLBACK_TARGETS.get(shot.status)
            if target is not None:
                self._replace(shot.with_status(target))
                rolled_back = True

        logger.info(
            "generation_cancel_requested",
            shot_id=shot_id,
            operations=[op.value for op in cancelled],
            rolled_back=rolled_back,
        )
        return bool(cancelled) or rolled_back

    async def cancel_all(self) -> int:
        """Cancel every running call in the project; returns the number cancelled."""
        cancelled = self._in_flight.cancel_all()
        async with self._lock:
            for shot in self._project.shots:
                target = ROLLBACK_TARGETS.get(shot.status)
                if target is not None:
                    self._replace(shot.with_status(target))

        logger.info("generation_cancel_all", project_id=self._project.id, cancelled=cancelled)
        return cancelled

    # =========================================================================
    # Batch operations
    # =========================================================================

    async def _run_batch(
        self,
        name: str,
        shot_ids: list[str],
        concurrency: int | None,
        worker: Callable[[str], Awaitable[str]],
    ) -> dict[str, Settled[str]]:
        limit = coerce_limit(concurrency or self.settings.batch_concurrency, len(shot_ids))
        logger.info(f"{name}_started", shots=len(shot_ids), concurrency=limit)

        async def run(shot_id: str, _index: int) -> str:
            return await worker(shot_id)

        results = await map_with_concurrency(shot_ids, limit, run)

        outcome = dict(zip(shot_ids, results))
        for shot_id, settled in outcome.items():
            if settled.ok:
                continue
            if isinstance(settled.error, GenerationCancelledError):
                logger.info(f"{name}_item_cancelled", shot_id=shot_id)
            else:
                logger.error(f"{name}_item_failed", shot_id=shot_id, error=str(settled.error))

        logger.info(
            f"{name}_completed",
            succeeded=sum(1 for s in results if s.ok),
            total=len(results),
        )
        return outcome

    async def generate_all_images(self, concurrency: int | None = None) -> dict[str, Settled[str]]:
        """Generate images for every draft shot without one."""
        targets = [
            shot.id
            for shot in sorted(self._project.shots, key=lambda s: s.order)
            if shot.status == ShotStatus.DRAFT and not shot.generated_images
            and not self.is_busy(shot.id)
        ]
        return await self._run_batch("generate_all_images", targets, concurrency, self.generate_image)

    async def enhance_all(self, concurrency: int | None = None) -> dict[str, Settled[str]]:
        """Enhance every shot that has a generated image but no enhanced one."""
        targets = [
            shot.id
            for shot in sorted(self._project.shots, key=lambda s: s.order)
            if shot.generated_images and not shot.enhanced_images
            and not self._in_flight.contains(Operation.ENHANCE, shot.id)
        ]
        return await self._run_batch("enhance_all", targets, concurrency, self.enhance_image)

    async def generate_all_videos(self, concurrency: int | None = None) -> dict[str, Settled[str]]:
        """Generate videos for every shot waiting in ``img_review``."""
        targets = [
            shot.id
            for shot in sorted(self._project.shots, key=lambda s: s.order)
            if shot.status == ShotStatus.IMG_REVIEW and shot.best_image is not None
            and not self.is_busy(shot.id)
        ]
        return await self._run_batch("generate_all_videos", targets, concurrency, self.generate_video)


def _is_missing_image_input(exc: ProviderError) -> bool:
    """Provider says a required image field is missing."""
    text = f"{exc.message} {exc.body}".lower()
    mentions_image = "image_url" in text or "image_urls" in text
    return mentions_image and ("field required" in text or "missing" in text)
