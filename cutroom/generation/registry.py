"""Unified model registry for image and video generation via fal.ai and Replicate.

Static catalog entries are looked up by id. Ids starting with
``DYNAMIC_FAL_MODEL_PREFIX`` name a raw fal endpoint; descriptors for them
are synthesized on demand from substring heuristics and never stored.
"""

from __future__ import annotations

from cutroom.common.logging import get_logger
from cutroom.common.models import ImageModel, Provider, QualityTier, VideoModel

logger = get_logger(__name__)

DYNAMIC_FAL_MODEL_PREFIX = "fal-endpoint:"

DEFAULT_OPENROUTER_IMAGE_MODEL = "openai/gpt-image-1"


IMAGE_MODELS: list[ImageModel] = [
    ImageModel(
        id="fal/flux-kontext-max",
        provider=Provider.FAL,
        endpoint="fal-ai/flux-pro/kontext/max/text-to-image",
        name="Flux Kontext Max",
        supports_image_input=True,
        image_input_param="image_url",
    ),
    ImageModel(
        id="fal/flux-kontext",
        provider=Provider.FAL,
        endpoint="fal-ai/flux-pro/kontext/text-to-image",
        name="Flux Kontext",
        supports_image_input=True,
        image_input_param="image_url",
    ),
    ImageModel(
        id="fal/nano-banana-pro",
        provider=Provider.FAL,
        endpoint="fal-ai/nano-banana-pro/edit",
        name="Nano Banana Pro (Edit)",
        supports_image_input=True,
        requires_image_input=True,
        image_input_param="image_urls",
        image_is_array=True,
    ),
    ImageModel(
        id="fal/recraft-v3",
        provider=Provider.FAL,
        endpoint="fal-ai/recraft/v3",
        name="Recraft V3",
    ),
    ImageModel(
        id="fal/ideogram-v3",
        provider=Provider.FAL,
        endpoint="fal-ai/ideogram/v3",
        name="Ideogram V3",
    ),
    ImageModel(
        id="rep/flux-kontext-max",
        provider=Provider.REPLICATE,
        endpoint="black-forest-labs/flux-kontext-max",
        name="Flux Kontext Max (Rep)",
        supports_image_input=True,
        image_input_param="input_image",
    ),
    ImageModel(
        id="rep/flux-kontext-pro",
        provider=Provider.REPLICATE,
        endpoint="black-forest-labs/flux-kontext-pro",
        name="Flux Kontext Pro (Rep)",
        supports_image_input=True,
        image_input_param="input_image",
    ),
]

VIDEO_MODELS: list[VideoModel] = [
    VideoModel(
        id="fal/kling-2.1-pro",
        provider=Provider.FAL,
        endpoint="fal-ai/kling-video/v2.1/pro/image-to-video",
        name="Kling 2.1 Pro",
    ),
    VideoModel(
        id="fal/minimax-hailuo",
        provider=Provider.FAL,
        endpoint="fal-ai/minimax/hailuo-02/pro/image-to-video",
        name="MiniMax Hailuo 02",
        quality_param="resolution",
        quality_values={"low": "768P", "medium": "768P", "high": "1080P"},
        quality_options=["768P", "1080P"],
    ),
    VideoModel(
        id="fal/wan-2.1",
        provider=Provider.FAL,
        endpoint="fal-ai/wan/v2.1/1.3b/image-to-video",
        name="WAN 2.1",
        quality_param="resolution",
        quality_values={"low": "480p", "medium": "720p", "high": "720p"},
        quality_options=["480p", "720p"],
    ),
    VideoModel(
        id="rep/kling-2.1",
        provider=Provider.REPLICATE,
        endpoint="kwaivgi/kling-v2.1",
        name="Kling 2.1 (Rep)",
        source_image_param="start_image",
    ),
    VideoModel(
        id="rep/minimax-video-01",
        provider=Provider.REPLICATE,
        endpoint="minimax/video-01",
        name="MiniMax Video-01 (Rep)",
        source_image_param="first_frame_image",
        supports_duration=False,
    ),
]

_IMAGE_BY_ID = {model.id: model for model in IMAGE_MODELS}
_VIDEO_BY_ID = {model.id: model for model in VIDEO_MODELS}


def find_image_model(model_id: str) -> ImageModel | None:
    return _IMAGE_BY_ID.get(model_id)


def find_video_model(model_id: str) -> VideoModel | None:
    return _VIDEO_BY_ID.get(model_id)


def parse_dynamic_endpoint(model_id: str) -> str | None:
    """Return the endpoint named by a dynamic id, or None if invalid."""
    if not model_id.startswith(DYNAMIC_FAL_MODEL_PREFIX):
        return None

    endpoint = model_id[len(DYNAMIC_FAL_MODEL_PREFIX):].strip()
    if not endpoint or "/" not in endpoint:
        return None
    return endpoint


def endpoint_requires_image_input(endpoint: str) -> bool:
    """Edit and image-to-image endpoints cannot run without a source image."""
    endpoint_lower = endpoint.lower()
    return "edit" in endpoint_lower or "image-to-image" in endpoint_lower


def resolve_image_model(model_id: str) -> ImageModel | None:
    """Resolve an image model id from the catalog or a dynamic endpoint id."""
    known = find_image_model(model_id)
    if known is not None:
        return known

    endpoint = parse_dynamic_endpoint(model_id)
    if endpoint is None:
        return None

    requires_image_input = endpoint_requires_image_input(endpoint)

    logger.debug(
        "dynamic_image_model",
        endpoint=endpoint,
        requires_image_input=requires_image_input,
    )
    return ImageModel(
        id=model_id,
        provider=Provider.FAL,
        endpoint=endpoint,
        name=endpoint,
        supports_image_input=requires_image_input,
        requires_image_input=requires_image_input,
        image_input_param="image_urls" if requires_image_input else None,
        image_is_array=requires_image_input,
    )


def resolve_video_model(model_id: str) -> VideoModel | None:
    """Resolve a video model id from the catalog or a dynamic endpoint id."""
    known = find_video_model(model_id)
    if known is not None:
        return known

    endpoint = parse_dynamic_endpoint(model_id)
    if endpoint is None:
        return None

    hints = infer_video_quality_hints(endpoint)
    logger.debug("dynamic_video_model", endpoint=endpoint, quality_param=hints.get("quality_param"))
    return VideoModel(
        id=model_id,
        provider=Provider.FAL,
        endpoint=endpoint,
        name=endpoint,
        **hints,
    )


def infer_video_quality_hints(endpoint: str) -> dict:
    """Guess quality parameter and tier table for a raw fal endpoint."""
    endpoint_lower = endpoint.lower()
    image_to_video = "image-to-video" in endpoint_lower

    if "minimax/hailuo" in endpoint_lower and image_to_video:
        if "/pro/" in endpoint_lower:
            return _quality_hints("768P", "768P", "1080P", ["768P", "1080P"])
        return _quality_hints("512P", "768P", "768P", ["512P", "768P"])

    if "/wan/" in endpoint_lower and image_to_video:
        return _quality_hints("480p", "720p", "720p", ["480p", "720p"])

    if "veo3" in endpoint_lower and image_to_video:
        return _quality_hints("720p", "1080p", "4k", ["720p", "1080p", "4k"])

    return {}


def _quality_hints(low: str, medium: str, high: str, options: list[str]) -> dict:
    return {
        "quality_param": "resolution",
        "quality_values": {
            QualityTier.LOW: low,
            QualityTier.MEDIUM: medium,
            QualityTier.HIGH: high,
        },
        "quality_options": options,
    }


def resolve_openrouter_fallback_model(requested_model_id: str, fallback_model_id: str) -> str:
    """Map a requested image model to an id OpenRouter can accept.

    Provider-specific ids (fal/*, rep/*, dynamic) fall back to the configured
    OpenRouter model; ids unknown to the registry are assumed to be
    OpenRouter ids already.
    """
    if resolve_image_model(requested_model_id) is None:
        return requested_model_id

    if fallback_model_id and resolve_image_model(fallback_model_id) is None:
        return fallback_model_id
    return DEFAULT_OPENROUTER_IMAGE_MODEL
