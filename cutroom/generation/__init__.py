"""Model registry, quality resolution and the shot generation pipeline."""

from cutroom.generation.media import (
    LocalMediaStore,
    MediaStore,
    decode_image_result,
    image_mime_type,
    to_data_url,
)
from cutroom.generation.pipeline import (
    InFlightRegistry,
    Operation,
    ROLLBACK_TARGETS,
    ShotPipeline,
)
from cutroom.generation.pool import (
    Settled,
    coerce_limit,
    map_with_concurrency,
)
from cutroom.generation.quality import (
    AUTO_QUALITY,
    dedupe_options,
    get_video_quality_options,
    normalize_quality_tier,
    resolve_provider_image_resolution,
    resolve_tier_value,
    resolve_video_quality_input,
)
from cutroom.generation.registry import (
    DEFAULT_OPENROUTER_IMAGE_MODEL,
    DYNAMIC_FAL_MODEL_PREFIX,
    IMAGE_MODELS,
    VIDEO_MODELS,
    endpoint_requires_image_input,
    find_image_model,
    find_video_model,
    infer_video_quality_hints,
    parse_dynamic_endpoint,
    resolve_image_model,
    resolve_openrouter_fallback_model,
    resolve_video_model,
)

__all__ = [
    # Media
    "LocalMediaStore",
    "MediaStore",
    "decode_image_result",
    "image_mime_type",
    "to_data_url",
    # Pipeline
    "InFlightRegistry",
    "Operation",
    "ROLLBACK_TARGETS",
    "ShotPipeline",
    # Pool
    "Settled",
    "coerce_limit",
    "map_with_concurrency",
    # Quality
    "AUTO_QUALITY",
    "dedupe_options",
    "get_video_quality_options",
    "normalize_quality_tier",
    "resolve_provider_image_resolution",
    "resolve_tier_value",
    "resolve_video_quality_input",
    # Registry
    "DEFAULT_OPENROUTER_IMAGE_MODEL",
    "DYNAMIC_FAL_MODEL_PREFIX",
    "IMAGE_MODELS",
    "VIDEO_MODELS",
    "endpoint_requires_image_input",
    "find_image_model",
    "find_video_model",
    "infer_video_quality_hints",
    "parse_dynamic_endpoint",
    "resolve_image_model",
    "resolve_openrouter_fallback_model",
    "resolve_video_model",
]
