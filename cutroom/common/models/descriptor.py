"""Generation target descriptors (image and video models)."""

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class Provider(str, Enum):
    """Generation provider."""

    FAL = "fal"
    REPLICATE = "replicate"


class QualityTier(str, Enum):
    """Logical quality tier, mapped to provider-native values per model."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


QualityValue = Union[str, int, float, bool]


class ImageModel(BaseModel):
    """An image generation target."""

    model_config = ConfigDict(frozen=True)

    id: str
    provider: Provider
    endpoint: str
    name: str
    category: Literal["image"] = "image"

    supports_image_input: bool = False
    # Edit / image-to-image models cannot run without a source image
    requires_image_input: bool = False
    image_input_param: str | None = None
    image_is_array: bool = False


class VideoModel(BaseModel):
    """An image-to-video generation target."""

    model_config = ConfigDict(frozen=True)

    id: str
    provider: Provider
    endpoint: str
    name: str
    category: Literal["video"] = "video"

    source_image_param: str | None = None
    # None means unknown; duration is sent unless explicitly False
    supports_duration: bool | None = None

    # Provider-specific quality parameter (e.g. "resolution")
    quality_param: str | None = None
    quality_values: dict[QualityTier, QualityValue] = Field(default_factory=dict)
    quality_options: list[str] = Field(default_factory=list)


GenerationModel = Annotated[
    Union[ImageModel, VideoModel],
    Field(discriminator="category"),
]
