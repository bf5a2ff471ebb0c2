"""Quality tier resolution.

Maps a requested quality token (tier name, raw provider value or ``auto``)
to the provider-specific ``{param: value}`` pair for a video model.
"""

from __future__ import annotations

from cutroom.common.models import QualityTier, QualityValue, VideoModel

AUTO_QUALITY = "auto"

# Tier fallback order when the exact tier is not set on a model
_TIER_FALLBACKS: dict[QualityTier, tuple[QualityTier, ...]] = {
    QualityTier.LOW: (QualityTier.LOW, QualityTier.MEDIUM, QualityTier.HIGH),
    QualityTier.MEDIUM: (QualityTier.MEDIUM, QualityTier.HIGH, QualityTier.LOW),
    QualityTier.HIGH: (QualityTier.HIGH, QualityTier.MEDIUM, QualityTier.LOW),
}


def dedupe_options(values: list[str]) -> list[str]:
    """Case-insensitive de-duplication keeping first-seen order."""
    seen: set[str] = set()
    out: list[str] = []
    for raw in values:
        value = str(raw or "").strip()
        if not value:
            continue
        key = value.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(value)
    return out


def get_video_quality_options(model: VideoModel) -> list[str]:
    """Raw quality values a model accepts, for settings UIs and matching."""
    if model.quality_options:
        return dedupe_options(model.quality_options)

    from_tiers = [
        value
        for tier in (QualityTier.LOW, QualityTier.MEDIUM, QualityTier.HIGH)
        if isinstance(value := model.quality_values.get(tier), str) and value.strip()
    ]
    return dedupe_options(from_tiers)


def normalize_quality_tier(raw: str | None) -> QualityTier:
    """Map an arbitrary quality token to the nearest named tier."""
    value = str(raw or "").strip().lower()
    if value in (QualityTier.LOW.value, QualityTier.MEDIUM.value, QualityTier.HIGH.value):
        return QualityTier(value)

    if "4k" in value or "2160" in value:
        return QualityTier.HIGH
    if any(token in value for token in ("2k", "1440", "1080")):
        return QualityTier.MEDIUM
    if any(token in value for token in ("1k", "768", "720", "512", "480")):
        return QualityTier.LOW
    return QualityTier.HIGH


def resolve_tier_value(model: VideoModel, tier: QualityTier) -> QualityValue | None:
    """Provider value for a tier, falling back to adjacent tiers."""
    if not model.quality_values:
        options = get_video_quality_options(model)
        if not options:
            return None
        if tier == QualityTier.LOW:
            return options[0]
        if tier == QualityTier.MEDIUM:
            return options[(len(options) - 1) // 2]
        return options[-1]

    for candidate in _TIER_FALLBACKS[tier]:
        value = model.quality_values.get(candidate)
        if value is not None:
            return value
    return None


def _match_option(model: VideoModel, requested: str) -> str | None:
    requested_lower = requested.lower()
    for option in get_video_quality_options(model):
        if option.lower() == requested_lower:
            return option
    return None


def resolve_video_quality_input(
    model: VideoModel,
    requested_quality: str | None = None,
) -> dict[str, QualityValue] | None:
    """Resolve the provider input field carrying quality for a video model.

    Returns None when the model has no quality parameter or the caller asked
    for ``auto``. An absent request resolves to the ``high`` tier.
    """
    param = model.quality_param
    if not param:
        return None

    requested = str(requested_quality or "").strip()
    if requested.lower() == AUTO_QUALITY:
        return None

    value: QualityValue | None
    if not requested:
        value = resolve_tier_value(model, QualityTier.HIGH)
    else:
        value = _match_option(model, requested)
        if value is None:
            # Named tiers normalize to themselves
            value = resolve_tier_value(model, normalize_quality_tier(requested))

    if value is None:
        return None
    return {param: value}


def resolve_provider_image_resolution(raw_quality: str | None) -> str | None:
    """Image resolution to pass to fal/Replicate image models.

    Only raw provider values (e.g. "2K") are forwarded; generic tiers and
    ``auto`` carry no capability information and are dropped.
    """
    requested = str(raw_quality or "").strip()
    if not requested:
        return None
    lowered = requested.lower()
    if lowered == AUTO_QUALITY or lowered in ("low", "medium", "high"):
        return None
    return requested
