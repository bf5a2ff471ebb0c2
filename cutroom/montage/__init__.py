"""Montage planning, frame resolution and rendering."""

from cutroom.montage.planner import (
    detect_area,
    generate_montage_plan,
    select_transition,
)
from cutroom.montage.render_worker import (
    RENDER_QUALITY_PRESETS,
    FFmpegRenderBackend,
    RenderBackend,
    RenderJobWorker,
    RenderPreset,
)
from cutroom.montage.resolver import frames_from_seconds, resolve_plan

__all__ = [
    # Planning
    "detect_area",
    "generate_montage_plan",
    "select_transition",
    # Resolution
    "frames_from_seconds",
    "resolve_plan",
    # Rendering
    "RENDER_QUALITY_PRESETS",
    "FFmpegRenderBackend",
    "RenderBackend",
    "RenderJobWorker",
    "RenderPreset",
]
