"""Pytest configuration and fixtures."""

from __future__ import annotations

from typing import Callable

import httpx
import pytest

from cutroom.common.config import Settings
from cutroom.common.models import Project, Shot, ShotStatus


class SleepRecorder:
    """Stand-in for asyncio.sleep that records the requested delays."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeps():
    """Recorded backoff/poll delays."""
    return SleepRecorder()


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment's .env file."""
    return Settings(
        _env_file=None,
        projects_dir=str(tmp_path / "projects"),
        fal_api_key="fal-test-key",
        replicate_api_token="r8-test-token",
        openrouter_api_key="or-test-key",
        batch_concurrency=2,
    )


@pytest.fixture
def mock_http() -> Callable[[Callable], httpx.AsyncClient]:
    """Build an AsyncClient whose requests are answered by a handler."""

    def build(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return build


@pytest.fixture
def sample_project():
    """Project with shots spread across the lifecycle."""
    return Project(
        id="project_demo",
        name="Riverside Residence",
        shots=[
            Shot(id="shot_1", order=1, scene="Фасад здания на закате", duration=5.0, image_prompt="facade"),
            Shot(id="shot_2", order=2, scene="Interior lobby with marble", duration=4.0, image_prompt="lobby"),
            Shot(
                id="shot_3",
                order=3,
                scene="Close detail of the brass handle",
                duration=3.0,
                status=ShotStatus.IMG_REVIEW,
                generated_images=["gen_1.png"],
            ),
        ],
    )
