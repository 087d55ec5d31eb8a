"""Shared fixtures for canvas-mcp tests."""

import pytest

from canvas_mcp.config import CanvasConfig


@pytest.fixture
def canvas_config() -> CanvasConfig:
    """Connection settings pointing at a fake Canvas instance."""
    return CanvasConfig(
        api_token="test-token-1234567890",
        api_url="https://canvas.example.edu",
        institution_name="Example University",
    )
