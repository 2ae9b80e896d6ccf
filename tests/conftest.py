"""Shared test fixtures."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from shortforge.models import ClipWindow, ProbeResult, TimedTextEntry

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def sample_manifest_path() -> Path:
    return FIXTURES_DIR / "sample_manifest.json"


@pytest.fixture
def landscape_probe() -> ProbeResult:
    return ProbeResult(
        duration=90.0,
        width=1920,
        height=1080,
        fps=30.0,
        codec_video="h264",
        audio_sample_rate=44100,
        codec_audio="aac",
    )


@pytest.fixture
def clip() -> ClipWindow:
    return ClipWindow.from_range(8.0, 20.0, id="clip_1")


@pytest.fixture
def entries() -> list[TimedTextEntry]:
    return [
        TimedTextEntry("Before the clip", 1.0, 7.0),
        TimedTextEntry("Straddles the start", 7.9, 8.2),
        TimedTextEntry("Right in the middle", 10.0, 12.0),
        TimedTextEntry("Runs past the end", 19.7, 20.4),
        TimedTextEntry("After the clip", 21.0, 22.0),
    ]


@pytest.fixture
def fonts(tmp_path: Path) -> MagicMock:
    """A font cache that always has the font on disk."""
    font = tmp_path / "Inter.ttf"
    font.write_bytes(b"font")
    cache = MagicMock()
    cache.try_ensure.return_value = font
    cache.ensure.return_value = font
    return cache
