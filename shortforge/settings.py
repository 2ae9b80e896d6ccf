"""
ShortForge process configuration, read from the environment.
"""
import os
from pathlib import Path

FFMPEG_PATH = os.getenv("FFMPEG_PATH", "ffmpeg")
FFPROBE_PATH = os.getenv("FFPROBE_PATH", "ffprobe")

# Caption font (Inter, variable weight)
FONT_URL = os.getenv(
    "SHORTFORGE_FONT_URL",
    "https://cdn.jsdelivr.net/gh/google/fonts@main/ofl/inter/Inter%5Bopsz%2Cwght%5D.ttf",
)
FONT_CACHE_DIR = Path(os.getenv("SHORTFORGE_FONT_CACHE_DIR", Path.home() / ".cache" / "shortforge"))
FONT_TIMEOUT = float(os.getenv("SHORTFORGE_FONT_TIMEOUT", 30.0))

# Scratch space for render attempts; None means the system temp dir
WORK_DIR = os.getenv("SHORTFORGE_WORK_DIR") or None

LOG_LEVEL = os.getenv("SHORTFORGE_LOG_LEVEL", "INFO")
