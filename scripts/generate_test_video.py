#!/usr/bin/env python3
"""Generate a synthetic landscape test video for ShortForge exports.

Produces a 1920x1080 clip (default 20 s) with a moving test pattern, a
running timestamp and a 440 Hz tone, handy for checking framing and
caption timing by eye.
"""

import subprocess
import sys
from pathlib import Path


def generate_test_video(output: Path, duration: float = 20.0) -> None:
    output.parent.mkdir(parents=True, exist_ok=True)

    cmd = [
        "ffmpeg", "-y",
        "-f", "lavfi", "-i", f"testsrc2=s=1920x1080:r=30:d={duration}",
        "-f", "lavfi", "-i", f"sine=f=440:d={duration}",
        "-vf", "drawtext=text='%{pts\\:hms}':x=40:y=40:fontsize=64:fontcolor=white:box=1:boxcolor=black@0.6",
        "-c:v", "libx264",
        "-c:a", "aac",
        "-shortest",
        str(output),
    ]
    subprocess.run(cmd, check=True)
    print(f"Generated: {output}")


if __name__ == "__main__":
    out = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("tests/fixtures/landscape.mp4")
    generate_test_video(out)
