"""Thin CLI entry point — builds a Manifest and calls the engine."""

import argparse
import sys
from pathlib import Path

from loguru import logger

from shortforge import settings
from shortforge.engine import process
from shortforge.errors import ShortForgeError
from shortforge.ffutil import FFmpegNotFoundError, probe
from shortforge.manifest import CaptionConfig, Manifest, load_manifest
from shortforge.models import ClipWindow, EditorState, ShortPlan, StyleOverrides
from shortforge.style import PRESETS


def configure_logging(verbose: bool = False) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else settings.LOG_LEVEL)


def _manifest_from_args(args: argparse.Namespace) -> Manifest:
    output = args.output or args.video.with_stem(
        f"{args.video.stem}_short_{int(args.start)}-{int(args.end)}"
    ).with_suffix(".mp4")
    return Manifest(
        input=args.video,
        output=output,
        clip=ClipWindow.from_range(args.start, args.end),
        editor=EditorState(
            zoom=args.zoom,
            pan_x=args.pan_x,
            pan_y=args.pan_y,
            subtitle_scale=args.subtitle_scale,
            style=StyleOverrides(preset=args.style),
        ),
        plan=ShortPlan(id="cli", clip_id="clip", platform=args.platform, subtitle_style=args.style),
        captions=CaptionConfig(
            enabled=args.captions is not None,
            srt_path=args.captions,
            sidecar_format=args.caption_format,
        ),
    )


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="shortforge",
        description="ShortForge — render vertical shorts with burned-in captions.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    exp = sub.add_parser("export", help="Export a 9:16 short from a video")
    exp.add_argument("video", nargs="?", type=Path, help="Input video file")
    exp.add_argument("--manifest", "-m", type=Path, help="Path to a JSON manifest file")
    exp.add_argument("--output", "-o", type=Path, help="Output file path")
    exp.add_argument("--start", type=float, help="Clip start (seconds)")
    exp.add_argument("--end", type=float, help="Clip end (seconds)")
    exp.add_argument("--zoom", type=float, default=1.0, help="Framing zoom (>= 0.2)")
    exp.add_argument("--pan-x", type=float, default=0.0, help="Horizontal pan in preview pixels")
    exp.add_argument("--pan-y", type=float, default=0.0, help="Vertical pan in preview pixels")
    exp.add_argument("--captions", type=Path, help="SRT/VTT file to burn in")
    exp.add_argument("--caption-format", choices=["srt", "vtt"], help="Also write a clip-timed sidecar")
    exp.add_argument("--style", choices=PRESETS, default="clean_caption", help="Caption preset")
    exp.add_argument("--subtitle-scale", type=float, default=1.0, help="Caption size multiplier")
    exp.add_argument(
        "--platform",
        choices=["youtube_shorts", "instagram_reels", "tiktok"],
        default="youtube_shorts",
        help="Target platform",
    )

    prb = sub.add_parser("probe", help="Print media metadata")
    prb.add_argument("video", type=Path, help="Input video file")

    serve = sub.add_parser("serve", help="Launch the web API")
    serve.add_argument("--port", type=int, default=8321, help="Port to listen on")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")

    args = parser.parse_args()
    configure_logging(args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "serve":
        from shortforge.web import create_app
        app = create_app()
        print(f"ShortForge API: http://{args.host}:{args.port}")
        app.run(host=args.host, port=args.port, debug=False, threaded=True)
        return

    if args.command == "probe":
        info = probe(args.video)
        print(f"{args.video.name}: {info.width}x{info.height} @ {info.fps:.2f} fps, {info.duration:.2f}s")
        print(f"  Video: {info.codec_video}  Audio: {info.codec_audio or 'none'}")
        return

    if args.manifest:
        m = load_manifest(args.manifest)
    elif args.video and args.start is not None and args.end is not None:
        m = _manifest_from_args(args)
    else:
        print("Error: provide VIDEO with --start/--end, or --manifest.", file=sys.stderr)
        sys.exit(1)

    def on_progress(stage: str, frac: float) -> None:
        print(f"  [{frac:4.0%}] {stage}")

    try:
        result = process(m, on_progress=on_progress)
    except (ShortForgeError, FFmpegNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print()
    print(f"Done! Output: {result.output_path}")
    print(f"  Clip: {result.clip.start:.2f}s -> {result.clip.end:.2f}s ({result.clip.duration:.2f}s)")
    print(f"  Seek mode: {result.seek_mode}  Captions burned in: {'yes' if result.captions_burned_in else 'no'}")
    for note in result.notes:
        print(f"  - {note}")
