"""Geometry invariants checked before a transform is handed to the transcoder."""

import json
import math
from dataclasses import asdict, dataclass, field

from shortforge.errors import GeometryInvariantViolation
from shortforge.geometry import OUTPUT_HEIGHT, OUTPUT_WIDTH, ExportGeometry


@dataclass(frozen=True)
class InvariantMetrics:
    source_aspect_ratio: float
    scaled_aspect_ratio: float
    aspect_ratio_delta_pct: float
    scale_x: float
    scale_y: float
    scale_delta_pct: float


@dataclass
class InvariantResult:
    ok: bool
    metrics: InvariantMetrics
    violations: list[str] = field(default_factory=list)


def _ratio_delta_pct(a: float, b: float) -> float:
    if not (math.isfinite(a) and math.isfinite(b)) or a <= 0 or b <= 0:
        return math.inf
    return abs(a - b) / max(a, b) * 100


def check_invariants(
    source_width: int,
    source_height: int,
    geometry: ExportGeometry,
    expected_width: int = OUTPUT_WIDTH,
    expected_height: int = OUTPUT_HEIGHT,
    max_scale_delta_pct: float = 1.5,
    max_aspect_delta_pct: float = 1.5,
) -> InvariantResult:
    """Check output resolution, uniform scaling and aspect-ratio preservation.

    All violated rules are reported, not just the first.
    """
    expected_width = max(1, round(expected_width))
    expected_height = max(1, round(expected_height))
    max_scale_delta_pct = max(0.0, max_scale_delta_pct)
    max_aspect_delta_pct = max(0.0, max_aspect_delta_pct)

    src_w = max(1, source_width)
    src_h = max(1, source_height)
    scaled_w = max(1, geometry.scaled_width)
    scaled_h = max(1, geometry.scaled_height)

    violations: list[str] = []
    if geometry.output_width != expected_width or geometry.output_height != expected_height:
        violations.append(
            f"Output resolution mismatch: expected {expected_width}x{expected_height}, "
            f"got {geometry.output_width}x{geometry.output_height}."
        )

    scale_x = scaled_w / src_w
    scale_y = scaled_h / src_h
    source_ar = src_w / src_h
    scaled_ar = scaled_w / scaled_h
    scale_delta = _ratio_delta_pct(scale_x, scale_y)
    aspect_delta = _ratio_delta_pct(source_ar, scaled_ar)

    if scale_delta > max_scale_delta_pct:
        violations.append(
            f"Non-uniform scaling detected: scaleX={scale_x:.4f}, scaleY={scale_y:.4f}, "
            f"delta={scale_delta:.3f}% (max {max_scale_delta_pct:.3f}%)."
        )
    if aspect_delta > max_aspect_delta_pct:
        violations.append(
            f"Aspect ratio drift detected: source={source_ar:.6f}, scaled={scaled_ar:.6f}, "
            f"delta={aspect_delta:.3f}% (max {max_aspect_delta_pct:.3f}%)."
        )

    metrics = InvariantMetrics(
        source_aspect_ratio=round(source_ar, 4),
        scaled_aspect_ratio=round(scaled_ar, 4),
        aspect_ratio_delta_pct=round(aspect_delta, 4),
        scale_x=round(scale_x, 4),
        scale_y=round(scale_y, 4),
        scale_delta_pct=round(scale_delta, 4),
    )
    return InvariantResult(ok=not violations, metrics=metrics, violations=violations)


def assert_invariants(
    source_width: int,
    source_height: int,
    geometry: ExportGeometry,
    context: str | None = None,
    **tolerances,
) -> InvariantResult:
    """Like :func:`check_invariants` but raises GeometryInvariantViolation on failure."""
    result = check_invariants(source_width, source_height, geometry, **tolerances)
    if result.ok:
        return result

    label = f"[{context}] " if context else ""
    message = "\n".join([
        f"{label}Export geometry invariant violation.",
        *result.violations,
        f"metrics={json.dumps(asdict(result.metrics))}",
    ])
    raise GeometryInvariantViolation(message, violations=result.violations, metrics=asdict(result.metrics))
