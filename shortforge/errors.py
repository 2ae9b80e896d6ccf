"""Exception types raised by the export pipeline."""


class ShortForgeError(Exception):
    pass


class ValidationError(ShortForgeError, ValueError):
    """The requested clip cannot be exported as-is (e.g. too short)."""

    def __init__(self, message: str, min_duration: float | None = None):
        super().__init__(message)
        self.min_duration = min_duration


class GeometryInvariantViolation(ShortForgeError):
    """A computed geometry would stretch or mis-size the output."""

    def __init__(self, message: str, violations: list[str], metrics: dict):
        super().__init__(message)
        self.violations = violations
        self.metrics = metrics


class FontUnavailable(ShortForgeError):
    pass


class CaptionRenderFailure(ShortForgeError):
    pass


class SeekIncompatibility(ShortForgeError):
    pass


class EngineFailure(ShortForgeError):
    """ffmpeg exited non-zero or produced no usable output."""

    def __init__(
        self,
        message: str,
        returncode: int | None = None,
        log_tail: list[str] | None = None,
        diagnostics: str = "",
    ):
        super().__init__(message)
        self.returncode = returncode
        self.log_tail = log_tail or []
        self.diagnostics = diagnostics

    def __str__(self) -> str:
        text = super().__str__()
        if self.diagnostics:
            text = f"{text}\n{self.diagnostics}"
        if self.log_tail:
            text = text + "\nffmpeg-log-tail:\n" + "\n".join(self.log_tail[-8:])
        return text


class ExportCancelled(ShortForgeError):
    pass


class PersistenceFailure(ShortForgeError):
    pass
