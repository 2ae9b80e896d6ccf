"""Caption font cache.

The font is downloaded once and kept on disk and in memory for the life of
the process. Pass one :class:`FontCache` to every export that burns captions.
"""

import threading
from pathlib import Path

import httpx
from loguru import logger

from shortforge import settings
from shortforge.errors import FontUnavailable


class FontCache:
    """Load-once holder for the caption font file."""

    def __init__(
        self,
        url: str = settings.FONT_URL,
        cache_dir: Path | None = None,
        timeout: float = settings.FONT_TIMEOUT,
    ):
        self.url = url
        self.cache_dir = Path(cache_dir or settings.FONT_CACHE_DIR)
        self.timeout = timeout
        self._path: Path | None = None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def target(self) -> Path:
        return self.cache_dir / "Inter.ttf"

    def ensure(self) -> Path:
        """Return the local font path, fetching it on first use.

        Raises FontUnavailable if the font can't be fetched.
        """
        with self._lock:
            if self._path is not None:
                return self._path

            target = self.target
            if target.exists() and target.stat().st_size > 0:
                self._path = target
                return target

            try:
                response = httpx.get(self.url, timeout=self.timeout, follow_redirects=True)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise FontUnavailable(f"Failed to fetch caption font from {self.url}: {e}") from e

            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(response.content)
            except OSError as e:
                raise FontUnavailable(f"Failed to cache caption font at {target}: {e}") from e
            logger.debug(f"Caption font cached at {target} ({len(response.content)} bytes)")
            self._path = target
            return target

    def try_ensure(self) -> Path | None:
        """Like :meth:`ensure` but returns None instead of raising."""
        try:
            return self.ensure()
        except FontUnavailable as e:
            logger.warning(str(e))
            return None
