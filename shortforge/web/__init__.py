"""Flask application factory for the ShortForge web API."""

import tempfile
from pathlib import Path

from flask import Flask, jsonify

from shortforge.fonts import FontCache
from shortforge.store import InMemoryShortsRepository, ShortsRepository


def create_app(
    work_dir: Path | None = None,
    repository: ShortsRepository | None = None,
    fonts: FontCache | None = None,
) -> Flask:
    app = Flask(__name__)
    app.config["WORK_DIR"] = work_dir or Path(tempfile.mkdtemp(prefix="shortforge_"))
    app.config["MAX_CONTENT_LENGTH"] = 10 * 1024 * 1024 * 1024  # 10 GB
    # One font cache and repository for the life of the app
    app.config["SHORTS_REPOSITORY"] = repository or InMemoryShortsRepository()
    app.config["FONT_CACHE"] = fonts or FontCache()

    from shortforge.web.routes import bp
    app.register_blueprint(bp)

    @app.errorhandler(413)
    def request_entity_too_large(error):
        return jsonify({"error": "File too large"}), 413

    return app
