"""Local dev entrypoint for the fieldlogic API.

Host, port and log level come from FIELDLOGIC_HOST, FIELDLOGIC_PORT and
FIELDLOGIC_LOG_LEVEL, read through `Settings.from_env()`.
"""

from __future__ import annotations

import sys
from pathlib import Path


def _ensure_src_on_path() -> None:
    backend_dir = Path(__file__).resolve().parent
    src_dir = backend_dir / "src"
    if str(src_dir) not in sys.path:
        sys.path.insert(0, str(src_dir))


if __name__ == "__main__":
    _ensure_src_on_path()

    import uvicorn

    from fieldlogic.settings import Settings

    settings = Settings.from_env()
    uvicorn.run(
        "fieldlogic.api.app:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
