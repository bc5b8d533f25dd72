"""Sanity check for local dev Python environment."""

from __future__ import annotations

import sys


def main() -> int:
    print("Python executable:", sys.executable)
    for module in ("uvicorn", "fastapi", "httpx", "jsonschema", "yaml"):
        try:
            __import__(module)
        except ImportError as exc:  # pragma: no cover - dev-only script
            print(f"FAILED: {module} import error:", repr(exc))
            return 1
        print(f"OK: {module} is installed")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
