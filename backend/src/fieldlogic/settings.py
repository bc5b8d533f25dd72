"""Engine settings."""

from __future__ import annotations

import os
from dataclasses import dataclass

# Evaluations of one derivation per cycle before it is frozen
DEFAULT_MAX_ITERATIONS = 10
DEFAULT_EPSILON = 1e-9
DEFAULT_DEBOUNCE_MS = 500
DEFAULT_HTTP_TIMEOUT = 10.0
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


@dataclass(frozen=True)
class Settings:
    """Tunables for the evaluation scheduler and validation pipeline.

    Attributes:
        max_iterations: Per-entry evaluation cap within one cycle
        epsilon: Numeric tolerance for considering a derived value stable
        default_debounce_ms: Debounce used when a debounced entry omits debounceMs
        http_timeout: Timeout in seconds for HTTP-backed validators
        log_level: Level name applied by the CLI and API entrypoints
        host: Interface the development API server binds to
        port: Port of the development API server
    """

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    epsilon: float = DEFAULT_EPSILON
    default_debounce_ms: int = DEFAULT_DEBOUNCE_MS
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    log_level: str = "WARNING"
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    @classmethod
    def from_env(cls) -> Settings:
        """Create settings from FIELDLOGIC_* environment variables.

        Unset variables fall back to the defaults above.
        """
        return cls(
            max_iterations=int(
                os.environ.get("FIELDLOGIC_MAX_ITERATIONS", DEFAULT_MAX_ITERATIONS)
            ),
            epsilon=float(os.environ.get("FIELDLOGIC_EPSILON", DEFAULT_EPSILON)),
            default_debounce_ms=int(
                os.environ.get("FIELDLOGIC_DEFAULT_DEBOUNCE_MS", DEFAULT_DEBOUNCE_MS)
            ),
            http_timeout=float(
                os.environ.get("FIELDLOGIC_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT)
            ),
            log_level=os.environ.get("FIELDLOGIC_LOG_LEVEL", "WARNING").upper(),
            host=os.environ.get("FIELDLOGIC_HOST", DEFAULT_HOST),
            port=int(os.environ.get("FIELDLOGIC_PORT", DEFAULT_PORT)),
        )
