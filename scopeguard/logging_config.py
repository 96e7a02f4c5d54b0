from __future__ import annotations

import logging


def configure_app_logging(level: str = "INFO") -> None:
    """
    Minimal logging configuration for this repo.

    Notes:
    - stdlib logging only; uvicorn already installs handlers.
    - Authorization decisions are logged at DEBUG under `scopeguard.authz.*`.
    - Set `SCOPEGUARD_LOG_LEVEL=DEBUG` (or INFO/WARNING/ERROR) to control verbosity.
    """

    normalized = level.upper()
    logging.getLogger("scopeguard").setLevel(normalized)
    # Child loggers under scopeguard.* inherit this level.
    logging.getLogger("scopeguard").propagate = True
