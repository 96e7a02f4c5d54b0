from __future__ import annotations

import logging

from fastapi import Request

from scopeguard.authz.policy import AuthConfig
from scopeguard.errors import Unauthenticated

logger = logging.getLogger(__name__)


def extract_bearer_token(request: Request, config: AuthConfig) -> str:
    """
    Extract the bearer token from `Authorization: Bearer <token>`.

    Missing header, wrong scheme and empty token are all Unauthenticated. The token
    itself is never logged.
    """

    header_name = config.authorization_header
    bearer_prefix = config.bearer_prefix

    raw = request.headers.get(header_name)
    if not raw:
        logger.info("Missing %s header path=%s method=%s", header_name, request.url.path, request.method)
        raise Unauthenticated("Authentication required")

    prefix = f"{bearer_prefix} "
    if not raw.startswith(prefix):
        logger.warning("Invalid %s header format path=%s method=%s", header_name, request.url.path, request.method)
        raise Unauthenticated(f"Invalid {header_name}. Expected '{bearer_prefix} <token>'.")

    token = raw[len(prefix) :].strip()
    if not token:
        logger.warning("Empty bearer token path=%s method=%s", request.url.path, request.method)
        raise Unauthenticated(f"Invalid {header_name}. Missing token after '{bearer_prefix}'.")

    return token
