"""Backend client construction and query execution."""

from __future__ import annotations

import logging
from typing import Any

from supabase import Client, create_client

from marketintel.config import BackendConfig
from marketintel.errors import BackendError

logger = logging.getLogger(__name__)


def create_backend(config: BackendConfig) -> Client:
    """Create a backend client for the configured project.

    Args:
        config: Backend URL and key.

    Returns:
        A supabase Client.
    """
    logger.debug("Connecting to backend at %s", config.url)
    return create_client(config.url, config.key)


def run_query(query: Any, description: str) -> list[dict[str, Any]]:
    """Execute a query builder and return its rows.

    Args:
        query: A PostgREST request builder (anything with ``execute()``).
        description: Short label used in logs and error messages.

    Returns:
        Rows as a list of dicts (empty when the backend returns no data).

    Raises:
        BackendError: If the request fails for any reason.
    """
    try:
        response = query.execute()
    except Exception as e:
        logger.error("%s failed: %s", description, e)
        raise BackendError(f"{description} failed: {e}") from e
    data = response.data
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    return list(data)


def run_counted_query(
    query: Any, description: str,
) -> tuple[list[dict[str, Any]], int]:
    """Execute a query selected with ``count="exact"``.

    Returns:
        (rows, total). total falls back to the row count when the backend
        sends no count.

    Raises:
        BackendError: If the request fails for any reason.
    """
    try:
        response = query.execute()
    except Exception as e:
        logger.error("%s failed: %s", description, e)
        raise BackendError(f"{description} failed: {e}") from e
    rows = list(response.data or [])
    count = getattr(response, "count", None)
    return rows, int(count) if count is not None else len(rows)
