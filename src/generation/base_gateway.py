# src/generation/base_gateway.py — v2
"""Abstract generation gateway and the timeout-bounded call wrapper.

The gateway is slow, costly and non-deterministic. The orchestrator calls it
at most once per resolved miss and never retries.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any

from analysiscache.cache.errors import GenerationFailure
from analysiscache.generation.models import GenerationRequest

logger = logging.getLogger(__name__)


class BaseGenerationGateway(ABC):
    """Unified interface for whatever produces analysis payloads."""

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> dict[str, Any]:
        """Produce an artifact payload for the request.

        Implementations raise on failure; any exception counts as a
        generation failure.
        """

    @property
    def gateway_name(self) -> str:
        """Identifier used in logs."""
        return type(self).__name__


async def generate_with_timeout(
    gateway: BaseGenerationGateway,
    request: GenerationRequest,
    timeout_s: float | None,
) -> dict[str, Any]:
    """Call the gateway once, bounded by ``timeout_s``.

    Raises:
        GenerationFailure: On timeout, gateway exception, or a non-dict payload.
    """

    async def _call() -> Any:
        # Only the outer deadline counts as a timeout.
        try:
            return await gateway.generate(request)
        except asyncio.TimeoutError as e:
            logger.warning("%s raised a timeout (%s): %s", gateway.gateway_name, request.kind, e)
            raise GenerationFailure("error", f"{type(e).__name__}: {e}") from e

    start = time.monotonic()
    try:
        payload = await asyncio.wait_for(_call(), timeout=timeout_s)
    except GenerationFailure:
        raise
    except asyncio.TimeoutError as e:
        logger.warning(
            "%s timed out after %ss (%s)", gateway.gateway_name, timeout_s, request.kind
        )
        raise GenerationFailure("timeout", "deadline exceeded", timeout_s=timeout_s) from e
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.warning("%s failed (%s): %s", gateway.gateway_name, request.kind, e)
        raise GenerationFailure("error", f"{type(e).__name__}: {e}") from e

    if not isinstance(payload, dict):
        raise GenerationFailure(
            "error", f"gateway returned {type(payload).__name__}, expected dict"
        )

    logger.info(
        "%s generated %s in %dms",
        gateway.gateway_name, request.kind, int((time.monotonic() - start) * 1000),
    )
    return payload
