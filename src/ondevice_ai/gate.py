from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Availability gate run before every session acquisition.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .cancellation import CancellationSignal
from .errors import AICancelledError, AIDownloadRequiredError, AINotSupportedError
from .timeouts import race
from .types import AVAILABILITY_STATES, Availability, CapabilityRequest, UserActivation

if TYPE_CHECKING:
    from .providers.base import CapabilityProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GatePolicy:
    """
    `require_on_device` rejects an `unavailable` capability outright instead
    of letting the provider try another execution mode. It never forbids a
    download. `user_activation`, when set, must return true before a
    download-gated capability may be constructed.
    """

    require_on_device: bool = True
    user_activation: UserActivation | None = None


class CapabilityGate:
    def __init__(self, *, probe_timeout_s: float | None = None) -> None:
        self.probe_timeout_s = probe_timeout_s

    async def probe(
        self,
        provider: "CapabilityProvider",
        request: CapabilityRequest,
        signal: CancellationSignal | None = None,
    ) -> Availability:
        """
        Query availability without ever failing the caller.

        A probe that raises, times out or answers with an unrecognized value
        yields `"unknown"`. Cancellation still propagates.
        """
        try:
            result = await race(
                provider.probe(request),
                self.probe_timeout_s,
                signal,
                f"{request.kind} availability probe",
            )
        except (AICancelledError, asyncio.CancelledError):
            raise
        except Exception:
            logger.warning("%s availability probe failed", request.kind, exc_info=True)
            return "unknown"

        if result not in AVAILABILITY_STATES:
            logger.warning(
                "%s availability probe returned unrecognized value %r",
                request.kind,
                result,
            )
            return "unknown"

        logger.debug("%s availability: %s", request.kind, result)
        return result

    async def ensure(
        self,
        provider: "CapabilityProvider",
        request: CapabilityRequest,
        policy: GatePolicy | None = None,
        signal: CancellationSignal | None = None,
    ) -> Availability:
        """Probe availability and enforce `policy`; returns the availability seen."""
        policy = policy or GatePolicy()

        if not provider.present:
            raise AINotSupportedError(
                f"{request.kind} API is missing; no provider is installed for it"
            )

        availability = await self.probe(provider, request, signal)

        if availability == "unavailable":
            if policy.require_on_device:
                raise AINotSupportedError(
                    f"{request.kind} is unavailable on this device"
                )
            logger.info(
                "%s unavailable on device; letting the provider decide", request.kind
            )
        elif availability == "after-download":
            if policy.user_activation is not None and not policy.user_activation():
                raise AIDownloadRequiredError(
                    f"{request.kind} model download requires user activation"
                )
            logger.info("%s requires a one-time download before use", request.kind)

        return availability
