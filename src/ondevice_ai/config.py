from __future__ import annotations
import os

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

"""
from dataclasses import dataclass

from .retry import RetrySpec


def _float_or_none(raw: str | None) -> float | None:
    if raw is None or not raw.strip():
        return None
    value = float(raw)
    return value if value > 0 else None


def _flag(raw: str | None, default: bool) -> bool:
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True, slots=True)
class CapabilityConfig:
    # Deadlines (None = unbounded)
    timeout_s: float | None
    create_timeout_s: float | None
    probe_timeout_s: float | None
    detect_timeout_s: float

    # Reliability
    max_attempts: int
    backoff_base_s: float
    backoff_max_s: float
    backoff_jitter: bool

    # Gating
    require_on_device: bool = True

    def retry_spec(self) -> RetrySpec:
        return RetrySpec(
            max_attempts=self.max_attempts,
            base_delay_s=self.backoff_base_s,
            max_delay_s=self.backoff_max_s,
            jitter=self.backoff_jitter,
        )

    @staticmethod
    def from_env() -> "CapabilityConfig":
        return CapabilityConfig(
            timeout_s=_float_or_none(os.getenv("ONDEVICE_AI_TIMEOUT_S", "0")),
            create_timeout_s=_float_or_none(os.getenv("ONDEVICE_AI_CREATE_TIMEOUT_S", "0")),
            probe_timeout_s=_float_or_none(os.getenv("ONDEVICE_AI_PROBE_TIMEOUT_S", "10")),
            detect_timeout_s=float(os.getenv("ONDEVICE_AI_DETECT_TIMEOUT_S", "5")),
            max_attempts=int(os.getenv("ONDEVICE_AI_MAX_ATTEMPTS", "0")),
            backoff_base_s=float(os.getenv("ONDEVICE_AI_BACKOFF_BASE_S", "0.25")),
            backoff_max_s=float(os.getenv("ONDEVICE_AI_BACKOFF_MAX_S", "5")),
            backoff_jitter=_flag(os.getenv("ONDEVICE_AI_BACKOFF_JITTER"), True),
            require_on_device=_flag(os.getenv("ONDEVICE_AI_REQUIRE_ON_DEVICE"), True),
        )
