from __future__ import annotations

"""
Factory utilities for resolving capability providers.
"""

import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

from .errors import AINotSupportedError
from .types import CAPABILITY_KINDS, CapabilityKind

if TYPE_CHECKING:
    from .providers.base import CapabilityProvider


ProviderFactory = Callable[[], "CapabilityProvider"]
_BUILTIN_PROVIDERS = {"scripted"}
_REGISTRY: dict[tuple[CapabilityKind, str], ProviderFactory] = {}


def _env_var(kind: CapabilityKind) -> str:
    return "ONDEVICE_AI_" + kind.upper().replace("-", "_") + "_PROVIDER"


def register_provider(
    kind: CapabilityKind,
    name: str,
    factory: ProviderFactory,
    *,
    overwrite: bool = False,
) -> None:
    """Register a provider factory for one capability kind under `name`."""
    if kind not in CAPABILITY_KINDS:
        raise ValueError(f"Unknown capability kind: {kind}")
    key = name.strip().lower()
    if not key:
        raise ValueError("Provider name must be non-empty")

    if (not overwrite) and (kind, key) in _REGISTRY:
        raise ValueError(f"Provider already registered for {kind}: {key}")

    _REGISTRY[(kind, key)] = factory


def unregister_provider(kind: CapabilityKind, name: str) -> None:
    _REGISTRY.pop((kind, name.strip().lower()), None)


def available_providers(kind: CapabilityKind) -> list[str]:
    """Return built-in and runtime-registered provider names for `kind`."""
    registered = {name for (k, name) in _REGISTRY if k == kind}
    return sorted(set(_BUILTIN_PROVIDERS) | registered)


def create_provider(kind: CapabilityKind, name: str) -> "CapabilityProvider":
    """Create a provider instance for a specific capability and provider name."""
    key = name.strip().lower()
    if not key:
        raise AINotSupportedError("Provider name must be non-empty")

    factory = _REGISTRY.get((kind, key))
    if factory is None:
        factory = _builtin_factory(kind, key)
    return factory()


def create_provider_from_env(kind: CapabilityKind) -> "CapabilityProvider":
    """
    Create the provider named by `ONDEVICE_AI_<KIND>_PROVIDER`.

    Without that variable the capability is treated as absent and an
    `UnsupportedProvider` is returned.
    """
    name = os.getenv(_env_var(kind), "").strip()
    if not name:
        return _unsupported(kind)
    return create_provider(kind, name)


def _builtin_factory(kind: CapabilityKind, name: str) -> ProviderFactory:
    """Resolve built-in provider factories lazily to avoid import cycles."""
    if name == "scripted":
        from .providers import scripted

        classes = {
            "language-model": scripted.ScriptedLanguageModel,
            "summarizer": scripted.ScriptedSummarizer,
            "translator": scripted.ScriptedTranslator,
            "language-detector": scripted.ScriptedLanguageDetector,
        }
        return classes[kind]

    raise AINotSupportedError(
        f"Unknown {kind} provider '{name}'. Available: {', '.join(available_providers(kind))}"
    )


def _unsupported(kind: CapabilityKind) -> "CapabilityProvider":
    from .providers.base import UnsupportedProvider

    return UnsupportedProvider(kind)


@dataclass
class ProviderSet:
    """One provider per capability kind; absent APIs default to unsupported."""

    language_model: "CapabilityProvider" = field(default_factory=lambda: _unsupported("language-model"))
    summarizer: "CapabilityProvider" = field(default_factory=lambda: _unsupported("summarizer"))
    translator: "CapabilityProvider" = field(default_factory=lambda: _unsupported("translator"))
    language_detector: "CapabilityProvider" = field(
        default_factory=lambda: _unsupported("language-detector")
    )

    def for_kind(self, kind: CapabilityKind) -> "CapabilityProvider":
        return {
            "language-model": self.language_model,
            "summarizer": self.summarizer,
            "translator": self.translator,
            "language-detector": self.language_detector,
        }[kind]

    @staticmethod
    def from_env() -> "ProviderSet":
        return ProviderSet(
            language_model=create_provider_from_env("language-model"),
            summarizer=create_provider_from_env("summarizer"),
            translator=create_provider_from_env("translator"),
            language_detector=create_provider_from_env("language-detector"),
        )
