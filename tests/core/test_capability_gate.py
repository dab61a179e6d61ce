from __future__ import annotations

import asyncio

import pytest

from ondevice_ai.errors import AIDownloadRequiredError, AINotSupportedError
from ondevice_ai.gate import CapabilityGate, GatePolicy
from ondevice_ai.providers import ScriptedLanguageModel, UnsupportedProvider
from ondevice_ai.types import CapabilityRequest


def run_async(coro):
    return asyncio.run(coro)


REQUEST = CapabilityRequest(kind="language-model")


class SlowProbeModel(ScriptedLanguageModel):
    async def probe(self, request):
        await asyncio.sleep(5)
        return "available"


class OddProbeModel(ScriptedLanguageModel):
    async def probe(self, request):
        return "readily"


@pytest.mark.parametrize("state", ["available", "after-download", "unavailable", "unknown"])
def test_probe_passes_through_known_states(state):
    provider = ScriptedLanguageModel(availability=state)

    assert run_async(CapabilityGate().probe(provider, REQUEST)) == state


def test_probe_failure_is_reported_as_unknown():
    provider = ScriptedLanguageModel(availability=RuntimeError("probe crashed"))

    assert run_async(CapabilityGate().probe(provider, REQUEST)) == "unknown"


def test_probe_timeout_and_unrecognized_values_are_unknown():
    gate = CapabilityGate(probe_timeout_s=0.02)

    assert run_async(gate.probe(SlowProbeModel(), REQUEST)) == "unknown"
    assert run_async(gate.probe(OddProbeModel(), REQUEST)) == "unknown"


def test_missing_api_is_not_supported():
    provider = UnsupportedProvider("summarizer")

    with pytest.raises(AINotSupportedError, match="API is missing"):
        run_async(CapabilityGate().ensure(provider, CapabilityRequest(kind="summarizer")))


def test_unavailable_with_on_device_requirement_is_not_supported():
    provider = ScriptedLanguageModel(availability="unavailable")

    with pytest.raises(AINotSupportedError):
        run_async(CapabilityGate().ensure(provider, REQUEST, GatePolicy(require_on_device=True)))

    assert provider.calls.construct == 0


def test_unavailable_without_requirement_lets_the_provider_decide():
    provider = ScriptedLanguageModel(availability="unavailable")

    result = run_async(
        CapabilityGate().ensure(provider, REQUEST, GatePolicy(require_on_device=False))
    )

    assert result == "unavailable"


@pytest.mark.parametrize("state", ["available", "after-download", "unknown"])
def test_other_states_proceed(state):
    provider = ScriptedLanguageModel(availability=state)

    assert run_async(CapabilityGate().ensure(provider, REQUEST)) == state


def test_download_requires_user_activation_when_predicate_is_set():
    provider = ScriptedLanguageModel(availability="after-download")
    denied = GatePolicy(user_activation=lambda: False)
    granted = GatePolicy(user_activation=lambda: True)

    with pytest.raises(AIDownloadRequiredError):
        run_async(CapabilityGate().ensure(provider, REQUEST, denied))

    assert run_async(CapabilityGate().ensure(provider, REQUEST, granted)) == "after-download"
