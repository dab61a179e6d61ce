from __future__ import annotations

import pytest

from ondevice_ai.config import CapabilityConfig
from ondevice_ai.errors import AINotSupportedError
from ondevice_ai.factory import (
    ProviderSet,
    available_providers,
    create_provider,
    create_provider_from_env,
    register_provider,
    unregister_provider,
)
from ondevice_ai.providers import (
    ScriptedLanguageModel,
    ScriptedTranslator,
    UnsupportedProvider,
)


def test_config_defaults_from_env(monkeypatch):
    for name in (
        "ONDEVICE_AI_TIMEOUT_S",
        "ONDEVICE_AI_CREATE_TIMEOUT_S",
        "ONDEVICE_AI_PROBE_TIMEOUT_S",
        "ONDEVICE_AI_MAX_ATTEMPTS",
        "ONDEVICE_AI_REQUIRE_ON_DEVICE",
    ):
        monkeypatch.delenv(name, raising=False)

    cfg = CapabilityConfig.from_env()

    assert cfg.timeout_s is None
    assert cfg.create_timeout_s is None
    assert cfg.probe_timeout_s == 10.0
    assert cfg.detect_timeout_s == 5.0
    assert cfg.max_attempts == 0
    assert cfg.require_on_device is True


def test_config_reads_overrides_from_env(monkeypatch):
    monkeypatch.setenv("ONDEVICE_AI_TIMEOUT_S", "2.5")
    monkeypatch.setenv("ONDEVICE_AI_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("ONDEVICE_AI_BACKOFF_JITTER", "false")
    monkeypatch.setenv("ONDEVICE_AI_REQUIRE_ON_DEVICE", "0")

    cfg = CapabilityConfig.from_env()
    spec = cfg.retry_spec()

    assert cfg.timeout_s == 2.5
    assert cfg.require_on_device is False
    assert spec.max_attempts == 3
    assert spec.jitter is False


def test_builtin_scripted_provider_is_available_for_every_kind():
    assert "scripted" in available_providers("summarizer")
    assert isinstance(create_provider("language-model", "Scripted"), ScriptedLanguageModel)
    assert isinstance(create_provider("translator", "scripted"), ScriptedTranslator)


def test_unknown_provider_name_is_not_supported():
    with pytest.raises(AINotSupportedError, match="Unknown language-model provider"):
        create_provider("language-model", "does-not-exist")


def test_register_provider_rejects_duplicates_and_bad_kinds():
    register_provider("language-model", "custom", ScriptedLanguageModel)
    try:
        assert "custom" in available_providers("language-model")
        assert isinstance(create_provider("language-model", "custom"), ScriptedLanguageModel)
        with pytest.raises(ValueError):
            register_provider("language-model", "custom", ScriptedLanguageModel)
        register_provider("language-model", "custom", ScriptedLanguageModel, overwrite=True)
        with pytest.raises(ValueError):
            register_provider("speech", "custom", ScriptedLanguageModel)  # type: ignore[arg-type]
    finally:
        unregister_provider("language-model", "custom")

    assert "custom" not in available_providers("language-model")


def test_provider_selection_from_env(monkeypatch):
    monkeypatch.setenv("ONDEVICE_AI_LANGUAGE_MODEL_PROVIDER", "scripted")
    monkeypatch.delenv("ONDEVICE_AI_SUMMARIZER_PROVIDER", raising=False)

    assert isinstance(create_provider_from_env("language-model"), ScriptedLanguageModel)

    missing = create_provider_from_env("summarizer")
    assert isinstance(missing, UnsupportedProvider)
    assert missing.present is False


def test_provider_set_maps_kinds():
    providers = ProviderSet(translator=ScriptedTranslator())

    assert isinstance(providers.for_kind("translator"), ScriptedTranslator)
    assert providers.for_kind("language-detector").present is False
