"""Capability provider contracts and built-in scripted providers."""

from .base import (
    CapabilityProvider,
    LanguageDetectorProvider,
    LanguageModelProvider,
    SummarizerProvider,
    TranslatorProvider,
    UnsupportedProvider,
)
from .scripted import (
    ScriptedLanguageDetector,
    ScriptedLanguageModel,
    ScriptedSession,
    ScriptedSummarizer,
    ScriptedTranslator,
)

__all__ = [
    "CapabilityProvider",
    "LanguageModelProvider",
    "SummarizerProvider",
    "TranslatorProvider",
    "LanguageDetectorProvider",
    "UnsupportedProvider",
    "ScriptedSession",
    "ScriptedLanguageModel",
    "ScriptedSummarizer",
    "ScriptedTranslator",
    "ScriptedLanguageDetector",
]
