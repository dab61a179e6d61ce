"""
Orchestration core for on-device AI capabilities: availability gating,
session caching, timeouts, cancellation, retries, structured output and
streaming behind one facade.
"""

from .cancellation import CancellationSignal
from .config import CapabilityConfig
from .errors import (
    AIBadInputError,
    AICancelledError,
    AIDownloadRequiredError,
    AIError,
    AIInternalError,
    AINotSupportedError,
    AIPermissionError,
    AIRateLimitError,
    AITimeoutError,
    ErrorKind,
    normalize_error,
)
from .facade import CallResult, CallState, CapabilityFacade
from .factory import (
    ProviderSet,
    available_providers,
    create_provider,
    create_provider_from_env,
    register_provider,
    unregister_provider,
)
from .gate import CapabilityGate, GatePolicy
from .observability import LifecycleEvent, LifecycleObserver
from .retry import RetrySpec, run_with_retry
from .sessions import AcquireOptions, DownloadMonitor, ManagedSession, SessionManager
from .streaming import collect_stream
from .structured import StructuredResult, parse_structured, validate_schema
from .timeouts import cancellable_sleep, race
from .types import (
    Availability,
    CapabilityKind,
    CapabilityRequest,
    CreateOptions,
    InvocationOptions,
    Message,
    ProviderResponse,
    StreamChunk,
    StreamResult,
    Usage,
)

__all__ = [
    "CapabilityFacade",
    "CallResult",
    "CallState",
    "CapabilityConfig",
    "CancellationSignal",
    "race",
    "cancellable_sleep",
    "RetrySpec",
    "run_with_retry",
    "CapabilityGate",
    "GatePolicy",
    "SessionManager",
    "ManagedSession",
    "AcquireOptions",
    "DownloadMonitor",
    "StructuredResult",
    "parse_structured",
    "validate_schema",
    "collect_stream",
    "ProviderSet",
    "register_provider",
    "unregister_provider",
    "available_providers",
    "create_provider",
    "create_provider_from_env",
    "LifecycleEvent",
    "LifecycleObserver",
    "Availability",
    "CapabilityKind",
    "CapabilityRequest",
    "CreateOptions",
    "InvocationOptions",
    "Message",
    "ProviderResponse",
    "StreamChunk",
    "StreamResult",
    "Usage",
    "ErrorKind",
    "AIError",
    "AITimeoutError",
    "AICancelledError",
    "AIPermissionError",
    "AIRateLimitError",
    "AIDownloadRequiredError",
    "AINotSupportedError",
    "AIBadInputError",
    "AIInternalError",
    "normalize_error",
]
