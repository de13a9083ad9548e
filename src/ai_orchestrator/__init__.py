"""AI request orchestration layer following Clean Architecture layering."""

from .core.container import DIContainer
from .core.orchestrator import Orchestrator
from .domain.models import (
    CallContext,
    CallOptions,
    CallResult,
    Message,
    Provider,
    Role,
)

__all__ = [
    "Orchestrator",
    "DIContainer",
    "CallContext",
    "CallOptions",
    "CallResult",
    "Message",
    "Provider",
    "Role",
    "domain",
    "core",
    "providers",
    "ratelimit",
    "analytics",
    "utils",
]
