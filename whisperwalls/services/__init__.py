"""Service layer package initializer.

This re-exports individual domain services so that callers can simply
``from whisperwalls.services import message_service, discovery_service``.
"""

from importlib import import_module
from types import ModuleType
from typing import TYPE_CHECKING

# Lazily import modules to avoid circular dependencies where possible.

__all__ = [
    "message_service",
    "discovery_service",
    "moderation_engine",
    "mood_insights",
    "rate_limiter",
    "expiration_sweeper",
    "registry",
]

if TYPE_CHECKING:
    from . import message_service as message_service  # noqa: F401
    from . import discovery_service as discovery_service  # noqa: F401
    from . import moderation_engine as moderation_engine  # noqa: F401
    from . import mood_insights as mood_insights  # noqa: F401
    from . import rate_limiter as rate_limiter  # noqa: F401
    from . import expiration_sweeper as expiration_sweeper  # noqa: F401
    from . import registry as registry  # noqa: F401
else:
    # At runtime perform the import lazily to keep import graph lighter.
    def __getattr__(name: str) -> ModuleType:  # noqa: D401
        if name in __all__:
            module = import_module(f"whisperwalls.services.{name}")
            globals()[name] = module
            return module
        raise AttributeError(name)
