"""
Service Registry.

Holds the process-wide service instances built at startup (see
core.bootstrap) so request handlers can look them up by name, and tests
can swap or reset them.

Usage:
    from core.service_registry import services, AUTHORITY

    services.register(AUTHORITY, authority)
    authority = services.require(AUTHORITY)

    # In tests (via conftest.py fixture)
    services.reset_all()
"""

import logging
import threading
from typing import Any, Callable, Dict, List

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# Well-known service names
AUTHORITY = "permission_authority"
RULE_ENGINE = "rule_engine"
RULE_STORE = "rule_store"
RULE_MANAGEMENT = "rule_management"
APPROVAL_WORKFLOW = "approval_workflow"

_UNSET = object()


class ServiceRegistry:
    """
    Thread-safe registry of service instances and lazy factories.

    A factory runs on first `get()`; its result is cached until `reset()`.
    """

    def __init__(self):
        self._services: Dict[str, Any] = {}
        self._factories: Dict[str, Callable[[], Any]] = {}
        self._lock = threading.RLock()

    def register(self, name: str, instance: Any) -> None:
        with self._lock:
            self._services[name] = instance
        logger.debug(f"Service registered: {name}")

    def register_factory(self, name: str, factory: Callable[[], Any]) -> None:
        with self._lock:
            self._factories[name] = factory
            self._services.pop(name, None)
        logger.debug(f"Service factory registered: {name}")

    def get(self, name: str, default: Any = None) -> Any:
        with self._lock:
            if name in self._services:
                return self._services[name]
            factory = self._factories.get(name)
            if factory is None:
                return default
            instance = factory()
            self._services[name] = instance
            return instance

    def require(self, name: str) -> Any:
        """
        Like get(), but a missing service is a wiring error.

        Raises:
            ConfigurationError: nothing registered under `name`
        """
        instance = self.get(name, _UNSET)
        if instance is _UNSET:
            raise ConfigurationError(
                f"Service not registered: {name}",
                details={"service": name},
            )
        return instance

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._services or name in self._factories

    def reset(self, name: str) -> None:
        """Drop a cached instance; a registered factory rebuilds it on next get()."""
        with self._lock:
            self._services.pop(name, None)

    def reset_all(self) -> None:
        """Drop all cached instances, keeping factories."""
        with self._lock:
            self._services.clear()
        logger.debug("All services reset")

    def unregister(self, name: str) -> None:
        with self._lock:
            self._services.pop(name, None)
            self._factories.pop(name, None)

    @property
    def registered_names(self) -> List[str]:
        with self._lock:
            return sorted(set(self._services) | set(self._factories))


services = ServiceRegistry()
