"""
Service registry with lazy factories, declared dependencies and lifecycles.

Every repository and service of the engine is registered in app.py and
resolved through ``app.services.get(name)``.
"""
from typing import Dict, Any, Callable, Optional, Set, List
from enum import Enum
import threading
import logging

logger = logging.getLogger(__name__)


class ServiceLifecycle(Enum):
    """Service lifecycle management options"""
    SINGLETON = "singleton"  # One instance per application
    TRANSIENT = "transient"  # New instance per lookup
    SCOPED = "scoped"        # One instance per scope id


class ServiceDescriptor:
    """Describes a service registration"""

    def __init__(self, name: str, factory: Callable,
                 lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
                 dependencies: Optional[List[str]] = None):
        self.name = name
        self.factory = factory
        self.lifecycle = lifecycle
        self.dependencies = dependencies or []
        self.instance: Any = None
        self.lock = threading.Lock()


class ServiceRegistryEnhanced:
    """
    Lazy service registry.

    Factories receive their declared dependencies as keyword arguments and
    run on first lookup. Circular dependencies are detected per thread.
    """

    def __init__(self):
        self._descriptors: Dict[str, ServiceDescriptor] = {}
        self._scoped_instances: Dict[str, Dict[str, Any]] = {}
        self._thread_local = threading.local()
        self._lock = threading.Lock()

    def register_factory(self, name: str, factory: Callable,
                         lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
                         dependencies: Optional[List[str]] = None) -> None:
        """
        Register a factory for lazy instantiation.

        Args:
            name: Service identifier
            factory: Callable returning the service; receives dependencies by name
            lifecycle: Service lifecycle type
            dependencies: Services the factory needs
        """
        with self._lock:
            self._descriptors[name] = ServiceDescriptor(name, factory, lifecycle, dependencies)

    def register_singleton(self, name: str, factory: Callable, **kwargs) -> None:
        self.register_factory(name, factory, ServiceLifecycle.SINGLETON, **kwargs)

    def get(self, name: str, scope_id: Optional[str] = None) -> Any:
        """
        Resolve a service, creating it and its dependencies as needed.

        Raises:
            ValueError: If the service is not registered
            RuntimeError: If a circular dependency is detected
        """
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            raise ValueError(f"Service '{name}' is not registered")

        stack = self._initialization_stack()
        if name in stack:
            raise RuntimeError(f"Circular dependency detected: {' -> '.join(stack + [name])}")

        if descriptor.lifecycle == ServiceLifecycle.SINGLETON:
            return self._get_singleton(descriptor)
        if descriptor.lifecycle == ServiceLifecycle.SCOPED:
            return self._get_scoped(descriptor, scope_id or 'default')
        return self._create_instance(descriptor)

    def _initialization_stack(self) -> List[str]:
        if not hasattr(self._thread_local, 'initialization_stack'):
            self._thread_local.initialization_stack = []
        return self._thread_local.initialization_stack

    def _get_singleton(self, descriptor: ServiceDescriptor) -> Any:
        if descriptor.instance is not None:
            return descriptor.instance

        with descriptor.lock:
            if descriptor.instance is None:
                descriptor.instance = self._create_instance(descriptor)
            return descriptor.instance

    def _get_scoped(self, descriptor: ServiceDescriptor, scope_id: str) -> Any:
        with self._lock:
            scope = self._scoped_instances.setdefault(scope_id, {})
            if descriptor.name not in scope:
                scope[descriptor.name] = self._create_instance(descriptor)
            return scope[descriptor.name]

    def _create_instance(self, descriptor: ServiceDescriptor) -> Any:
        stack = self._initialization_stack()
        stack.append(descriptor.name)
        try:
            deps = {dep: self.get(dep) for dep in descriptor.dependencies}
            instance = descriptor.factory(**deps)
            logger.debug(f"Created service instance: {descriptor.name}")
            return instance
        finally:
            stack.pop()

    def has(self, name: str) -> bool:
        return name in self._descriptors


    def validate_dependencies(self) -> List[str]:
        """
        Returns:
            One message per dependency that is not registered
        """
        return [
            f"Service '{name}' depends on unregistered service '{dep}'"
            for name, descriptor in self._descriptors.items()
            for dep in descriptor.dependencies
            if dep not in self._descriptors
        ]

    def get_initialization_order(self) -> List[str]:
        """
        Topological order of all services.

        Raises:
            RuntimeError: If a circular dependency exists
        """
        graph = {name: list(d.dependencies) for name, d in self._descriptors.items()}
        visited: Set[str] = set()
        order: List[str] = []

        def visit(node: str, path: List[str]):
            if node in path:
                raise RuntimeError(f"Circular dependency detected: {' -> '.join(path + [node])}")
            if node in visited:
                return
            for dep in graph.get(node, []):
                visit(dep, path + [node])
            visited.add(node)
            order.append(node)

        for name in graph:
            visit(name, [])
        return order

    def warmup(self, services: Optional[List[str]] = None) -> None:
        """Instantiate services up front (all singletons when none are named)"""
        if services is None:
            services = [name for name, d in self._descriptors.items()
                        if d.lifecycle == ServiceLifecycle.SINGLETON]

        for name in self.get_initialization_order():
            if name in services:
                logger.info(f"Warming up service: {name}")
                self.get(name)


def create_enhanced_registry() -> ServiceRegistryEnhanced:
    return ServiceRegistryEnhanced()
