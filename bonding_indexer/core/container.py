# bonding_indexer/core/container.py

from typing import TypeVar, Type, Callable, List, Any
import inspect

from .logging import IndexerLogger, log_with_context, DEBUG, ERROR

T = TypeVar('T')


class IndexerContainer:
    """Small dependency container.

    Services are registered against a type. Classes are built by matching
    constructor annotations against registered types; a parameter named
    ``config`` receives the container's IndexerConfig.
    """

    def __init__(self, config):
        self._config = config
        self._services = {}  # service_type -> (implementation, factory, is_singleton)
        self._instances = {}  # service_type -> instance (for singletons)
        self._resolution_stack: List[Type] = []

        self._logger = IndexerLogger.get_logger('core.container')

    @property
    def config(self):
        return self._config

    def register_singleton(self, interface: Type[T], implementation: Type[T]) -> 'IndexerContainer':
        self._services[interface] = (implementation, None, True)
        return self

    def register_factory(self, interface: Type[T], factory_func: Callable[['IndexerContainer'], T]) -> 'IndexerContainer':
        """Register a factory function (treated as singleton)"""
        self._services[interface] = (None, factory_func, True)
        return self

    def register_instance(self, interface: Type[T], instance: T) -> 'IndexerContainer':
        self._services[interface] = (type(instance), None, True)
        self._instances[interface] = instance
        return self

    def get(self, service_type: Type[T]) -> T:
        service_name = service_type.__name__

        if service_type in self._resolution_stack:
            circular_path = " -> ".join(t.__name__ for t in self._resolution_stack) + f" -> {service_name}"
            log_with_context(self._logger, ERROR, "Circular dependency detected",
                             service_type=service_name,
                             circular_path=circular_path)
            raise ValueError(f"Circular dependency detected: {circular_path}")

        if service_type not in self._services:
            raise ValueError(f"Service {service_name} not registered")

        implementation, factory, is_singleton = self._services[service_type]

        if is_singleton and service_type in self._instances:
            return self._instances[service_type]

        self._resolution_stack.append(service_type)
        try:
            if factory:
                instance = factory(self)
            else:
                instance = self._create_instance(implementation)

            if is_singleton:
                self._instances[service_type] = instance

            log_with_context(self._logger, DEBUG, "Service instance created",
                             service_type=service_name,
                             instance_type=type(instance).__name__)
            return instance

        except Exception as e:
            log_with_context(self._logger, ERROR, "Failed to create service instance",
                             service_type=service_name,
                             error=str(e),
                             exception_type=type(e).__name__)
            raise
        finally:
            self._resolution_stack.pop()

    def _create_instance(self, implementation_type: Type) -> Any:
        sig = inspect.signature(implementation_type.__init__)
        kwargs = {}

        for param_name, param in sig.parameters.items():
            if param_name == 'self' or param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
                continue

            param_type = param.annotation
            if param_type is not inspect.Parameter.empty and param_type in self._services:
                kwargs[param_name] = self.get(param_type)
            elif param_name == 'config':
                kwargs[param_name] = self._config
            elif param.default is inspect.Parameter.empty:
                raise ValueError(
                    f"Cannot resolve parameter '{param_name}' for {implementation_type.__name__}"
                )

        return implementation_type(**kwargs)

    def has_service(self, service_type: Type) -> bool:
        return service_type in self._services

    def get_service_info(self) -> dict:
        info = {
            'registered_services': len(self._services),
            'cached_instances': len(self._instances),
            'services': {},
        }
        for service_type, (implementation, factory, is_singleton) in self._services.items():
            info['services'][service_type.__name__] = {
                'implementation': implementation.__name__ if implementation else 'factory',
                'factory': factory.__name__ if factory else None,
                'is_singleton': is_singleton,
                'is_cached': service_type in self._instances,
            }
        return info
