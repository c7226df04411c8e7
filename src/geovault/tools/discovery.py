#    Copyright 2025 FAO
#
#    Licensed under the Apache License, Version 2.0 (the "License");
#    you may not use this file except in compliance with the License.
#    You may obtain a copy of the License at
#
#        http://www.apache.org/licenses/LICENSE-2.0
#
#    Unless required by applicable law or agreed to in writing, software
#    distributed under the License is distributed on an "AS IS" BASIS,
#    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#    See the License for the specific language governing permissions and
#    limitations under the License.
#
#    Author: Carlo Cancellieri (ccancellieri@gmail.com)
#    Company: FAO, Viale delle Terme di Caracalla, 00100 Rome, Italy
#    Contact: copyright@fao.org - http://fao.org/contact-us/terms/en/

"""
Protocol-based service lookup.

Services are found by the protocol they satisfy rather than by name:
`get_protocol(CollectionsProtocol)` returns the highest-priority available
implementation among module instances and registered providers.
"""

import logging
import inspect
from functools import lru_cache
from typing import Type, TypeVar, List, Optional, Any, Callable, cast
from contextlib import AsyncExitStack

T = TypeVar("T")

logger = logging.getLogger(__name__)

# Services registered as protocol implementers without being full Modules.
_GEOVAULT_PROVIDERS: List[object] = []


class Provider:
    """
    Declares a service on a module class.

    Usage:
        class CatalogModule:
            collection_service = Provider(CollectionService, priority=90)

    The service is built on first attribute access (by `factory`, if given),
    registered as a provider and kept on the module instance.
    """

    def __init__(self, provider_class: Type, priority: int = 0, factory: Optional[Callable[..., Any]] = None):
        self.provider_class = provider_class
        self.priority = priority
        self.factory = factory
        self.attr_name = None

    def __set_name__(self, owner, name):
        self.attr_name = name

    def __get__(self, obj, objtype=None):
        if obj is None:
            return self
        cached = obj.__dict__.get(self.attr_name)
        if cached is not None:
            return cached

        instance = self.factory() if self.factory else self.provider_class()
        if not hasattr(instance, 'priority'):
            instance.priority = self.priority
        register_provider(instance)
        obj.__dict__[self.attr_name] = instance
        logger.debug(f"Provider {self.provider_class.__name__} registered (priority={self.priority})")
        return instance


def _declared_providers(module_instance: object) -> List[tuple]:
    """(priority, attribute name, service) for each Provider of the module, highest priority first."""
    declared = [
        (attr.priority, name, getattr(module_instance, name))
        for name, attr in inspect.getmembers(type(module_instance), lambda a: isinstance(a, Provider))
    ]
    return sorted(declared, key=lambda entry: entry[0], reverse=True)


async def _start_provider(instance: object, app_state: Any, db_resource: Any, stack: Optional[AsyncExitStack]) -> bool:
    if hasattr(instance, 'lifespan'):
        if stack is None:
            return False
        kwargs = {'db_resource': db_resource} if 'db_resource' in inspect.signature(instance.lifespan).parameters else {}
        await stack.enter_async_context(instance.lifespan(app_state, **kwargs))
        return True
    if hasattr(instance, 'initialize'):
        kwargs = {'db_resource': db_resource} if 'db_resource' in inspect.signature(instance.initialize).parameters else {}
        await instance.initialize(app_state, **kwargs)
    return True


async def initialize_providers(
    module_instance: object,
    app_state: Any,
    db_resource: Optional[Any] = None,
    stack: Optional[AsyncExitStack] = None
) -> List[object]:
    """
    Starts the services a module declares with `Provider`, highest priority
    first: a service with a `lifespan` is entered on `stack`, otherwise its
    `initialize(app_state, db_resource=...)` is awaited. A failure is logged
    and re-raised.
    """
    started = []
    for priority, name, instance in _declared_providers(module_instance):
        try:
            if not await _start_provider(instance, app_state, db_resource, stack):
                logger.warning(f"Provider {name} has a lifespan but no exit stack was given; not started.")
                continue
        except Exception as e:
            logger.error(f"Failed to initialize provider {name}: {e}", exc_info=True)
            raise
        logger.info(f"Initialized provider {name} (priority={priority})")
        started.append(instance)
    return started


def register_provider(instance: object) -> None:
    """Makes `instance` discoverable by the protocols it satisfies."""
    if instance not in _GEOVAULT_PROVIDERS:
        _GEOVAULT_PROVIDERS.append(instance)
        get_protocol.cache_clear()
        get_protocols.cache_clear()


def unregister_provider(instance: object) -> None:
    if instance in _GEOVAULT_PROVIDERS:
        _GEOVAULT_PROVIDERS.remove(instance)
        get_protocol.cache_clear()
        get_protocols.cache_clear()


def _available(instance: object) -> bool:
    return not hasattr(instance, 'is_available') or instance.is_available()


@lru_cache(maxsize=128)
def get_protocol(protocol: Type[T]) -> Optional[T]:
    """The highest-priority available implementation of `protocol`, or None."""
    instances = get_protocols(protocol)
    return instances[0] if instances else None


@lru_cache(maxsize=128)
def get_protocols(protocol: Type[T]) -> List[T]:
    """
    Every available implementation of `protocol`, highest priority first.
    Instances whose `is_available()` is False are left out.
    """
    from geovault.modules import _GEOVAULT_MODULES

    candidates = list(_GEOVAULT_PROVIDERS)
    candidates += [config.instance for config in _GEOVAULT_MODULES.values() if config.instance]
    found = [cast(T, c) for c in candidates if isinstance(c, protocol) and _available(c)]
    found.sort(key=lambda x: getattr(x, 'priority', 0), reverse=True)
    return found
