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
Module registry and application lifecycle.

A module is a folder under `geovault/modules` holding a class decorated with
`@geovault_module`. `GEOVAULT_MODULES` lists the folders to load, comma
separated, or `*` for all of them.
"""

import logging
import pkgutil
import importlib
import os
import inspect
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import Dict, Type, TypeVar, List, Optional
from dotenv import load_dotenv
from pathlib import Path

from .protocols import ModuleProtocol
from geovault.tools.discovery import get_protocol, get_protocols, initialize_providers

logger = logging.getLogger(__name__)

T_Module = TypeVar("T_Module", bound=ModuleProtocol)

_GEOVAULT_MODULES: Dict[str, "ModuleConfig"] = {}

# A failure in these aborts startup; any other module is skipped on failure.
FOUNDATIONAL_MODULES = ["db_config", "db"]
# Load order under GEOVAULT_MODULES=*; other modules follow alphabetically.
CORE_MODULE_ORDER = ["db_config", "db", "auth", "catalog"]

MODULES_ENV = "GEOVAULT_MODULES"


@dataclass
class ModuleConfig:
    cls: Type[ModuleProtocol]
    instance: ModuleProtocol | None = None


def geovault_module(cls: Type[T_Module]) -> Type[T_Module]:
    """Registers a module class under the name of its folder in `modules`."""
    parts = cls.__module__.split('.')
    if 'modules' in parts and parts.index('modules') + 1 < len(parts):
        name = parts[parts.index('modules') + 1]
    else:
        logger.error(f"'{cls.__name__}' is not inside a modules folder; registering it as '{cls.__name__.lower()}'.")
        name = cls.__name__.lower()

    _GEOVAULT_MODULES[name] = ModuleConfig(cls=cls)
    cls._registered_name = name
    logger.info(f"Discovered module: {cls.__name__} (registered as '{name}')")
    return cls


def _module_folders(package_path: str) -> List[str]:
    return sorted(
        entry for entry in os.listdir(package_path)
        if os.path.isdir(os.path.join(package_path, entry)) and not entry.startswith('__')
    )


def _modules_from_env() -> Optional[List[str]]:
    """The GEOVAULT_MODULES list, or None for the '*' wildcard."""
    value = os.getenv(MODULES_ENV, "")
    if value.strip() == "*":
        return None
    return [m.strip() for m in value.split(',') if m.strip()]


def _load_dotenv_files(module_path: Optional[str] = None) -> None:
    """The project `.env` never overrides the environment; a module's own `.env` does."""
    if module_path is None:
        root_env = Path(__file__).resolve().parents[3] / '.env'
        if root_env.exists():
            load_dotenv(dotenv_path=root_env, override=False)
            logger.info(f"Loaded base environment variables from '{root_env}'")
        return
    module_env = os.path.join(module_path, '.env')
    if os.path.exists(module_env):
        load_dotenv(dotenv_path=module_env, override=True)
        logger.debug(f"Loaded module environment from '{module_env}'")


def discover_modules(enabled_modules: Optional[List[str]] = None):
    """
    Imports every submodule of the enabled module folders, which registers
    their `@geovault_module` classes.

    Args:
        enabled_modules: folder names to load. Defaults to GEOVAULT_MODULES.
    """
    _load_dotenv_files()

    package_path = os.path.dirname(__file__)
    if enabled_modules is None:
        enabled_modules = _modules_from_env()
        if enabled_modules is None:
            enabled_modules = _module_folders(package_path)
            logger.info(f"{MODULES_ENV}='*': loading {enabled_modules}")

    if not enabled_modules:
        logger.warning(f"{MODULES_ENV} is not set. No modules will be loaded.")
        return

    logger.info(f"Loading modules: {enabled_modules}")
    for module_name in enabled_modules:
        module_path = os.path.join(package_path, module_name)
        if not os.path.isdir(module_path):
            logger.warning(f"Module '{module_name}' not found at '{module_path}'. Skipping.")
            continue

        _load_dotenv_files(module_path)
        for _, submodule, _ in pkgutil.iter_modules([module_path]):
            dotted = f"{__name__}.{module_name}.{submodule}"
            try:
                importlib.import_module(dotted)
            except Exception:
                logger.error(f"Failed to import '{dotted}'", exc_info=True)


def _get_ordered_modules(enabled_modules: Optional[List[str]] = None) -> List[str]:
    """Module names in load order; under '*' the core modules come first."""
    if enabled_modules is not None:
        return enabled_modules
    from_env = _modules_from_env()
    if from_env is not None:
        return from_env
    registered = sorted(_GEOVAULT_MODULES)
    return [m for m in CORE_MODULE_ORDER if m in registered] + [m for m in registered if m not in CORE_MODULE_ORDER]


def instantiate_modules(app_state: object, enabled_modules: Optional[List[str]] = None):
    """
    Creates one instance per registered module. A module whose constructor
    fails is logged and left without an instance.
    """
    ordered = _get_ordered_modules(enabled_modules)
    logger.info(f"Instantiating modules in order: {ordered}")

    for name in ordered:
        config = _GEOVAULT_MODULES.get(name)
        if config is None:
            continue
        try:
            wants_state = 'app_state' in inspect.signature(config.cls).parameters
            config.instance = config.cls(app_state=app_state) if wants_state else config.cls()
        except Exception:
            logger.error(f"CRITICAL: module '{name}' failed in __init__ and is unavailable.", exc_info=True)
            config.instance = None

    get_protocol.cache_clear()
    get_protocols.cache_clear()


async def _start_module(stack: AsyncExitStack, config: ModuleConfig, app_state: object) -> bool:
    """Enters the module lifespan. False when a non-foundational module failed to start."""
    module_name = config.cls.__name__
    if hasattr(config.instance, "lifespan"):
        try:
            await stack.enter_async_context(config.instance.lifespan(app_state))
        except Exception as e:
            if config.cls.get_name() in FOUNDATIONAL_MODULES:
                raise RuntimeError(f"CRITICAL: foundational module '{module_name}' failed during startup.") from e
            logger.error(f"Module '{module_name}' failed during startup and is skipped.", exc_info=True)
            return False
        logger.info(f"[LIFECYCLE] Module '{module_name}' started.")
    return True


@asynccontextmanager
async def lifespan(app_state: object, enabled_modules: Optional[List[str]] = None):
    """
    Starts the instantiated modules in load order, each followed by its
    providers, and stops them in reverse order.
    """
    from geovault.models.protocols import DatabaseProtocol

    configs = [
        _GEOVAULT_MODULES[name] for name in _get_ordered_modules(enabled_modules) if name in _GEOVAULT_MODULES
    ]
    async with AsyncExitStack() as stack:
        for config in configs:
            if not config.instance:
                logger.warning(f"Module '{config.cls.__name__}' has no instance; not starting it.")
                continue
            if not await _start_module(stack, config, app_state):
                continue
            # Providers come up after their module, with the engine if the db module is running.
            db = get_protocol(DatabaseProtocol)
            await initialize_providers(config.instance, app_state, db_resource=db.engine if db else None, stack=stack)
        yield

    logger.info("[LIFECYCLE] All modules stopped.")
