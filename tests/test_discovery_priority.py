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

import pytest
from typing import Protocol, runtime_checkable

from geovault import modules
from geovault.modules import _GEOVAULT_MODULES, ModuleConfig
from geovault.tools.discovery import (
    Provider, get_protocol, get_protocols, register_provider, unregister_provider
)


@runtime_checkable
class EchoProtocol(Protocol):
    def echo(self, msg: str) -> str:
        ...


class HighPriorityImpl:
    priority = 10
    def is_available(self): return True
    def echo(self, msg): return f"High: {msg}"

class LowPriorityImpl:
    priority = 5
    def is_available(self): return True
    def echo(self, msg): return f"Low: {msg}"

class UnavailableImpl:
    priority = 20
    def is_available(self): return False
    def echo(self, msg): return f"Unavailable: {msg}"


@pytest.fixture
def isolated_registry():
    get_protocol.cache_clear()
    get_protocols.cache_clear()
    orig_modules = _GEOVAULT_MODULES.copy()
    _GEOVAULT_MODULES.clear()
    try:
        yield _GEOVAULT_MODULES
    finally:
        _GEOVAULT_MODULES.clear()
        _GEOVAULT_MODULES.update(orig_modules)
        get_protocol.cache_clear()
        get_protocols.cache_clear()


def test_priority_discovery(isolated_registry):
    high_inst = HighPriorityImpl()
    low_inst = LowPriorityImpl()

    isolated_registry["high"] = ModuleConfig(cls=HighPriorityImpl, instance=high_inst)
    isolated_registry["low"] = ModuleConfig(cls=LowPriorityImpl, instance=low_inst)
    isolated_registry["unavail"] = ModuleConfig(cls=UnavailableImpl, instance=UnavailableImpl())

    # Highest priority available instance wins
    assert get_protocol(EchoProtocol).echo("hello") == "High: hello"
    assert get_protocols(EchoProtocol) == [high_inst, low_inst]

    get_protocol.cache_clear()
    get_protocols.cache_clear()
    high_inst.is_available = lambda: False

    assert get_protocol(EchoProtocol).echo("hello") == "Low: hello"


def test_registered_providers_are_discovered(isolated_registry):
    provider = HighPriorityImpl()
    register_provider(provider)
    try:
        assert get_protocol(EchoProtocol) is provider
    finally:
        unregister_provider(provider)
    assert get_protocol(EchoProtocol) is None


def test_provider_descriptor_registers_once(isolated_registry):
    class Holder:
        echo_service = Provider(LowPriorityImpl, priority=5)

    holder = Holder()
    try:
        first = holder.echo_service
        assert holder.echo_service is first
        assert get_protocol(EchoProtocol) is first
    finally:
        unregister_provider(holder.echo_service)


def test_wildcard_orders_core_modules_first(isolated_registry, monkeypatch):
    for name in ("catalog", "zeta", "db", "auth", "db_config"):
        isolated_registry[name] = ModuleConfig(cls=object)
    monkeypatch.setenv("GEOVAULT_MODULES", "*")

    assert modules._get_ordered_modules() == ["db_config", "db", "auth", "catalog", "zeta"]


def test_explicit_module_list_is_kept(monkeypatch):
    monkeypatch.setenv("GEOVAULT_MODULES", " db_config , catalog ")
    assert modules._get_ordered_modules() == ["db_config", "catalog"]
    assert modules._get_ordered_modules(["db"]) == ["db"]
