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

from typing import Iterable


def masked_repr(obj: object, sensitive_attrs: Iterable[str] = ()) -> str:
    """
    Builds `ClassName(attr=value, ...)` from the class annotations, skipping
    private attributes and masking the ones listed in `sensitive_attrs`.
    Used by configuration classes that carry credentials (e.g. DATABASE_URL).
    """
    sensitive = set(sensitive_attrs)
    shown = []
    for attr_name in getattr(obj.__class__, "__annotations__", {}):
        if attr_name.startswith("_"):
            continue
        if attr_name in sensitive:
            shown.append(f"{attr_name}='***'")
        else:
            shown.append(f"{attr_name}={getattr(obj, attr_name, None)!r}")
    return f"{obj.__class__.__name__}({', '.join(shown)})"
