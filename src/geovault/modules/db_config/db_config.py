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

import os

from geovault.tools.class_tools import masked_repr


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class DBConfig:
    database_url: str = os.getenv(
        "DATABASE_URL", "postgresql://testuser:testpassword@db:5432/gis_dev"
    )
    pool_min_size: int = int(os.getenv("DB_POOL_MIN_SIZE", "5"))
    pool_max_size: int = int(os.getenv("DB_POOL_MAX_SIZE", "20"))
    pool_command_timeout: int = int(os.getenv("DB_POOL_COMMAND_TIMEOUT", "60"))

    # Schema holding collections, aliases, shared items and assets.
    metadata_schema: str = os.getenv("GEOVAULT_METADATA_SCHEMA", "geovault")
    default_srid: int = int(os.getenv("GEOVAULT_DEFAULT_SRID", "4326"))
    role_impersonation: bool = _env_flag("GEOVAULT_ROLE_IMPERSONATION", "true")

    def __repr__(self) -> str:
        return masked_repr(self, sensitive_attrs=["database_url"])
