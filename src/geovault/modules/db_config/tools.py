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

from geovault.modules.db_config.db_config import DBConfig
from geovault.modules.db_config.query_executor import DbResource
from geovault.modules.db_config import maintenance_tools

# Extensions the catalog relies on: geometry types and gen_random_uuid().
REQUIRED_EXTENSIONS = ("postgis", "pgcrypto")


def normalize_db_url(url: str, is_async: bool = False) -> str:
    """
    Normalizes a database URL for the sync or async (asyncpg) driver,
    fixing the protocol prefix and the ssl/sslmode parameter name.
    """
    if not url:
        return url

    if is_async:
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+asyncpg://", 1)
    else:
        if url.startswith("postgresql+asyncpg://"):
            url = url.replace("postgresql+asyncpg://", "postgresql://", 1)

    # asyncpg uses 'ssl', libpq based drivers use 'sslmode'
    if is_async:
        if "sslmode=" in url:
            url = url.replace("sslmode=", "ssl=")
    else:
        if "ssl=" in url and "sslmode=" not in url:
            url = url.replace("ssl=", "sslmode=")

    return url


async def ensure_init_db(resource: DbResource):
    """Installs the base extensions."""
    for extension_name in REQUIRED_EXTENSIONS:
        await maintenance_tools.ensure_db_extension(resource, extension_name)


def get_config(app_state) -> DBConfig:
    """Returns the current database configuration."""
    return app_state.db_config
