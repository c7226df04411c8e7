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

import logging
import os
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI

from geovault import modules
from geovault.extensions.tools.exception_handlers import setup_exception_handlers
from geovault.extensions.tools.fast_api import ORJSONResponse

log_level_name = os.getenv('LOG_LEVEL', 'INFO').upper()
log_level = getattr(logging, log_level_name, logging.INFO)
logging.basicConfig(
    level=log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Discovers and starts the modules; they populate `app.state` (db_config, engine)."""
    modules.discover_modules()
    modules.instantiate_modules(app.state)
    async with modules.lifespan(app.state):
        logger.info("--- [main.py] Modules are active. Application is running. ---")
        yield
    logger.info("--- [main.py] Application shutdown complete. ---")


app = FastAPI(
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
    root_path=os.getenv("API_ROOT_PATH", ""),
    title=os.getenv("TITLE", "GeoVault API"),
    description=os.getenv("DESCRIPTION", "Multi-tenant spatial resource and query engine"),
    version=os.getenv("VERSION", "0.1.0"),
)


@app.get("/health", tags=["Web Health"])
async def health_check():
    return {"name": app.title, "description": app.description, "version": app.version, "status": "ok"}


setup_exception_handlers(app)

logger.info("--- [main.py] FastAPI application instance created. ---")
