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
Pluggable exception handling for the HTTP layer.

Converts the core error kinds (NotFound, BadRequest, Forbidden,
PreconditionFailed, Internal) into HTTP responses. Handlers are checked in
registration order; the first one returning a result wins.

Integration with FastAPI: call `setup_exception_handlers(app)` while
building the app, or call `handle_exception()` in a try/except block.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from fastapi import FastAPI, HTTPException, Request, Response, status
from pydantic import ValidationError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from geovault.extensions.tools.fast_api import ORJSONResponse, etag_for
from geovault.models.exceptions import GeoVaultError, InternalError, PreconditionFailedError

logger = logging.getLogger(__name__)

INTERNAL_ERROR_DETAIL = "An internal error occurred."

KIND_STATUS_CODES = {
    "NotFound": status.HTTP_404_NOT_FOUND,
    "BadRequest": status.HTTP_400_BAD_REQUEST,
    "Forbidden": status.HTTP_403_FORBIDDEN,
    "PreconditionFailed": status.HTTP_412_PRECONDITION_FAILED,
    "Internal": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class ExceptionHandler:
    """Converts an application exception to an HTTP response, or returns None to defer."""

    def can_handle(self, exception: Exception) -> bool:
        raise NotImplementedError

    def handle(
        self, exception: Exception, context: Optional[Dict[str, Any]] = None
    ) -> Optional[Union[HTTPException, Response]]:
        raise NotImplementedError


class GeoVaultErrorHandler(ExceptionHandler):
    """Maps each error kind to its status code. Internal details stay in the log."""

    def can_handle(self, exception: Exception) -> bool:
        return isinstance(exception, GeoVaultError)

    def handle(self, exception: Exception, context: Optional[Dict[str, Any]] = None) -> Optional[HTTPException]:
        operation = (context or {}).get('operation', 'the requested operation')
        status_code = KIND_STATUS_CODES.get(exception.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)

        if isinstance(exception, InternalError) or status_code >= 500:
            logger.error(f"Internal error during {operation}: {exception!r}", exc_info=exception)
            return HTTPException(status_code=status_code, detail=INTERNAL_ERROR_DETAIL)

        headers = None
        if isinstance(exception, PreconditionFailedError) and exception.current_version is not None:
            headers = {"ETag": etag_for(exception.current_version)}
        logger.info(f"{exception.kind} during {operation}: {exception}")
        return HTTPException(status_code=status_code, detail=str(exception), headers=headers)


class ProgrammingErrorHandler(ExceptionHandler):
    """KeyError, AttributeError and TypeError point at server-side bugs."""

    def can_handle(self, exception: Exception) -> bool:
        return isinstance(exception, (KeyError, AttributeError, TypeError))

    def handle(self, exception: Exception, context: Optional[Dict[str, Any]] = None) -> Optional[HTTPException]:
        operation = (context or {}).get('operation', 'the requested operation')
        logger.error(
            f"Internal Programming Error (500): {exception.__class__.__name__}: {exception} during {operation}",
            exc_info=exception
        )
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_ERROR_DETAIL)


class ValidationExceptionHandler(ExceptionHandler):
    """Handles validation errors (ValueError, pydantic ValidationError)."""

    def can_handle(self, exception: Exception) -> bool:
        return isinstance(exception, (ValueError, ValidationError))

    def handle(self, exception: Exception, context: Optional[Dict[str, Any]] = None) -> Optional[HTTPException]:
        operation = (context or {}).get('operation', 'Operation')
        detail = f"{operation} failed validation: {exception}"
        logger.warning(detail)
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class ExceptionHandlerRegistry:
    """Central registry of exception handlers."""

    def __init__(self):
        self._handlers: List[ExceptionHandler] = []
        self._register_builtin_handlers()

    def _register_builtin_handlers(self):
        # Specific to generic. BadRequestError is also a ValueError.
        self.register(GeoVaultErrorHandler())
        self.register(ProgrammingErrorHandler())
        self.register(ValidationExceptionHandler())

    def register(self, handler: ExceptionHandler, prepend: bool = False) -> None:
        if prepend:
            self._handlers.insert(0, handler)
        else:
            self._handlers.append(handler)
        logger.debug(f"Registered exception handler: {handler.__class__.__name__}")

    def handle(
        self,
        exception: Exception,
        context: Optional[Dict[str, Any]] = None,
        reraise_unhandled: bool = True
    ) -> Union[HTTPException, Response]:
        """
        Runs the exception through the registered handlers.

        Unmatched exceptions are re-raised, or turned into a generic 500 when
        `reraise_unhandled` is False.
        """
        context = context or {}
        for handler in self._handlers:
            try:
                if handler.can_handle(exception):
                    result = handler.handle(exception, context)
                    if result:
                        return result
            except Exception as e:
                logger.error(f"Error in exception handler {handler.__class__.__name__}: {e}", exc_info=True)
                continue

        if reraise_unhandled:
            raise exception

        logger.error(f"Unhandled exception: {exception!r}", exc_info=exception)
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_ERROR_DETAIL)


_global_registry = ExceptionHandlerRegistry()


def register_handler(handler: ExceptionHandler, prepend: bool = False) -> None:
    """Registers a custom exception handler globally."""
    _global_registry.register(handler, prepend=prepend)


def handle_exception(
    exception: Exception,
    operation: Optional[str] = None,
    reraise_unhandled: bool = True
) -> Union[HTTPException, Response]:
    """
    Converts an exception with the registered handlers.

    Example:
        try:
            collection = await collections.get_collection(name)
        except Exception as e:
            raise handle_exception(e, operation="Collection read")
    """
    context = {'operation': operation} if operation else {}
    return _global_registry.handle(exception, context=context, reraise_unhandled=reraise_unhandled)


async def generic_exception_handler(request: Request, exc: Exception) -> Response:
    """Formats any exception reaching the app into a JSON error response."""
    context = {"operation": f"{request.method} {request.url.path}"}
    result = _global_registry.handle(exc, context=context, reraise_unhandled=False)
    if isinstance(result, Response):
        return result
    return ORJSONResponse(
        status_code=result.status_code,
        content={"detail": result.detail},
        headers=getattr(result, "headers", None),
    )


class GlobalExceptionHandlingMiddleware(BaseHTTPMiddleware):
    """Catches exceptions from the whole stack, other middleware included."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            return await generic_exception_handler(request, exc)


def setup_exception_handlers(app: FastAPI) -> None:
    """Installs the registry on a FastAPI app."""
    app.add_middleware(GlobalExceptionHandlingMiddleware)
    for exc_class in (GeoVaultError, ValidationError, ValueError):
        app.add_exception_handler(exc_class, generic_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
    logger.info("Exception handling system initialized for FastAPI app")
