import argparse
import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import partial
from typing import Annotated

import uvicorn
from cryptography.x509.ocsp import OCSPResponseStatus
from fastapi import Depends, FastAPI
from starlette.datastructures import MutableHeaders
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from vault_ocsp import get_version, is_dev

from .audit_log import AuditLogger
from .codec import (
    MAX_REQUEST_SIZE,
    OCSP_RESPONSE_CONTENT_TYPE,
    decode_get_request,
    decode_post_request,
    get_response_headers,
)
from .config import Config
from .crypto import UNAUTHORIZED_RESPONSE, ResponderIdentity, get_error_response
from .errors import (
    AuthorityError,
    ConfigurationError,
    MalformedRequestError,
    MountInitializationError,
    OcspRequestError,
    RoutingError,
)
from .logging import (
    audit_logger,
    configure_logging,
    correlation_context,
    get_log_config,
    mount_context,
    performance_log,
)
from .router import MountRegistry, MountRouter
from .source import MountSource, OcspResult
from .vault import AuthorityClientProto, VaultClient

logger = logging.getLogger(__name__)

ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


async def handle_routing_error(request: Request, exc: Exception) -> Response:
    assert isinstance(exc, RoutingError)
    logger.info("Returning routing error: %s", exc)
    return Response(status_code=exc.http_code)


async def handle_ocsp_request_error(request: Request, exc: Exception) -> Response:
    assert isinstance(exc, OcspRequestError)
    logger.info("Returning OCSP error %s: %s", exc.ocsp_status.name, exc)
    return Response(
        content=get_error_response(exc.ocsp_status),
        status_code=exc.http_code,
        media_type=OCSP_RESPONSE_CONTENT_TYPE,
    )


async def handle_authority_error(request: Request, exc: Exception) -> Response:
    assert isinstance(exc, AuthorityError)
    logger.error("Error while talking to Vault: %s", exc)
    return Response(
        content=get_error_response(OCSPResponseStatus.INTERNAL_ERROR),
        status_code=500,
        media_type=OCSP_RESPONSE_CONTENT_TYPE,
    )


async def handle_exception(request: Request, exc: Exception) -> Response:
    logger.exception("An exception occured:")
    return Response(
        content=get_error_response(OCSPResponseStatus.INTERNAL_ERROR),
        status_code=500,
        media_type=OCSP_RESPONSE_CONTENT_TYPE,
        # Uvicorn closes the connection after exceptions
        # that reach the ServerErrorMiddleware.
        headers={"Connection": "close"},
    )


class CorrelationMiddleware:
    """Gives each HTTP request a correlation id, and returns it in a header"""

    header_name = "Correlation-Id"

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        with correlation_context() as correlation_id:

            async def send_with_correlation_id(message: Message) -> None:
                if message["type"] == "http.response.start":
                    MutableHeaders(scope=message)[self.header_name] = correlation_id
                await send(message)

            await self.app(scope, receive, send_with_correlation_id)


async def read_request_body(request: Request) -> bytes:
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > MAX_REQUEST_SIZE:
            raise MalformedRequestError(
                f"OCSP request larger than {MAX_REQUEST_SIZE} bytes"
            )
    return bytes(body)


def ocsp_response(result: OcspResult) -> Response:
    # Nothing to say about the certificate, so tell
    # the client that we're not the right responder.
    content = result.response if result.response is not None else UNAUTHORIZED_RESPONSE
    return Response(
        content=content,
        status_code=200,
        media_type=OCSP_RESPONSE_CONTENT_TYPE,
        headers=get_response_headers(content),
    )


@performance_log()
async def ocsp_endpoint(
    full_path: str,
    request: Request,
    audit_logger: Annotated[AuditLogger, Depends(AuditLogger)],
) -> Response:
    with audit_logger:
        router: MountRouter = request.app.state.router
        source, residual_path = await router.dispatch(request.method, full_path)
        audit_logger.set_mount(source.mount)

        with mount_context(source.mount):
            if request.method == "POST":
                ocsp_request = decode_post_request(await read_request_body(request))
            else:
                ocsp_request = decode_get_request(residual_path)
            audit_logger.set_serial(ocsp_request.serial_number)

            result = await source.respond(ocsp_request)
            audit_logger.set_result(result)

            return ocsp_response(result)


def create_app(
    config: Config,
    identity: ResponderIdentity,
    authority: AuthorityClientProto | None = None,
) -> FastAPI:
    """
    Creates the responder app. A Vault client is created from
    the config, unless an `authority` is given.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        audit_logger.info("## Starting version %s ##", app.version)
        vault_client = None
        source_authority = authority
        if source_authority is None:
            vault_client = source_authority = VaultClient.create(config.vault)

        registry = MountRegistry(
            partial(MountSource.create, authority=source_authority, identity=identity)
        )
        app.state.router = MountRouter(registry, config.automount, config.pki_mount)

        try:
            if config.fixed_mount:
                logger.info("Serving only PKI mount '%s'", config.pki_mount)
                try:
                    await registry.resolve(config.pki_mount)
                except MountInitializationError as error:
                    logger.critical("%s", error)
                    raise ConfigurationError(
                        f"Could not set up PKI mount '{config.pki_mount}'"
                    ) from error
            else:
                logger.info(
                    "Serving PKI mounts from the first %d part(s) of the URL path",
                    config.automount,
                )
            yield
        finally:
            if vault_client is not None:
                await vault_client.aclose()

    app = FastAPI(
        middleware=[Middleware(CorrelationMiddleware)],
        lifespan=lifespan,
        title="vault-ocsp",
        version=get_version(),
        openapi_url=None,
        exception_handlers={
            RoutingError: handle_routing_error,
            OcspRequestError: handle_ocsp_request_error,
            AuthorityError: handle_authority_error,
            Exception: handle_exception,
        },
    )
    # Everything is routed on the path by the MountRouter.
    app.add_api_route("/{full_path:path}", ocsp_endpoint, methods=ALL_METHODS)
    return app


def _config_from_args(args: argparse.Namespace) -> Config:
    environ = dict(os.environ)
    for env_name, value in (
        ("VAULT_OCSP_RESPONDER_CERT", args.responder_cert),
        ("VAULT_OCSP_RESPONDER_KEY", args.responder_key),
        ("VAULT_OCSP_PKI_MOUNT", args.pki_mount),
        ("VAULT_OCSP_AUTOMOUNT", args.automount),
    ):
        if value is not None:
            environ[env_name] = value
    return Config.from_env(environ)


def run() -> None:
    parser = argparse.ArgumentParser(description="OCSP responder for Vault PKI mounts")
    parser.add_argument("--responder-cert")
    parser.add_argument("--responder-key")
    parser.add_argument("--pki-mount")
    parser.add_argument("--automount")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8080)
    parser.add_argument("--log-level")
    parser.add_argument("--log-files", default=os.getenv("VAULT_OCSP_LOG_FILES"))

    args = parser.parse_args()

    if args.log_level:
        log_level = getattr(logging, args.log_level)
    elif is_dev():
        log_level = logging.DEBUG
    else:
        log_level = logging.INFO

    configure_logging(log_level, args.log_files)

    try:
        config = _config_from_args(args)
        identity = ResponderIdentity.load(config.responder_cert, config.responder_key)
    except ConfigurationError as error:
        logger.critical("%s", error)
        sys.exit(1)

    uvicorn.run(
        create_app(config, identity),
        port=args.port,
        host=args.host,
        log_level=log_level,
        log_config=get_log_config(log_level, args.log_files),
    )
