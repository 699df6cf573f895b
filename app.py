# Copyright 2024-2025 The vLLM Production Stack Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from log import configure_logging
from parsers.parser import parse_args
from provisioning.errors import ProvisioningError
from provisioning.network import get_ip
from routers.main_router import main_router
from routers.provisioning_router import router as provisioning_router
from services.provisioning_service import (
    ProvisioningService,
    create_provisioning_service,
)
from version import __version__

logger = logging.getLogger("uvicorn")

BANNER = r"""
  _____ _____ _____   _____           _
 |  _  |_   _/  ___| /  __ \         | |
 | | | | | | \ `--.  | /  \/ ___ _ __| |_
 | | | | | |  `--. \ | |    / _ \ '__| __|
 \ \_/ / | | /\__/ / | \__/\  __/ |  | |_
  \___/  \_/ \____/   \____/\___|_|   \__|
"""


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield

    service = getattr(app.state, "provisioning_service", None)
    if service is not None:
        logger.info("Closing the registration store")
        service.close()


def _envelope(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content={"success": False, "message": message}
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Every failure is reported as {"success": false, "message": ...}."""

    @app.exception_handler(ProvisioningError)
    async def provisioning_error_handler(request: Request, exc: ProvisioningError):
        log = logger.error if exc.status_code >= 500 else logger.info
        log(f"{request.url.path} failed ({exc.status_code}): {exc.message}")
        return _envelope(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
            for error in exc.errors()
        )
        logger.info(f"Invalid request to {request.url.path}: {details}")
        return _envelope(400, f"Error decoding the JSON: {details}")

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception in {request.url.path}: {exc}")
        return _envelope(500, "Internal server error")


def create_app(service: Optional[ProvisioningService] = None) -> FastAPI:
    """Build the FastAPI application serving the given provisioning service."""
    app = FastAPI(title="OTS Certificate Server", version=__version__, lifespan=lifespan)
    app.include_router(main_router)
    app.include_router(provisioning_router)
    app.state.provisioning_service = service
    register_exception_handlers(app)
    return app


def main():
    try:
        args = parse_args()
    except ValueError as e:
        # Unparsable numeric environment variables
        configure_logging()
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    config = args.config_obj
    provisioning_config = args.provisioning_config
    configure_logging(config.log_level)
    logger.info(BANNER)

    if args.dump_config:
        config.log_configuration()
        provisioning_config.log_configuration()
        return

    errors = config.validate() + provisioning_config.validate()
    if errors:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        sys.exit(1)
    config.log_configuration()
    provisioning_config.log_configuration()
    logger.debug(f"The server will be acting on behalf of the domain: {config.domain}")

    try:
        ip = config.server_ip or get_ip(config.interface)
    except RuntimeError as e:
        logger.error(f"Could not determine the server IP: {e}")
        sys.exit(1)

    try:
        service = create_provisioning_service(
            config.domain, config.database_url, provisioning_config
        )
        identity = service.bootstrap_server_identity(
            ip,
            config.cert_filename,
            config.key_filename,
            hostname=config.hostname,
            csr_path=config.csr_filename,
        )
    except ProvisioningError as e:
        logger.error(f"Start up failed: {e.message}")
        sys.exit(1)

    app = create_app(service)

    ssl_options = {}
    if config.tls_enabled:
        ssl_options = {
            "ssl_certfile": identity.cert_path,
            "ssl_keyfile": identity.key_path,
        }
        logger.info(f"Starting web server on: https://{identity.fqdn}:{config.port}")
    else:
        logger.warning("TLS is disabled, serving plain HTTP")
    logger.debug(f"Listening on: {config.host}:{config.port}")

    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level=config.log_level,
        log_config=None,
        **ssl_options,
    )


if __name__ == "__main__":
    main()
