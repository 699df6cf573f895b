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
from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response

from log import init_logger
from provisioning.errors import StoreError
from version import __version__

main_router = APIRouter()

logger = init_logger(__name__)


@main_router.get("/")
async def welcome_message(request: Request):
    logger.debug("Hit on /, display welcome message")
    service = getattr(request.app.state, "provisioning_service", None)
    domain = service.domain if service else ""
    return f"Welcome to the OTS Certificate generator for {domain}"


@main_router.get("/version")
async def show_version():
    ver = {"version": __version__}
    return JSONResponse(content=ver)


@main_router.get("/health")
async def health(request: Request) -> Response:
    """
    Endpoint to check the health status of the provisioning service.

    Returns 503 if the service is not set up or its registration database
    can't be queried, otherwise 200 with the served domain, the server's own
    hostname and the number of registered clients.
    """
    service = getattr(request.app.state, "provisioning_service", None)
    if service is None:
        return JSONResponse(
            content={"status": "Provisioning service is not available."},
            status_code=503,
        )

    try:
        clients = await run_in_threadpool(service.store.count)
    except StoreError as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            content={"status": "Registration database is down."}, status_code=503
        )

    identity = service.server_identity
    return JSONResponse(
        content={
            "status": "healthy",
            "domain": service.domain,
            "hostname": identity.fqdn if identity else None,
            "clients": clients,
        },
        status_code=200,
    )
