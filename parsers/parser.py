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
import argparse
import logging
from typing import List, Optional

from env_config import LOG_LEVELS, ServerConfig
from provisioning.env_config import ProvisioningConfig
from version import __version__

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run the OTS certificate server. Configuration is loaded from "
        "environment variables; the options below override them."
    )

    # Basic server settings (override environment variables)
    server_group = parser.add_argument_group(
        "Server Settings", "Basic server configuration (overrides environment variables)"
    )
    server_group.add_argument("--host", type=str, help="The host to run the server on.")
    server_group.add_argument("--port", type=int, help="The port to run the server on.")
    server_group.add_argument(
        "--log-level",
        type=str,
        choices=LOG_LEVELS,
        help="Log level for the server and uvicorn. Default is 'info'.",
    )

    identity_group = parser.add_argument_group(
        "Server Identity", "The hostname and address the server itself uses"
    )
    identity_group.add_argument(
        "--domain", type=str, help="The domain hostnames are allocated under."
    )
    identity_group.add_argument(
        "--hostname",
        type=str,
        help="Fixed label for the server's own hostname; generated if not set.",
    )
    identity_group.add_argument(
        "--interface",
        type=str,
        help="The name of the interface to use if there are multiple.",
    )

    parser.add_argument(
        "--dump-config",
        action="store_true",
        help="Log the configuration (secrets masked) and exit.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
        help="Show version and exit",
    )
    return parser


def parse_args(argv: Optional[List[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    # Load configuration from environment variables
    logger.debug("Loading configuration from environment variables")
    config = ServerConfig.from_env()

    # Override config with command line arguments if provided
    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.log_level is not None:
        config.log_level = args.log_level
    if args.domain is not None:
        config.domain = args.domain.strip().strip(".").lower()
    if args.hostname is not None:
        config.hostname = args.hostname
    if args.interface is not None:
        config.interface = args.interface

    # Store the config objects for use by the application
    args.config_obj = config
    args.provisioning_config = ProvisioningConfig.from_env()
    return args
