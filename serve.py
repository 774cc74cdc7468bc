#!/usr/bin/env -S uv run --script

import argparse
import asyncio
import logging
import os
import sys

from wiki.config import Config
from wiki.deploy import Deployment
from wiki.errors import DeploymentError
from wiki.setup import setup_logging

logger = logging.getLogger("wiki.serve")


def parse_args(argv=None):
    """
    Parse the arguments.
    """
    parser = argparse.ArgumentParser(description="Serve the wiki.")
    parser.add_argument(
        "--config",
        help="Path to the config file. Defaults are used if it does not exist.",
        default="config.yaml",
    )
    parser.add_argument("--host", default=None, help="Host to bind to")
    parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    parser.add_argument("--log-level", default="info", help="Log level")
    return parser.parse_args(argv)


def prepare_config(opts: argparse.Namespace) -> Config:
    """
    Read the config file, then apply the environment and the command line.
    """
    if os.path.exists(opts.config):
        config = Config.read(opts.config)
    else:
        logger.warning("Config file %s not found, using defaults", opts.config)
        config = Config()
    config.apply_environment()
    if opts.host:
        config.http.host = opts.host
    if opts.port:
        config.http.port = opts.port
    return config


async def run(config: Config) -> None:
    deployment = Deployment(config)
    await deployment.deploy()
    try:
        await deployment.http.wait()
    finally:
        await deployment.undeploy()


def main(argv=None):
    opts = parse_args(argv)
    setup_logging(opts.log_level)
    config = prepare_config(opts)
    try:
        asyncio.run(run(config))
    except DeploymentError as e:
        logger.error("%s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
