#!/usr/bin/env python3
"""
minerweb - Entry Point
========================
One-command startup for the miner web console.

Usage:
    python app.py                          # Start in the current directory
    python app.py --port 9000              # Start on custom port
    minerweb --project-dir /srv/miner      # Start for another installation

This script:
    1. Loads configuration from config.yaml
    2. Loads environment variables from .env (console password)
    3. Creates the FastAPI web application
    4. Runs it with uvicorn, starting it again when the console asks for
       a restart

After starting, open the printed URL in a browser to access the console.
"""

import os
import argparse
import logging
import shutil

import uvicorn
from dotenv import load_dotenv


logger = logging.getLogger("minerweb")

APP_DIR = os.path.dirname(os.path.abspath(__file__))


def parse_args(argv=None) -> argparse.Namespace:
    """Parse the command line."""
    parser = argparse.ArgumentParser(
        description="minerweb - Miner Web Console",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--port", type=int, default=None,
        help="Port number for the web console (overrides config.yaml)",
    )
    parser.add_argument(
        "--host", type=str, default=None,
        help="Host binding address (overrides config.yaml)",
    )
    parser.add_argument(
        "--log-level", type=str, default="info",
        choices=["debug", "info", "warning", "error"],
        help="Logging verbosity",
    )
    parser.add_argument(
        "--project-dir", type=str, default=None,
        help="Directory holding config.yaml and .env (default: current directory)",
    )
    return parser.parse_args(argv)


def prepare_project_dir(project_dir: str) -> str:
    """
    Make sure project_dir has a config.yaml and load its .env.

    A missing config.yaml is created from config.yaml.example, taken from
    project_dir or else from the directory of this script. An existing
    config.yaml is never overwritten.

    Returns:
        The absolute project directory.
    """
    project_dir = os.path.abspath(project_dir)
    config_path = os.path.join(project_dir, "config.yaml")
    if not os.path.exists(config_path):
        for directory in (project_dir, APP_DIR):
            example = os.path.join(directory, "config.yaml.example")
            if os.path.exists(example):
                shutil.copy2(example, config_path)
                logger.info("Created %s from template", config_path)
                break

    env_path = os.path.join(project_dir, ".env")
    if os.path.exists(env_path):
        load_dotenv(env_path)
    return project_dir


def main(argv=None):
    """Parse arguments, load config, and start the web server."""
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    project_dir = prepare_project_dir(args.project_dir or os.getcwd())

    # -- Load configuration to get web server settings -------------------------
    from minerweb.config import ConfigManager, DEFAULTS
    from minerweb.main import create_app

    config = ConfigManager(project_dir).load()

    # Command-line args override config file
    host = args.host or config["web"].get("host", DEFAULTS["web"]["host"])
    port = args.port or config["web"].get("port", DEFAULTS["web"]["port"])

    logger.info("Console: http://%s:%s", host, port)

    # -- Start the web server --------------------------------------------------
    while True:
        app = create_app(project_dir)
        server = uvicorn.Server(uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level=args.log_level,
        ))
        app.state.server.attach(lambda: setattr(server, "should_exit", True))
        server.run()

        if not app.state.server.restart_requested:
            break
        logger.info("Restarting the web console")


if __name__ == "__main__":
    main()
