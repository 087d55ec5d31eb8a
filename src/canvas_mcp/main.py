"""Canvas MCP Server - Main entry point.

Reads configuration from the environment, builds the tool catalog and
serves MCP over stdin/stdout until the client disconnects.

Environment:
    CANVAS_API_TOKEN: Canvas API access token (required).
    CANVAS_API_URL: Canvas base URL, with or without /api/v1 (required).
    INSTITUTION_NAME: Shown to clients in the initialize instructions.
    ENABLE_DATA_ANONYMIZATION: Mask student identities in tool results.
    DEBUG: Log at DEBUG level.
    CANVAS_MCP_LOG_FILE: Diagnostic log file (no logging when unset).
    CANVAS_MCP_SETTINGS: YAML settings file for cache and timeouts.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from canvas_mcp import __version__
from canvas_mcp.cache import ResponseCache
from canvas_mcp.client import CanvasClient
from canvas_mcp.config import CanvasConfig, ServerSettings, load_settings
from canvas_mcp.diagnostics import create_diagnostic_logger
from canvas_mcp.errors import CanvasAPIError, ConfigurationError
from canvas_mcp.plugins.canvas import canvas_plugins
from canvas_mcp.plugins.registry import ToolRegistry
from canvas_mcp.protocol.transport import StdioTransport
from canvas_mcp.server import EXIT_TRANSPORT_FAILURE, MCPServer

EXIT_CONFIG_ERROR = 1
EXIT_INTERRUPTED = 130  # Standard exit code for SIGINT


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="canvas-mcp",
        description="Canvas LMS MCP server (stdio)",
    )
    parser.add_argument(
        "--settings",
        "-s",
        type=Path,
        default=None,
        help="Path to settings YAML file (default: $CANVAS_MCP_SETTINGS)",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Write diagnostic logs to this file (default: $CANVAS_MCP_LOG_FILE)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log at DEBUG level",
    )
    parser.add_argument(
        "--test",
        action="store_true",
        help="Check the Canvas API connection and exit",
    )
    parser.add_argument(
        "--version",
        "-v",
        action="version",
        version=f"canvas-mcp {__version__}",
    )
    return parser


def build_instructions(config: CanvasConfig) -> str:
    """Initialize instructions describing this deployment."""
    lines = ["Canvas LMS MCP Server"]
    if config.institution_name:
        lines.append(f"Institution: {config.institution_name}")
    if config.timezone:
        lines.append(f"Timezone: {config.timezone} (Canvas dates are UTC)")
    lines.append(f"API URL: {config.api_url}")
    if config.enable_anonymization:
        lines.append("Student identities in results are anonymized.")
    return "\n".join(lines)


def build_server(
    config: CanvasConfig,
    settings: ServerSettings,
    client: CanvasClient,
    logger: logging.Logger,
) -> MCPServer:
    """Assemble the server: registry, cache and Canvas plugins.

    The registry is frozen before the server is returned.
    """
    registry = ToolRegistry()
    for plugin in canvas_plugins(client, anonymize=config.enable_anonymization):
        registry.register_plugin(plugin)
    registry.freeze()

    cache = ResponseCache(
        max_entries=settings.cache_max_entries,
        default_ttl=settings.cache_default_ttl,
    )
    return MCPServer(
        registry=registry,
        settings=settings,
        cache=cache,
        logger=logger,
        instructions=build_instructions(config),
    )


async def run_connection_test(client: CanvasClient) -> int:
    """Fetch the current user and report the result on stderr.

    Returns:
        Exit code (0 when Canvas answered).
    """
    try:
        user = await client.get_current_user()
    except CanvasAPIError as e:
        print(f"Connection test failed: {e.message}", file=sys.stderr)
        return 1
    finally:
        await client.close()

    name = user.get("name", "unknown") if isinstance(user, dict) else "unknown"
    print(f"Connected to {client.base_url} as {name}", file=sys.stderr)
    return 0


async def run_server(server: MCPServer, client: CanvasClient, transport: StdioTransport) -> int:
    try:
        return await server.serve(transport)
    finally:
        await server.close()
        await client.close()


def main(argv: list[str] | None = None) -> int:
    """Run the MCP server.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = build_parser().parse_args(argv)

    # Configuration errors are reported before any protocol traffic
    try:
        config = CanvasConfig.from_env()
        settings_path = args.settings or (
            Path(config.settings_path) if config.settings_path else None
        )
        settings = load_settings(settings_path)
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    log_file = args.log_file or config.log_file or settings.log_file or None
    logger = create_diagnostic_logger(log_file, verbose=args.verbose or config.debug)

    client = CanvasClient(config, logger=logger)

    if args.test:
        return asyncio.run(run_connection_test(client))

    server = build_server(config, settings, client, logger)
    transport = StdioTransport()
    logger.info(
        "Canvas MCP Server %s started with %d tools (%s)",
        __version__,
        len(server.registry),
        config.api_url,
    )

    try:
        exit_code = asyncio.run(run_server(server, client, transport))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        return EXIT_INTERRUPTED
    except Exception:
        logger.exception("Server failed")
        return EXIT_TRANSPORT_FAILURE

    logger.info("Server stopped with exit code %d", exit_code)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
