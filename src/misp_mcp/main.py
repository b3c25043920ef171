"""MISP MCP Server - command line entry point.

Serves MISP tools to an MCP client over stdin/stdout. Protocol frames go to
stdout only; all diagnostics go to stderr.

Configuration comes from, in increasing precedence, an optional YAML file
(--config), the environment (MISP_URL, MISP_API_KEY, MISP_VERIFY_TLS,
MISP_TIMEOUT) and the command line. See config/server.yaml for an example.

Exit codes:
    0   graceful shutdown (end of input or shutdown notification)
    1   the output stream failed mid-session
    2   startup failure (bad configuration or tool registration)
    130 interrupted
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from misp_mcp import __version__
from misp_mcp.audit import AuditLogger
from misp_mcp.config import LOG_LEVELS, ConfigError, ServerConfig, load_config
from misp_mcp.plugins.misp import MispPlugin
from misp_mcp.plugins.registry import RegistryError
from misp_mcp.protocol.transport import FRAMINGS, StdioTransport, get_framing
from misp_mcp.server import EXIT_STARTUP_FAILURE, MCPServer

logger = logging.getLogger("misp_mcp")


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        prog="misp-mcp",
        description="MCP server for MISP integration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        help="Path to a YAML configuration file",
    )
    parser.add_argument("--misp-url", metavar="URL", help="MISP server base URL")
    parser.add_argument("--api-key", metavar="KEY", help="MISP API key")
    parser.add_argument(
        "--verify-tls",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Verify TLS certificates (default: on)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        metavar="SECONDS",
        help="MISP request timeout in seconds (default: 30)",
    )
    parser.add_argument(
        "--tool-timeout",
        type=float,
        metavar="SECONDS",
        help="Maximum run time of a single tool call (default: 60)",
    )
    parser.add_argument(
        "--drain-timeout",
        type=float,
        metavar="SECONDS",
        help="How long to wait for running tool calls at shutdown (default: 30)",
    )
    parser.add_argument(
        "--framing",
        choices=FRAMINGS,
        help="Message framing on stdin/stdout (default: line)",
    )
    parser.add_argument(
        "--audit-log",
        metavar="PATH",
        help="Append a JSON Lines audit trail of tool calls to PATH",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        help="Diagnostic log level (default: INFO)",
    )
    parser.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Disable logging output",
    )
    parser.add_argument(
        "--version",
        "-v",
        action="version",
        version=f"misp-mcp {__version__}",
    )
    return parser


def configure_logging(level: str, quiet: bool = False) -> None:
    """Send log records to stderr, keeping stdout clean for protocol frames."""
    if quiet:
        logging.disable(logging.CRITICAL)
        return
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


async def run(config: ServerConfig) -> int:
    """Build the server from configuration and serve stdin/stdout.

    Returns:
        Exit code.
    """
    audit_logger = None
    if config.audit_log_file:
        try:
            audit_logger = AuditLogger(Path(config.audit_log_file))
        except OSError as e:
            logger.error("Cannot open audit log %s: %s", config.audit_log_file, e)
            return EXIT_STARTUP_FAILURE

    try:
        server = MCPServer(
            server_info={"name": "misp-mcp", "version": __version__},
            tool_timeout=config.tool_timeout,
            drain_timeout=config.drain_timeout,
            audit_logger=audit_logger,
        )
        try:
            server.register_plugin(MispPlugin.from_config(config))
        except (RegistryError, ValueError) as e:
            logger.error("Tool registration failed: %s", e)
            return EXIT_STARTUP_FAILURE

        transport = StdioTransport(framing=get_framing(config.framing))
        logger.info(
            "MISP MCP server started: MISP URL = %s, verify TLS = %s, timeout = %ss",
            config.misp_url,
            config.verify_tls,
            config.timeout,
        )
        return await server.serve(transport)
    finally:
        if audit_logger is not None:
            audit_logger.close()


def main(argv: list[str] | None = None) -> int:
    """Run the MCP server.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level or "INFO", args.quiet)

    try:
        config = load_config(
            args.config,
            misp_url=args.misp_url,
            api_key=args.api_key,
            verify_tls=args.verify_tls,
            timeout=args.timeout,
            tool_timeout=args.tool_timeout,
            drain_timeout=args.drain_timeout,
            framing=args.framing,
            audit_log_file=args.audit_log,
            log_level=args.log_level,
        )
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return EXIT_STARTUP_FAILURE

    # The config file may raise or lower the level set from the command line
    if not args.quiet:
        logging.getLogger().setLevel(config.log_level)

    try:
        return asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        return 130  # Standard exit code for SIGINT


if __name__ == "__main__":
    sys.exit(main())
