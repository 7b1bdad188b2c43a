"""Main entry point: argument parsing, CLI mode, and MCP server startup."""
import sys
import logging
import argparse

from devsec.config import (
    state, logger, get_adb_path, get_device_serial, get_backup_dir,
)
from devsec.user_config import get_config_value
from devsec.errors import DevSecError
from devsec.cli.printers import _cli_print_analysis
from devsec.mcp.server import mcp_server

# Import all MCP tool modules to register them with the server
import devsec.mcp.tools_detection  # noqa: F401
import devsec.mcp.tools_integrity  # noqa: F401
import devsec.mcp.tools_config  # noqa: F401


def _parse_expected(values):
    """Turn repeated ``PATH=SHA256`` / ``PATH=absent`` arguments into a dict."""
    expected = {}
    for item in values or []:
        path, sep, checksum = item.partition("=")
        if not sep or not path:
            raise ValueError(f"Expected PATH=SHA256 or PATH=absent, got '{item}'")
        expected[path] = None if checksum.lower() == "absent" else checksum.lower()
    return expected


def _run_http_server(args, log_level: int):
    """Serve streamable-http through uvicorn, behind bearer auth when a key is set."""
    import uvicorn
    from devsec.auth import BearerAuthMiddleware

    app = mcp_server.streamable_http_app()
    if state.api_key:
        app = BearerAuthMiddleware(app, api_key=state.api_key)
        logger.info("HTTP bearer authentication enabled.")
    else:
        logger.warning("No API key configured: the HTTP endpoint accepts unauthenticated requests.")
    logger.info(f"Starting MCP server (streamable-http) on http://{args.mcp_host}:{args.mcp_port}/mcp")
    uvicorn.run(app, host=args.mcp_host, port=args.mcp_port,
                log_level=logging.getLevelName(log_level).lower())


def main():
    parser = argparse.ArgumentParser(description="Device Security Assessment Engine.", formatter_class=argparse.RawTextHelpFormatter)
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging and detailed CLI output.")

    # --- Device Options ---
    dev_group = parser.add_argument_group('Device Options')
    dev_group.add_argument("--serial", type=str, default=None, help="adb serial of the target device (default: DEVSEC_DEVICE_SERIAL or adb's default device).")
    dev_group.add_argument("--adb-path", type=str, default=None, help="Path to the adb binary (default: DEVSEC_ADB_PATH or 'adb').")
    dev_group.add_argument("--backup-dir", type=str, default=None, help="Local directory for file backups (default: ~/.devsec/backups).")

    # --- CLI Options ---
    cli_group = parser.add_argument_group('CLI Mode Specific Options (ignored if --mcp-server is used)')
    cli_group.add_argument("--package", type=str, default=None, help="Android package to include in the application category.")
    cli_group.add_argument("--critical-file", action="append", default=None, help="Device path for the file-integrity category (multiple allowed).")
    cli_group.add_argument("--expect", action="append", default=None, metavar="PATH=SHA256", help="Expected checksum of a critical file, or PATH=absent (multiple allowed).")

    # --- MCP Options ---
    mcp_group = parser.add_argument_group('MCP Server Mode Specific Options')
    mcp_group.add_argument("--mcp-server", action="store_true", help="Run in MCP server mode.")
    mcp_group.add_argument("--mcp-host", type=str, default="127.0.0.1", help="MCP server host (default: 127.0.0.1).")
    mcp_group.add_argument("--mcp-port", type=int, default=8082, help="MCP server port (default: 8082).")
    mcp_group.add_argument("--mcp-transport", type=str, default="stdio", choices=["stdio", "sse", "streamable-http"], help="MCP transport protocol (default: stdio).")
    mcp_group.add_argument("--api-key", type=str, default=None, help="Bearer token required by the streamable-http transport (default: DEVSEC_API_KEY).")

    args = parser.parse_args()

    # Configure logging level based on verbosity AFTER args are parsed
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logger.setLevel(log_level)
    logging.getLogger('mcp').setLevel(log_level)
    if args.mcp_transport in ("sse", "streamable-http"):
        logging.getLogger('uvicorn').setLevel(log_level)
        logging.getLogger('uvicorn.error').setLevel(log_level)
        logging.getLogger('uvicorn.access').setLevel(logging.WARNING if not args.verbose else logging.DEBUG)

    state.device_serial = args.serial or get_device_serial()
    state.adb_path = args.adb_path or get_adb_path()
    state.backup_dir = args.backup_dir or str(get_backup_dir())

    # --- MCP Server Mode ---
    if args.mcp_server:
        state.api_key = args.api_key or get_config_value("api_key")
        if args.mcp_transport == "sse" and state.api_key:
            logger.warning("--api-key is only enforced on the streamable-http transport.")

        server_exc = None
        try:
            if args.mcp_transport == "streamable-http":
                _run_http_server(args, log_level)
            else:
                if args.mcp_transport == "sse":
                    mcp_server.settings.host = args.mcp_host
                    mcp_server.settings.port = args.mcp_port
                    mcp_server.settings.log_level = logging.getLevelName(log_level).lower()
                    logger.info(f"Starting MCP server (SSE) on http://{args.mcp_host}:{args.mcp_port}")
                else:
                    logger.info("Starting MCP server (stdio).")
                mcp_server.run(transport=args.mcp_transport)
        except KeyboardInterrupt:
            logger.info("MCP Server stopped by user (KeyboardInterrupt).")
        except Exception as e:
            logger.critical(f"MCP Server encountered an unhandled error: {str(e)}", exc_info=True)
            server_exc = e
        finally:
            cancelled = state.cancel_all_tasks()
            if cancelled:
                logger.info(f"MCP: Cancelled {cancelled} running task(s) on exit.")
            sys.exit(1 if server_exc else 0)

    # --- CLI Mode ---
    else:
        try:
            expected = _parse_expected(args.expect)
            engine = state.get_engine()
            print(f"[*] CLI Mode: assessing device {state.device_serial or '(default)'}")
            if not engine.check_connection():
                print("[!] Error: device is not reachable over adb.", file=sys.stderr)
                sys.exit(2)
            device_info = engine.get_device_info()
            analysis = engine.analyze_device(args.package, args.critical_file, expected)
            _cli_print_analysis(analysis, device_info, verbose=args.verbose)
            sys.exit(0 if analysis["report"]["passed"] else 1)
        except KeyboardInterrupt:
            print("\n[*] CLI Analysis interrupted by user. Exiting.")
            sys.exit(1)
        except (DevSecError, ValueError) as e:
            print(f"\n[!] {type(e).__name__}: {e}", file=sys.stderr)
            sys.exit(2)
