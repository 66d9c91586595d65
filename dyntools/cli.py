"""CLI entrypoint for the dyntools MCP server."""
from __future__ import annotations
import argparse
import os
import pathlib

import uvicorn

from .core.cache import CacheConfig


def build_parser():
    p = argparse.ArgumentParser(prog="dyntools", description="Dynamic toolset MCP server")
    sub = p.add_subparsers(dest="command")
    serve = sub.add_parser("serve", help="Start MCP server")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--catalog", help="Toolset catalog (YAML or Python). Defaults to $DYNTOOLS_CATALOG")
    serve.add_argument("--permissions", help="Permission config YAML. Defaults to header-based permissions")
    serve.add_argument("--policy", help="Exposure policy YAML")
    serve.add_argument(
        "--mode",
        choices=["STATIC", "DYNAMIC"],
        type=str.upper,
        help="STATIC=permitted toolsets enabled per client at connect, DYNAMIC=clients enable toolsets via meta tools",
    )
    serve.add_argument("--max-clients", type=int, default=1000, help="Max cached client bundles (0 = unbounded)")
    serve.add_argument("--ttl-s", type=float, default=3600.0, help="Client bundle lifetime in seconds (0 = no expiry)")
    serve.add_argument(
        "--prune-interval-s", type=float, default=600.0, help="Expired bundle sweep interval in seconds (0 = off)"
    )
    serve.add_argument(
        "--log-dir",
        help="Directory to write log file (dyntools.log). If not set, only stdout is used.",
    )
    serve.add_argument("--reload", action="store_true", help="Enable auto-reload (dev only)")
    return p


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command != "serve":
        parser.print_help()
        return 1
    # Setup log directory env before app creation (logging module reads env once)
    if getattr(args, "log_dir", None):
        log_dir_path = pathlib.Path(args.log_dir)
        log_dir_path.mkdir(parents=True, exist_ok=True)
        os.environ.setdefault("DYNTOOLS_LOG_DIR", str(log_dir_path.resolve()))
    from .mcp_server import create_app

    cache_config = CacheConfig(
        max_size=args.max_clients,
        ttl_ms=int(args.ttl_s * 1000),
        prune_interval_ms=int(args.prune_interval_s * 1000),
    )
    app = create_app(
        catalog_path=args.catalog,
        permissions_path=args.permissions,
        policy_path=args.policy,
        cache_config=cache_config,
        mode=args.mode,
    )
    uvicorn.run(app, host=args.host, port=args.port, reload=args.reload)
    return 0


if __name__ == "__main__":  # pragma: no cover
    main()
