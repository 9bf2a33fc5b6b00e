import os
import sys
import logging
import uvicorn
import argparse
import importlib.util
import threading
import contextlib
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional, Tuple
from starlette.routing import Route, Mount
from starlette.applications import Starlette
from starlette.responses import JSONResponse, Response
from starlette.types import Receive, Scope, Send
from prometheus_client import Counter, generate_latest, CONTENT_TYPE_LATEST

from mcp.server import streamable_http_manager

project_root = os.path.abspath(os.path.dirname(os.path.dirname(os.path.dirname(__file__))))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("fne-mcp-server")

SERVERS_DIR = Path(__file__).parent.absolute()
METRICS_PORT = 9091

session_total = Counter(
    "fne_mcp_sessions_total", "Total number of MCP sessions opened", ["server"]
)
session_errors = Counter(
    "fne_mcp_session_errors_total", "MCP sessions refused", ["server", "reason"]
)


def discover_servers(servers_dir: Path = SERVERS_DIR) -> Dict[str, Dict[str, Any]]:
    """Load every servers/<name>/main.py exposing create_server and get_initialization_options"""
    servers = {}
    logger.info(f"Looking for servers in {servers_dir}")

    for item in sorted(servers_dir.iterdir()):
        server_file = item / "main.py"
        if not item.is_dir() or not server_file.exists():
            continue

        server_name = item.name
        spec = importlib.util.spec_from_file_location(f"{server_name}.server", server_file)
        server_module = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(server_module)
        except ImportError as e:
            logger.error(f"Failed to load server {server_name}: {e}")
            continue

        if not (
            hasattr(server_module, "create_server")
            and hasattr(server_module, "get_initialization_options")
        ):
            logger.warning(
                f"Server {server_name} does not have required create_server or get_initialization_options"
            )
            continue

        servers[server_name] = {
            "create_server": server_module.create_server,
            "get_initialization_options": server_module.get_initialization_options,
            "shutdown": getattr(server_module, "shutdown", None),
        }
        logger.info(f"Loaded server: {server_name}")

    logger.info(f"Discovered {len(servers)} servers")
    return servers


def parse_session_key(session_key: str) -> Tuple[str, Optional[str]]:
    """Split "<user_id>[:<token>]" from the request path"""
    user_id, _, api_key = session_key.partition(":")
    return user_id, api_key or None


def create_metrics_app() -> Starlette:
    async def metrics_endpoint(request):
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return Starlette(routes=[Route("/metrics", endpoint=metrics_endpoint)])


def create_server_handler(server_name: str, create_server):
    """ASGI handler serving /<server_name>/<session_key> in stateless mode"""

    async def handle_server_request(scope: Scope, receive: Receive, send: Send) -> None:
        path_parts = scope["path"].strip("/").split("/")
        # Mount strips the server prefix in recent Starlette versions, not in older ones
        if path_parts and path_parts[0] == server_name:
            path_parts = path_parts[1:]
        if not path_parts or not path_parts[0]:
            session_errors.labels(server=server_name, reason="missing_session").inc()
            response = Response("Session not found", status_code=404)
            await response(scope, receive, send)
            return

        user_id, api_key = parse_session_key(path_parts[0])
        logger.info(f"Creating stateless server for {server_name} with user: {user_id}")
        session_total.labels(server=server_name).inc()

        session_manager = streamable_http_manager.StreamableHTTPSessionManager(
            app=create_server(user_id, api_key),
            event_store=None,
            json_response=False,
            stateless=True,
        )
        async with session_manager.run():
            await session_manager.handle_request(scope, receive, send)

    return handle_server_request


def create_starlette_app(servers: Optional[Dict[str, Dict[str, Any]]] = None) -> Starlette:
    """Create a Starlette app hosting the discovered MCP servers"""
    if servers is None:
        servers = discover_servers()

    routes = []
    for server_name, server_info in servers.items():
        handler = create_server_handler(server_name, server_info["create_server"])
        routes.append(Mount(f"/{server_name}", app=handler))
        logger.info(f"Added stateless routes for server: {server_name}")

    async def root_handler(request):
        return JSONResponse(
            {
                "status": "ok",
                "message": "FNE MCP server running",
                "servers": list(servers.keys()),
                "mode": "stateless",
            }
        )

    async def health_check(request):
        return JSONResponse(
            {"status": "ok", "servers": list(servers.keys()), "mode": "stateless"}
        )

    routes.append(Route("/", endpoint=root_handler))
    routes.append(Route("/health_check", endpoint=health_check))

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info("Application started with stateless MCP servers")
        try:
            yield
        finally:
            logger.info("Application shutting down...")
            for server_name, server_info in servers.items():
                shutdown = server_info.get("shutdown")
                if shutdown is not None:
                    await shutdown()
                    logger.info(f"Released resources of server: {server_name}")

    return Starlette(routes=routes, lifespan=lifespan)


def run_metrics_server(host, port):
    """Run a separate metrics server on the specified port"""
    logger.info(f"Starting metrics server on {host}:{port}")
    uvicorn.run(create_metrics_app(), host=host, port=port)


def main():
    parser = argparse.ArgumentParser(description="FNE MCP Stateless Server")
    parser.add_argument("--host", default="0.0.0.0", help="Host for Starlette server")
    parser.add_argument(
        "--port", type=int, default=8000, help="Port for Starlette server"
    )
    parser.add_argument(
        "--metrics-port", type=int, default=METRICS_PORT, help="Port for Prometheus metrics"
    )
    args = parser.parse_args()

    metrics_thread = threading.Thread(
        target=run_metrics_server, args=(args.host, args.metrics_port), daemon=True
    )
    metrics_thread.start()

    app = create_starlette_app()
    logger.info(f"Starting stateless Starlette server on {args.host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
