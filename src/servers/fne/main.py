import os
import sys
import json
import logging
import getpass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

# Add project root and src directory to Python path
project_root = os.path.abspath(
    os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(__file__))))
)
sys.path.insert(0, project_root)
sys.path.insert(0, os.path.join(project_root, "src"))

from mcp.types import (
    TextContent,
    Tool,
)
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from src.auth.factory import get_auth_type
from src.auth.constants import AUTH_TYPE_BEARER
from src.servers.fne.client import FneClient
from src.servers.fne.config import get_fne_config
from src.servers.fne.errors import FneError, ValidationError
from src.servers.fne.factories.fne_api_factory import FneApiToolFactory
from src.servers.fne.totals import invoice_totals, line_breakdown
from src.servers.fne.validation import collect_issues
from src.utils.fne.util import authenticate_and_save_credentials, open_session


SERVICE_NAME = Path(__file__).parent.name

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(SERVICE_NAME)

TOOL_NAMES = [tool.name for tool in FneApiToolFactory.get_all_tools()]
OFFLINE_TOOL_NAMES = [tool.name for tool in FneApiToolFactory.get_offline_tools()]

_clients: Dict[Tuple[str, Optional[str]], FneClient] = {}


def authenticate_and_save_fne_credentials(user_id):
    if get_auth_type(SERVICE_NAME) != AUTH_TYPE_BEARER:
        raise ValueError(f"Interactive login is not supported for {SERVICE_NAME}")

    email = input("Please enter your FNE account email: ").strip()
    if not email:
        raise ValueError("Email cannot be empty")
    password = getpass.getpass("Password: ")

    return authenticate_and_save_credentials(user_id, email, password)


def get_fne_client(server: Server) -> FneClient:
    """
    Client shared by every server created for the same user and token.

    The remote host builds a new server per HTTP request, so clients live in
    a module registry: statuses and invoice numbers seen by earlier calls
    keep guarding later cancel/credit-note/submit calls. close_fne_clients()
    releases them at shutdown.
    """
    key = (server.user_id, server.api_key)
    client = _clients.get(key)
    if client is not None and client.session.is_active:
        return client

    session = open_session(server.user_id, server.api_key)
    if client is not None:
        client.session = session
        return client

    config = get_fne_config()
    client = FneClient(
        config["base_url"],
        session,
        timeout=config["timeout"],
        require_buyer_tax_id=config["require_buyer_tax_id"],
    )
    _clients[key] = client
    logger.info(f"Opened FNE client for user {server.user_id}")
    return client


async def close_fne_clients() -> None:
    while _clients:
        key, client = _clients.popitem()
        await client.aclose()
        logger.info(f"Closed FNE client for user {key[0]}")


shutdown = close_fne_clients


def format_error(error: FneError) -> str:
    if isinstance(error, ValidationError):
        lines = [f"- {issue['field']}: {issue['issue']}" for issue in error.issues]
        return "Invalid invoice:\n" + "\n".join(lines)
    return f"Error: {error}"


async def execute_tool(
    client: Optional[FneClient], name: str, arguments: Dict[str, Any]
) -> Dict[str, Any]:
    """Run one tool call and return its JSON result"""
    if name == "compute_invoice_totals":
        lines = arguments.get("lines") or []
        return {
            "totals": invoice_totals(lines),
            "lines": [line_breakdown(line) for line in lines],
        }

    if name == "validate_invoice":
        issues = collect_issues(
            arguments.get("invoice"),
            require_buyer_tax_id=get_fne_config()["require_buyer_tax_id"],
        )
        return {"valid": not issues, "issues": issues}

    if client is None:
        raise ValueError(f"Tool {name} needs an FNE client")

    if name == "submit_invoice":
        return await client.submit_invoice(
            arguments["invoice"], arguments["idempotencyKey"]
        )

    if name == "get_invoice":
        return await client.get_invoice(arguments["reference"])

    if name == "list_invoices":
        filters = {
            key: arguments[key]
            for key in ("page", "size", "status", "sort")
            if arguments.get(key) is not None
        }
        if arguments.get("from") or arguments.get("to"):
            filters["dateRange"] = (arguments.get("from"), arguments.get("to"))
        return await client.list_invoices(filters)

    if name == "cancel_invoice":
        return await client.cancel(
            arguments["reference"],
            arguments.get("reason"),
            arguments["idempotencyKey"],
            reason_code=arguments.get("reasonCode"),
        )

    if name == "create_credit_note":
        return await client.credit_note(
            arguments["reference"], arguments["invoice"], arguments["idempotencyKey"]
        )

    raise ValueError(f"Unknown tool call: {name}")


async def call_tool(server: Server, name: str, arguments: Optional[dict]) -> list[TextContent]:
    """Run a tool for a server and render the outcome, errors included, as text"""
    if name not in TOOL_NAMES:
        return [TextContent(type="text", text=f"Unknown tool: {name}")]

    try:
        client = None if name in OFFLINE_TOOL_NAMES else get_fne_client(server)
        result = await execute_tool(client, name, arguments or {})
        return [TextContent(type="text", text=json.dumps(result, indent=2))]

    except FneError as e:
        logger.error(f"[{name}] {type(e).__name__}: {str(e)}")
        return [TextContent(type="text", text=format_error(e))]

    except Exception as e:
        logger.exception(f"[{name}] unexpected error")
        return [TextContent(type="text", text=f"Unexpected error running {name}: {str(e)}")]


def create_server(user_id, api_key=None):
    server = Server(f"{SERVICE_NAME}-server")
    server.user_id = user_id
    server.api_key = api_key

    @server.list_tools()
    async def handle_list_tools() -> list[Tool]:
        return FneApiToolFactory.get_all_tools()

    @server.call_tool()
    async def handle_call_tool(name: str, arguments: dict | None) -> list[TextContent]:
        return await call_tool(server, name, arguments)

    return server


server = create_server


def get_initialization_options(server_instance: Server) -> InitializationOptions:
    return InitializationOptions(
        server_name=f"{SERVICE_NAME}-server",
        server_version="1.0.0",
        capabilities=server_instance.get_capabilities(
            notification_options=NotificationOptions(),
            experimental_capabilities={},
        ),
    )


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1].lower() == "auth":
        user_id = sys.argv[2] if len(sys.argv) > 2 else "local"
        authenticate_and_save_fne_credentials(user_id)
        print(f"Credentials saved for user {user_id}")
    else:
        print("Usage:")
        print("  python main.py auth [user_id] - Log in to the FNE service and save the token")
        print("Note: To run the server normally, use src/servers/remote.py.")
