import os
import logging
from typing import Optional, TypeVar, Type
from dotenv import load_dotenv

from src.auth.constants import SERVICE_NAME_MAP, AUTH_TYPE_BEARER
from .clients.BaseAuthClient import BaseAuthClient

logger = logging.getLogger("auth-factory")

T = TypeVar("T", bound=BaseAuthClient)

load_dotenv()


def create_auth_client(
    client_type: Optional[Type[T]] = None, api_key: Optional[str] = None
) -> BaseAuthClient:
    """
    Factory function to create the appropriate auth client based on environment

    Args:
        client_type: Optional specific client class to instantiate
        api_key: Optional static token, served by the environment client

    Returns:
        An instance of the appropriate BaseAuthClient implementation
    """
    # If client_type is specified, use it directly
    if client_type:
        return client_type()

    # Otherwise, determine from environment
    environment = os.environ.get("ENVIRONMENT", "local").lower()

    if environment == "env":
        from .clients.EnvAuthClient import EnvAuthClient

        return EnvAuthClient(token=api_key)

    if environment != "local":
        logger.warning(f"Unknown ENVIRONMENT {environment!r}, using local credentials")

    # Default to local file auth client
    from .clients.LocalAuthClient import LocalAuthClient

    return LocalAuthClient()


def get_auth_type(service_name: str) -> str:
    """
    Auth type of an MCP service

    Args:
        service_name: MCP service name

    Returns:
        The configured auth type. If the service name is not in the mapping,
        "bearer" is returned.
    """
    return SERVICE_NAME_MAP.get(service_name, {}).get("auth_type", AUTH_TYPE_BEARER)


def get_token_field(service_name: str) -> str:
    """Key under which the service's token is stored in the credentials"""
    return SERVICE_NAME_MAP.get(service_name, {}).get("token_field", "access_token")
