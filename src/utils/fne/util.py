import time
import logging
from typing import Any, Dict, Optional

import requests

from src.auth.factory import create_auth_client, get_token_field
from src.servers.fne.config import get_fne_config
from src.servers.fne.errors import AuthError, NetworkError
from src.servers.fne.session import FneSession

logger = logging.getLogger(__name__)

SERVICE_NAME = "fne"
LOGIN_TIMEOUT = 15


def process_login_response(login_response: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only what the session needs from the auth service login response"""
    access_token = login_response.get("token") or login_response.get("access_token")
    expires_in = login_response.get("expiresIn") or login_response.get("expires_in")
    if not access_token:
        raise AuthError("Login response did not contain a token", code="LOGIN_FAILED")

    return {
        "access_token": access_token,
        "token_type": "Bearer",
        "expires_at": time.time() + float(expires_in) if expires_in else None,
        "user": login_response.get("user") or {},
    }


def authenticate_and_save_credentials(
    user_id: str, email: str, password: str, auth_url: Optional[str] = None
) -> Dict[str, Any]:
    """Log in against the auth service and save the bearer token"""
    auth_url = auth_url or get_fne_config()["auth_url"]
    url = f"{auth_url}/auth/login"
    logger.info(f"[authenticate_and_save_credentials] url: {url}, user: {user_id}")

    try:
        response = requests.post(
            url,
            # the auth service accepts either field name
            json={"email": email, "username": email, "password": password},
            timeout=LOGIN_TIMEOUT,
        )
    except requests.exceptions.RequestException as e:
        logger.error(f"Error reaching the auth service: {str(e)}")
        raise NetworkError(
            f"Error communicating with the auth service: {str(e)}",
            code="NETWORK_ERROR",
        ) from e

    if response.status_code != 200:
        try:
            message = response.json().get("message")
        except ValueError:
            message = None
        logger.error(f"Login failed for user {user_id}: HTTP {response.status_code}")
        raise AuthError(
            message or "Login failed. Check your credentials.",
            code="LOGIN_FAILED",
            http_status=response.status_code,
        )

    credentials = process_login_response(response.json())
    auth_client = create_auth_client()
    auth_client.save_user_credentials(SERVICE_NAME, user_id, credentials)
    logger.info(f"Login successful for user {user_id}")
    return credentials


def get_credentials(user_id: str, api_key: Optional[str] = None) -> Dict[str, Any]:
    """Get FNE credentials; an explicit token wins over stored credentials"""
    if api_key:
        return {"access_token": api_key, "token_type": "Bearer"}

    auth_client = create_auth_client()
    credentials_data = auth_client.get_user_credentials(SERVICE_NAME, user_id)

    token = (credentials_data or {}).get(get_token_field(SERVICE_NAME))
    if not token:
        err = f"FNE credentials not found for user {user_id}."
        err += " Please run with 'auth' argument first or provide a token."
        logger.error(err)
        raise AuthError(err, code="NOT_AUTHENTICATED")

    return credentials_data


def open_session(user_id: str, api_key: Optional[str] = None) -> FneSession:
    """
    Build the session used by the FNE client.

    Invalidating the session (logout or a 401 from the service) deletes the
    stored credentials so the next call requires a new login.
    """
    credentials = get_credentials(user_id, api_key)
    if credentials.get("expires_at"):
        session = FneSession(
            credentials["access_token"],
            user_id,
            user=credentials.get("user"),
            expires_at=credentials["expires_at"],
        )
    else:
        session = FneSession.from_token(
            credentials["access_token"], user_id, user=credentials.get("user")
        )
    if not api_key:
        session.on_invalidate(lambda _session: logout(user_id))
    return session


def logout(user_id: str) -> None:
    auth_client = create_auth_client()
    auth_client.delete_user_credentials(SERVICE_NAME, user_id)
    logger.info(f"Logged out user {user_id}")
