import os
import logging
from typing import Any, Dict, Optional

from .BaseAuthClient import BaseAuthClient

logger = logging.getLogger("env-auth-client")


class EnvAuthClient(BaseAuthClient[Dict[str, Any]]):
    """
    Read-only credentials from the environment.

    Serves the static bearer token in FNE_TOKEN to every user, for
    deployments where the token is provisioned outside the server.
    """

    def __init__(self, token: Optional[str] = None):
        self.token = token or os.environ.get("FNE_TOKEN")

        if not self.token:
            logger.warning("FNE_TOKEN is not set. Requests will not be authenticated.")

    def get_user_credentials(
        self, service_name: str, user_id: str
    ) -> Optional[Dict[str, Any]]:
        if not self.token:
            return None
        return {"access_token": self.token, "token_type": "Bearer"}

    def save_user_credentials(
        self, service_name: str, user_id: str, credentials: Dict[str, Any]
    ) -> None:
        logger.warning(
            f"Credentials for {service_name} user {user_id} not saved: "
            "environment credentials are read-only"
        )

    def delete_user_credentials(self, service_name: str, user_id: str) -> None:
        # The token comes from the environment; forget it for this process only
        logger.info(f"Dropping environment token for {service_name} user {user_id}")
        self.token = None
