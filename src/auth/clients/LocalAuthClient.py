import os
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .BaseAuthClient import BaseAuthClient

logger = logging.getLogger("local-auth-client")


class LocalAuthClient(BaseAuthClient[Dict[str, Any]]):
    """
    Implementation of BaseAuthClient keeping credentials in JSON files.

    One file per service and user: <storage_dir>/<service>/<user_id>.json
    """

    def __init__(self, storage_dir: Optional[str] = None):
        """
        Initialize the local auth client

        Args:
            storage_dir: Directory for credential files (defaults to FNE_CREDENTIALS_DIR or .auth)
        """
        self.storage_dir = Path(
            storage_dir or os.environ.get("FNE_CREDENTIALS_DIR", ".auth")
        )

    def _credentials_path(self, service_name: str, user_id: str) -> Path:
        return self.storage_dir / service_name / f"{user_id}.json"

    def get_user_credentials(
        self, service_name: str, user_id: str
    ) -> Optional[Dict[str, Any]]:
        path = self._credentials_path(service_name, user_id)
        if not path.exists():
            logger.info(f"No credentials found for {service_name} user {user_id}")
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt credentials file {path}: {str(e)}")
            return None

    def save_user_credentials(
        self, service_name: str, user_id: str, credentials: Dict[str, Any]
    ) -> None:
        path = self._credentials_path(service_name, user_id)
        path.parent.mkdir(parents=True, exist_ok=True)

        if hasattr(credentials, "to_json"):
            credentials = credentials.to_json()

        with open(path, "w", encoding="utf-8") as f:
            json.dump(credentials, f, indent=2)
        os.chmod(path, 0o600)
        logger.info(f"Saved credentials for {service_name} user {user_id}")

    def delete_user_credentials(self, service_name: str, user_id: str) -> None:
        path = self._credentials_path(service_name, user_id)
        if path.exists():
            path.unlink()
            logger.info(f"Deleted credentials for {service_name} user {user_id}")
