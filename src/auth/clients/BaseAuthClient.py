from abc import ABC, abstractmethod
from typing import Generic, Optional, TypeVar

CredentialsT = TypeVar("CredentialsT")


class BaseAuthClient(ABC, Generic[CredentialsT]):
    """
    Storage for the credentials each user holds against a service.

    Implementations decide where credentials live; callers only deal with
    service names and user ids.
    """

    @abstractmethod
    def get_user_credentials(
        self, service_name: str, user_id: str
    ) -> Optional[CredentialsT]:
        """
        Retrieve stored credentials

        Args:
            service_name: Name of the service (e.g., "fne")
            user_id: Identifier for the user

        Returns:
            Credentials object if found, None otherwise
        """
        pass

    @abstractmethod
    def save_user_credentials(
        self, service_name: str, user_id: str, credentials: CredentialsT
    ) -> None:
        """
        Persist credentials for a user

        Args:
            service_name: Name of the service (e.g., "fne")
            user_id: Identifier for the user
            credentials: Credentials object to save
        """
        pass

    @abstractmethod
    def delete_user_credentials(self, service_name: str, user_id: str) -> None:
        """
        Forget stored credentials, forcing a new login

        Args:
            service_name: Name of the service (e.g., "fne")
            user_id: Identifier for the user
        """
        pass
