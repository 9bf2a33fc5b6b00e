import os
import logging
from typing import Optional, TypedDict

from dotenv import load_dotenv

logger = logging.getLogger("fne-config")

load_dotenv()

DEFAULT_BASE_URL = "http://localhost:8082/api/v1"
DEFAULT_AUTH_URL = "http://localhost:8082"
DEFAULT_TIMEOUT = 15.0


class SellerConfig(TypedDict):
    taxId: str
    companyName: str
    address: str
    email: Optional[str]
    phone: Optional[str]


class FneConfig(TypedDict):
    base_url: str
    auth_url: str
    timeout: float
    require_buyer_tax_id: bool
    seller: SellerConfig


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={value!r}, using {default}")
        return default


def get_fne_config() -> FneConfig:
    """
    Read the FNE configuration from the environment (and .env if present)

    Returns:
        FneConfig with service URLs, request timeout and the default seller
    """
    return {
        "base_url": os.environ.get("FNE_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
        "auth_url": os.environ.get("FNE_AUTH_URL", DEFAULT_AUTH_URL).rstrip("/"),
        "timeout": _env_float("FNE_TIMEOUT", DEFAULT_TIMEOUT),
        "require_buyer_tax_id": _env_flag("FNE_REQUIRE_BUYER_TAX_ID"),
        "seller": {
            "taxId": os.environ.get("FNE_SELLER_TAX_ID", "CI00000000"),
            "companyName": os.environ.get("FNE_SELLER_NAME", "Oxalio SARL"),
            "address": os.environ.get("FNE_SELLER_ADDRESS", "Abidjan, Cote d'Ivoire"),
            "email": os.environ.get("FNE_SELLER_EMAIL"),
            "phone": os.environ.get("FNE_SELLER_PHONE"),
        },
    }
