"""Settings loaded from the environment (and a ``.env`` file if present)."""

import os
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

API_PREFIX = "/storefront/api/v1"


class Backend(str, Enum):
    STOREFRONT = "storefront"
    WEBHOOK = "webhook"


class EmptyShippingPolicy(str, Enum):
    """What checkout does when the address step offers no shipping methods."""

    PLACE_ORDER = "place_order"
    ACKNOWLEDGE = "acknowledge"


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    domain_name: str = Field(default="activepharm.zohoecommerce.com", alias="STOREFRONT_DOMAIN_NAME")
    api_base_url: str = Field(default="https://commerce.zoho.com", alias="STOREFRONT_API_BASE_URL")
    proxy_url: Optional[str] = Field(default=None, alias="STOREFRONT_PROXY_URL")
    env: str = Field(default="development", alias="STOREFRONT_ENV")
    backend: Backend = Field(default=Backend.STOREFRONT, alias="STOREFRONT_BACKEND")
    session_file: Optional[str] = Field(default=None, alias="STOREFRONT_SESSION_FILE")
    empty_shipping: EmptyShippingPolicy = Field(
        default=EmptyShippingPolicy.ACKNOWLEDGE, alias="STOREFRONT_EMPTY_SHIPPING"
    )
    webhook_url: str = Field(
        default="https://n8n.impactwebstudio.ca/webhook/active-pharma", alias="WEBHOOK_URL"
    )
    webhook_auth_key: Optional[str] = Field(default=None, alias="WEBHOOK_AUTH_KEY")
    timeout: float = Field(default=30.0, alias="STOREFRONT_TIMEOUT")

    @property
    def direct_base_url(self) -> str:
        """Base URL of the direct (non-proxied) channel."""
        if self.backend == Backend.WEBHOOK:
            return self.webhook_url
        return f"https://{self.domain_name}{API_PREFIX}"

    @property
    def primary_base_url(self) -> Optional[str]:
        """
        Base URL of the proxy channel, when one applies to the current run mode.

        STOREFRONT_PROXY_URL names the proxy route matching the backend:
        ``.../api`` for the storefront backend, ``.../webhook`` for the
        webhook backend.
        """
        if self.env != "development" or not self.proxy_url:
            return None
        return self.proxy_url.rstrip("/")


def _load_dotenv() -> None:
    root_env = Path(__file__).resolve().parents[1] / ".env"
    if root_env.exists():
        load_dotenv(root_env)
    else:
        load_dotenv()


def settings_from_env(environ: Optional[dict[str, str]] = None) -> Settings:
    """Build Settings from a mapping of environment variables."""
    environ = dict(os.environ if environ is None else environ)
    # Deployments of the web storefront exposed the key under the VITE_ prefix
    if not environ.get("WEBHOOK_AUTH_KEY") and environ.get("VITE_WEBHOOK_AUTH_KEY"):
        environ["WEBHOOK_AUTH_KEY"] = environ["VITE_WEBHOOK_AUTH_KEY"]
    values = {key: value for key, value in environ.items() if value != ""}
    try:
        return Settings(**values)
    except ValidationError as exc:
        fields = ", ".join(str(e["loc"][0]) for e in exc.errors())
        raise RuntimeError(f"Invalid storefront configuration: {fields}") from exc


@lru_cache()
def get_settings() -> Settings:
    _load_dotenv()
    return settings_from_env()
