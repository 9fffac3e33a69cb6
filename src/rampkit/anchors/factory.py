"""Anchor factory for creating provider clients."""

import logging
from typing import Optional

import httpx

from rampkit.anchors.alfredpay import AlfredPayClient, AlfredPayConfig
from rampkit.anchors.base import Anchor, AnchorError
from rampkit.anchors.blindpay import BlindPayClient, BlindPayConfig
from rampkit.anchors.etherfuse import EtherfuseClient, EtherfuseConfig
from rampkit.config import Settings

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("etherfuse", "alfredpay", "blindpay")


class AnchorFactory:
    """Build and cache one anchor client per provider.

    Settings and the HTTP client are passed in rather than read from module
    state, so two factories never share clients.
    """

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.http_client = http_client
        self._clients: dict[str, Anchor] = {}

    @staticmethod
    def is_valid_provider(provider_id: str) -> bool:
        return provider_id in SUPPORTED_PROVIDERS

    def create(self, provider_id: str) -> Anchor:
        """Get the client for a provider.

        Raises:
            AnchorError: For unknown providers (UNKNOWN_PROVIDER, 400)
        """
        if not self.is_valid_provider(provider_id):
            raise AnchorError(f"Unknown anchor provider: {provider_id}", "UNKNOWN_PROVIDER", 400)

        client = self._clients.get(provider_id)
        if client is None:
            client = self._build(provider_id)
            self._clients[provider_id] = client
            logger.info(f"Created {provider_id} anchor client")
        return client

    def register(self, provider_id: str, anchor: Anchor) -> None:
        """Install a prebuilt client, replacing any cached one."""
        self._clients[provider_id] = anchor

    def _build(self, provider_id: str) -> Anchor:
        settings = self.settings
        timeout = settings.http_timeout_seconds

        if provider_id == "etherfuse":
            if not settings.etherfuse_api_key:
                logger.warning("ETHERFUSE_API_KEY is not set")
            return EtherfuseClient(
                EtherfuseConfig(
                    api_key=settings.etherfuse_api_key,
                    base_url=settings.etherfuse_base_url,
                    timeout=timeout,
                ),
                http_client=self.http_client,
            )

        if provider_id == "alfredpay":
            if not settings.alfredpay_api_key or not settings.alfredpay_api_secret:
                logger.warning("ALFREDPAY_API_KEY or ALFREDPAY_API_SECRET is not set")
            return AlfredPayClient(
                AlfredPayConfig(
                    api_key=settings.alfredpay_api_key,
                    api_secret=settings.alfredpay_api_secret,
                    base_url=settings.alfredpay_base_url,
                    timeout=timeout,
                ),
                http_client=self.http_client,
            )

        if not settings.blindpay_api_key or not settings.blindpay_instance_id:
            logger.warning("BLINDPAY_API_KEY or BLINDPAY_INSTANCE_ID is not set")
        return BlindPayClient(
            BlindPayConfig(
                api_key=settings.blindpay_api_key,
                instance_id=settings.blindpay_instance_id,
                base_url=settings.blindpay_base_url,
                network=settings.blindpay_network,
                timeout=timeout,
            ),
            http_client=self.http_client,
        )
