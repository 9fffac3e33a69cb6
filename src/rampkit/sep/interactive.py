"""SEP-24: hosted (interactive) deposit and withdrawal."""

import logging
from typing import Any

from rampkit.sep.models import InteractiveResponse
from rampkit.sep.transfer import TransferServerClient

logger = logging.getLogger(__name__)


class Sep24Client(TransferServerClient):
    sep = 24

    async def _interactive(
        self, kind: str, token: str, asset_code: str, params: dict[str, Any]
    ) -> InteractiveResponse:
        data = await self.http.request(
            "POST",
            f"{self.server}/transactions/{kind}/interactive",
            f"start interactive {kind}",
            token=token,
            form={"asset_code": asset_code, **params},
        )
        response = InteractiveResponse.model_validate(data)
        logger.info(f"[SEP-24] Interactive {kind} {response.id} for {asset_code}")
        return response

    async def deposit(self, token: str, asset_code: str, **params: Any) -> InteractiveResponse:
        """Start a deposit. Open ``url`` of the result for the user."""
        return await self._interactive("deposit", token, asset_code, params)

    async def withdraw(self, token: str, asset_code: str, **params: Any) -> InteractiveResponse:
        return await self._interactive("withdraw", token, asset_code, params)
