"""SEP-10: web authentication.

The flow is challenge -> validate -> sign -> submit. Signing is delegated to
a :class:`~rampkit.flow.signing.TransactionSigner`, the same seam the ramp
flow uses, so no secret key ever reaches this module.
"""

import base64
import binascii
import json
import logging
import time
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError

from rampkit.flow.signing import TransactionSigner
from rampkit.sep.base import SepApiError, SepHttp
from rampkit.sep.models import Challenge, TokenClaims
from rampkit.sep.xdr import XdrError, decode_challenge

logger = logging.getLogger(__name__)


@dataclass
class Sep10Config:
    auth_endpoint: str
    server_signing_key: str
    network_passphrase: str
    home_domain: Optional[str] = None


def _invalid(reason: str) -> SepApiError:
    return SepApiError(f"Invalid challenge: {reason}", 400, code="INVALID_CHALLENGE")


def validate_challenge(
    challenge: Challenge, config: Sep10Config, account: str, now: Optional[float] = None
) -> None:
    """Check a challenge before signing it.

    The transaction must come from the server signing key with sequence 0,
    open with a ``"{home_domain} auth"`` manage_data operation sourced from
    ``account``, and still be within its time bounds.

    Raises:
        SepApiError: INVALID_CHALLENGE naming the failed check
    """
    if challenge.network_passphrase and challenge.network_passphrase != config.network_passphrase:
        raise _invalid(
            f"network passphrase {challenge.network_passphrase!r} "
            f"does not match {config.network_passphrase!r}"
        )

    try:
        transaction = decode_challenge(challenge.transaction)
    except XdrError as e:
        raise _invalid(str(e)) from e

    if transaction.source != config.server_signing_key:
        raise _invalid(
            f"transaction source {transaction.source} does not match "
            f"server signing key {config.server_signing_key}"
        )
    if transaction.sequence != 0:
        raise _invalid("sequence number must be 0")
    if not transaction.operations:
        raise _invalid("no operations")

    first = transaction.operations[0]
    if config.home_domain:
        expected = f"{config.home_domain} auth"
        if first.name != expected:
            raise _invalid(f"operation name {first.name!r} does not match {expected!r}")
    if first.source != account:
        raise _invalid(f"operation source {first.source} does not match account {account}")

    now = time.time() if now is None else now
    if transaction.max_time and transaction.max_time < now:
        raise _invalid("challenge has expired")


def decode_token(token: str) -> TokenClaims:
    """Read the claims of a SEP-10 JWT without verifying its signature."""
    parts = token.split(".")
    if len(parts) != 3:
        raise SepApiError("Invalid JWT token format", 401, code="INVALID_TOKEN")
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        return TokenClaims.model_validate(json.loads(base64.urlsafe_b64decode(payload)))
    except (binascii.Error, ValueError, ValidationError) as e:
        raise SepApiError(f"Invalid JWT payload: {e}", 401, code="INVALID_TOKEN") from e


def is_token_expired(token: str, buffer_seconds: int = 60, now: Optional[float] = None) -> bool:
    """True if the token expires within ``buffer_seconds`` or cannot be read."""
    try:
        claims = decode_token(token)
    except SepApiError:
        return True
    now = time.time() if now is None else now
    return claims.exp < now + buffer_seconds


class Sep10Client:
    def __init__(self, config: Sep10Config, http: SepHttp):
        self.config = config
        self.http = http

    async def get_challenge(
        self, account: str, memo: Optional[str] = None, client_domain: Optional[str] = None
    ) -> Challenge:
        data = await self.http.request(
            "GET",
            self.config.auth_endpoint,
            "get challenge",
            params={
                "account": account,
                "memo": memo,
                "home_domain": self.config.home_domain,
                "client_domain": client_domain,
            },
        )
        return Challenge.model_validate(data)

    async def submit_challenge(self, signed_xdr: str) -> str:
        data = await self.http.request(
            "POST",
            self.config.auth_endpoint,
            "submit challenge",
            json_body={"transaction": signed_xdr},
        )
        token = (data or {}).get("token")
        if not token:
            raise SepApiError("Auth endpoint returned no token", 502, data, code="INVALID_TOKEN")
        return token

    async def authenticate(
        self,
        account: str,
        signer: TransactionSigner,
        memo: Optional[str] = None,
        client_domain: Optional[str] = None,
        validate: bool = True,
    ) -> str:
        """Run the full challenge flow and return the JWT."""
        challenge = await self.get_challenge(account, memo, client_domain)
        if validate:
            validate_challenge(challenge, self.config, account)

        passphrase = challenge.network_passphrase or self.config.network_passphrase
        signed = await signer.sign(challenge.transaction, passphrase)
        token = await self.submit_challenge(signed)
        logger.info(f"[SEP-10] Authenticated {account}")
        return token
