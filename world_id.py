"""Client for the World ID developer API.

Covers proof verification (login), MiniKit payment status lookups and the
OAuth code exchange. Every call is a single attempt; failures surface as
``UpstreamError`` with the provider's error code when it sent one.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Any, Optional

import httpx
import structlog

from exceptions import UpstreamError
from schemas import WorldIDProof
from settings import Settings, get_settings

logger = structlog.get_logger(__name__)

PROOF_ERROR_LABELS = {
    "invalid_proof": "Invalid proof",
    "invalid_nullifier": "Invalid nullifier hash",
    "invalid_merkle_root": "Invalid merkle root",
}


def _truncate(value: Optional[str], length: int = 10) -> str:
    return f"{value[:length]}..." if value else "missing"


def _json_body(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class WorldIDClient:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.base_url = settings.world_id_api_base_url.rstrip("/")
        self._transport = transport

    def _client(self, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=15, **kwargs)

    @property
    def _api_headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.settings.world_id_api_key or ''}",
            "Content-Type": "application/json",
        }

    async def verify_proof(self, proof: WorldIDProof) -> dict[str, Any]:
        payload = {
            "merkle_root": proof.merkle_root,
            "nullifier_hash": proof.nullifier_hash,
            "proof": proof.proof,
            "verification_level": proof.verification_level or proof.credential_type or "orb",
            "action": proof.action or self.settings.world_id_action_name,
            "signal": proof.signal or "",
        }
        logger.info(
            "Sending verification to World ID",
            action=payload["action"],
            verification_level=payload["verification_level"],
            merkle_root=_truncate(proof.merkle_root),
            nullifier_hash=_truncate(proof.nullifier_hash),
        )

        url = f"{self.base_url}/verify"
        try:
            async with self._client() as client:
                response = await client.post(url, json=payload, headers=self._api_headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            body = _json_body(exc.response)
            code = body.get("code")
            detail = body.get("detail") or body.get("message") or "Unknown error"
            logger.warning(
                "World ID verification rejected",
                status_code=exc.response.status_code,
                code=code,
                detail=detail,
            )
            label = PROOF_ERROR_LABELS.get(code)
            message = f"{label}: {detail}" if label else f"Verification failed ({code}): {detail}"
            raise UpstreamError(message, status_code=401, code=code) from exc
        except httpx.HTTPError as exc:
            logger.error("World ID verification request failed", exc=str(exc))
            raise UpstreamError(f"Verification failed: {exc}", status_code=401) from exc

        logger.info("World ID verification successful")
        return {"status": "verified", "data": _json_body(response)}

    async def verify_payment(self, transaction_id: str) -> dict[str, Any]:
        """Fetch the provider's status payload for a MiniKit transaction."""
        url = f"{self.base_url}/minikit/transaction/{transaction_id}"
        try:
            async with self._client() as client:
                response = await client.get(
                    url,
                    params={"app_id": self.settings.world_id_app_id},
                    headers=self._api_headers,
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            body = _json_body(exc.response)
            logger.error(
                "Payment verification failed",
                status_code=exc.response.status_code,
                body=body,
            )
            raise UpstreamError("Payment verification failed", code=body.get("code")) from exc
        except httpx.HTTPError as exc:
            logger.error("Payment verification request failed", exc=str(exc))
            raise UpstreamError("Payment verification failed") from exc

        data = response.json()
        logger.info("Payment verification response received", transaction_id=transaction_id)
        return data

    async def get_oauth_token(self, code: str, redirect_uri: str) -> dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}/oauth/token",
                    json={
                        "client_id": self.settings.world_id_app_id,
                        "client_secret": self.settings.world_id_client_secret,
                        "grant_type": "authorization_code",
                        "code": code,
                        "redirect_uri": redirect_uri,
                    },
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Failed to get OAuth token", exc=str(exc))
            raise UpstreamError("OAuth token acquisition failed", status_code=401) from exc
        return response.json()

    async def get_user_profile(self, access_token: str) -> dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.base_url}/user",
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Failed to get user profile", exc=str(exc))
            raise UpstreamError("User profile acquisition failed", status_code=401) from exc
        return response.json()


@lru_cache()
def _cached_client() -> WorldIDClient:
    return WorldIDClient(get_settings())


def get_world_id_client() -> WorldIDClient:
    return _cached_client()
