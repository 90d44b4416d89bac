"""HTTP client helpers for the patient REST backend."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ..config import Settings

logger = logging.getLogger(__name__)

TOKEN_UNAVAILABLE = "Token is not available"


@dataclass
class ApiResult:
    """Outcome of an authenticated backend call; failures are data, not exceptions."""

    ok: bool
    data: Any = None
    status: Optional[int] = None
    error: Optional[str] = None

    def to_reply(self) -> Any:
        """Body forwarded to a WebSocket client."""
        if self.ok:
            return self.data
        return {"success": False, "error": self.error}


class TokenCache:
    """Holds the bearer token from the last successful authentication."""

    def __init__(self) -> None:
        self._token: Optional[str] = None

    def get(self) -> Optional[str]:
        return self._token

    def set(self, token: str) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None


class BackendClient:
    """Thin wrapper around the patient REST API."""

    def __init__(
        self,
        settings: Settings,
        *,
        token_cache: Optional[TokenCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.tokens = token_cache or TokenCache()
        self._client = httpx.AsyncClient(
            base_url=self.settings.rest_api_url,
            timeout=self.settings.backend_timeout_seconds,
            transport=transport,
        )

    @property
    def token(self) -> Optional[str]:
        return self.tokens.get()

    async def authenticate(self) -> Optional[str]:
        """Exchange the shared password for a bearer token and cache it.

        Returns None on any failure; a previously cached token is kept.
        """
        try:
            logger.info("backend.authenticate: requesting new token")
            response = await self._client.post(
                "/auth/token",
                json={"password": self.settings.password},
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            data = response.json()
            token = data.get("token") if isinstance(data, dict) else None
            if not token:
                logger.error("backend.authenticate: response missing token %s", data)
                return None
            self.tokens.set(token)
            return token
        except httpx.TimeoutException:
            logger.error("backend.authenticate: request timeout")
            return None
        except httpx.NetworkError as e:
            logger.error("backend.authenticate: network error - %s", e)
            return None
        except httpx.HTTPStatusError as e:
            logger.error("backend.authenticate: HTTP %d - %s", e.response.status_code, e.response.text)
            return None
        except ValueError as e:
            logger.error("backend.authenticate: invalid JSON response - %s", e)
            return None
        except Exception as e:
            logger.exception("backend.authenticate: unexpected error - %s", e)
            return None

    async def get_patient(self, patient_id: str) -> ApiResult:
        return await self._request("GET", f"/patient/{patient_id}")

    async def get_all_patients(self) -> ApiResult:
        return await self._request("GET", "/patient")

    async def post_result(self, patient_id: str, payload: Dict[str, Any]) -> ApiResult:
        """POST a flushed region mapping for a patient."""
        result = await self._request("POST", f"/patient/data/{patient_id}", json=payload)
        if result.ok:
            logger.info("Palpation data posted successfully for patient %s", patient_id)
        return result

    async def _request(self, method: str, endpoint: str, *, json: Any = None) -> ApiResult:
        token = self.tokens.get()
        if not token:
            logger.error("backend %s %s: %s", method, endpoint, TOKEN_UNAVAILABLE)
            return ApiResult(ok=False, error=TOKEN_UNAVAILABLE)

        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        try:
            response = await self._client.request(method, endpoint, json=json, headers=headers)
            response.raise_for_status()
            data = response.json() if response.content else None
            return ApiResult(ok=True, data=data, status=response.status_code)
        except httpx.TimeoutException:
            logger.error("backend %s %s: request timeout", method, endpoint)
            return ApiResult(ok=False, error="Request timed out")
        except httpx.NetworkError as e:
            logger.error("backend %s %s: network error - %s", method, endpoint, e)
            return ApiResult(ok=False, error=str(e) or "Network error")
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.error("backend %s %s: HTTP %d - %s", method, endpoint, status_code, e.response.text)
            return ApiResult(ok=False, status=status_code, error=f"HTTP error! status: {status_code}")
        except ValueError as e:
            logger.error("backend %s %s: invalid JSON response - %s", method, endpoint, e)
            return ApiResult(ok=False, error="Invalid JSON response")
        except Exception as e:
            logger.exception("backend %s %s: unexpected error - %s", method, endpoint, e)
            return ApiResult(ok=False, error=str(e))

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing HTTP client: %s", e)
