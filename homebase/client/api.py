"""
HTTP client for the HomeBase API

One coroutine per endpoint the proposal workflow uses. Non-2xx responses are
raised as ApiError (or InvalidTransitionError for rejected status changes) so
callers can handle every mutation failure at one boundary.
"""

import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """A request failed: non-2xx response, or no response at all (status_code 0)"""

    def __init__(self, status_code: int, detail: Any = None):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"API request failed ({status_code}): {detail}")


class InvalidTransitionError(ApiError):
    """The API refused a proposal status change"""

    def __init__(self, status_code: int, detail: dict):
        super().__init__(status_code, detail)
        self.current = detail.get("current")
        self.target = detail.get("target")


class ValidationFailure(ValueError):
    """Input was rejected before any request was sent"""

    def __init__(self, messages: list[str]):
        self.messages = messages
        super().__init__("; ".join(messages))


class HomeBaseClient:
    """Async client for the HomeBase API, authenticated with a bearer token"""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url, headers=headers, transport=transport, timeout=timeout
        )

    async def __aenter__(self) -> "HomeBaseClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"❌ {method} {path} failed: {e}")
            raise ApiError(0, str(e)) from e

        if response.status_code >= 400:
            try:
                detail = response.json().get("detail")
            except ValueError:
                detail = response.text

            logger.warning(f"⚠️ {method} {path} returned {response.status_code}: {detail}")
            if (
                response.status_code == 409
                and isinstance(detail, dict)
                and detail.get("code") == "invalid_transition"
            ):
                raise InvalidTransitionError(response.status_code, detail)
            raise ApiError(response.status_code, detail)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    async def request_upload_target(self, file_type: str = "proposal") -> dict:
        """Get a presigned URL to PUT one file to"""
        data = await self._request("POST", "/api/objects/upload", json={"fileType": file_type})
        return {"method": "PUT", "url": data["uploadURL"]}

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    async def list_proposals(
        self, contractor_id: Optional[str] = None, homeowner_id: Optional[str] = None
    ) -> list[dict]:
        params = {}
        if contractor_id:
            params["contractorId"] = contractor_id
        if homeowner_id:
            params["homeownerId"] = homeowner_id
        return await self._request("GET", "/api/proposals", params=params)

    async def get_proposal(self, proposal_id: str) -> dict:
        return await self._request("GET", f"/api/proposals/{proposal_id}")

    async def create_proposal(self, payload: dict) -> dict:
        return await self._request("POST", "/api/proposals", json=payload)

    async def update_proposal(self, proposal_id: str, patch: dict) -> dict:
        return await self._request("PATCH", f"/api/proposals/{proposal_id}", json=patch)

    async def delete_proposal(self, proposal_id: str) -> None:
        await self._request("DELETE", f"/api/proposals/{proposal_id}")

    async def set_contract(self, proposal_id: str, contract_file_path: str) -> dict:
        return await self._request(
            "POST",
            f"/api/proposals/{proposal_id}/contract",
            json={"contractFilePath": contract_file_path},
        )

    async def sign_proposal(self, proposal_id: str, payload: dict) -> dict:
        return await self._request("POST", f"/api/proposals/{proposal_id}/sign", json=payload)

    # ------------------------------------------------------------------
    # Dashboard collections
    # ------------------------------------------------------------------

    async def get_current_user(self) -> dict:
        return await self._request("GET", "/api/user")

    async def list_appointments(
        self, contractor_id: Optional[str] = None, homeowner_id: Optional[str] = None
    ) -> list[dict]:
        params = {}
        if contractor_id:
            params["contractorId"] = contractor_id
        if homeowner_id:
            params["homeownerId"] = homeowner_id
        return await self._request("GET", "/api/appointments", params=params)
