"""Async client for the external opportunity store.

Every call is a single request/response; nothing is retried here. The fax
send in particular must be issued exactly once per user action.
"""
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from backend.config.settings import get_settings
from backend.config.logging_config import get_logger
from backend.models.enums import OpportunityStatus
from backend.models.opportunity import (
    Opportunity, PharmacyProfile, PreflightResult, PrescriberVolumeStats, SendResult,
)
from backend.fax.exceptions import OpportunityStoreError, StoreNetworkError, TransmissionFailure

logger = get_logger(__name__)


def _server_reason(response: httpx.Response) -> Optional[str]:
    """Pull the server's error string out of a JSON error body, if any."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        for key in ("error", "detail", "message"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


class OpportunityStoreClient:
    """Thin wrapper over the opportunity store REST API."""

    def __init__(
        self,
        base_url: str,
        api_token: str = "",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, action: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("Opportunity store timeout", action=action, path=path)
            raise StoreNetworkError(f"{action} timed out") from e
        except httpx.TransportError as e:
            logger.warning("Opportunity store unreachable", action=action, path=path, error=str(e))
            raise StoreNetworkError(f"{action} failed: could not reach the opportunity store") from e

        if response.is_error:
            reason = _server_reason(response)
            logger.warning(
                "Opportunity store error",
                action=action,
                status_code=response.status_code,
                reason=reason,
            )
            raise OpportunityStoreError(
                reason or f"{action} failed (HTTP {response.status_code})",
                status_code=response.status_code,
                server_reason=reason,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise OpportunityStoreError(f"{action} returned an unreadable response") from e

    # --- Reads ---

    async def get_opportunity(self, opportunity_id: str) -> Opportunity:
        data = await self._request(
            "GET", f"/api/opportunities/{quote(opportunity_id, safe='')}", "Load opportunity"
        )
        return Opportunity.model_validate(data.get("opportunity", data))

    async def list_patient_opportunities(self, patient_id: str) -> List[Opportunity]:
        data = await self._request(
            "GET", "/api/opportunities", "Load patient opportunities",
            params={"patient_id": patient_id, "limit": 5000},
        )
        rows = data.get("opportunities", []) if isinstance(data, dict) else data
        return [Opportunity.model_validate(row) for row in rows]

    async def get_pharmacy_profile(self) -> PharmacyProfile:
        data = await self._request("GET", "/api/pharmacy/profile", "Load pharmacy profile")
        return PharmacyProfile.model_validate(data.get("pharmacy", data))

    async def get_prescriber_stats(self, prescriber_name: str) -> PrescriberVolumeStats:
        data = await self._request(
            "GET",
            f"/api/opportunities/prescriber-stats/{quote(prescriber_name, safe='')}",
            "Load prescriber stats",
        )
        return PrescriberVolumeStats.model_validate(data)

    # --- Fax transmission ---

    async def preflight(self, opportunity_id: str, prescriber_npi: Optional[str]) -> PreflightResult:
        data = await self._request(
            "POST", "/api/fax/preflight", "Fax preflight",
            json={"opportunityId": opportunity_id, "prescriberNpi": prescriber_npi},
        )
        return PreflightResult.model_validate(data)

    async def send_fax(self, opportunity_id: str, fax_number: str, prescriber_npi: Optional[str]) -> SendResult:
        """
        Transmit a fax. Success means the store already moved the opportunity
        to Submitted.

        Raises:
            TransmissionFailure: If the store did not confirm the transmission
            StoreNetworkError: If the store could not be reached
        """
        payload = {
            "opportunityId": opportunity_id,
            "prescriberFaxNumber": fax_number,
            "prescriberNpi": prescriber_npi,
            "npiConfirmed": True,
        }
        try:
            data = await self._request("POST", "/api/fax/send", "Fax send", json=payload)
        except StoreNetworkError:
            raise
        except OpportunityStoreError as e:
            raise TransmissionFailure(str(e), status_code=e.status_code, server_reason=e.server_reason) from e

        result = SendResult.model_validate({"success": True, **data} if "success" not in data else data)
        if not result.success:
            reason = result.message or data.get("error")
            raise TransmissionFailure(reason or "Fax transmission was not confirmed", server_reason=reason)
        return result

    # --- Writes ---

    async def update_status(self, opportunity_id: str, status: OpportunityStatus) -> Dict[str, Any]:
        return await self._request(
            "PATCH", f"/api/opportunities/{quote(opportunity_id, safe='')}", "Update status",
            json={"status": status.value},
        )

    async def update_notes(self, opportunity_id: str, notes: str) -> Dict[str, Any]:
        return await self._request(
            "PATCH", f"/api/opportunities/{quote(opportunity_id, safe='')}", "Update notes",
            json={"staffNotes": notes},
        )


def create_opportunity_store_client() -> OpportunityStoreClient:
    """Build a client from application settings."""
    settings = get_settings()
    return OpportunityStoreClient(
        base_url=settings.opportunity_api_url,
        api_token=settings.opportunity_api_token,
        timeout=settings.request_timeout_seconds,
    )
