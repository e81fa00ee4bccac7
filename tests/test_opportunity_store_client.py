"""Tests for the opportunity store HTTP client (httpx.MockTransport)."""
import json

import httpx
import pytest

from backend.clients.opportunity_store import OpportunityStoreClient
from backend.fax.exceptions import OpportunityStoreError, StoreNetworkError, TransmissionFailure
from backend.models.enums import OpportunityStatus


def _client(handler):
    return OpportunityStoreClient(
        "http://store.test/", api_token="secret", transport=httpx.MockTransport(handler)
    )


class TestReads:

    @pytest.mark.asyncio
    async def test_get_opportunity_unwraps_envelope(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"opportunity": {
                "opportunity_id": "OPP-1", "patient_id": "P-1", "status": "Not Submitted",
                "potential_margin_gain": "",
            }})

        client = _client(handler)
        opp = await client.get_opportunity("OPP-1")
        await client.close()

        assert seen == {"path": "/api/opportunities/OPP-1", "auth": "Bearer secret"}
        assert opp.status == OpportunityStatus.NOT_SUBMITTED
        assert opp.potential_margin_gain is None

    @pytest.mark.asyncio
    async def test_list_patient_opportunities(self):
        def handler(request):
            assert request.url.params["patient_id"] == "P-1"
            return httpx.Response(200, json={"opportunities": [
                {"opportunity_id": "OPP-1", "patient_id": "P-1"},
                {"opportunity_id": "OPP-2", "patient_id": "P-1"},
            ]})

        client = _client(handler)
        opps = await client.list_patient_opportunities("P-1")

        assert [o.opportunity_id for o in opps] == ["OPP-1", "OPP-2"]

    @pytest.mark.asyncio
    async def test_prescriber_stats_quotes_name(self):
        def handler(request):
            assert request.url.raw_path == b"/api/opportunities/prescriber-stats/Dr.%20Jane%20Smith"
            return httpx.Response(200, json={
                "prescriberName": "Dr. Jane Smith",
                "uniquePatientsActioned": 26,
                "totalOppsActioned": 40,
                "warnThreshold": 25,
                "blockThreshold": None,
                "shouldWarn": True,
                "shouldBlock": False,
            })

        stats = await _client(handler).get_prescriber_stats("Dr. Jane Smith")

        assert stats.unique_patients_actioned == 26
        assert stats.should_warn is True
        assert stats.block_threshold is None


class TestErrors:

    @pytest.mark.asyncio
    async def test_error_body_reason_is_kept(self):
        def handler(request):
            return httpx.Response(404, json={"error": "Opportunity not found"})

        with pytest.raises(OpportunityStoreError) as exc_info:
            await _client(handler).get_opportunity("OPP-404")

        assert exc_info.value.status_code == 404
        assert exc_info.value.server_reason == "Opportunity not found"

    @pytest.mark.asyncio
    async def test_error_without_body(self):
        def handler(request):
            return httpx.Response(500, text="oops")

        with pytest.raises(OpportunityStoreError) as exc_info:
            await _client(handler).get_pharmacy_profile()

        assert exc_info.value.server_reason is None
        assert "HTTP 500" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout_is_network_error(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(StoreNetworkError):
            await _client(handler).get_prescriber_stats("Dr. Jane Smith")


class TestFaxCalls:

    @pytest.mark.asyncio
    async def test_preflight_payload(self):
        def handler(request):
            assert json.loads(request.content) == {"opportunityId": "OPP-1", "prescriberNpi": "1234567890"}
            return httpx.Response(200, json={
                "canSend": True, "warnings": [], "savedFaxNumber": "555-222-3333",
                "dailyCount": 3, "dailyLimit": 50,
            })

        result = await _client(handler).preflight("OPP-1", "1234567890")

        assert result.can_send is True
        assert result.saved_fax_number == "555-222-3333"
        assert (result.daily_count, result.daily_limit) == (3, 50)

    @pytest.mark.asyncio
    async def test_send_payload_confirms_npi(self):
        def handler(request):
            assert json.loads(request.content) == {
                "opportunityId": "OPP-1",
                "prescriberFaxNumber": "555-123-4567",
                "prescriberNpi": "1234567890",
                "npiConfirmed": True,
            }
            return httpx.Response(200, json={"success": True, "faxId": "fax-9", "status": "Submitted"})

        result = await _client(handler).send_fax("OPP-1", "555-123-4567", "1234567890")

        assert result.fax_id == "fax-9"
        assert result.status == OpportunityStatus.SUBMITTED

    @pytest.mark.asyncio
    async def test_send_unsuccessful_raises(self):
        def handler(request):
            return httpx.Response(200, json={"success": False, "error": "Invalid fax number"})

        with pytest.raises(TransmissionFailure) as exc_info:
            await _client(handler).send_fax("OPP-1", "123", None)

        assert exc_info.value.server_reason == "Invalid fax number"

    @pytest.mark.asyncio
    async def test_send_http_error_is_transmission_failure(self):
        def handler(request):
            return httpx.Response(502, json={"error": "Fax provider unavailable"})

        with pytest.raises(TransmissionFailure):
            await _client(handler).send_fax("OPP-1", "555-123-4567", None)


class TestWrites:

    @pytest.mark.asyncio
    async def test_status_and_notes_use_patch(self):
        bodies = []

        def handler(request):
            assert request.method == "PATCH"
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True})

        client = _client(handler)
        await client.update_status("OPP-1", OpportunityStatus.DIDNT_WORK)
        await client.update_notes("OPP-1", "Called office")

        assert bodies == [{"status": "Didn't Work"}, {"staffNotes": "Called office"}]
