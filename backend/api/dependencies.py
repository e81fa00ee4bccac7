"""Process-wide service instances, injected into routes with ``Depends``."""
from typing import Optional

from backend.clients.opportunity_store import OpportunityStoreClient, create_opportunity_store_client
from backend.config.settings import get_settings
from backend.config.logging_config import get_logger
from backend.fax.history import FaxHistory
from backend.fax.safety_gate import PrescriberVolumeGate
from backend.fax.send_flow import FaxFlowRegistry
from backend.storage.audit_repository import AuditRepository

logger = get_logger(__name__)

_store_client: Optional[OpportunityStoreClient] = None
_fax_history: Optional[FaxHistory] = None
_audit_repository: Optional[AuditRepository] = None
_volume_gate: Optional[PrescriberVolumeGate] = None
_flow_registry: Optional[FaxFlowRegistry] = None


def get_store_client() -> OpportunityStoreClient:
    global _store_client
    if _store_client is None:
        _store_client = create_opportunity_store_client()
    return _store_client


def get_fax_history() -> FaxHistory:
    global _fax_history
    if _fax_history is None:
        _fax_history = FaxHistory(capacity=get_settings().fax_history_capacity)
    return _fax_history


def get_audit_repository() -> AuditRepository:
    global _audit_repository
    if _audit_repository is None:
        _audit_repository = AuditRepository()
    return _audit_repository


def get_volume_gate() -> PrescriberVolumeGate:
    global _volume_gate
    if _volume_gate is None:
        _volume_gate = PrescriberVolumeGate(get_store_client(), audit=get_audit_repository())
    return _volume_gate


def get_flow_registry() -> FaxFlowRegistry:
    global _flow_registry
    if _flow_registry is None:
        _flow_registry = FaxFlowRegistry(
            get_store_client(),
            get_volume_gate(),
            history=get_fax_history(),
            audit=get_audit_repository(),
            max_flows=get_settings().fax_max_open_flows,
        )
    return _flow_registry


async def close_dependencies() -> None:
    """Release the HTTP client and drop cached services."""
    global _store_client, _fax_history, _audit_repository, _volume_gate, _flow_registry
    if _store_client is not None:
        await _store_client.close()
        logger.info("Opportunity store client closed")
    _store_client = None
    _fax_history = None
    _audit_repository = None
    _volume_gate = None
    _flow_registry = None
