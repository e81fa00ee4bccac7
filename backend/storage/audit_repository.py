"""Audit repository for safety-gate overrides and fax transmissions."""
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import select

from backend.models.enums import OpportunityStatus
from backend.models.opportunity import PrescriberVolumeStats
from backend.storage.database import get_db
from backend.storage.models import FaxTransmissionModel, GateOverrideModel
from backend.fax.formatting import mask_fax_number
from backend.config.logging_config import get_logger

logger = get_logger(__name__)


class AuditRepository:
    """Append-only audit trail. Rows are never updated."""

    async def record_override(
        self,
        opportunity_id: str,
        prescriber_name: str,
        target_status: OpportunityStatus,
        stats: PrescriberVolumeStats,
    ) -> str:
        """Store a "proceed anyway" decision on a warned prescriber."""
        override_id = str(uuid4())
        async with get_db() as session:
            session.add(GateOverrideModel(
                id=override_id,
                opportunity_id=opportunity_id,
                prescriber_name=prescriber_name,
                target_status=target_status.value,
                unique_patients_actioned=stats.unique_patients_actioned,
                warn_threshold=stats.warn_threshold,
                block_threshold=stats.block_threshold,
            ))
        logger.info("Override audited", override_id=override_id, opportunity_id=opportunity_id)
        return override_id

    async def record_transmission(
        self,
        opportunity_id: str,
        prescriber_name: str,
        fax_number: str,
        outcome: str,
        fax_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> str:
        """Store a send attempt. The fax number is kept masked."""
        transmission_id = str(uuid4())
        async with get_db() as session:
            session.add(FaxTransmissionModel(
                id=transmission_id,
                opportunity_id=opportunity_id,
                prescriber_name=prescriber_name,
                fax_number_masked=mask_fax_number(fax_number),
                outcome=outcome,
                fax_id=fax_id,
                message=message,
            ))
        logger.info(
            "Fax transmission audited",
            transmission_id=transmission_id,
            opportunity_id=opportunity_id,
            outcome=outcome,
        )
        return transmission_id

    async def list_overrides(self, prescriber_name: Optional[str] = None) -> List[GateOverrideModel]:
        async with get_db() as session:
            stmt = select(GateOverrideModel).order_by(GateOverrideModel.created_at.desc())
            if prescriber_name:
                stmt = stmt.where(GateOverrideModel.prescriber_name == prescriber_name)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_transmissions(self, opportunity_id: str) -> List[FaxTransmissionModel]:
        async with get_db() as session:
            stmt = (
                select(FaxTransmissionModel)
                .where(FaxTransmissionModel.opportunity_id == opportunity_id)
                .order_by(FaxTransmissionModel.created_at.desc())
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())
