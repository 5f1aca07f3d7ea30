"""
Fraud API - audit and administration of fraud records and blocklists

Provides:
- GET /fraud/records: Fraud records, optionally for one actor
- POST /fraud/records/{record_id}/resolve: Mark a record resolved (API key)
- GET /fraud/statistics: Counts by type and severity
- GET /fraud/blocklist: Blocked devices and IPs
- DELETE /fraud/blocklist/devices/{fingerprint}: Unblock a device (API key)
- DELETE /fraud/blocklist/ips/{ip_address}: Unblock an IP (API key)
- GET /fraud/export: Full dump for offline analysis (API key)
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from attendance_trust.config import settings
from attendance_trust.dependencies import get_fraud_engine, verify_api_key
from attendance_trust.models.domain import AttendanceAttempt, FraudRecord
from attendance_trust.services.fraud_engine_service import FraudEngine

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/fraud", tags=["Fraud"])


class ResolveRequest(BaseModel):
    notes: Optional[str] = None


class BlocklistResponse(BaseModel):
    blocked_devices: List[str]
    blocked_ips: List[str]


class ExportResponse(BaseModel):
    attempts: List[AttendanceAttempt]
    fraud_records: List[FraudRecord]
    blocked_devices: List[str]
    blocked_ips: List[str]
    statistics: Dict[str, Any]


@router.get("/records", response_model=List[FraudRecord])
async def list_fraud_records(
    actor_id: Optional[str] = Query(None),
    unresolved_only: bool = Query(False),
    engine: FraudEngine = Depends(get_fraud_engine)
):
    records = engine.get_fraud_records(actor_id)
    if unresolved_only:
        records = [r for r in records if not r.resolved]
    return records


@router.post("/records/{record_id}/resolve", response_model=FraudRecord)
async def resolve_fraud_record(
    record_id: str,
    request: ResolveRequest,
    api_key: str = Depends(verify_api_key),
    engine: FraudEngine = Depends(get_fraud_engine)
):
    record = engine.resolve_fraud_record(record_id, request.notes)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Fraud record not found")

    if settings.FRAUD_ARCHIVE_ENABLED:
        from attendance_trust.worker.tasks import archive_fraud_record
        try:
            archive_fraud_record.delay(record.model_dump(mode="json"))
        except Exception as e:
            logger.error(f"Could not enqueue archive of resolved record {record_id}: {e}")

    return record


@router.get("/statistics")
async def fraud_statistics(engine: FraudEngine = Depends(get_fraud_engine)):
    return engine.get_statistics()


@router.get("/blocklist", response_model=BlocklistResponse)
async def get_blocklist(engine: FraudEngine = Depends(get_fraud_engine)):
    return BlocklistResponse(
        blocked_devices=sorted(engine.store.blocked_devices()),
        blocked_ips=sorted(engine.store.blocked_ips())
    )


@router.delete("/blocklist/devices/{fingerprint}")
async def unblock_device(
    fingerprint: str,
    api_key: str = Depends(verify_api_key),
    engine: FraudEngine = Depends(get_fraud_engine)
):
    if not engine.unblock_device(fingerprint):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Device is not blocked")
    return {"fingerprint": fingerprint, "blocked": False}


@router.delete("/blocklist/ips/{ip_address}")
async def unblock_ip(
    ip_address: str,
    api_key: str = Depends(verify_api_key),
    engine: FraudEngine = Depends(get_fraud_engine)
):
    if not engine.unblock_ip(ip_address):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="IP address is not blocked")
    return {"ip_address": ip_address, "blocked": False}


@router.get("/export", response_model=ExportResponse)
async def export_fraud_data(
    api_key: str = Depends(verify_api_key),
    engine: FraudEngine = Depends(get_fraud_engine)
):
    return engine.export_data()
