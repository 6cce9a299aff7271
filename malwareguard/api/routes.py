import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Dict, Any

from malwareguard.database import get_db
from malwareguard.schemas import (
    ScanRequest,
    SettingUpdate,
    SettingResponse,
    UrlAssessment,
    MessageAssessment,
    EmailAssessment,
    ScanHistoryEntry,
)
from malwareguard.services.analysis_service import AnalysisService
from malwareguard.services.settings_store import (
    SettingsStore,
    UnknownSettingError,
    InvalidSettingError,
    SECRET_KEYS,
    mask_secret,
)
from malwareguard.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()

_service = None


def get_analysis_service() -> AnalysisService:
    """One service per process: catalogs are validated once and history is shared"""
    global _service
    if _service is None:
        _service = AnalysisService()
    return _service

# ============================================================================
# SCAN ENDPOINTS
# ============================================================================

@router.post("/scan/url", response_model=UrlAssessment)
def scan_url(request: ScanRequest, service: AnalysisService = Depends(get_analysis_service)):
    """Score a URL against the known-domain lists and URL rules"""
    return service.scan_url(request.input)


@router.post("/scan/message", response_model=MessageAssessment)
def scan_message(request: ScanRequest, service: AnalysisService = Depends(get_analysis_service)):
    """Score a pasted message (plain text or HTML) for phishing indicators"""
    return service.scan_message(request.input)


@router.post("/scan/email", response_model=EmailAssessment)
async def scan_email(request: ScanRequest, service: AnalysisService = Depends(get_analysis_service)):
    """Assess an email address: syntax, DNS health, blocklists and breaches"""
    return await service.scan_email(request.input)

# ============================================================================
# HISTORY & CATALOG
# ============================================================================

@router.get("/history", response_model=List[ScanHistoryEntry])
def get_history(service: AnalysisService = Depends(get_analysis_service)):
    return service.get_history()


@router.delete("/history")
def clear_history(service: AnalysisService = Depends(get_analysis_service)):
    service.clear_history()
    return {"status": "success", "message": "Scan history cleared"}


@router.get("/catalog", response_model=Dict[str, Any])
def get_catalog(service: AnalysisService = Depends(get_analysis_service)):
    return service.catalog_summary()

# ============================================================================
# SETTINGS ENDPOINTS
# ============================================================================

def _setting_response(store: SettingsStore, key: str) -> SettingResponse:
    row = store.get(key)
    value = store.value(key)
    if key in SECRET_KEYS:
        value = mask_secret(value)
    return SettingResponse(key=key, value=value, updated_at=row.updated_at if row else None)


@router.get("/settings", response_model=Dict[str, Any])
def list_settings(db: Session = Depends(get_db)):
    return SettingsStore(db).all()


@router.get("/settings/{key}", response_model=SettingResponse)
def get_setting(key: str, db: Session = Depends(get_db)):
    store = SettingsStore(db)
    try:
        return _setting_response(store, key)
    except UnknownSettingError:
        raise HTTPException(status_code=404, detail=f"Unknown setting: {key}")


@router.put("/settings/{key}", response_model=SettingResponse)
def update_setting(key: str, update: SettingUpdate, db: Session = Depends(get_db)):
    store = SettingsStore(db)
    try:
        store.set(key, update.value)
        return _setting_response(store, key)
    except UnknownSettingError:
        raise HTTPException(status_code=404, detail=f"Unknown setting: {key}")
    except InvalidSettingError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.delete("/settings/{key}")
def reset_setting(key: str, db: Session = Depends(get_db)):
    store = SettingsStore(db)
    try:
        deleted = store.delete(key)
    except UnknownSettingError:
        raise HTTPException(status_code=404, detail=f"Unknown setting: {key}")
    return {"status": "success", "key": key, "reset": deleted}


@router.get("/health")
def health_check():
    return {
        "status": "healthy",
        "version": settings.VERSION,
    }
