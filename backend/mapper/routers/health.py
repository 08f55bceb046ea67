from fastapi import APIRouter, Request
from datetime import datetime

router = APIRouter()


@router.get("/health")
def health_check():
    return {"status": "ok", "timestamp": datetime.utcnow().isoformat()}


@router.get("/ready")
def readiness_check(request: Request):
    entries = getattr(request.app.state, "entries", None)
    return {"ready": entries is not None, "version": "0.1.0"}
