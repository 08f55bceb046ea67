from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException

from ..engines.entries.services import EntryServices
from ..scheduler import run_sweep
from .entry import entry_services

router = APIRouter(prefix="/pending", tags=["pending"])


@router.get("")
def list_pending(services: EntryServices = Depends(entry_services)):
    ids = services.queue.list_pending()
    return {"count": len(ids), "submission_ids": ids}


@router.get("/{submission_id}")
def get_pending(submission_id: str, services: EntryServices = Depends(entry_services)):
    entry = services.queue.load(submission_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Pending submission not found")
    return {
        "submission_id": entry.record.submission_id,
        "submitted_at": entry.record.submitted_at,
        "stored_at": entry.stored_at,
        "category": entry.record.fields.get("category", ""),
        "subcategory": entry.record.fields.get("subcategory", ""),
        "photo_count": len(entry.record.attachments),
    }


@router.post("/sweep")
async def sweep_pending(services: EntryServices = Depends(entry_services)):
    report = await run_sweep(services, "manual")
    if report is None:
        raise HTTPException(status_code=503, detail="No endpoint configured")
    return asdict(report)
