"""
Public API routes - no authentication required
"""

from fastapi import APIRouter
from fastapi.responses import Response

from app.services.roster_service import RosterService

router = APIRouter()

@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "ok"}

@router.get("/template/attendees.csv")
async def download_template():
    """Download the CSV template for bulk attendee import"""
    return Response(
        content=RosterService.create_template(),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=attendee_import_template.csv"}
    )
