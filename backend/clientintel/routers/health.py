from __future__ import annotations

from fastapi import APIRouter

from ..settings import settings

router = APIRouter()


@router.get("/", tags=["health"])
def health():
    return {
        "message": "Client Intelligence Pipeline API",
        "version": "1.0.0",
        "status": "running",
        "port": settings.port,
        "environment": settings.environment,
        "dynamodb": "configured" if settings.ddb_table_name else "missing",
        "openai": "configured" if settings.openai_api_key else "missing",
        "endpoints": [
            "POST /api/insights",
            "POST /api/insights/{id}/approve",
            "POST /api/insights/{id}/reject",
            "POST /api/campaigns/{id}/respond",
        ],
    }
