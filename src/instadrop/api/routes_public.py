# src/instadrop/api/routes_public.py
from __future__ import annotations

from fastapi import APIRouter

from instadrop.api.routes_public_parts.download import router as download_router
from instadrop.api.routes_public_parts.files import router as files_router
from instadrop.api.routes_public_parts.upload import router as upload_router

public_router = APIRouter()

public_router.include_router(files_router, prefix="/api", tags=["files"])
public_router.include_router(upload_router, prefix="/api", tags=["upload"])
public_router.include_router(download_router, prefix="/api", tags=["download"])
