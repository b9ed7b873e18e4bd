# app/api/deps.py
from __future__ import annotations

from typing import AsyncIterator, Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.container import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_db(services: Services = Depends(get_services)) -> AsyncIterator[AsyncSession]:
    async with services.session_factory() as session:
        yield session


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> int:
    # az upstream identity check teszi rá a headert
    if not x_user_id:
        raise HTTPException(
            status_code=401,
            detail={"error": "UNAUTHENTICATED", "message": "Missing X-User-Id header"},
        )
    try:
        return int(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=401,
            detail={"error": "UNAUTHENTICATED", "message": "Invalid X-User-Id header"},
        )
