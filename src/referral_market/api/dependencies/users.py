from __future__ import annotations

import uuid

from fastapi import Depends, Header, HTTPException, status

from referral_market.core.config import Settings, get_settings
from referral_market.core.constants import USER_ID_HEADER


async def get_current_user_id(
    current_user_id: str = Header(
        ...,
        alias=USER_ID_HEADER,
        convert_underscores=False,
        description="Authenticated user identifier",
    ),
) -> uuid.UUID:
    try:
        return uuid.UUID(current_user_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authenticated user identifier is invalid",
        ) from exc


async def require_admin(
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    settings: Settings = Depends(get_settings),
) -> uuid.UUID:
    if current_user_id not in settings.admin.user_ids:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Administrator role required"
        )
    return current_user_id
