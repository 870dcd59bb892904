from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.database import get_session_factory
from src.core.documents import NumberAuthority


def get_number_authority(
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> NumberAuthority:
    """One authority per application, so its policy cache is shared by requests."""
    authority = getattr(request.app.state, "number_authority", None)
    if authority is None:
        authority = NumberAuthority(session_factory)
        request.app.state.number_authority = authority
    return authority


Authority = Annotated[NumberAuthority, Depends(get_number_authority)]
