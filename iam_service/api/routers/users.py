from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from iam_service.api.deps import get_current_identity
from iam_service.domain.models import IdentityRead

router = APIRouter()


@router.get("/me", response_model=IdentityRead)
def read_current_identity(
    identity: Annotated[IdentityRead, Depends(get_current_identity)],
) -> IdentityRead:
    return identity
