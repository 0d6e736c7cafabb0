"""Job-facing routes: the credential picker used when declaring a withOBS block."""

from fastapi import APIRouter, Depends

from obscope.auth import can_configure
from obscope.db import get_db
from obscope.models import CredentialItem, CredentialItemsResponse
from obscope.services.credentials import list_credential_items
from obscope.services.jobs import get_job

router = APIRouter(prefix="/api/jobs")


@router.get("/{job_id}/credential-items", response_model=CredentialItemsResponse)
async def credential_items(
    job_id: str, allowed: bool = Depends(can_configure)
) -> CredentialItemsResponse:
    """Credentials the job could use, for a picker. Never includes secrets.

    Unknown jobs and callers without configure permission get an empty list.
    """
    if not allowed:
        return CredentialItemsResponse()

    db = await get_db()
    if await get_job(db, job_id) is None:
        return CredentialItemsResponse()

    items = await list_credential_items(db, job_id)
    return CredentialItemsResponse(items=[CredentialItem(**i) for i in items])
