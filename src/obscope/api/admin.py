"""Admin API routes: setup, login, credential and job management."""

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from pydantic import BaseModel

from obscope.auth import (
    is_setup_complete,
    login_admin,
    require_admin,
    setup_admin,
)
from obscope.db import get_db
from obscope.models import (
    AdminCreateCredentialRequest,
    AdminCredentialInfo,
    AdminUpdateCredentialRequest,
    CreateJobRequest,
    JobCredentialsRequest,
    JobResponse,
    UpdateJobRequest,
)
from obscope.services.credentials import (
    create_credential,
    delete_credential,
    get_credential,
    list_credentials,
    update_credential,
    validate_credential_id,
)
from obscope.services.jobs import (
    create_job,
    delete_job,
    get_job,
    grant_credentials,
    list_jobs,
    revoke_credentials,
    update_job,
    validate_job_id,
)

router = APIRouter(prefix="/api/admin")


class SetupRequest(BaseModel):
    """First-time admin password setup."""
    password: str


class LoginRequest(BaseModel):
    """Admin login with password."""
    password: str


class TokenResponse(BaseModel):
    """Returned on successful setup or login."""
    token: str


class StatusResponse(BaseModel):
    """Whether the first-visit setup still has to run."""
    setup_required: bool


def _not_found_or_conflict(exc: ValueError) -> HTTPException:
    detail = str(exc)
    if "not found" in detail:
        return HTTPException(status_code=404, detail=detail)
    return HTTPException(status_code=409, detail=detail)


# --- Unauthenticated routes ---


@router.get("/status", response_model=StatusResponse)
async def admin_status() -> StatusResponse:
    """Check if the admin password has been set. No auth required."""
    db = await get_db()
    return StatusResponse(setup_required=not await is_setup_complete(db))


@router.post("/setup", response_model=TokenResponse)
async def admin_setup(request: SetupRequest) -> TokenResponse:
    """Set the admin password on first visit. Only works once."""
    db = await get_db()
    try:
        token = await setup_admin(db, request.password)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return TokenResponse(token=token)


@router.post("/login", response_model=TokenResponse)
async def admin_login(request: LoginRequest) -> TokenResponse:
    """Authenticate with the admin password and get a session token."""
    db = await get_db()
    try:
        token = await login_admin(db, request.password)
    except ValueError as e:
        raise HTTPException(status_code=401, detail=str(e))
    return TokenResponse(token=token)


# --- Credentials ---


@router.get("/credentials", dependencies=[Depends(require_admin)])
async def admin_list_credentials() -> dict:
    """List stored credentials. Secrets are never returned."""
    db = await get_db()
    creds = await list_credentials(db)
    return {"credentials": [AdminCredentialInfo(**c).model_dump() for c in creds]}


@router.get("/credentials/{credential_id}", dependencies=[Depends(require_admin)])
async def admin_get_credential(credential_id: str) -> dict:
    """Get one credential's metadata."""
    cred = await get_credential(await get_db(), credential_id)
    if cred is None:
        raise HTTPException(status_code=404, detail=f"Credential '{credential_id}' not found")
    return AdminCredentialInfo(**cred).model_dump()


@router.post("/credentials", status_code=201, dependencies=[Depends(require_admin)])
async def admin_create_credential(
    body: AdminCreateCredentialRequest, request: Request
) -> dict:
    """Store a username/secret credential."""
    try:
        validate_credential_id(body.id)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    master_key: bytes = request.app.state.master_key
    try:
        cred = await create_credential(
            await get_db(),
            body.id,
            body.username,
            body.secret,
            master_key,
            description=body.description,
            scope=body.scope,
        )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return AdminCredentialInfo(**cred).model_dump()


@router.put("/credentials/{credential_id}", dependencies=[Depends(require_admin)])
async def admin_update_credential(
    credential_id: str, body: AdminUpdateCredentialRequest, request: Request
) -> dict:
    """Update any subset of a credential's fields."""
    kwargs: dict = body.model_dump(exclude_none=True)
    if "secret" in kwargs:
        kwargs["master_key"] = request.app.state.master_key

    try:
        cred = await update_credential(await get_db(), credential_id, **kwargs)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return AdminCredentialInfo(**cred).model_dump()


@router.delete("/credentials/{credential_id}", status_code=204, dependencies=[Depends(require_admin)])
async def admin_delete_credential(credential_id: str) -> Response:
    """Delete a credential along with its job grants."""
    try:
        await delete_credential(await get_db(), credential_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return Response(status_code=204)


# --- Jobs ---


@router.get("/jobs", dependencies=[Depends(require_admin)])
async def admin_list_jobs() -> dict:
    """List registered jobs with their grants."""
    jobs = await list_jobs(await get_db())
    return {"jobs": [JobResponse(**j).model_dump() for j in jobs]}


@router.get("/jobs/{job_id}", dependencies=[Depends(require_admin)])
async def admin_get_job(job_id: str) -> dict:
    """Get a single job."""
    job = await get_job(await get_db(), job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job '{job_id}' not found")
    return JobResponse(**job).model_dump()


@router.post("/jobs", status_code=201, dependencies=[Depends(require_admin)])
async def admin_create_job(body: CreateJobRequest) -> dict:
    """Register a job identity."""
    try:
        validate_job_id(body.id)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    try:
        job = await create_job(await get_db(), body.id, body.description)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return JobResponse(**job).model_dump()


@router.put("/jobs/{job_id}", dependencies=[Depends(require_admin)])
async def admin_update_job(job_id: str, body: UpdateJobRequest) -> dict:
    """Update a job's description."""
    try:
        job = await update_job(await get_db(), job_id, description=body.description)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return JobResponse(**job).model_dump()


@router.delete("/jobs/{job_id}", status_code=204, dependencies=[Depends(require_admin)])
async def admin_delete_job(job_id: str) -> Response:
    """Delete a job and its grants."""
    try:
        await delete_job(await get_db(), job_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return Response(status_code=204)


@router.post("/jobs/{job_id}/credentials", dependencies=[Depends(require_admin)])
async def admin_grant_credentials(job_id: str, body: JobCredentialsRequest) -> dict:
    """Grant a job access to job-scoped credentials."""
    try:
        job = await grant_credentials(await get_db(), job_id, body.credentials)
    except ValueError as e:
        raise _not_found_or_conflict(e)
    return JobResponse(**job).model_dump()


@router.delete("/jobs/{job_id}/credentials", dependencies=[Depends(require_admin)])
async def admin_revoke_credentials(job_id: str, body: JobCredentialsRequest) -> dict:
    """Withdraw a job's credential grants."""
    try:
        job = await revoke_credentials(await get_db(), job_id, body.credentials)
    except ValueError as e:
        raise _not_found_or_conflict(e)
    return JobResponse(**job).model_dump()


@router.get("/stats", dependencies=[Depends(require_admin)])
async def get_stats() -> dict:
    """Dashboard counters."""
    db = await get_db()
    cursor = await db.execute("SELECT COUNT(*) AS n FROM credentials")
    stored = (await cursor.fetchone())["n"]
    cursor = await db.execute("SELECT COUNT(*) AS n FROM jobs")
    jobs = (await cursor.fetchone())["n"]
    return {
        "stored_credentials": stored,
        "jobs": jobs,
    }
