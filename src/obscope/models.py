"""Pydantic models shared by the runtime and the admin API."""

from enum import Enum

from pydantic import BaseModel, SecretStr


class ResolvedCredential(BaseModel):
    """Username/secret pair handed out by a credential store.

    The secret is a SecretStr so it never shows up in reprs or logs.
    """

    model_config = {"frozen": True}

    username: str
    secret: SecretStr


class CredentialScope(str, Enum):
    """Who may resolve a stored credential."""

    GLOBAL = "global"  # every job
    JOB = "job"  # only jobs holding a grant


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"


# --- Credential Requests ---


class AdminCreateCredentialRequest(BaseModel):
    """Admin stores a username/secret credential."""

    id: str
    username: str
    secret: str
    description: str = ""
    scope: CredentialScope = CredentialScope.GLOBAL


class AdminUpdateCredentialRequest(BaseModel):
    """Admin updates any subset of a credential's fields."""

    username: str | None = None
    secret: str | None = None
    description: str | None = None
    scope: CredentialScope | None = None


# --- Credential Responses ---


class AdminCredentialInfo(BaseModel):
    """Credential metadata for the admin API. Never carries the secret."""

    id: str
    username: str
    description: str
    scope: CredentialScope
    created_at: str
    updated_at: str | None = None


class CredentialItem(BaseModel):
    """One entry of the credential picker."""

    value: str
    name: str


class CredentialItemsResponse(BaseModel):
    """Picker contents for a job."""

    items: list[CredentialItem] = []


# --- Job Requests ---


class CreateJobRequest(BaseModel):
    """Register a job identity."""

    id: str
    description: str = ""


class UpdateJobRequest(BaseModel):
    """Update a job's description."""

    description: str | None = None


class JobCredentialsRequest(BaseModel):
    """Grant or revoke credential access for a job."""

    credentials: list[str]


# --- Job Responses ---


class JobResponse(BaseModel):
    """Job metadata with the ids of credentials granted to it."""

    id: str
    description: str
    credentials: list[str] = []
    created_at: str
    updated_at: str | None = None
