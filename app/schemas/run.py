"""Pydantic models for prompt batch triggers and status."""

from pydantic import BaseModel, Field

from app.providers.base import ProviderName


class RunTriggerRequest(BaseModel):
    provider: ProviderName = ProviderName.CHATGPT


class SweepTriggerRequest(RunTriggerRequest):
    workspace_id: str | None = None


class JobStatusResponse(BaseModel):
    job_id: str
    status: str = Field(pattern=r"^(pending|running|completed|cancelled)$")
    progress: int = Field(ge=0)
    total: int = Field(ge=0)
    domain_id: str | None = None
    provider: str | None = None
    error: str | None = None


class RunStatusResponse(BaseModel):
    status: str = Field(pattern=r"^(pending|running|completed|cancelled)$")
    progress: int = Field(ge=0)
    total: int = Field(ge=0)
    job_id: str | None = None


class RunResultResponse(BaseModel):
    prompt_id: str
    prompt_run_id: str | None = None
    provider: str
    success: bool
    error: str | None = None
    mentioned: bool | None = None
    response_preview: str | None = None

    model_config = {"from_attributes": True}
