"""Application exceptions.

HTTP-facing errors subclass ``HTTPException`` so routes can raise them
directly; pipeline code raises the domain-specific subclasses below and
the API layer gets the right status code for free.
"""

from fastapi import HTTPException, status


class AppError(HTTPException):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str = "Internal error"):
        super().__init__(status_code=self.status_code, detail=detail)

    def __str__(self) -> str:
        return str(self.detail)


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND


class BadRequestError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT


class UnauthorizedError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED


class DomainNotFoundError(NotFoundError):
    """Raised when a prompt batch is requested for a domain that does not exist."""

    def __init__(self, domain_id: str):
        self.domain_id = domain_id
        super().__init__(f"Domain not found: {domain_id}")


class PromptNotFoundError(NotFoundError):
    def __init__(self, prompt_id: str):
        self.prompt_id = prompt_id
        super().__init__(f"Prompt not found: {prompt_id}")


class BatchInProgressError(ConflictError):
    """A batch for this domain is already pending or running."""

    def __init__(self, domain_id: str, job_id: str):
        self.domain_id = domain_id
        self.job_id = job_id
        super().__init__(f"Batch already in progress for domain {domain_id} (job_id={job_id})")
