import hmac

from fastapi import Header, Request

from app.core.config import settings
from app.core.exceptions import UnauthorizedError
from app.services.prompt_runner import BatchWorker
from app.services.run_status import RunStatusRegistry


def get_batch_worker(request: Request) -> BatchWorker:
    return request.app.state.batch_worker


def get_run_registry(request: Request) -> RunStatusRegistry:
    return request.app.state.batch_worker.registry


async def require_cron_secret(
    authorization: str | None = Header(None, description="Bearer <CRON_SECRET>"),
) -> None:
    """Guard for the sweep trigger. Open when CRON_SECRET is unset (local development)."""
    if not settings.cron_secret:
        return
    if not authorization or not authorization.startswith("Bearer "):
        raise UnauthorizedError("Invalid authorization header")
    if not hmac.compare_digest(authorization[7:], settings.cron_secret):
        raise UnauthorizedError("Invalid cron secret")
