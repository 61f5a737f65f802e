from collections.abc import AsyncGenerator
from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.config import settings

# Override settings for tests
settings.app_env = "development"
settings.database_url = "sqlite+aiosqlite:///:memory:"
settings.cron_secret = ""
settings.openai_api_key = ""
settings.prompt_delay_seconds = 0
settings.domain_delay_seconds = 0

from app.core.rate_limit import limiter  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.db.postgres import get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Domain, Prompt, PromptRun  # noqa: E402
from app.providers.base import (  # noqa: E402
    BaseProvider,
    Completion,
    ProviderError,
    ProviderName,
    ResponseMetadata,
    UrlCitation,
)
from app.providers.registry import ProviderClient  # noqa: E402
from app.services.prompt_runner import BatchWorker, PromptRunner  # noqa: E402
from app.services.run_status import RunStatusRegistry  # noqa: E402


class ScriptedProvider(BaseProvider):
    """Provider double that answers from a queue of texts / errors, in call order."""

    provider = ProviderName.CHATGPT

    def __init__(self, answers: list):
        self.answers = list(answers)
        self.prompts: list[str] = []

    async def complete(self, prompt_text: str):
        self.prompts.append(prompt_text)
        answer = self.answers.pop(0) if self.answers else ""
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, ProviderError):
            return answer
        if isinstance(answer, Completion):
            return answer
        return Completion(
            text=answer,
            metadata=ResponseMetadata(model="gpt-5-mini", tokens_used=42, finish_reason="stop"),
            duration_ms=7,
        )


def completion(text: str, citations: list[str] | None = None) -> Completion:
    return Completion(
        text=text,
        metadata=ResponseMetadata(model="gpt-5-mini", tokens_used=10, finish_reason="stop"),
        duration_ms=5,
        citations=[UrlCitation(url=u, title=u) for u in citations or []],
    )


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite per test; NullPool gives every session its own connection."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False, poolclass=NullPool)

    @event.listens_for(test_engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_runner(session_factory):
    """Build a PromptRunner over the test database with a scripted provider."""

    def _make(answers: list | None = None, **kwargs) -> tuple[PromptRunner, ScriptedProvider]:
        provider = ScriptedProvider(answers or [])
        sleeps: list[float] = []

        async def _sleep(seconds: float) -> None:
            sleeps.append(seconds)

        runner = PromptRunner(
            session_factory,
            ProviderClient({ProviderName.CHATGPT: provider}),
            prompt_delay=kwargs.pop("prompt_delay", 0.5),
            domain_delay=kwargs.pop("domain_delay", 1.0),
            sleep=_sleep,
            **kwargs,
        )
        runner.sleeps = sleeps
        return runner, provider

    return _make


@pytest.fixture
async def seed_domain(db: AsyncSession):
    """Create a domain with prompts. Returns the Domain."""

    async def _seed(
        domain: str = "example.com",
        prompts: list[str] | None = None,
        competitors: list[str] | None = None,
        name: str | None = None,
        workspace_id: str | None = None,
        inactive: list[str] | None = None,
        category: str | None = None,
    ) -> Domain:
        d = Domain(domain=domain, name=name, competitors=competitors or [], workspace_id=workspace_id)
        db.add(d)
        await db.flush()
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        for i, text in enumerate(prompts if prompts is not None else ["best tools?"]):
            db.add(Prompt(domain_id=d.id, prompt_text=text, category=category, created_at=base.replace(minute=i)))
        for text in inactive or []:
            db.add(Prompt(domain_id=d.id, prompt_text=text, is_active=False, created_at=base))
        await db.commit()
        return d

    return _seed


@pytest.fixture
async def add_run(db: AsyncSession):
    """Append a stored run (optionally with mention analysis) at a fixed time."""
    from app.models import BrandMention, Citation, MentionAnalysis

    async def _add(
        prompt: Prompt,
        executed_at: datetime,
        provider: str = "chatgpt",
        mentioned: bool | None = False,
        position: int | None = None,
        citations: int = 0,
        brands: dict[str, int | None] | None = None,
        error: str | None = None,
    ) -> PromptRun:
        run = PromptRun(
            prompt_id=prompt.id,
            llm_provider=provider,
            response_text=None if error else "answer",
            error=error,
            executed_at=executed_at,
        )
        db.add(run)
        await db.flush()
        if error is None and mentioned is not None:
            db.add(
                MentionAnalysis(
                    prompt_run_id=run.id,
                    domain_id=prompt.domain_id,
                    mentioned=mentioned,
                    position=position if mentioned else None,
                    context_snippet="..." if mentioned else None,
                )
            )
        for i in range(citations):
            db.add(Citation(prompt_run_id=run.id, url=f"https://source{i}.test/"))
        for brand, pos in (brands or {}).items():
            db.add(BrandMention(prompt_run_id=run.id, brand_name=brand, mentioned=True, position=pos))
        await db.commit()
        return run

    return _add


@pytest.fixture
def worker(make_runner):
    """Batch worker that is driven manually with ``await worker.process(job_id)``."""
    runner, provider = make_runner(prompt_delay=0, domain_delay=0)
    w = BatchWorker(lambda: runner, RunStatusRegistry())
    w.provider = provider
    return w


@pytest.fixture
async def client(session_factory, worker) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.state.batch_worker = worker
    limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
