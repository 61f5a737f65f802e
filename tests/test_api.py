"""Tests for the HTTP API: batch triggers, status and visibility."""

from datetime import datetime, timedelta, timezone

from app.core.config import settings
from app.models import DomainBatchLock
from app.services.store import VisibilityStore


class TestDomainRuns:
    async def test_trigger_then_complete(self, client, worker, seed_domain):
        domain = await seed_domain(prompts=["best tools?", "top picks?"])
        worker.provider.answers = ["example.com is great", "nothing here"]

        resp = await client.post(f"/api/v1/domains/{domain.id}/runs", json={"provider": "chatgpt"})
        assert resp.status_code == 202
        body = resp.json()
        assert body["status"] == "pending"
        assert (body["progress"], body["total"]) == (0, 2)

        await worker.process(body["job_id"])

        status = await client.get(f"/api/v1/domains/{domain.id}/run-status")
        assert status.status_code == 200
        assert {k: status.json()[k] for k in ("status", "progress", "total")} == {
            "status": "completed",
            "progress": 2,
            "total": 2,
        }

        job = await client.get(f"/api/v1/runs/{body['job_id']}")
        assert job.json()["status"] == "completed"

    async def test_default_provider_body_optional(self, client, seed_domain):
        domain = await seed_domain()
        resp = await client.post(f"/api/v1/domains/{domain.id}/runs")
        assert resp.status_code == 202
        assert resp.json()["provider"] == "chatgpt"

    async def test_unknown_domain(self, client):
        resp = await client.post("/api/v1/domains/missing/runs")
        assert resp.status_code == 404
        assert "Domain not found" in resp.json()["detail"]

    async def test_overlapping_batch_conflict(self, client, seed_domain):
        domain = await seed_domain()
        first = await client.post(f"/api/v1/domains/{domain.id}/runs")
        second = await client.post(f"/api/v1/domains/{domain.id}/runs")
        assert first.status_code == 202
        assert second.status_code == 409

    async def test_conflict_when_another_process_holds_the_domain(self, client, db, seed_domain):
        domain = await seed_domain()
        db.add(
            DomainBatchLock(
                domain_id=domain.id,
                holder="celery@worker-1:42",
                expires_at=datetime.now(timezone.utc) + timedelta(minutes=5),
            )
        )
        await db.commit()

        resp = await client.post(f"/api/v1/domains/{domain.id}/runs")

        assert resp.status_code == 409
        assert "celery@worker-1:42" in resp.json()["detail"]

    async def test_invalid_provider(self, client, seed_domain):
        domain = await seed_domain()
        resp = await client.post(f"/api/v1/domains/{domain.id}/runs", json={"provider": "bard"})
        assert resp.status_code == 422

    async def test_cancel_pending_job(self, client, worker, seed_domain):
        domain = await seed_domain(prompts=["a"])
        job_id = (await client.post(f"/api/v1/domains/{domain.id}/runs")).json()["job_id"]

        resp = await client.post(f"/api/v1/runs/{job_id}/cancel")
        assert resp.json()["status"] == "cancelled"

        await worker.process(job_id)
        assert worker.provider.prompts == []

    async def test_unknown_job(self, client):
        resp = await client.get("/api/v1/runs/nope")
        assert resp.status_code == 404


class TestRunStatusFallback:
    async def test_recomputed_from_stored_runs(self, client, db, seed_domain, add_run):
        domain = await seed_domain(prompts=["a", "b"])
        prompts = await VisibilityStore(db).list_active_prompts(domain.id)
        await add_run(prompts[0], datetime.now(timezone.utc))

        resp = await client.get(f"/api/v1/domains/{domain.id}/run-status")
        assert resp.json() == {"status": "running", "progress": 1, "total": 2, "job_id": None}

    async def test_no_prompts_is_completed(self, client, seed_domain):
        domain = await seed_domain(prompts=[])
        resp = await client.get(f"/api/v1/domains/{domain.id}/run-status")
        assert resp.json()["status"] == "completed"
        assert resp.json()["total"] == 0

    async def test_unknown_domain(self, client):
        resp = await client.get("/api/v1/domains/missing/run-status")
        assert resp.status_code == 404


class TestSweep:
    async def test_sweep_runs_every_domain(self, client, worker, seed_domain):
        await seed_domain(domain="a.com", prompts=["p1"])
        await seed_domain(domain="b.com", prompts=["p2", "p3"])
        worker.provider.answers = ["a.com", "b.com", "none"]

        resp = await client.post("/api/v1/runs", json={"provider": "chatgpt"})
        assert resp.status_code == 202
        job_id = resp.json()["job_id"]

        await worker.process(job_id)

        job = (await client.get(f"/api/v1/runs/{job_id}")).json()
        assert job["status"] == "completed"
        assert (job["progress"], job["total"]) == (3, 3)

    async def test_cron_secret_required_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", "s3cret")
        assert (await client.post("/api/v1/runs")).status_code == 401
        wrong = await client.post("/api/v1/runs", headers={"Authorization": "Bearer nope"})
        assert wrong.status_code == 401
        ok = await client.post("/api/v1/runs", headers={"Authorization": "Bearer s3cret"})
        assert ok.status_code == 202


class TestVisibility:
    async def test_visibility_endpoint(self, client, db, seed_domain, add_run):
        domain = await seed_domain(prompts=["a"], name="Acme", competitors=["Calendly"])
        prompts = await VisibilityStore(db).list_active_prompts(domain.id)
        today = datetime.now(timezone.utc)
        await add_run(prompts[0], today, mentioned=True, position=1, citations=1)
        await add_run(prompts[0], today, provider="perplexity", mentioned=False)

        day = today.date().isoformat()
        resp = await client.get(
            f"/api/v1/domains/{domain.id}/visibility",
            params={"start_date": day, "end_date": day},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["total_queries"] == 2
        assert data["total_mentions"] == 1
        assert data["total_citations"] == 1
        assert data["visibility_score"] == 50.0
        assert len(data["daily"]) == 7
        assert data["daily"][-1] == {"date": day, "mentions": 1, "citations": 1}
        assert [p["name"] for p in data["platforms"]] == ["chatgpt", "perplexity"]
        assert data["ranking"][0]["name"] == "Acme"
        assert data["ranking"][0]["is_user_domain"] is True

    async def test_platform_and_brand_filters(self, client, db, seed_domain, add_run):
        domain = await seed_domain(prompts=["a"], competitors=["Calendly", "Acuity"])
        prompts = await VisibilityStore(db).list_active_prompts(domain.id)
        now = datetime.now(timezone.utc)
        await add_run(prompts[0], now, mentioned=True)
        await add_run(prompts[0], now, provider="gemini", mentioned=True)

        resp = await client.get(
            f"/api/v1/domains/{domain.id}/visibility",
            params={"platforms": "gemini", "brands": "acu"},
        )
        data = resp.json()
        assert data["total_queries"] == 1
        assert {e["name"] for e in data["ranking"]} == {"example.com", "Acuity"}

    async def test_empty_window_has_seven_points(self, client, seed_domain):
        domain = await seed_domain()
        resp = await client.get(
            f"/api/v1/domains/{domain.id}/visibility",
            params={"start_date": "2020-01-01", "end_date": "2020-01-31"},
        )
        data = resp.json()
        assert len(data["daily"]) == 7
        assert data["total_queries"] == 0

    async def test_bad_window(self, client, seed_domain):
        domain = await seed_domain()
        resp = await client.get(
            f"/api/v1/domains/{domain.id}/visibility",
            params={"start_date": "2026-02-01", "end_date": "2026-01-01"},
        )
        assert resp.status_code == 400

    async def test_unknown_domain(self, client):
        resp = await client.get("/api/v1/domains/missing/visibility")
        assert resp.status_code == 404


async def test_metrics_endpoint(client):
    resp = await client.get("/metrics")
    assert resp.status_code == 200
    assert "prompt_runs_total" in resp.text


async def test_request_id_header(client):
    resp = await client.get("/api/v1/runs/nope", headers={"X-Request-ID": "abc123"})
    assert resp.headers["x-request-id"] == "abc123"
