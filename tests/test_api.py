"""API endpoint tests.

Tests the FastAPI endpoints for payroll run operations.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import AsyncClient

from payrun_engine.exceptions import RunValidationError

ACTOR = {"X-Actor-ID": "payroll-admin"}


async def create_run(client: AsyncClient, period_id, **extra) -> dict:
    response = await client.post(
        "/api/v1/payroll-runs",
        headers=ACTOR,
        json={"period_id": str(period_id), **extra},
    )
    assert response.status_code in (200, 201), response.text
    return response.json()


class TestHealthEndpoints:
    """Test health check endpoints."""

    async def test_health_check(self, client: AsyncClient):
        """Health endpoint should return 200."""
        response = await client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "healthy"
        assert data["calculation_lock_mode"] in ("wait", "nowait")
        assert data["engine_version"]

    async def test_readiness_and_liveness(self, client: AsyncClient):
        assert (await client.get("/ready")).json()["status"] == "ready"
        assert (await client.get("/live")).json()["status"] == "alive"


class TestPayrollRunCRUD:
    """Test payroll run create, list and detail endpoints."""

    async def test_create_returns_201_then_200(self, client: AsyncClient, seeded):
        """Repeating a create with the same number returns the existing run."""
        first = await client.post(
            "/api/v1/payroll-runs",
            headers=ACTOR,
            json={"period_id": str(seeded.period_id), "run_number": 1},
        )
        second = await client.post(
            "/api/v1/payroll-runs",
            headers=ACTOR,
            json={"period_id": str(seeded.period_id), "run_number": 1},
        )

        assert first.status_code == 201
        assert second.status_code == 200
        assert first.json()["id"] == second.json()["id"]
        assert first.json()["status"] == "draft"
        assert first.json()["created_by"] == "payroll-admin"

    async def test_create_unknown_period(self, client: AsyncClient, seeded):
        response = await client.post(
            "/api/v1/payroll-runs", json={"period_id": str(uuid4())}
        )

        assert response.status_code == 404
        assert response.json()["code"] == "PERIOD_NOT_FOUND"

    async def test_create_rejects_bad_payload(self, client: AsyncClient, seeded):
        response = await client.post(
            "/api/v1/payroll-runs",
            json={"period_id": str(seeded.period_id), "run_number": 0},
        )
        assert response.status_code == 422

    async def test_list_runs(self, client: AsyncClient, seeded):
        await create_run(client, seeded.period_id)
        run = await create_run(client, seeded.period_id)
        await client.post(f"/api/v1/payroll-runs/{run['id']}/calculate", headers=ACTOR)

        response = await client.get("/api/v1/payroll-runs")
        assert response.status_code == 200
        assert response.json()["total"] == 2

        response = await client.get("/api/v1/payroll-runs", params={"status": "calculated"})
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["id"] == run["id"]

    async def test_list_rejects_unknown_status(self, client: AsyncClient, seeded):
        response = await client.get("/api/v1/payroll-runs", params={"status": "finished"})

        assert response.status_code == 400
        assert response.json()["code"] == RunValidationError.code

    async def test_get_run_with_lines(self, client: AsyncClient, seeded):
        run = await create_run(client, seeded.period_id)
        await client.post(f"/api/v1/payroll-runs/{run['id']}/calculate", headers=ACTOR)

        response = await client.get(f"/api/v1/payroll-runs/{run['id']}")
        assert response.status_code == 200
        data = response.json()
        assert [line["full_name"] for line in data["lines"]] == ["Ada Lovelace", "Grace Hopper"]

        response = await client.get(f"/api/v1/payroll-runs/{run['id']}/lines")
        assert response.json()["total"] == 2

    async def test_get_unknown_run(self, client: AsyncClient, seeded):
        run_id = uuid4()
        response = await client.get(f"/api/v1/payroll-runs/{run_id}")

        assert response.status_code == 404
        body = response.json()
        assert body["code"] == "RUN_NOT_FOUND"
        assert body["context"] == {"run_id": str(run_id)}
        assert body["retryable"] is False


class TestPayrollRunLifecycle:
    """Test the calculate → approve → post flow over HTTP."""

    async def test_full_flow(self, client: AsyncClient, seeded):
        run = await create_run(client, seeded.period_id)
        base = f"/api/v1/payroll-runs/{run['id']}"

        response = await client.post(f"{base}/calculate", headers=ACTOR)
        assert response.status_code == 200
        data = response.json()
        assert data["run"]["status"] == "calculated"
        assert Decimal(data["run"]["total_gross_pay"]) == Decimal("3500")
        assert Decimal(data["run"]["total_employee_taxes"]) == Decimal("700")
        assert Decimal(data["run"]["total_net_pay"]) == Decimal("2800")
        assert data["run"]["employee_count"] == 2
        assert data["anomalies"] == []
        assert len(data["lines"]) == 2

        response = await client.post(f"{base}/review", headers=ACTOR)
        assert response.json()["status"] == "reviewing"

        response = await client.post(f"{base}/approve", headers=ACTOR, json={})
        assert response.status_code == 200
        assert response.json()["status"] == "approved"
        assert response.json()["approved_by"] == "payroll-admin"

        response = await client.post(f"{base}/post", headers=ACTOR)
        assert response.status_code == 200
        assert response.json()["status"] == "posted"
        assert response.json()["journal_entry_id"] is not None

        response = await client.post(f"{base}/mark-paid", headers=ACTOR)
        assert response.json()["status"] == "paid"

    async def test_approve_requires_acknowledgement(
        self, client: AsyncClient, seeded, session, person_factory
    ):
        await person_factory(session, "Rita Norate", "salary", None)
        await session.commit()
        run = await create_run(client, seeded.period_id)
        base = f"/api/v1/payroll-runs/{run['id']}"

        calculated = (await client.post(f"{base}/calculate")).json()
        assert [a["type"] for a in calculated["anomalies"]] == ["missing-rate"]

        response = await client.post(f"{base}/approve", json={})
        assert response.status_code == 409
        assert response.json()["code"] == "ANOMALY_ACKNOWLEDGEMENT_REQUIRED"
        assert response.json()["context"]["anomaly_count"] == 1

        response = await client.post(f"{base}/approve", json={"acknowledge_anomalies": True})
        assert response.status_code == 200
        assert response.json()["anomalies_acknowledged"] is True

    @pytest.mark.parametrize("action", ["approve", "post", "mark-paid", "review"])
    async def test_invalid_transition_from_draft(self, client: AsyncClient, seeded, action):
        run = await create_run(client, seeded.period_id)

        response = await client.post(f"/api/v1/payroll-runs/{run['id']}/{action}")

        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "INVALID_TRANSITION"
        assert body["context"]["from_status"] == "draft"

    async def test_void(self, client: AsyncClient, seeded):
        run = await create_run(client, seeded.period_id)
        base = f"/api/v1/payroll-runs/{run['id']}"

        missing_reason = await client.post(f"{base}/void", json={"reason": ""})
        assert missing_reason.status_code == 422

        response = await client.post(f"{base}/void", headers=ACTOR, json={"reason": "duplicate"})
        assert response.status_code == 200
        assert response.json()["status"] == "void"
        assert response.json()["void_reason"] == "duplicate"
