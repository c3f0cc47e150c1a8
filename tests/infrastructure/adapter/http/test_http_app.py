"""
Tests for the aiohttp API.

This module drives the routes through pytest-aiohttp's test client against
an in-memory engine with a small handler set.
"""

from unittest.mock import Mock

import pytest

from stepflow.client import Client
from stepflow.config import Settings
from stepflow.handlers.action import CalculateAction
from stepflow.handlers.filter import SimpleFilter
from stepflow.handlers.source import ManualInputSource
from stepflow.infrastructure.adapter.http.app import create_app
from stepflow.infrastructure.adapter.in_memory.client import create as create_in_memory_client

AUTH = {"Authorization": "Bearer t-alice"}


@pytest.fixture
def settings():
    return Settings(server={"api_tokens": {"t-alice": "alice"}})


@pytest.fixture
async def api(aiohttp_client, settings):
    client = create_in_memory_client([ManualInputSource(), SimpleFilter(), CalculateAction()])
    return await aiohttp_client(create_app(client, settings))


class TestAuth:
    """Test cases for bearer-token authentication."""

    async def test_missing_token(self, api):
        response = await api.get("/api/steps/step-types")

        assert response.status == 401
        body = await response.json()
        assert body == {"success": False, "error": {"message": "Access token required", "status": 401}}

    async def test_unknown_token(self, api):
        response = await api.get("/api/steps/step-types", headers={"Authorization": "Bearer nope"})

        assert response.status == 401
        assert (await response.json())["error"]["message"] == "Invalid or expired token"

    async def test_wrong_scheme(self, api):
        response = await api.get("/api/steps/step-types", headers={"Authorization": "Basic t-alice"})

        assert response.status == 401

    async def test_health_is_public(self, api):
        response = await api.get("/health")

        assert response.status == 200
        assert await response.json() == {"status": "healthy"}


class TestExecuteStep:
    """Test cases for POST /api/steps/execute-step."""

    async def test_success(self, api):
        payload = {"step": {"id": "s1", "type": "source_manual_input", "config": {"value": [1, 2]}}}

        response = await api.post("/api/steps/execute-step", json=payload, headers=AUTH)

        assert response.status == 200
        body = await response.json()
        assert body["success"] is True
        assert body["data"]["stepId"] == "s1"
        assert body["data"]["success"] is True
        assert body["data"]["data"] == [1, 2]
        assert "error" not in body["data"]

    async def test_handler_failure_is_still_200(self, api):
        payload = {
            "step": {"id": "s2", "type": "filter_simple", "config": {"field": "y", "value": 1}},
            "inputData": {"x": 1},
        }

        response = await api.post("/api/steps/execute-step", json=payload, headers=AUTH)

        assert response.status == 200
        result = (await response.json())["data"]
        assert result["success"] is False
        assert result["error"]["type"] == "InvalidStepConfig"
        assert result["error"]["field"] == "y"
        assert "data" not in result

    async def test_unknown_type_is_a_failed_result(self, api):
        payload = {"step": {"id": "s3", "type": "teleport"}}

        response = await api.post("/api/steps/execute-step", json=payload, headers=AUTH)

        assert (await response.json())["data"]["error"]["type"] == "UnknownStepType"

    async def test_missing_step(self, api):
        response = await api.post("/api/steps/execute-step", json={"inputData": 1}, headers=AUTH)

        assert response.status == 400
        body = await response.json()
        assert body["error"]["message"] == "Step object with id and type is required"

    async def test_step_without_type(self, api):
        response = await api.post("/api/steps/execute-step", json={"step": {"id": "s1"}}, headers=AUTH)

        assert response.status == 400

    async def test_invalid_json(self, api):
        response = await api.post("/api/steps/execute-step", data=b"{nope", headers=AUTH)

        assert response.status == 400


class TestExecutionResults:
    """Test cases for result lookup and clearing."""

    async def test_lookup_after_execution(self, api):
        step = {"id": "lookup-me", "type": "source_manual_input", "config": {"value": "v"}}
        await api.post("/api/steps/execute-step", json={"step": step}, headers=AUTH)

        response = await api.get("/api/steps/execution-result/lookup-me", headers=AUTH)

        assert response.status == 200
        assert (await response.json())["data"]["data"] == "v"

    async def test_lookup_missing(self, api):
        response = await api.get("/api/steps/execution-result/never-ran", headers=AUTH)

        assert response.status == 404
        assert (await response.json())["error"]["message"] == "Execution result not found"

    async def test_clear(self, api):
        step = {"id": "s1", "type": "source_manual_input", "config": {"value": 1}}
        await api.post("/api/steps/execute-step", json={"step": step}, headers=AUTH)

        response = await api.delete("/api/steps/execution-results", headers=AUTH)

        assert await response.json() == {"success": True, "message": "Execution results cleared"}
        missing = await api.get("/api/steps/execution-result/s1", headers=AUTH)
        assert missing.status == 404


class TestExecuteWorkflow:
    """Test cases for POST /api/steps/execute-workflow."""

    async def test_success(self, api):
        payload = {
            "steps": [
                {"id": "a", "type": "source_manual_input", "config": {"value": [{"n": 2}, {"n": 5}]}},
                {"id": "b", "type": "filter_simple", "config": {"field": "n", "operator": "greater_than", "value": 3}},
                {"id": "c", "type": "action_calculate", "config": {"operation": "sum", "field": "n"}},
            ],
            "executionId": "run-1",
        }

        response = await api.post("/api/steps/execute-workflow", json=payload, headers=AUTH)

        assert response.status == 200
        execution = (await response.json())["data"]
        assert execution["id"] == "run-1"
        assert execution["status"] == "success"
        assert execution["totalSteps"] == 3
        assert execution["completedSteps"] == 3
        assert execution["finalData"] == {"operation": "sum", "field": "n", "result": 5}

    async def test_stops_on_failure(self, api):
        payload = {
            "steps": [
                {"id": "s1", "type": "source_manual_input", "config": {"value": {"x": 1}}},
                {"id": "s2", "type": "filter_simple", "config": {"field": "y", "value": 1}},
            ]
        }

        response = await api.post("/api/steps/execute-workflow", json=payload, headers=AUTH)

        execution = (await response.json())["data"]
        assert execution["status"] == "failed"
        assert execution["completedSteps"] == 2
        assert execution["finalData"] == {"x": 1}

    async def test_empty_steps(self, api):
        response = await api.post("/api/steps/execute-workflow", json={"steps": []}, headers=AUTH)

        assert response.status == 400
        assert (await response.json())["error"]["message"] == "Steps array is required"

    async def test_malformed_step(self, api):
        response = await api.post("/api/steps/execute-workflow", json={"steps": [{"id": "a"}]}, headers=AUTH)

        assert response.status == 400


class TestValidateWorkflow:
    """Test cases for checking a workflow over HTTP."""

    async def test_valid(self, api):
        response = await api.post(
            "/api/steps/validate-workflow",
            json={"steps": [{"id": "s1", "type": "source_manual_input", "config": {"value": 1}}]},
            headers=AUTH,
        )

        assert response.status == 200
        assert await response.json() == {"success": True, "data": {"valid": True, "errors": []}}

    async def test_problems_are_reported_not_rejected(self, api):
        steps = [
            {"id": "s1", "type": "teleport"},
            {
                "id": "s2",
                "type": "filter_simple",
                "config": {},
                "connections": [{"id": "c", "sourceId": "s2", "targetId": "s9"}],
            },
        ]

        response = await api.post("/api/steps/validate-workflow", json={"steps": steps}, headers=AUTH)

        assert response.status == 200
        data = (await response.json())["data"]
        assert data["valid"] is False
        assert data["errors"][0] == "Unknown step type: teleport in step s1"
        assert data["errors"][-1] == "Step s2 connects to non-existent step s9"
        assert len(data["errors"]) == 3

    async def test_nothing_is_executed(self, api):
        await api.post(
            "/api/steps/validate-workflow",
            json={"steps": [{"id": "s1", "type": "source_manual_input", "config": {"value": 1}}]},
            headers=AUTH,
        )

        response = await api.get("/api/steps/execution-result/s1", headers=AUTH)

        assert response.status == 404

    async def test_requires_token(self, api):
        response = await api.post("/api/steps/validate-workflow", json={"steps": []})

        assert response.status == 401


class TestStepTypes:
    """Test cases for GET /api/steps/step-types."""

    async def test_lists_registered_types(self, api):
        response = await api.get("/api/steps/step-types", headers=AUTH)

        assert (await response.json())["data"] == ["action_calculate", "filter_simple", "source_manual_input"]


class TestUnexpectedFaults:
    """Test cases for the 500 mapping."""

    async def test_client_fault(self, aiohttp_client, settings):
        client = Mock(spec=Client)
        client.get_execution_result.side_effect = RuntimeError("store offline")
        api = await aiohttp_client(create_app(client, settings))

        response = await api.get("/api/steps/execution-result/s1", headers=AUTH)

        assert response.status == 500
        assert (await response.json())["error"]["message"] == "store offline"

    async def test_client_closed_on_cleanup(self, aiohttp_client, settings):
        client = Mock(spec=Client)
        api = await aiohttp_client(create_app(client, settings))

        await api.close()

        client.close.assert_called_once()
