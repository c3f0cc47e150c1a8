"""
HTTP API for step and workflow execution.

All routes under ``/api/steps`` require ``Authorization: Bearer <token>``;
tokens are looked up in ``server.api_tokens``. Engine calls block, so they
run in the loop's default executor.
"""

import asyncio
import functools
from typing import Any

import msgspec
import structlog
from aiohttp import web

from stepflow.client import Client
from stepflow.config import Settings
from stepflow.domain.errors import EmptyWorkflow, InvalidStepDefinition

logger = structlog.get_logger(__name__)

CLIENT_KEY = web.AppKey("client", Client)
SETTINGS_KEY = web.AppKey("settings", Settings)

_encoder = msgspec.json.Encoder(enc_hook=str)


def json_response(payload: Any, status: int = 200) -> web.Response:
    return web.Response(body=_encoder.encode(payload), status=status, content_type="application/json")


def error_response(message: str, status: int) -> web.Response:
    return json_response({"success": False, "error": {"message": message, "status": status}}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Map malformed requests to 400 and unexpected faults to 500."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except (InvalidStepDefinition, EmptyWorkflow) as e:
        logger.info("request_rejected", path=request.path, error=e.message, error_type=e.kind)
        return error_response(e.message, 400)
    except Exception as e:
        logger.exception("request_failed", path=request.path, error=str(e))
        return error_response(str(e) or e.__class__.__name__, 500)


@web.middleware
async def auth_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Resolve the bearer token to a user id for every ``/api`` route."""
    if not request.path.startswith("/api/"):
        return await handler(request)

    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        return error_response("Access token required", 401)
    user_id = request.app[SETTINGS_KEY].server.api_tokens.get(token)
    if user_id is None:
        return error_response("Invalid or expired token", 401)

    request["user_id"] = user_id
    return await handler(request)


async def _read_json(request: web.Request) -> dict[str, Any]:
    raw = await request.read()
    if not raw:
        return {}
    try:
        body = msgspec.json.decode(raw)
    except msgspec.DecodeError:
        raise InvalidStepDefinition("Request body is not valid JSON") from None
    if not isinstance(body, dict):
        raise InvalidStepDefinition("Request body must be a JSON object")
    return body


async def _in_executor(fn, *args, **kwargs):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))


async def execute_step(request: web.Request) -> web.Response:
    body = await _read_json(request)
    step = body.get("step")
    if not isinstance(step, dict) or not step.get("id") or not step.get("type"):
        raise InvalidStepDefinition("Step object with id and type is required")

    client = request.app[CLIENT_KEY]
    result = await _in_executor(client.execute_step, step, body.get("inputData"), user_id=request["user_id"])
    return json_response({"success": True, "data": result})


async def get_execution_result(request: web.Request) -> web.Response:
    step_id = request.match_info["step_id"]
    result = await _in_executor(request.app[CLIENT_KEY].get_execution_result, step_id)
    if result is None:
        return error_response("Execution result not found", 404)
    return json_response({"success": True, "data": result})


async def clear_execution_results(request: web.Request) -> web.Response:
    await _in_executor(request.app[CLIENT_KEY].clear_results)
    return json_response({"success": True, "message": "Execution results cleared"})


async def execute_workflow(request: web.Request) -> web.Response:
    body = await _read_json(request)
    client = request.app[CLIENT_KEY]
    execution = await _in_executor(
        client.execute_workflow,
        body.get("steps"),
        body.get("inputData"),
        user_id=request["user_id"],
        execution_id=body.get("executionId"),
    )
    return json_response({"success": True, "data": execution})


async def validate_workflow(request: web.Request) -> web.Response:
    body = await _read_json(request)
    report = request.app[CLIENT_KEY].validate_workflow(body.get("steps"))
    return json_response({"success": True, "data": report})


async def list_step_types(request: web.Request) -> web.Response:
    return json_response({"success": True, "data": request.app[CLIENT_KEY].step_types()})


async def health(request: web.Request) -> web.Response:
    return json_response({"status": "healthy"})


async def _close_client(app: web.Application) -> None:
    app[CLIENT_KEY].close()


def create_app(client: Client, settings: Settings) -> web.Application:
    """
    Build the aiohttp application.

    :param client: The engine façade serving the routes
    :type client: Client
    :param settings: Settings providing the API token map
    :type settings: Settings
    :returns: The configured application
    :rtype: web.Application
    """
    app = web.Application(middlewares=[error_middleware, auth_middleware])
    app[CLIENT_KEY] = client
    app[SETTINGS_KEY] = settings
    app.on_cleanup.append(_close_client)

    app.router.add_get("/health", health)
    app.router.add_post("/api/steps/execute-step", execute_step)
    app.router.add_get("/api/steps/execution-result/{step_id}", get_execution_result)
    app.router.add_delete("/api/steps/execution-results", clear_execution_results)
    app.router.add_post("/api/steps/execute-workflow", execute_workflow)
    app.router.add_post("/api/steps/validate-workflow", validate_workflow)
    app.router.add_get("/api/steps/step-types", list_step_types)
    return app


def serve(client: Client, settings: Settings) -> None:
    """Run the API until interrupted."""
    app = create_app(client, settings)
    logger.info("server_starting", host=settings.server.host, port=settings.server.port)
    web.run_app(app, host=settings.server.host, port=settings.server.port, print=None)
