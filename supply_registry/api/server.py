"""HTTP API for the token supply registry.

Thin aiohttp.web layer over TokenService: it parses requests, calls the
service and maps domain errors to status codes (400 for bad input or a
duplicate token, 404 for unknown ids, 500 otherwise).
"""

import logging
from typing import Any, Dict

from aiohttp import web

from supply_registry.core.tokens import TokenService
from supply_registry.errors import InvalidAddress, InvalidInput, StorageConflict, TokenNotFound
from supply_registry.services.metrics import get_content_type, get_metrics
from supply_registry.services.token_store import record_to_dict
from supply_registry.services.tokenlists import TokenListService

logger = logging.getLogger(__name__)

TOKEN_SERVICE = web.AppKey("token_service", TokenService)
TOKENLISTS = web.AppKey("tokenlists", TokenListService)

# Request body keys accepted by PUT /api/tokens/{id}
_UPDATE_KEYS = {
    "address": "address",
    "chainKey": "chain_key",
    "chain_key": "chain_key",
    "chainName": "chain_name",
    "chain_name": "chain_name",
    "supplyInput": "supply_input",
    "supply_input": "supply_input",
}


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except (InvalidAddress, InvalidInput, StorageConflict) as e:
        return _error(400, str(e))
    except TokenNotFound:
        return _error(404, "not found")
    except Exception:
        logger.exception(f"Unhandled error on {request.method} {request.path}")
        return _error(500, "server error")


async def _json_body(request: web.Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise web.HTTPBadRequest(
            text='{"error": "invalid JSON body"}', content_type="application/json"
        )
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(
            text='{"error": "JSON object expected"}', content_type="application/json"
        )
    return body


def _token_id(request: web.Request) -> int:
    return int(request.match_info["id"])


def _string_field(body: Dict[str, Any], key: str) -> str | None:
    value = body.get(key)
    if value is not None and not isinstance(value, str):
        raise InvalidInput(f"{key} must be a string")
    return value


async def health_handler(_request: web.Request) -> web.Response:
    return web.json_response({"ok": True})


async def metrics_handler(_request: web.Request) -> web.Response:
    """Prometheus metrics endpoint."""
    return web.Response(body=get_metrics(), headers={"Content-Type": get_content_type()})


async def list_chains(request: web.Request) -> web.Response:
    service = request.app[TOKEN_SERVICE]
    return web.json_response([
        {"key": c.key, "name": c.display_name, "chainId": c.chain_id}
        for c in service.registry.chains()
    ])


async def list_tokens(request: web.Request) -> web.Response:
    service = request.app[TOKEN_SERVICE]
    records = await service.list_tokens()
    return web.json_response([record_to_dict(r) for r in records])


async def create_token(request: web.Request) -> web.Response:
    service = request.app[TOKEN_SERVICE]
    body = await _json_body(request)

    address = _string_field(body, "address")
    chain_key = _string_field(body, "chainKey")
    if not address or not chain_key:
        return _error(400, "address and chainKey required")

    record, warnings = await service.create_token(
        address=address,
        chain_key=chain_key,
        chain_name=_string_field(body, "chainName"),
        supply_input=_string_field(body, "supplyInput"),
        fetch_onchain=bool(body.get("fetchOnchain")),
        apply_branding=bool(body.get("applyBranding") or body.get("applyMediaXr")),
    )
    return web.json_response({**record_to_dict(record), "warnings": warnings}, status=201)


async def update_token(request: web.Request) -> web.Response:
    service = request.app[TOKEN_SERVICE]
    body = await _json_body(request)

    partial = {field: _string_field(body, key) for key, field in _UPDATE_KEYS.items() if key in body}
    if "metadata" in body:
        partial["metadata"] = body["metadata"]

    record = await service.update_token(_token_id(request), partial)
    return web.json_response(record_to_dict(record))


async def delete_token(request: web.Request) -> web.Response:
    service = request.app[TOKEN_SERVICE]
    await service.delete_token(_token_id(request))
    return web.Response(status=204)


async def refresh_token(request: web.Request) -> web.Response:
    service = request.app[TOKEN_SERVICE]
    record, warnings = await service.refresh_token(_token_id(request))
    token = record_to_dict(record)
    return web.json_response({"ok": True, "metadata": token["metadata"], "warnings": warnings})


async def apply_branding(request: web.Request) -> web.Response:
    service = request.app[TOKEN_SERVICE]
    record = await service.apply_branding(_token_id(request))
    return web.json_response(record_to_dict(record))


async def rpc_stats(request: web.Request) -> web.Response:
    service = request.app[TOKEN_SERVICE]
    return web.json_response(service.rpc_stats())


async def refresh_tokenlists(request: web.Request) -> web.Response:
    tokenlists = request.app[TOKENLISTS]
    entries = await tokenlists.refresh()
    return web.json_response({"ok": True, "count": len(entries)})


def create_app(service: TokenService, tokenlists: TokenListService) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    app[TOKEN_SERVICE] = service
    app[TOKENLISTS] = tokenlists

    app.router.add_get("/api/health", health_handler)
    app.router.add_get("/api/chains", list_chains)
    app.router.add_get("/api/tokens", list_tokens)
    app.router.add_post("/api/tokens", create_token)
    app.router.add_put(r"/api/tokens/{id:\d+}", update_token)
    app.router.add_delete(r"/api/tokens/{id:\d+}", delete_token)
    app.router.add_post(r"/api/tokens/{id:\d+}/refresh", refresh_token)
    app.router.add_post(r"/api/tokens/{id:\d+}/branding", apply_branding)
    app.router.add_post("/api/tokenlists/refresh", refresh_tokenlists)
    app.router.add_get("/api/rpc/stats", rpc_stats)
    app.router.add_get("/metrics", metrics_handler)
    return app
