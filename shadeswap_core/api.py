"""
REST / HTTP API for a ShadeSwap gate.

Built on ``aiohttp``; wraps a ``ShadeSwapEngine``.

Endpoints
---------
GET  /health                        Liveness plus tree/registry summary
GET  /status                        Engine summary
GET  /stats                         (total_claims, total_volume, deposits)
GET  /roots/{root}                  Is this root in the recent history?
GET  /commitments/{commitment}      Has this commitment been deposited?
GET  /nullifiers/{claim_id}         Has this nullifier hash / key image been redeemed?
GET  /announcements                 Stealth announcements (?since=&limit=)
GET  /accounts/{address}            Next request sequence and balance (?token=)
POST /deposit                       {"depositor", "commitment", "amount"?} + signature
POST /swap                          {"initiator", "payload", "token_out"?, "amount_in"?}
POST /stealth/register              {"registrant", "meta_address"} + signature

Security
--------
- API-key authentication on POST endpoints via ``X-API-Key`` header only.
  Timing-safe comparison via ``hmac.compare_digest``.
- Per-IP token-bucket rate limiter (configurable RPM).
- CORS middleware (origins configurable via ``cors_origins``).
- Request body size cap (``max_body_bytes``).
- Deposits, pass-through swaps (empty payload) and meta-address
  registration carry ``public_key``, ``signature`` and ``sequence``: a
  secp256k1 signature by the named account (see ``auth``).  Claim swaps
  are authorized by their proof or ring signature.

Engine errors come back as ``{"error": <code>, "message": ...}`` with
status 403 for authorization failures and 400 otherwise.

Usage:
    api = APIServer(engine, host="127.0.0.1", port=8080, api_config=cfg.api)
    await api.start()    # call inside existing event loop
    ...
    await api.stop()
"""

from __future__ import annotations

import asyncio
import hmac
import json
import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from aiohttp import web

from shadeswap_core.auth import SignedRequest
from shadeswap_core.crypto_utils import normalize_address
from shadeswap_core.errors import AuthorizationError, ShadeSwapError
from shadeswap_core.events import Announcement

if TYPE_CHECKING:
    from shadeswap_core.config import APIConfig
    from shadeswap_core.engine import ShadeSwapEngine
    from shadeswap_core.storage import EngineStore

logger = logging.getLogger("shadeswap.api")


# ═══════════════════════════════════════════════════════════════════
#  Input helpers
# ═══════════════════════════════════════════════════════════════════

def _parse_int(value: Any, name: str = "value") -> int:
    """Accept a JSON integer or a decimal / ``0x`` hex string."""
    if isinstance(value, bool):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 16) if value.lower().startswith("0x") else int(value)
        except ValueError:
            pass
    raise web.HTTPBadRequest(text=f"{name} must be an integer")


def _parse_hex(value: Any, name: str = "value") -> bytes:
    if not isinstance(value, str):
        raise web.HTTPBadRequest(text=f"{name} must be a hex string")
    body = value[2:] if value.lower().startswith("0x") else value
    try:
        return bytes.fromhex(body)
    except ValueError:
        raise web.HTTPBadRequest(text=f"{name} must be a hex string")


def _require_str(body: dict, name: str) -> str:
    value = body.get(name)
    if not isinstance(value, str) or not value:
        raise web.HTTPBadRequest(text=f"{name} required")
    return value


def _signed_request(body: dict, required: bool = True) -> SignedRequest | None:
    """Signature fields from *body*; 401 when a required signature is absent."""
    if not any(k in body for k in ("public_key", "signature", "sequence")):
        if required:
            raise web.HTTPUnauthorized(text="signed request required")
        return None
    return SignedRequest(
        public_key=_parse_hex(body.get("public_key"), "public_key"),
        signature=_parse_hex(body.get("signature"), "signature"),
        sequence=_parse_int(body.get("sequence"), "sequence"),
    )


async def _read_json(request: web.Request) -> dict:
    try:
        body = await request.json()
    except web.HTTPException:
        raise
    except Exception as exc:
        raise web.HTTPBadRequest(text="Invalid JSON body") from exc
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return body


def _json_dumps(obj: Any) -> str:
    """JSON serialiser that handles non-standard types."""
    return json.dumps(obj, default=str)


# ═══════════════════════════════════════════════════════════════════
#  Rate Limiter (per-IP token bucket)
# ═══════════════════════════════════════════════════════════════════

class _TokenBucket:
    """Per-IP token-bucket rate limiter."""

    __slots__ = ("_buckets", "_rpm")

    def __init__(self, rpm: int):
        self._rpm = rpm  # 0 = unlimited
        # ip -> [tokens, last_refill]
        self._buckets: dict[str, list[float]] = defaultdict(lambda: [float(rpm), time.monotonic()])

    def allow(self, ip: str) -> bool:
        if self._rpm <= 0:
            return True
        bucket = self._buckets[ip]
        now = time.monotonic()
        bucket[0] = min(float(self._rpm), bucket[0] + (now - bucket[1]) * (self._rpm / 60.0))
        bucket[1] = now
        if bucket[0] >= 1.0:
            bucket[0] -= 1.0
            return True
        return False


# ═══════════════════════════════════════════════════════════════════
#  Middleware factories
# ═══════════════════════════════════════════════════════════════════

def _make_rate_limit_middleware(bucket: _TokenBucket):
    @web.middleware
    async def rate_limit_middleware(request: web.Request, handler):
        if not bucket.allow(request.remote or "unknown"):
            raise web.HTTPTooManyRequests(
                text="Rate limit exceeded. Try again later.",
                headers={"Retry-After": "5"},
            )
        return await handler(request)

    return rate_limit_middleware


def _make_api_key_middleware(api_key: str):
    """Require ``X-API-Key`` on POST (header only, never query params)."""

    @web.middleware
    async def api_key_middleware(request: web.Request, handler):
        if request.method == "POST":
            key = request.headers.get("X-API-Key", "")
            if not hmac.compare_digest(key, api_key):
                raise web.HTTPUnauthorized(text="Invalid or missing API key")
        return await handler(request)

    return api_key_middleware


def _make_cors_middleware(origins: list[str]):
    """CORS headers for explicitly listed origins; ``*`` is ignored."""
    allowed = set(origins)
    allowed.discard("*")

    @web.middleware
    async def cors_middleware(request: web.Request, handler):
        origin = request.headers.get("Origin", "")
        if request.method == "OPTIONS":
            resp = web.Response(status=204)
        else:
            resp = await handler(request)
        if origin in allowed:
            resp.headers["Access-Control-Allow-Origin"] = origin
            resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = "Content-Type, X-API-Key"
            resp.headers["Access-Control-Max-Age"] = "3600"
        return resp

    return cors_middleware


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Turn engine errors into JSON bodies with a stable error code."""
    try:
        return await handler(request)
    except ShadeSwapError as exc:
        status = 403 if isinstance(exc, AuthorizationError) else 400
        logger.info(f"{request.method} {request.path} rejected: {exc.code}")
        return web.json_response(exc.to_dict(), status=status)
    except ValueError as exc:
        return web.json_response({"error": "BadRequest", "message": str(exc)}, status=400)


class APIServer:
    """Thin aiohttp wrapper around a ShadeSwapEngine."""

    def __init__(
        self,
        engine: ShadeSwapEngine,
        host: str = "127.0.0.1",
        port: int = 8080,
        *,
        api_config: APIConfig | None = None,
        store: EngineStore | None = None,
    ):
        self.engine = engine
        self.host = host
        self.port = port
        self.store = store
        self._api_config = api_config
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    # ── lifecycle ────────────────────────────────────────────────

    def build_app(self) -> web.Application:
        middlewares: list = []
        max_body = 65_536
        cfg = self._api_config
        if cfg is not None:
            max_body = cfg.max_body_bytes
            if cfg.rate_limit_rpm > 0:
                middlewares.append(_make_rate_limit_middleware(_TokenBucket(cfg.rate_limit_rpm)))
            if cfg.cors_origins:
                middlewares.append(_make_cors_middleware(cfg.cors_origins))
            if cfg.api_key:
                middlewares.append(_make_api_key_middleware(cfg.api_key))
        middlewares.append(error_middleware)

        app = web.Application(middlewares=middlewares, client_max_size=max_body)
        self._register_routes(app)
        self._app = app
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()

    # ── routes ───────────────────────────────────────────────────

    def _register_routes(self, app: web.Application) -> None:
        app.router.add_get("/health", self._health)
        app.router.add_get("/status", self._status)
        app.router.add_get("/stats", self._stats)
        app.router.add_get("/roots/{root}", self._root)
        app.router.add_get("/commitments/{commitment}", self._commitment)
        app.router.add_get("/nullifiers/{claim_id}", self._nullifier)
        app.router.add_get("/announcements", self._announcements)
        app.router.add_get("/accounts/{address}", self._account)
        app.router.add_post("/deposit", self._deposit)
        app.router.add_post("/swap", self._swap)
        app.router.add_post("/stealth/register", self._register_meta)

    # ── queries ──────────────────────────────────────────────────

    async def _health(self, _request: web.Request) -> web.Response:
        engine = self.engine
        bound = engine.nullifiers.gate == engine.gate.gate_id
        return web.json_response({
            "ok": bound,
            "deposit_count": engine.get_deposit_count(),
            "spent_claims": len(engine.nullifiers),
            "checks": {"gate_binding": "ok" if bound else "unbound"},
        }, status=200 if bound else 503)

    async def _status(self, _request: web.Request) -> web.Response:
        return web.json_response(self.engine.status(), dumps=_json_dumps)

    async def _stats(self, _request: web.Request) -> web.Response:
        total_claims, total_volume = self.engine.get_stats()
        return web.json_response({
            "total_claims": total_claims,
            "total_volume": total_volume,
            "deposit_count": self.engine.get_deposit_count(),
        })

    async def _root(self, request: web.Request) -> web.Response:
        root = _parse_int(request.match_info["root"], "root")
        return web.json_response({"root": hex(root), "known": self.engine.is_known_root(root)})

    async def _commitment(self, request: web.Request) -> web.Response:
        commitment = _parse_int(request.match_info["commitment"], "commitment")
        index = self.engine.accumulator.leaf_index(commitment)
        return web.json_response({
            "commitment": hex(commitment),
            "exists": index is not None,
            "leaf_index": index,
        })

    async def _nullifier(self, request: web.Request) -> web.Response:
        claim_id = request.match_info["claim_id"]
        return web.json_response({"claim_id": claim_id, "spent": self.engine.is_spent(claim_id)})

    async def _announcements(self, request: web.Request) -> web.Response:
        since = _parse_int(request.query.get("since", "0"), "since")
        limit = max(1, min(_parse_int(request.query.get("limit", "100"), "limit"), 500))
        if self.store is not None:
            items = self.store.load_announcements(since, limit)
        else:
            events = self.engine.events.of_type(Announcement)
            items = [
                {"id": i + 1, **e.to_dict()}
                for i, e in enumerate(events)
            ][since:since + limit]
        return web.json_response({"announcements": items})

    async def _account(self, request: web.Request) -> web.Response:
        address = request.match_info["address"]
        token = request.query.get("token") or self.engine.pool.token
        return web.json_response({
            "address": address.lower(),
            "next_sequence": self.engine.next_sequence(address),
            "token": token,
            "balance": str(self.engine.balance_of(address, token)),
        })

    # ── submissions ──────────────────────────────────────────────

    async def _deposit(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        depositor = normalize_address(_require_str(body, "depositor"))
        commitment = _parse_int(body.get("commitment"), "commitment")
        amount = None
        if "amount" in body:
            amount = _parse_int(body["amount"], "amount")
        signed = _signed_request(body)
        receipt = self.engine.deposit(depositor, commitment, amount, request=signed)
        return web.json_response({"status": "accepted", **receipt.to_dict()})

    async def _swap(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        initiator = _require_str(body, "initiator")
        payload = _parse_hex(body.get("payload", ""), "payload")
        token_out = body.get("token_out")
        if token_out is not None and not isinstance(token_out, str):
            raise web.HTTPBadRequest(text="token_out must be a string")
        amount_in = _parse_int(body.get("amount_in", 0), "amount_in")
        # A pass-through swap spends the initiator's own balance.
        signed = _signed_request(body, required=not payload)
        # Proof verification may shell out; keep the event loop free.
        outcome = await asyncio.to_thread(
            self.engine.swap, initiator, payload, token_out, amount_in, signed,
        )
        return web.json_response({"status": "executed", **outcome.to_dict()}, dumps=_json_dumps)

    async def _register_meta(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        registrant = normalize_address(_require_str(body, "registrant"))
        meta = _parse_hex(body.get("meta_address"), "meta_address")
        signed = _signed_request(body)
        registered = self.engine.register_stealth_meta(registrant, meta, request=signed)
        return web.json_response({"status": "registered", "meta_address": registered.hex()})
