"""
Release gateway: lets an authorized router draw pooled value for a swap.

The gateway moves value out of the pool account into the router's account
and nothing else; the router then hands it to the exchange.  It is only
safe when called inside the same atomic unit as the gate's two phases, so
a failed proof or exchange also undoes the release.
"""

from __future__ import annotations

import logging

from shadeswap_core.errors import Unauthorized, ValidationError
from shadeswap_core.events import EventLog, FundsReleased
from shadeswap_core.journal import Journal
from shadeswap_core.vault import NATIVE_TOKEN, Vault

logger = logging.getLogger("shadeswap.gateway")


class ReleaseGateway:
    """Owner-managed router allowlist in front of the pool account."""

    def __init__(
        self,
        vault: Vault,
        pool_account: str,
        owner: str,
        events: EventLog,
        journal: Journal | None = None,
        routers: list[str] | None = None,
    ):
        self.vault = vault
        self.pool_account = pool_account
        self.owner = owner
        self.events = events
        self._journal = journal or Journal()
        self._routers: set[str] = set(routers or [])

    # ── admin ────────────────────────────────────────────────────

    def _require_owner(self, caller: str) -> None:
        if caller != self.owner:
            raise Unauthorized("only the owner may manage routers")

    def authorize_router(self, caller: str, router: str) -> None:
        self._require_owner(caller)
        if router in self._routers:
            return
        self._routers.add(router)
        self._journal.record(lambda: self._routers.discard(router))
        logger.info(f"Router authorized: {router}")

    def deauthorize_router(self, caller: str, router: str) -> None:
        self._require_owner(caller)
        if router not in self._routers:
            return
        self._routers.discard(router)
        self._journal.record(lambda: self._routers.add(router))
        logger.info(f"Router deauthorized: {router}")

    def is_authorized(self, router: str) -> bool:
        return router in self._routers

    @property
    def routers(self) -> set[str]:
        return set(self._routers)

    # ── release ──────────────────────────────────────────────────

    def release_for_swap(self, caller: str, amount: int) -> None:
        self.release_token_for_swap(caller, NATIVE_TOKEN, amount)

    def release_token_for_swap(self, caller: str, token: str, amount: int) -> None:
        if caller not in self._routers:
            raise Unauthorized(f"{caller} is not an authorized router")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("release amount must be a positive integer")
        self.vault.transfer(self.pool_account, caller, amount, token)
        self.events.emit(FundsReleased(router=caller, token=token, amount=amount))
        logger.debug(f"Released {amount} {token} to router {caller}")
