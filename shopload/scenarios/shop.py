"""
Shop Flow Scenario

One iteration is one user session against the coin shop:

1. POST /api/auth      -> token
2. GET  /api/info      (bearer token)
3. POST /api/sendCoin  (bearer token)
4. GET  /api/buy/{item} (bearer token)

Every step runs even if an earlier one failed, unless
``abort_on_auth_failure`` is set and auth produced no token.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..client import auth_header, safe_json
from ..executor import IterationContext
from .base import BaseScenario, status_is

logger = logging.getLogger(__name__)


@dataclass
class UserSession:
    """Per-iteration user state."""
    username: str
    token: Optional[str] = None


def _has_token(response) -> bool:
    return "token" in safe_json(response)


class ShopScenario(BaseScenario):
    """Auth, read account info, transfer coins, buy an item."""

    @property
    def name(self) -> str:
        return "shop-flow"

    def iterate(self, ctx: IterationContext) -> None:
        user = UserSession(username=self.flow.username_for(ctx.worker_id))

        self.authenticate(ctx, user)
        if user.token is None and self.flow.abort_on_auth_failure:
            logger.debug("No token for %s, skipping iteration %d", user.username, ctx.iteration)
            return

        headers = auth_header(user.token)
        self.request(
            ctx, "info", "GET", "/api/info",
            checks={"info status is 200": status_is(200)},
            headers=headers,
        )
        self.request(
            ctx, "sendCoin", "POST", "/api/sendCoin",
            checks={"send status is 200": status_is(200)},
            headers=headers,
            json={"toUser": self.flow.recipient, "amount": self.flow.amount},
        )
        self.request(
            ctx, "buy", "GET", f"/api/buy/{self.flow.item}",
            checks={"buy status is 200": status_is(200)},
            headers=headers,
        )

    def authenticate(self, ctx: IterationContext, user: UserSession) -> None:
        response = self.request(
            ctx, "auth", "POST", "/api/auth",
            checks={
                "auth status is 200": status_is(200),
                "token exists": _has_token,
            },
            headers={"Content-Type": "application/json"},
            json={"username": user.username, "password": self.flow.password},
        )
        token = safe_json(response).get("token")
        user.token = token if isinstance(token, str) else None
