"""Scoped credential issuance.

Tokens are requested with an absolute expiry (now + ttl) so the harness and
the agent never disagree about what a relative duration means. Scope names
are passed through as-is; the agent decides what each scope allows.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from orbit_smoke.api_client import AgentClient, APIError
from orbit_smoke.errors import IssuanceError


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """RFC 3339 UTC timestamp, e.g. 2026-10-19T15:00:00Z."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class IssuedToken:
    """A scoped token handed out by the agent.

    Attributes:
        token: Secret bearer value
        name: Name the token was issued under
        scopes: Granted scopes, in the order they were requested
        expires_at: Absolute expiry sent to the agent
        token_id: Agent-side identifier, used for revocation
    """

    token: str
    name: str
    scopes: tuple
    expires_at: datetime
    token_id: Optional[str] = None

    @property
    def scope_set(self) -> frozenset:
        return frozenset(self.scopes)

    def allows(self, *scopes: str) -> bool:
        """True if every given scope was granted."""
        return self.scope_set.issuperset(scopes)

    def __repr__(self) -> str:
        return (
            f"IssuedToken(name={self.name!r}, scopes={list(self.scopes)!r}, "
            f"expires_at={format_timestamp(self.expires_at)!r}, token_id={self.token_id!r})"
        )


async def issue(
    client: AgentClient,
    name: str,
    scopes: list[str],
    ttl: timedelta,
    now: Optional[datetime] = None,
) -> IssuedToken:
    """Ask the agent for a scoped token.

    Args:
        client: Client authenticated with the admin credential
        name: Token name
        scopes: Capability names, submitted in this order
        ttl: Lifetime of the token
        now: Clock override (tests)

    Returns:
        IssuedToken

    Raises:
        IssuanceError: If the agent rejects the request or returns no token
    """
    expires_at = (now or _utcnow()) + ttl
    try:
        data = await client.issue_token(name, list(scopes), format_timestamp(expires_at))
    except APIError as e:
        raise IssuanceError(f"Token request rejected: {e}", e.status_code)

    if not isinstance(data, dict) or not data.get("token"):
        raise IssuanceError("Token response did not include a token")

    return IssuedToken(
        token=data["token"],
        name=data.get("name", name),
        scopes=tuple(data.get("scopes") or scopes),
        expires_at=expires_at,
        token_id=data.get("id"),
    )


async def revoke(client: AgentClient, token: IssuedToken) -> bool:
    """Revoke an issued token with the admin client.

    Returns:
        False if the token has no id to revoke
    """
    if not token.token_id:
        return False
    await client.revoke_token(token.token_id)
    return True
