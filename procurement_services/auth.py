"""Caller resolution for the lifecycle coordinator."""

from __future__ import annotations

from procurement_kernel.domain.requisition import CallerIdentity


class StaticAuthProvider:
    """Default AuthProvider backed by a simple dict.

    Satisfies the AuthProvider protocol from domain/requisition.py.
    Can be replaced with a session-store or SSO-backed implementation.
    """

    def __init__(self, tokens: dict[str, CallerIdentity] | None = None) -> None:
        self._tokens: dict[str, CallerIdentity] = dict(tokens or {})

    def register(self, token: str, identity: CallerIdentity) -> None:
        self._tokens[token] = identity

    def revoke(self, token: str) -> None:
        self._tokens.pop(token, None)

    def resolve(self, token: str) -> CallerIdentity | None:
        return self._tokens.get(token)
