"""
Follow Backend — applies follow/unfollow transitions to relationship state.

In production the transition is a single Postgres function,
handle_follow_action(p_action, p_follower_id, p_following_id), which updates
the Followers table and follower counts in one transaction. The in-memory
backend mirrors that behaviour for development and tests.
"""
from __future__ import annotations

import abc
import structlog
from typing import Any, Optional

from backend.supabase_client import SupabaseRequestError, SupabaseRestClient
from models.schemas import FollowAction

logger = structlog.get_logger()


class TransitionError(Exception):
    """Raised when the remote follow transition reports failure."""
    pass


class FollowBackend(abc.ABC):
    """Abstract base for follow-state backends."""

    @abc.abstractmethod
    async def handle_follow_action(self, action: str, follower_id: str, following_id: str) -> Any:
        """
        Apply one follow/unfollow transition.
        Raises TransitionError when the transition is rejected.
        """
        ...


class SupabaseFollowBackend(FollowBackend):
    """Calls the handle_follow_action Postgres function over PostgREST."""

    def __init__(self, client: SupabaseRestClient, procedure: str = "handle_follow_action"):
        self.client = client
        self.procedure = procedure

    async def handle_follow_action(self, action: str, follower_id: str, following_id: str) -> Any:
        try:
            return await self.client.rpc(self.procedure, {
                "p_action": action,
                "p_follower_id": follower_id,
                "p_following_id": following_id,
            })
        except SupabaseRequestError as e:
            raise TransitionError(f"Transaction failed: {e.message}") from e


class InMemoryFollowBackend(FollowBackend):
    """
    Follower graph held in a set of (follower_id, following_id) pairs.
    follow and unfollow are idempotent, so redelivered events are harmless.
    """

    def __init__(self):
        self._edges: set[tuple[str, str]] = set()
        self.calls: list[tuple[str, str, str]] = []

    async def handle_follow_action(self, action: str, follower_id: str, following_id: str) -> Any:
        self.calls.append((action, follower_id, following_id))

        try:
            kind = FollowAction(action)
        except ValueError:
            raise TransitionError(f"Transaction failed: unknown action '{action}'")

        if follower_id == following_id:
            raise TransitionError("Transaction failed: a profile cannot follow itself")

        edge = (follower_id, following_id)
        if kind == FollowAction.FOLLOW:
            changed = edge not in self._edges
            self._edges.add(edge)
        else:
            changed = edge in self._edges
            self._edges.discard(edge)

        logger.debug("follow_state_updated", action=kind.value, follower_id=follower_id,
                     following_id=following_id, changed=changed)
        return {"action": kind.value, "changed": changed}

    def is_following(self, follower_id: str, following_id: str) -> bool:
        return (follower_id, following_id) in self._edges

    def followers_of(self, profile_id: str) -> list[str]:
        return sorted(f for f, t in self._edges if t == profile_id)

    def following_of(self, profile_id: str) -> list[str]:
        return sorted(t for f, t in self._edges if f == profile_id)

    def counts(self, profile_id: str) -> dict[str, int]:
        return {
            "followers": len(self.followers_of(profile_id)),
            "following": len(self.following_of(profile_id)),
        }


def create_follow_backend(
    backend: str = "memory",
    client: Optional[SupabaseRestClient] = None,
    procedure: str = "handle_follow_action",
) -> FollowBackend:
    """Factory function to create the appropriate follow backend."""
    if backend == "supabase":
        if client is None:
            raise ValueError("supabase follow backend needs a SupabaseRestClient")
        return SupabaseFollowBackend(client, procedure=procedure)
    logger.warning("using_memory_follow_backend", reason="no supabase backend configured")
    return InMemoryFollowBackend()
