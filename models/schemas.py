"""
Core data models for the follow-event worker.
These are the types shared between the queue, the backend and the API.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class FollowAction(str, Enum):
    FOLLOW = "follow"
    UNFOLLOW = "unfollow"


class MessageOutcome(str, Enum):
    PROCESSED = "processed"     # transition applied (archive may still have failed)
    SKIPPED = "skipped"         # malformed payload, left on the queue untouched
    FAILED = "failed"           # transition failed, eligible for redelivery


# ──────────────────────────────────────────────────────────────
#  Follow events — the payload carried by a queue message
# ──────────────────────────────────────────────────────────────

class FollowEventData(BaseModel):
    # Numeric ids from older producers are accepted as their string form
    model_config = ConfigDict(coerce_numbers_to_str=True)

    follower_id: str = Field(min_length=1)
    following_id: str = Field(min_length=1)


class FollowEventPayload(BaseModel):
    """Wire shape of a profile event: {action, data: {follower_id, following_id}}."""
    action: str = Field(min_length=1)
    data: FollowEventData


class FollowEvent(BaseModel):
    """A validated follow/unfollow request, ready to hand to the backend."""
    action: str
    follower_id: str
    following_id: str

    @classmethod
    def from_payload(cls, payload: Any) -> FollowEvent:
        """
        Validate a raw queue payload.
        Raises InvalidEventError with a short reason when the payload is unusable.
        """
        if not isinstance(payload, dict):
            raise InvalidEventError(f"payload is not an object ({type(payload).__name__})")
        try:
            parsed = FollowEventPayload.model_validate(payload)
        except ValidationError as e:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
            raise InvalidEventError(f"invalid fields: {', '.join(fields)}") from e
        return cls(
            action=parsed.action,
            follower_id=parsed.data.follower_id,
            following_id=parsed.data.following_id,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "data": {
                "follower_id": self.follower_id,
                "following_id": self.following_id,
            },
        }


class InvalidEventError(ValueError):
    """Raised when a queue payload cannot be turned into a FollowEvent."""
    pass


# ──────────────────────────────────────────────────────────────
#  Batch results
# ──────────────────────────────────────────────────────────────

class MessageResult(BaseModel):
    message_id: int
    outcome: MessageOutcome
    archived: bool = False
    action: str = ""
    error: Optional[str] = None


class BatchReport(BaseModel):
    """Outcome of one drain invocation, in queue order."""
    queue: str
    results: list[MessageResult] = []
    read_failed: bool = False

    @property
    def processed_count(self) -> int:
        return sum(1 for r in self.results if r.outcome == MessageOutcome.PROCESSED)

    @property
    def skipped_count(self) -> int:
        return sum(1 for r in self.results if r.outcome == MessageOutcome.SKIPPED)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if r.outcome == MessageOutcome.FAILED)

    @property
    def summary(self) -> str:
        return f"Processed {self.processed_count} messages"

    def to_response(self) -> dict[str, Any]:
        return {"success": True, "message": self.summary}

    def stats(self) -> dict[str, int]:
        return {
            "read": len(self.results),
            "processed": self.processed_count,
            "skipped": self.skipped_count,
            "failed": self.failed_count,
        }
