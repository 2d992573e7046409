from __future__ import annotations

from typing import Any


class ReelwatchError(Exception):
    pass


class ConfigurationError(ReelwatchError):
    """Required configuration is missing or invalid. Fatal at startup."""


class ActorInvocationError(ReelwatchError):
    def __init__(
        self,
        message: str,
        *,
        actor: str | None = None,
        run_id: str | None = None,
        status: str | int | None = None,
        body: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.actor = actor
        self.run_id = run_id
        self.status = status
        self.body = body

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "actor": self.actor,
            "runId": self.run_id,
            "status": self.status,
            "body": self.body,
        }


class ActorTimeoutError(ActorInvocationError):
    pass


class RunStateError(ReelwatchError):
    """Illegal run-log status transition."""
