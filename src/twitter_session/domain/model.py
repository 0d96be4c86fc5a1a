from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    import httpx

# =========================
# Value Objects
# =========================
@dataclass(frozen=True)
class Credentials:
    """Login credentials. Lives only for the duration of one login call."""

    username: str
    password: str
    email: str | None = None
    two_factor_secret: str | None = None

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, email={self.email!r})"


@dataclass(frozen=True)
class GuestToken:
    value: str
    created_at: datetime

    def is_stale(self, now: datetime, validity: timedelta) -> bool:
        return now - self.created_at > validity


@dataclass(frozen=True)
class ApiErrorRaw:
    """One entry of an `errors` array returned by the service."""

    message: str | None = None
    code: int | None = None
    kind: str | None = None
    name: str | None = None
    source: str | None = None
    trace_id: str | None = None
    locations: list[tuple[int, int]] = field(default_factory=list)
    path: list[str] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> ApiErrorRaw:
        # Extensions may sit at the top level or under "extensions"
        ext = data.get("extensions") if isinstance(data.get("extensions"), dict) else {}
        tracing = ext.get("tracing") or data.get("tracing") or {}
        code = data.get("code", ext.get("code"))
        return cls(
            message=data.get("message"),
            code=code if isinstance(code, int) else None,
            kind=ext.get("kind", data.get("kind")),
            name=ext.get("name", data.get("name")),
            source=ext.get("source", data.get("source")),
            trace_id=tracing.get("trace_id") if isinstance(tracing, dict) else None,
            locations=[
                (loc.get("line", 0), loc.get("column", 0))
                for loc in data.get("locations") or []
                if isinstance(loc, dict)
            ],
            path=[str(p) for p in data.get("path") or []],
        )


# =========================
# Login flow
# =========================
@dataclass(frozen=True)
class Subtask:
    """A pending step. `payload` holds every field except the id, as sent."""

    subtask_id: str
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Subtask:
        payload = {k: v for k, v in data.items() if k != "subtask_id"}
        return cls(subtask_id=str(data.get("subtask_id", "")), payload=payload)


@dataclass(frozen=True)
class FlowResponse:
    flow_token: str | None = None
    status: str | None = None
    subtasks: list[Subtask] = field(default_factory=list)
    errors: list[ApiErrorRaw] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> FlowResponse:
        token = data.get("flow_token")
        return cls(
            flow_token=token if isinstance(token, str) else None,
            status=data.get("status"),
            subtasks=[Subtask.from_json(s) for s in data.get("subtasks") or [] if isinstance(s, dict)],
            errors=[ApiErrorRaw.from_json(e) for e in data.get("errors") or [] if isinstance(e, dict)],
            raw=data,
        )

    def completed(self) -> FlowResponse:
        """Same response with no pending steps left."""
        raw = {k: v for k, v in self.raw.items() if k != "subtasks"}
        raw["status"] = "success"
        return FlowResponse(flow_token=self.flow_token, status="success", raw=raw)


@dataclass(frozen=True)
class FlowInitRequest:
    flow_name: str
    input_flow_data: dict[str, Any]
    subtask_versions: dict[str, int]

    def to_json(self) -> dict[str, Any]:
        return {
            "flow_name": self.flow_name,
            "input_flow_data": self.input_flow_data,
            "subtask_versions": self.subtask_versions,
        }


@dataclass(frozen=True)
class FlowSubtaskRequest:
    flow_token: str
    subtask_inputs: list[dict[str, Any]]

    def to_json(self) -> dict[str, Any]:
        return {"flow_token": self.flow_token, "subtask_inputs": self.subtask_inputs}


FlowRequest = FlowInitRequest | FlowSubtaskRequest


@dataclass(frozen=True)
class FlowTokenResult:
    status: Literal["success", "error"]
    response: FlowResponse | None = None
    err: Exception | None = None

    @classmethod
    def success(cls, response: FlowResponse) -> FlowTokenResult:
        return cls(status="success", response=response)

    @classmethod
    def failure(cls, err: Exception) -> FlowTokenResult:
        return cls(status="error", err=err)


# =========================
# Rate limiting
# =========================
@dataclass(frozen=True)
class RateLimitEvent:
    """The request exactly as sent plus the throttled response."""

    request: httpx.Request
    response: httpx.Response
