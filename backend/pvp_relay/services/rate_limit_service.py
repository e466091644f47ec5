"""Per-client request limits for the relay's HTTP scopes.

Three scopes are counted separately: ``poll`` for the pending-action and state
reads the host hits in a loop, ``relay`` for submitted actions, and ``global``
for everything else.  Health checks are never counted.  Each client gets a
fixed window that opens on its first request in that scope.
"""

from dataclasses import dataclass
import math
import time

from pvp_relay.core.config import Settings

RATE_LIMIT_SCOPES = ("global", "poll", "relay")


@dataclass
class RateLimitDecision:
    allowed: bool
    scope: str
    limit: int
    remaining: int
    retry_after_seconds: int
    reset_after_seconds: int


@dataclass
class _Window:
    opened_at: float
    count: int = 0


def scope_for_path(path: str) -> str | None:
    """Map a request path to its counting scope, or ``None`` when exempt."""
    path = path.lower().rstrip("/")
    if path.endswith("/health"):
        return None
    if "/pvp/pending/" in path or "/pvp/state/" in path:
        return "poll"
    if path.endswith("/pvp/action"):
        return "relay"
    return "global"


class RateLimitService:
    def __init__(self, limits: dict[str, tuple[int, int]], clock=time.monotonic) -> None:
        if set(limits) != set(RATE_LIMIT_SCOPES):
            raise ValueError(f"Rate limits must cover exactly {', '.join(RATE_LIMIT_SCOPES)}")
        self._limits = {
            scope: (max(1, int(limit)), max(1, int(window_seconds)))
            for scope, (limit, window_seconds) in limits.items()
        }
        self._clock = clock
        self._windows: dict[tuple[str, str], _Window] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimitService":
        return cls(
            {
                "global": (settings.rate_limit_global_limit, settings.rate_limit_global_window_seconds),
                "poll": (settings.rate_limit_poll_limit, settings.rate_limit_poll_window_seconds),
                "relay": (settings.rate_limit_relay_limit, settings.rate_limit_relay_window_seconds),
            }
        )

    def reset(self) -> None:
        self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)

    def check(self, scope: str, client_ip: str) -> RateLimitDecision:
        limit, window_seconds = self._limits.get(scope, self._limits["global"])
        now = self._clock()
        self._drop_expired(now)

        window = self._windows.get((scope, client_ip))
        if window is None:
            window = self._windows[(scope, client_ip)] = _Window(opened_at=now)
        window.count += 1

        reset_seconds = max(1, math.ceil(window.opened_at + window_seconds - now))
        allowed = window.count <= limit
        return RateLimitDecision(
            allowed=allowed,
            scope=scope,
            limit=limit,
            remaining=max(0, limit - window.count),
            retry_after_seconds=0 if allowed else reset_seconds,
            reset_after_seconds=reset_seconds,
        )

    def _drop_expired(self, now: float) -> None:
        expired = [
            key
            for key, window in self._windows.items()
            if now - window.opened_at >= self._limits.get(key[0], self._limits["global"])[1]
        ]
        for key in expired:
            del self._windows[key]
