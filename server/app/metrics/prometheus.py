from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, Counter, Histogram, generate_latest


_INVITE_REDEMPTIONS = Counter(
    "stargate_invite_redemptions_total",
    "Invite code redemption attempts by outcome.",
    labelnames=("outcome",),
)

_INVITE_REDEEM_THROTTLED = Counter(
    "stargate_invite_redeem_throttled_total",
    "Invite redemption attempts rejected by the rate limiter.",
)

_COACH_REQUESTS = Counter(
    "stargate_coach_requests_total",
    "AI coach requests executed.",
    labelnames=("mode",),
)
_COACH_ERRORS = Counter(
    "stargate_coach_errors_total",
    "AI coach requests that ended with a provider error.",
    labelnames=("mode",),
)
_COACH_LATENCY = Histogram(
    "stargate_coach_latency_seconds",
    "End-to-end AI coach latency in seconds.",
    labelnames=("mode",),
)


def record_invite_redemption(*, outcome: str) -> None:
    _INVITE_REDEMPTIONS.labels(outcome).inc()


def record_invite_redeem_throttled() -> None:
    _INVITE_REDEEM_THROTTLED.inc()


def record_coach_request(*, mode: str, latency_ms: int, error: str | None) -> None:
    _COACH_REQUESTS.labels(mode).inc()
    if error:
        _COACH_ERRORS.labels(mode).inc()
    if latency_ms >= 0:
        _COACH_LATENCY.labels(mode).observe(float(latency_ms) / 1000.0)


def metrics_payload() -> tuple[bytes, str]:
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
