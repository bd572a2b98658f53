"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Summary


REQUEST_COUNTER = Counter(
	"shell_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"shell_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"shell_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"shell_socketio_events_total",
	"Socket.IO events handled or emitted per namespace",
	["namespace", "event"],
)

CHAT_GATE_DECISIONS = Counter(
	"shell_chat_gate_decisions_total",
	"Chat gatekeeper decisions",
	["action", "outcome"],
)

CHAT_MESSAGES_PERSISTED = Counter(
	"shell_chat_messages_total",
	"Chat messages persisted after passing the gatekeeper",
	["transport"],
)

CHAT_KICKS = Counter(
	"shell_chat_kicks_total",
	"Members kicked from chat rooms",
)

CHAT_AUTO_MUTES = Counter(
	"shell_chat_auto_mutes_total",
	"Members muted automatically for flooding a room",
)

CHAT_SIDE_EFFECT_FAILURES = Counter(
	"shell_chat_side_effect_failures_total",
	"Best-effort side effects that failed without blocking a send",
	["stage"],
)

CHAT_STATE_SWEEPS = Counter(
	"shell_chat_state_swept_total",
	"Expired in-process chat state entries removed by the sweeper",
	["store"],
)

NOTIFICATIONS_CREATED = Counter(
	"shell_notifications_created_total",
	"Notification records persisted",
	["type"],
)

REDIS_UP = Gauge("shell_redis_up", "Redis availability (1=up,0=down)")
REDIS_LATENCY = Summary("shell_redis_latency_seconds", "Redis ping latency (seconds)")

POSTGRES_UP = Gauge("shell_postgres_up", "Postgres availability (1=up,0=down)")
POSTGRES_LATENCY = Summary("shell_postgres_latency_seconds", "Postgres ping latency (seconds)")


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def socket_connected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).dec()


def socket_event(namespace: str, event: str) -> None:
	SOCKET_EVENTS.labels(namespace=namespace, event=event).inc()


def chat_gate_decision(action: str, outcome: str) -> None:
	CHAT_GATE_DECISIONS.labels(action=action, outcome=outcome).inc()


def inc_chat_message(transport: str) -> None:
	CHAT_MESSAGES_PERSISTED.labels(transport=transport).inc()


def inc_chat_kick() -> None:
	CHAT_KICKS.inc()


def inc_chat_auto_mute() -> None:
	CHAT_AUTO_MUTES.inc()


def chat_side_effect_failed(stage: str) -> None:
	CHAT_SIDE_EFFECT_FAILURES.labels(stage=stage).inc()


def chat_state_swept(store: str, count: int) -> None:
	if count > 0:
		CHAT_STATE_SWEEPS.labels(store=store).inc(count)


def inc_notification(kind: str) -> None:
	NOTIFICATIONS_CREATED.labels(type=kind).inc()


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)


def mark_postgres(ok: bool, *, latency_seconds: float | None = None) -> None:
	POSTGRES_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		POSTGRES_LATENCY.observe(latency_seconds)
