"""Session telemetry delivery to an optional webhook."""

from __future__ import annotations

import logging
import platform
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import uuid4

import httpx

from autoloop import __version__

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
PAYLOAD_VERSION = "1.0"


@dataclass(slots=True)
class TelemetrySession:
    """Aggregate numbers for one `autoloop run` invocation."""

    engine: str
    mode: str
    task_count: int
    success_count: int
    failed_count: int
    total_tokens_in: int = 0
    total_tokens_out: int = 0
    total_duration_ms: int = 0
    session_id: str = field(default_factory=lambda: str(uuid4()))
    cli_version: str = __version__
    platform: str = field(default_factory=lambda: platform.system().lower())
    tool_calls: dict[str, int] = field(default_factory=dict)
    tags: tuple[str, ...] = ()
    prompt: str | None = None
    response: str | None = None
    file_paths: tuple[str, ...] = ()


def build_payload(session: TelemetrySession, *, level: str = "anonymous") -> dict[str, object]:
    """Webhook body; prompt/response details are only included at level `full`."""

    payload: dict[str, object] = {
        "event": "telemetry_session",
        "version": PAYLOAD_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
        "session": {
            "sessionId": session.session_id,
            "engine": session.engine,
            "mode": session.mode,
            "cliVersion": session.cli_version,
            "platform": session.platform,
            "totalTokensIn": session.total_tokens_in,
            "totalTokensOut": session.total_tokens_out,
            "totalDurationMs": session.total_duration_ms,
            "taskCount": session.task_count,
            "successCount": session.success_count,
            "failedCount": session.failed_count,
            "toolCalls": dict(session.tool_calls),
            "tags": list(session.tags),
        },
    }
    if level == "full":
        payload["details"] = {
            "prompt": session.prompt,
            "response": session.response,
            "filePaths": list(session.file_paths),
        }
    return payload


def send_telemetry_webhook(
    session: TelemetrySession,
    *,
    webhook_url: str,
    level: str = "anonymous",
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    client: httpx.Client | None = None,
) -> bool:
    """POST the session summary; failures are logged and reported as `False`."""

    if not webhook_url.strip():
        logger.debug("No telemetry webhook configured, skipping")
        return False

    payload = build_payload(session, level=level)
    owns_client = client is None
    http = client or httpx.Client(timeout=httpx.Timeout(timeout_seconds))
    try:
        response = http.post(webhook_url, json=payload, timeout=timeout_seconds)
        if not response.is_success:
            body = response.text.strip()
            logger.error(
                "Telemetry webhook failed: HTTP %d%s",
                response.status_code,
                f": {body}" if body else "",
            )
            return False
    except httpx.TimeoutException:
        logger.error("Telemetry webhook timed out after %g seconds", timeout_seconds)
        return False
    except httpx.HTTPError as exc:
        logger.error("Telemetry webhook failed: %s", exc)
        return False
    finally:
        if owns_client:
            http.close()

    logger.debug("Telemetry webhook sent successfully to %s", webhook_url)
    return True
