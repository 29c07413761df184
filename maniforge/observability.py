"""Optional tracing hooks for maniforge commands."""

from __future__ import annotations

import os
from typing import Final

try:
    from opentelemetry import trace
except Exception:  # pragma: no cover - optional dependency
    trace = None

_TRACER_NAME: Final[str] = "maniforge"
_state = {"enabled": False}


def _as_bool(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def initialize_tracing(*, disabled: bool = False) -> bool:
    """Enable span emission when opentelemetry is importable and not switched off."""
    if disabled or _as_bool(os.environ.get("MANIFORGE_DISABLE_TRACING")):
        _state["enabled"] = False
    else:
        _state["enabled"] = trace is not None
    return _state["enabled"]


def tracing_enabled() -> bool:
    return _state["enabled"]


# -----------------------------------------------------------------------------
# Domain helpers
# -----------------------------------------------------------------------------


def _get_span():
    if trace is None or not _state["enabled"]:
        return None
    tracer = trace.get_tracer(_TRACER_NAME)
    return tracer.start_as_current_span if tracer else None


def record_command_executed(
    command: str, success: bool, package_identifier: str | None = None
) -> None:
    starter = _get_span()
    if starter is None:
        return
    with starter("command.executed") as span:  # type: ignore[func-returns-value]
        span.set_attribute("command.name", command)
        span.set_attribute("command.success", success)
        if package_identifier:
            span.set_attribute("package.identifier", package_identifier)


def record_installer_download(url: str, size_bytes: int, cached: bool) -> None:
    """Emit a span for each installer fetched (or served from the cache)."""
    starter = _get_span()
    if starter is None:
        return
    with starter("installer.download") as span:  # type: ignore[func-returns-value]
        span.set_attribute("installer.url", url)
        span.set_attribute("installer.size_bytes", size_bytes)
        span.set_attribute("installer.cached", cached)


def record_pull_request(
    package_identifier: str, number: int, url: str, replaced_version: str | None = None
) -> None:
    starter = _get_span()
    if starter is None:
        return
    with starter("pull_request.submitted") as span:  # type: ignore[func-returns-value]
        span.set_attribute("package.identifier", package_identifier)
        span.set_attribute("pull_request.number", number)
        span.set_attribute("pull_request.url", url)
        if replaced_version:
            span.set_attribute("pull_request.replaced_version", replaced_version)
