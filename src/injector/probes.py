from __future__ import annotations

from typing import Any, Dict


def format_probe_path(*segments: str) -> str:
    parts = [segment.strip("/") for segment in segments]
    return "/" + "/".join(part for part in parts if part)


def get_probe_http_handler(port: int, *segments: str) -> Dict[str, Any]:
    return {
        "httpGet": {
            "path": format_probe_path(*segments),
            "port": port,
        }
    }


def build_probe(
    handler: Dict[str, Any],
    *,
    initial_delay_seconds: int,
    timeout_seconds: int,
    period_seconds: int,
    failure_threshold: int,
) -> Dict[str, Any]:
    probe = dict(handler)
    probe.update(
        {
            "initialDelaySeconds": initial_delay_seconds,
            "timeoutSeconds": timeout_seconds,
            "periodSeconds": period_seconds,
            "failureThreshold": failure_threshold,
        }
    )
    return probe


__all__ = ["build_probe", "format_probe_path", "get_probe_http_handler"]
