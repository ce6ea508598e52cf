"""Scheduled trigger for the judge sync worker.

EventBridge invokes this once per schedule; the function forwards a single
``run-due`` call to the API and reports what the worker said. The event may
name the phase (``{"phase": "judges"}``); otherwise ``JUDGE_SYNC_PHASE`` or
``decisions`` is used.
"""
import json
import logging
import os
import urllib.error
import urllib.parse
import urllib.request
from datetime import datetime, timezone


logger = logging.getLogger()
logger.setLevel(logging.INFO)

PHASES = ("courts", "judges", "decisions")


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _worker_request(phase: str) -> tuple[urllib.request.Request, int]:
    endpoint = os.getenv("JUDGE_SYNC_WORKER_URL", "").strip()
    if not endpoint:
        raise ValueError("JUDGE_SYNC_WORKER_URL is not set")
    if phase not in PHASES:
        raise ValueError(f"unknown sync phase {phase!r}")

    params = {
        "batch_size": os.getenv("JUDGE_SYNC_BATCH_SIZE", "").strip() or "10",
        "phase": phase,
    }
    separator = "&" if "?" in endpoint else "?"

    headers = {"Content-Type": "application/json", "User-Agent": "judgefinder-sync-trigger/1.0"}
    token = os.getenv("JUDGE_SYNC_WORKER_TOKEN", "").strip()
    if token:
        headers["x-sync-token"] = token

    request = urllib.request.Request(
        endpoint + separator + urllib.parse.urlencode(params),
        data=b"{}",
        headers=headers,
        method="POST",
    )
    return request, int(os.getenv("JUDGE_SYNC_TIMEOUT_SECONDS", "300"))


def handler(event, context):  # noqa: ANN001
    phase = (event or {}).get("phase") or os.getenv("JUDGE_SYNC_PHASE", "decisions")
    report = {"phase": phase, "startedAt": _utcnow()}

    try:
        request, timeout = _worker_request(phase)
        with urllib.request.urlopen(request, timeout=timeout) as response:
            payload = response.read().decode("utf-8")
            report.update(
                ok=True,
                upstreamStatusCode=getattr(response, "status", 200),
                upstreamBody=json.loads(payload) if payload else {},
            )
        logger.info("Judge sync %s finished: %s", phase, report["upstreamBody"])
    except urllib.error.HTTPError as exc:
        logger.exception("Judge sync %s rejected by worker", phase)
        report.update(ok=False, statusCode=exc.code, error=exc.read().decode("utf-8", errors="replace"))
    except Exception as exc:  # noqa: BLE001
        logger.exception("Judge sync %s failed", phase)
        report.update(ok=False, statusCode=500, error=str(exc))

    report["finishedAt"] = _utcnow()
    return report
