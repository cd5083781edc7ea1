from __future__ import annotations

import logging
import os
import threading
import time
from typing import Optional

import requests
from requests.adapters import HTTPAdapter

from observability import emit_event

from urllib3.util import Retry


_local = threading.local()
logger = logging.getLogger(__name__)


def _to_int(env_name: str, default: int) -> int:
    try:
        val = os.getenv(env_name)
        if val is None or val == "":
            return int(default)
        return int(val)
    except Exception:
        return int(default)


def _to_float(env_name: str, default: float) -> float:
    try:
        val = os.getenv(env_name)
        if val is None or val == "":
            return float(default)
        return float(val)
    except Exception:
        return float(default)


def create_session() -> requests.Session:
    """Build a pooled session.

    Only idempotent GETs are retried on connect errors; writes are never
    retried at this layer (a failed push is re-sent by the next debounce).
    """
    pool_conns = _to_int("REQUESTS_POOL_CONNECTIONS", 4)
    pool_max = _to_int("REQUESTS_POOL_MAXSIZE", 10)
    retries = max(0, _to_int("REQUESTS_RETRIES", 0))
    backoff = _to_float("REQUESTS_RETRY_BACKOFF", 0.2)

    sess = requests.Session()
    adapter_kwargs = {"pool_connections": pool_conns, "pool_maxsize": pool_max}

    if retries > 0:
        retry = Retry(
            total=retries,
            connect=retries,
            read=0,  # do not retry read timeouts to avoid long hangs
            status=0,
            backoff_factor=backoff,
            allowed_methods=frozenset(["GET"]),
            raise_on_status=False,
        )
        adapter_kwargs["max_retries"] = retry

    adapter = HTTPAdapter(**adapter_kwargs)
    sess.mount("https://", adapter)
    sess.mount("http://", adapter)
    return sess


def get_session() -> requests.Session:
    sess: Optional[requests.Session] = getattr(_local, "session", None)
    if sess is None:
        sess = create_session()
        _local.session = sess
    return sess


def request(method: str, url: str, session: Optional[requests.Session] = None, **kwargs) -> requests.Response:
    """Single HTTP call with timing and structured failure events.

    Exceptions from requests propagate to the caller unchanged.
    """
    timeout = kwargs.pop("timeout", _to_float("REQUESTS_TIMEOUT", 8.0))
    slow_ms = _to_float("HTTP_SLOW_MS", 0.0)
    sess = session or get_session()

    t0 = time.perf_counter()
    try:
        resp = sess.request(method=method, url=url, timeout=timeout, **kwargs)
    except requests.RequestException as e:
        emit_event(
            "http_request_failure",
            severity="warning",
            method=str(method).upper(),
            url=str(url),
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    duration_ms = (time.perf_counter() - t0) * 1000.0
    if slow_ms and slow_ms > 0 and duration_ms > slow_ms:
        logger.warning(
            "slow_http",
            extra={
                "method": str(method).upper(),
                "url": str(url),
                "status": int(resp.status_code),
                "ms": round(duration_ms, 1),
            },
        )
    return resp
