from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import requests

from .errors import AuthError, MalformedResponseError, NetworkError


def _decode(resp: requests.Response, operation: str) -> Dict[str, Any]:
    try:
        resp.raise_for_status()
    except requests.HTTPError as e:
        status = getattr(e.response, "status_code", None) or getattr(resp, "status_code", None)
        if status in (401, 403):
            raise AuthError(operation, f"HTTP {status}") from e
        raise NetworkError(operation, f"HTTP {status}") from e
    try:
        data = resp.json()
    except ValueError as e:
        raise MalformedResponseError(operation, "body is not JSON") from e
    if not isinstance(data, dict):
        raise MalformedResponseError(operation, f"expected object, got {type(data).__name__}")
    return data


def get_json(
    url: str,
    params: Mapping[str, Any],
    timeout: float,
    operation: str,
) -> Dict[str, Any]:
    try:
        resp = requests.get(url, params=dict(params), timeout=timeout)
    except requests.RequestException as e:
        raise NetworkError(operation, type(e).__name__) from e
    return _decode(resp, operation)


def post_form(
    url: str,
    data: Optional[Mapping[str, Any]],
    timeout: float,
    operation: str,
    params: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    try:
        resp = requests.post(
            url,
            params=dict(params or {}),
            data=dict(data or {}),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=timeout,
        )
    except requests.RequestException as e:
        raise NetworkError(operation, type(e).__name__) from e
    return _decode(resp, operation)
