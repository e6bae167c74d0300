from typing import Any

import requests

DEFAULT_SERVER_URL = "http://localhost:3000"

# Compose pulls can take minutes; reads should come back quickly
READ_TIMEOUT = 30
MUTATION_TIMEOUT = 900

CONTAINER_ACTIONS = ("start", "stop", "restart", "update")
BULK_ACTIONS = ("start-all", "stop-all", "restart-all", "update-all")


def _headers(api_token: str | None) -> dict[str, str]:
    return {"Authorization": f"Bearer {api_token}"} if api_token else {}


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or response.reason
    if isinstance(body, dict):
        detail = body.get("detail")
        if isinstance(detail, str):
            return detail
        if detail is not None:
            return str(detail)
    return str(body)


def _request(
    method: str,
    path: str,
    server_url: str,
    api_token: str | None,
    timeout: int,
    params: dict[str, Any] | None = None,
) -> Any:
    """
    Send one request to the Deckhand server and decode the JSON body.

    Raises:
        RuntimeError: On transport failure or any HTTP error status
    """
    try:
        response = requests.request(
            method,
            f"{server_url}{path}",
            headers=_headers(api_token),
            params=params,
            timeout=timeout,
        )
    except requests.exceptions.RequestException as e:
        raise RuntimeError(f"Error contacting Deckhand server: {e}") from e

    if response.status_code >= 400:
        raise RuntimeError(f"HTTP {response.status_code}: {_error_message(response)}")

    return response.json()


def get_status(
    server_url: str = DEFAULT_SERVER_URL, api_token: str | None = None
) -> dict[str, Any]:
    """Fetch the combined git and container snapshot."""
    return _request("GET", "/api/status", server_url, api_token, READ_TIMEOUT)


def git_fetch(
    server_url: str = DEFAULT_SERVER_URL, api_token: str | None = None
) -> dict[str, Any]:
    return _request("POST", "/api/git/fetch", server_url, api_token, MUTATION_TIMEOUT)


def git_pull(
    server_url: str = DEFAULT_SERVER_URL, api_token: str | None = None
) -> dict[str, Any]:
    return _request("POST", "/api/git/pull", server_url, api_token, MUTATION_TIMEOUT)


def get_commit(
    ref: str, server_url: str = DEFAULT_SERVER_URL, api_token: str | None = None
) -> dict[str, Any]:
    return _request("GET", f"/api/git/commits/{ref}", server_url, api_token, READ_TIMEOUT)


def get_incoming(
    limit: int = 20, server_url: str = DEFAULT_SERVER_URL, api_token: str | None = None
) -> list[dict[str, Any]]:
    return _request(
        "GET",
        "/api/git/incoming",
        server_url,
        api_token,
        READ_TIMEOUT,
        params={"limit": limit},
    )


def list_containers(
    server_url: str = DEFAULT_SERVER_URL, api_token: str | None = None
) -> list[dict[str, Any]]:
    return _request("GET", "/api/containers", server_url, api_token, READ_TIMEOUT)


def container_action(
    name: str,
    action: str,
    server_url: str = DEFAULT_SERVER_URL,
    api_token: str | None = None,
) -> dict[str, Any]:
    """
    Run start/stop/restart/update on one container.

    Args:
        name: Managed container name
        action: One of CONTAINER_ACTIONS

    Returns:
        OperationResult as a dict

    Raises:
        ValueError: If action is not supported
        RuntimeError: On transport or HTTP failure
    """
    if action not in CONTAINER_ACTIONS:
        raise ValueError(f"Unsupported container action: {action}")
    return _request(
        "POST", f"/api/containers/{name}/{action}", server_url, api_token, MUTATION_TIMEOUT
    )


def bulk_action(
    action: str, server_url: str = DEFAULT_SERVER_URL, api_token: str | None = None
) -> dict[str, Any]:
    """Run start-all/stop-all/restart-all/update-all."""
    if action not in BULK_ACTIONS:
        raise ValueError(f"Unsupported bulk action: {action}")
    return _request("POST", f"/api/containers/{action}", server_url, api_token, MUTATION_TIMEOUT)
