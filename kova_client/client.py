from typing import Any

import requests


class KovaClientError(Exception):
    """Raised when the server rejects a request or can't be reached."""


def _error_message(response: requests.Response) -> str:
    try:
        return response.json().get("error", response.text)
    except ValueError:
        return response.text


def deploy_project(
    project_id: str, server_url: str = "http://localhost:8080"
) -> dict[str, Any]:
    """
    Queue a deployment of a project.

    Args:
        project_id: ID of the project to deploy
        server_url: Base URL of the Kova server

    Returns:
        Dictionary with project_id and status="queued"

    Raises:
        KovaClientError: If the request fails
    """
    try:
        response = requests.post(
            f"{server_url}/projects/{project_id}/deploy", timeout=300
        )
    except requests.exceptions.RequestException as e:
        raise KovaClientError(f"Error contacting Kova server: {e}") from e

    if response.status_code != 202:
        raise KovaClientError(
            f"Deploy failed ({response.status_code}): {_error_message(response)}"
        )
    return response.json()


def get_project_status(
    project_id: str, server_url: str = "http://localhost:8080"
) -> dict[str, Any]:
    """
    Get a project and its current deployment status.

    Args:
        project_id: ID of the project
        server_url: Base URL of the Kova server

    Returns:
        Project dictionary including deployment_status

    Raises:
        KovaClientError: If the request fails
    """
    try:
        response = requests.get(f"{server_url}/projects/{project_id}", timeout=30)
    except requests.exceptions.RequestException as e:
        raise KovaClientError(f"Error contacting Kova server: {e}") from e

    if response.status_code != 200:
        raise KovaClientError(
            f"Status request failed ({response.status_code}): "
            f"{_error_message(response)}"
        )
    return response.json()
