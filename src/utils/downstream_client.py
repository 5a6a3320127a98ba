"""This module is used to talk to the downstream application REST API."""
from typing import Any
from urllib.parse import quote
import requests
from loguru import logger
from utils.errors import DownstreamError

_REDACTED_HEADERS = frozenset({"Authorization"})


class DownstreamClient:
    """Thin client for the downstream application's v4 REST API.

    No retries happen here, the caller decides whether to run again.

    Parameters
    ----------
    downstream_config : dict[str, Any]
        The ``downstream`` section of the configuration.
    session : requests.Session, optional
        A session to reuse, mainly for tests.
    """

    def __init__(
        self,
        downstream_config: dict[str, Any],
        session: requests.Session | None = None,
    ) -> None:
        """Initialization of the class."""
        self.base_url = str(downstream_config["url"]).rstrip("/")
        self.timeout = downstream_config.get("timeout", 30)
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {downstream_config['token']}",
                "Content-Type": "application/json",
            }
        )
        self.session.verify = downstream_config.get("verify_ssl", True)

    def _url(self, path: str) -> str:
        """Full URL for an API path."""
        return f"{self.base_url}/api/v4/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        json_body: Any = None,
    ) -> requests.Response:
        """Make an API request.

        Raises
        ------
        DownstreamError
            The request could not be sent at all.
        """
        url = self._url(path)
        safe_headers = {
            k: ("***REDACTED***" if k in _REDACTED_HEADERS else v)
            for k, v in self.session.headers.items()
        }
        logger.debug(f"API {method} {url} headers={safe_headers}")
        try:
            resp = self.session.request(
                method, url, json=json_body, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise DownstreamError(f"{method} {url} failed: {exc}") from exc
        if resp.status_code >= 400:
            logger.debug(
                f"API error: {method} {url} -> {resp.status_code}: {resp.text[:500]}"
            )
        return resp

    @staticmethod
    def _raise_for_status(resp: requests.Response, action: str) -> None:
        """Turn an HTTP error into a DownstreamError."""
        if resp.status_code >= 400:
            raise DownstreamError(
                f"{action} failed with HTTP {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )

    def get_user_by_username(self, username: str) -> dict[str, Any] | None:
        """Fetch a user, None when the user does not exist."""
        resp = self._request("GET", f"users/username/{quote(username, safe='')}")
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp, f"Lookup of user {username}")
        return resp.json()

    def update_user_auth(
        self, user_id: str, auth_data: str, auth_service: str = "ldap"
    ) -> None:
        """Point a user's authentication at the directory."""
        resp = self._request(
            "PUT",
            f"users/{user_id}/auth",
            {"auth_data": auth_data, "auth_service": auth_service},
        )
        self._raise_for_status(resp, f"Auth update of user {user_id}")

    def sync_ldap(self, include_removed_members: bool = False) -> None:
        """Ask the application to re-read the directory."""
        resp = self._request(
            "POST",
            "ldap/sync",
            {"include_removed_members": include_removed_members},
        )
        self._raise_for_status(resp, "Directory sync request")

    def link_ldap_group(self, remote_id: str) -> dict[str, Any]:
        """Link a directory group into the application by its unique id."""
        resp = self._request("POST", f"ldap/groups/{quote(remote_id, safe='')}/link")
        self._raise_for_status(resp, f"Link of group {remote_id}")
        return resp.json()

    def patch_group(self, group_id: str, patch: dict[str, Any]) -> None:
        """Patch an application group."""
        resp = self._request("PUT", f"groups/{group_id}/patch", patch)
        self._raise_for_status(resp, f"Patch of group {group_id}")

    def close(self) -> None:
        """Close the HTTP session."""
        self.session.close()
