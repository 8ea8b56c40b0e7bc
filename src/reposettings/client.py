# src/reposettings/client.py: Bitbucket Cloud REST client.
# This module provides the adapter for the Bitbucket Cloud API used by the
# configurator. It authenticates with an app password or OAuth2 client
# credentials, follows paginated listings, decodes responses into domain
# objects and maps HTTP failures to ClientError. DryRunClient wraps a client
# and logs mutating calls instead of performing them.

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional, Sequence

import requests

from .config import Credentials
from .models import (
    BranchRestriction,
    Group,
    Permission,
    Repository,
    RestrictionKind,
    User,
    Webhook,
)
from .util.errors import ClientError, CredentialsError
from .util.log import get_logger

logger = get_logger(__name__)

API_URL = "https://api.bitbucket.org/2.0"
API_V1_URL = "https://api.bitbucket.org/1.0"
OAUTH2_TOKEN_URL = "https://bitbucket.org/site/oauth2/access_token"
DEFAULT_TIMEOUT = 30


def _user(data: Dict[str, Any]) -> User:
    return User(
        uuid=data["uuid"],
        nickname=data.get("nickname") or data.get("username") or "",
        display_name=data.get("display_name", ""),
    )


def _group(data: Dict[str, Any]) -> Group:
    return Group(slug=data["slug"], name=data.get("name", ""))


def _restriction(data: Dict[str, Any]) -> BranchRestriction:
    return BranchRestriction(
        kind=RestrictionKind(data["kind"]),
        pattern=data.get("pattern", ""),
        users=frozenset(_user(u) for u in data.get("users") or []),
        groups=frozenset(_group(g) for g in data.get("groups") or []),
        value=data.get("value"),
        id=data.get("id"),
    )


def _restriction_payload(restriction: BranchRestriction) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "kind": restriction.kind.value,
        "branch_match_kind": "glob",
        "pattern": restriction.pattern,
    }
    if restriction.kind.has_principals:
        payload["users"] = [{"uuid": u.uuid} for u in sorted(restriction.users, key=lambda u: u.uuid)]
        payload["groups"] = [{"slug": g.slug} for g in sorted(restriction.groups, key=lambda g: g.slug)]
    if restriction.value is not None:
        payload["value"] = restriction.value
    return payload


def _webhook(data: Dict[str, Any]) -> Webhook:
    return Webhook(
        url=data.get("url", ""),
        description=data.get("description", ""),
        events=frozenset(data.get("events") or []),
        active=data.get("active", True),
        uuid=data.get("uuid"),
    )


def _webhook_payload(webhook: Webhook) -> Dict[str, Any]:
    return {
        "description": webhook.description,
        "url": webhook.url,
        "active": webhook.active,
        "events": sorted(webhook.events),
    }


class BitbucketCloudClient:
    """
    Minimal Bitbucket Cloud client covering repository permissions, branch
    restrictions and webhooks.
    """

    def __init__(
        self,
        credentials: Credentials,
        base_url: str = API_URL,
        timeout: int = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._authenticated = False

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "BitbucketCloudClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # --- Transport ---

    def _authenticate(self) -> None:
        if self._authenticated:
            return
        if self.credentials.oauth2:
            try:
                response = self._session.post(
                    OAUTH2_TOKEN_URL,
                    data={"grant_type": "client_credentials"},
                    auth=(self.credentials.username, self.credentials.password),
                    timeout=self.timeout,
                )
                response.raise_for_status()
            except requests.RequestException as e:
                raise CredentialsError(f"OAuth2 authentication failed: {e}")
            token = response.json()["access_token"]
            self._session.headers["Authorization"] = f"Bearer {token}"
        else:
            self._session.auth = (self.credentials.username, self.credentials.password)
        self._authenticated = True

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        self._authenticate()
        if not url.startswith("http"):
            url = f"{self.base_url}/{url.lstrip('/')}"
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise ClientError(f"{method} {url} failed: {e}")
        if response.status_code >= 400:
            raise ClientError(
                f"{method} {url} returned {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        return response

    def _get(self, url: str, **kwargs: Any) -> Dict[str, Any]:
        return self._request("GET", url, **kwargs).json()

    def _get_optional(self, url: str, **kwargs: Any) -> Optional[Dict[str, Any]]:
        try:
            return self._get(url, **kwargs)
        except ClientError as e:
            if e.status_code == 404:
                return None
            raise

    def _paginate(self, url: str, params: Optional[Dict[str, Any]] = None) -> Iterator[Dict[str, Any]]:
        next_url: Optional[str] = url
        while next_url:
            page = self._get(next_url, params=params)
            yield from page.get("values", [])
            next_url = page.get("next")
            params = None  # the next link carries the query

    # --- Users and repositories ---

    def get_user(self) -> Optional[User]:
        """The authenticated user, None if the credentials are rejected."""
        try:
            return _user(self._get("user"))
        except ClientError as e:
            if e.status_code in (401, 403):
                return None
            raise

    def get_user_by_name(self, name: str) -> Optional[User]:
        data = self._get_optional(f"users/{name}")
        return _user(data) if data else None

    def get_repositories(self, workspace: str) -> List[Repository]:
        return [
            Repository(slug=r["slug"], project_key=(r.get("project") or {}).get("key"))
            for r in self._paginate(f"repositories/{workspace}", params={"pagelen": 100})
        ]

    def get_permission(self, workspace: str, repo: str) -> Permission:
        """Privilege of the authenticated user on a repository."""
        query = f'repository.full_name="{workspace}/{repo}"'
        for entry in self._paginate("user/permissions/repositories", params={"q": query}):
            return Permission.parse(entry.get("permission"))
        return Permission.NONE

    # --- Groups ---

    def get_groups(self, workspace: str) -> List[Group]:
        data = self._request("GET", f"{API_V1_URL}/groups/{workspace}").json()
        return [_group(g) for g in data]

    def get_groups_permissions(self, workspace: str, repo: str) -> Dict[Group, Permission]:
        return {
            _group(entry["group"]): Permission.parse(entry["permission"])
            for entry in self._paginate(f"repositories/{workspace}/{repo}/permissions-config/groups")
        }

    def update_group_permission(self, workspace: str, repo: str, group: str, permission: Permission) -> None:
        self._request(
            "PUT",
            f"repositories/{workspace}/{repo}/permissions-config/groups/{group}",
            json={"permission": permission.api_value},
        )

    def delete_group_permission(self, workspace: str, repo: str, group: str) -> None:
        self._request("DELETE", f"repositories/{workspace}/{repo}/permissions-config/groups/{group}")

    # --- Users permissions ---

    def get_user_permission(self, workspace: str, repo: str, user_id: str) -> Permission:
        data = self._get_optional(f"repositories/{workspace}/{repo}/permissions-config/users/{user_id}")
        return Permission.parse(data.get("permission")) if data else Permission.NONE

    def update_user_permission(self, workspace: str, repo: str, user_id: str, permission: Permission) -> None:
        url = f"repositories/{workspace}/{repo}/permissions-config/users/{user_id}"
        if permission == Permission.NONE:
            self._request("DELETE", url)
        else:
            self._request("PUT", url, json={"permission": permission.api_value})

    # --- Branch restrictions ---

    def get_branch_restrictions(self, workspace: str, repo: str) -> List[BranchRestriction]:
        restrictions = []
        for data in self._paginate(f"repositories/{workspace}/{repo}/branch-restrictions"):
            try:
                restrictions.append(_restriction(data))
            except ValueError:
                logger.debug(f"Ignoring unsupported branch restriction kind {data.get('kind')}")
        return restrictions

    def update_branch_restriction(self, workspace: str, repo: str, restriction: BranchRestriction) -> None:
        """Creates the restriction, or updates it when it has a remote id."""
        url = f"repositories/{workspace}/{repo}/branch-restrictions"
        payload = _restriction_payload(restriction)
        if restriction.id is None:
            self._request("POST", url, json=payload)
        else:
            self._request("PUT", f"{url}/{restriction.id}", json=payload)

    # --- Webhooks ---

    def get_webhooks(self, workspace: str, repo: str, names: Sequence[str] = ()) -> List[Webhook]:
        hooks = [_webhook(h) for h in self._paginate(f"repositories/{workspace}/{repo}/hooks")]
        if names:
            hooks = [h for h in hooks if h.description in names]
        return hooks

    def add_webhook(self, workspace: str, repo: str, webhook: Webhook) -> None:
        self._request("POST", f"repositories/{workspace}/{repo}/hooks", json=_webhook_payload(webhook))

    def update_webhook(self, workspace: str, repo: str, webhook: Webhook) -> None:
        self._request(
            "PUT", f"repositories/{workspace}/{repo}/hooks/{webhook.uuid}", json=_webhook_payload(webhook)
        )

    def delete_webhook(self, workspace: str, repo: str, uuid: str) -> None:
        self._request("DELETE", f"repositories/{workspace}/{repo}/hooks/{uuid}")


class DryRunClient:
    """Delegates reads to a client and only logs the mutating calls."""

    MUTATIONS = frozenset({
        "update_user_permission",
        "update_group_permission",
        "delete_group_permission",
        "update_branch_restriction",
        "add_webhook",
        "update_webhook",
        "delete_webhook",
    })

    def __init__(self, client) -> None:
        self._client = client

    def __getattr__(self, name: str) -> Any:
        attribute = getattr(self._client, name)
        if name not in self.MUTATIONS:
            return attribute

        def log_only(*args: Any, **kwargs: Any) -> None:
            arguments = ", ".join([*(str(a) for a in args), *(f"{k}={v}" for k, v in kwargs.items())])
            logger.info(f"[dry-run] {name}({arguments})")

        return log_only
