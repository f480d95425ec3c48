"""
bloxguard.services.roblox — Roblox Web API Client
==================================================

Thin async wrapper over Roblox's public endpoints:

* ``users.roblox.com``  — username → user, user → profile description,
  and the authenticated-user probe used to check the bot's cookie;
* ``groups.roblox.com`` — group info, role list, a member's rank, and
  the authenticated rank change used by ``/promote``.

Writes need the bot account's ``.ROBLOSECURITY`` cookie plus Roblox's
CSRF handshake: the first write comes back ``403`` with an
``x-csrf-token`` header, and is replayed once with that token.

Username/id lookups are cached for the life of the process.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

USERS_API = "https://users.roblox.com"
GROUPS_API = "https://groups.roblox.com"
CSRF_HEADER = "x-csrf-token"


class RobloxAPIError(RuntimeError):
    """Transport failure or unexpected response from Roblox."""


class RobloxGroupError(RobloxAPIError):
    """A group operation that Roblox (or our config) refused, with a user-facing reason."""


@dataclass(frozen=True, slots=True)
class RobloxUser:
    id: int
    username: str
    display_name: str | None = None


@dataclass(frozen=True, slots=True)
class GroupRole:
    id: int
    name: str
    rank: int
    member_count: int = 0


class RobloxClient:
    """Async Roblox API client shared by the bot and the dashboard API.

    Parameters
    ----------
    cookie:
        ``.ROBLOSECURITY`` cookie of the bot's Roblox account.  Without it
        only read-only lookups work.
    group_id:
        Group managed by ``/promote``, ``/ranks`` and ``/groupinfo``.
    transport:
        Optional httpx transport (tests pass an ``httpx.MockTransport``).
    """

    def __init__(
        self,
        cookie: str | None = None,
        group_id: int | None = None,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.cookie = cookie or None
        self.group_id = group_id
        self._timeout = timeout
        self._transport = transport
        self._http: httpx.AsyncClient | None = None
        self._csrf_token: str | None = None
        self._connected = False
        self.authenticated_user: RobloxUser | None = None

        self._username_cache: dict[str, RobloxUser] = {}
        self._id_cache: dict[int, str] = {}

    # -----------------------------------------------------------------------
    # HTTP plumbing
    # -----------------------------------------------------------------------
    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            cookies = {".ROBLOSECURITY": self.cookie} if self.cookie else None
            self._http = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport or httpx.AsyncHTTPTransport(retries=1),
                cookies=cookies,
                headers={"Accept": "application/json"},
            )
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self.http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise RobloxAPIError(f"{method} {url} failed: {exc}") from exc

    async def _get_json(self, url: str, **kwargs) -> dict:
        resp = await self._request("GET", url, **kwargs)
        if resp.status_code != 200:
            raise RobloxAPIError(f"GET {url} returned {resp.status_code}")
        return resp.json()

    async def _authed_write(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send a cookie-authenticated write, performing the CSRF handshake."""
        if not self.cookie:
            raise RobloxGroupError("Not logged into Roblox")

        headers = kwargs.pop("headers", {})
        for _ in range(2):
            if self._csrf_token:
                headers[CSRF_HEADER] = self._csrf_token
            resp = await self._request(method, url, headers=headers, **kwargs)
            token = resp.headers.get(CSRF_HEADER)
            if resp.status_code == 403 and token and token != self._csrf_token:
                self._csrf_token = token
                continue
            return resp
        return resp

    # -----------------------------------------------------------------------
    # Connection state
    # -----------------------------------------------------------------------
    @property
    def is_connected(self) -> bool:
        return self._connected

    async def refresh_connection(self) -> bool:
        """Re-check the cookie against ``/v1/users/authenticated``."""
        self._connected = False
        self._csrf_token = None
        if not self.cookie:
            logger.warning("ROBLOX_COOKIE is not set — Roblox group features are disabled")
            return False

        try:
            data = await self._get_json(f"{USERS_API}/v1/users/authenticated")
        except RobloxAPIError:
            logger.exception("Roblox login check failed")
            return False

        self.authenticated_user = RobloxUser(
            id=int(data["id"]), username=data["name"], display_name=data.get("displayName"),
        )
        self._connected = True
        logger.info(
            "Logged into Roblox as %s (%d)",
            self.authenticated_user.username, self.authenticated_user.id,
        )
        if self.group_id:
            try:
                rank = await self.get_rank_in_group(self.authenticated_user.id)
            except RobloxAPIError:
                logger.exception("Failed to verify group permissions")
                return True
            if rank > 0:
                logger.info("Bot holds rank %d in group %d", rank, self.group_id)
            else:
                logger.warning("Bot is not a member of the configured group %d", self.group_id)
        return True

    # -----------------------------------------------------------------------
    # Users
    # -----------------------------------------------------------------------
    async def get_user_by_username(self, username: str) -> RobloxUser | None:
        """Resolve *username* to a Roblox user, or ``None`` if it doesn't exist."""
        key = username.strip().lower()
        if key in self._username_cache:
            return self._username_cache[key]

        resp = await self._request(
            "POST",
            f"{USERS_API}/v1/usernames/users",
            json={"usernames": [username.strip()], "excludeBannedUsers": True},
        )
        if resp.status_code != 200:
            raise RobloxAPIError(f"Username lookup returned {resp.status_code}")

        matches = resp.json().get("data") or []
        if not matches:
            return None

        raw = matches[0]
        user = RobloxUser(
            id=int(raw["id"]), username=raw["name"], display_name=raw.get("displayName"),
        )
        self._username_cache[user.username.lower()] = user
        self._id_cache[user.id] = user.username
        return user

    async def get_username(self, user_id: int) -> str | None:
        if user_id in self._id_cache:
            return self._id_cache[user_id]
        resp = await self._request("GET", f"{USERS_API}/v1/users/{user_id}")
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise RobloxAPIError(f"User lookup returned {resp.status_code}")
        name = resp.json()["name"]
        self._id_cache[user_id] = name
        return name

    async def get_profile_description(self, user_id: int) -> str:
        data = await self._get_json(f"{USERS_API}/v1/users/{user_id}")
        self._id_cache[user_id] = data.get("name", self._id_cache.get(user_id, ""))
        return data.get("description") or ""

    async def profile_contains(self, user_id: int, code: str) -> bool:
        """Single check of the user's profile description for *code*."""
        return code in await self.get_profile_description(user_id)

    # -----------------------------------------------------------------------
    # Groups
    # -----------------------------------------------------------------------
    def _require_group(self, group_id: int | None) -> int:
        gid = group_id or self.group_id
        if not gid:
            raise RobloxGroupError("No group ID configured")
        return gid

    async def get_group_info(self, group_id: int | None = None) -> dict:
        gid = self._require_group(group_id)
        data = await self._get_json(f"{GROUPS_API}/v1/groups/{gid}")
        owner = data.get("owner") or {}
        return {
            "id": int(data["id"]),
            "name": data.get("name", ""),
            "description": data.get("description") or "",
            "memberCount": int(data.get("memberCount", 0)),
            "owner": owner.get("username"),
        }

    async def get_group_roles(self, group_id: int | None = None) -> list[GroupRole]:
        gid = self._require_group(group_id)
        data = await self._get_json(f"{GROUPS_API}/v1/groups/{gid}/roles")
        roles = [
            GroupRole(
                id=int(r["id"]),
                name=r["name"],
                rank=int(r["rank"]),
                member_count=int(r.get("memberCount", 0)),
            )
            for r in data.get("roles", [])
        ]
        return sorted(roles, key=lambda r: r.rank)

    async def get_rank_in_group(self, user_id: int, group_id: int | None = None) -> int:
        """The user's rank number in the group; ``0`` means not a member."""
        gid = self._require_group(group_id)
        data = await self._get_json(f"{GROUPS_API}/v2/users/{user_id}/groups/roles")
        for membership in data.get("data", []):
            if int(membership["group"]["id"]) == gid:
                return int(membership["role"]["rank"])
        return 0

    async def find_role(self, name: str, group_id: int | None = None) -> GroupRole | None:
        """Case-insensitive role lookup by name."""
        wanted = name.strip().lower()
        for role in await self.get_group_roles(group_id):
            if role.name.lower() == wanted:
                return role
        return None

    async def set_rank(self, user_id: int, role: GroupRole, group_id: int | None = None) -> None:
        """Move *user_id* into *role*.  Raises :class:`RobloxGroupError` on refusal."""
        gid = self._require_group(group_id)
        if not self._connected:
            raise RobloxGroupError("Not logged into Roblox")

        if await self.get_rank_in_group(user_id, gid) == 0:
            raise RobloxGroupError("User is not in the group")

        resp = await self._authed_write(
            "PATCH",
            f"{GROUPS_API}/v1/groups/{gid}/users/{user_id}",
            json={"roleId": role.id},
        )
        if resp.status_code != 200:
            try:
                errors = resp.json().get("errors") or []
                message = errors[0].get("message") if errors else None
            except ValueError:
                message = None
            raise RobloxGroupError(message or f"Roblox refused the rank change ({resp.status_code})")

        logger.info("Set user %d to role %s (rank %d) in group %d", user_id, role.name, role.rank, gid)
