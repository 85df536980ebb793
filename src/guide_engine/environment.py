# environment.py
# Read-only environment collaborators queried by requirement checks.
#
# Nothing here is cached: every requirement evaluation re-queries, since
# permissions, data sources and plugins can change between checks.

import os
from typing import Protocol

import httpx
from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class UserInfo(BaseModel):
    login: str = ""
    org_role: str | None = Field(default=None, description="Viewer, Editor or Admin.")
    is_grafana_admin: bool = False
    permissions: list[str] = Field(default_factory=list)


class DataSource(BaseModel):
    name: str
    uid: str = ""
    type: str = ""


class Plugin(BaseModel):
    id: str
    enabled: bool = True


class Dashboard(BaseModel):
    title: str
    uid: str = ""


class BuildInfo(BaseModel):
    version: str = "0.0.0"
    env: str = "unknown"


class Environment(Protocol):
    async def user(self) -> UserInfo | None: ...

    async def has_permission(self, action: str) -> bool: ...

    async def datasources(self) -> list[DataSource]: ...

    async def plugins(self) -> list[Plugin]: ...

    async def search_dashboards(self, query: str) -> list[Dashboard]: ...

    async def feature_toggles(self) -> dict[str, bool]: ...

    async def build_info(self) -> BuildInfo: ...


# ---------------------------------------------------------------------------
# Static snapshot
# ---------------------------------------------------------------------------


class StaticEnvironment(BaseModel):
    """Environment backed by a fixed snapshot. Mutate fields to simulate changes."""

    current_user: UserInfo | None = Field(default_factory=UserInfo)
    datasource_list: list[DataSource] = Field(default_factory=list)
    plugin_list: list[Plugin] = Field(default_factory=list)
    dashboard_list: list[Dashboard] = Field(default_factory=list)
    toggles: dict[str, bool] = Field(default_factory=dict)
    build: BuildInfo = Field(default_factory=BuildInfo)

    async def user(self) -> UserInfo | None:
        return self.current_user

    async def has_permission(self, action: str) -> bool:
        if self.current_user is None:
            return False
        return action in self.current_user.permissions

    async def datasources(self) -> list[DataSource]:
        return list(self.datasource_list)

    async def plugins(self) -> list[Plugin]:
        return [p for p in self.plugin_list if p.enabled]

    async def search_dashboards(self, query: str) -> list[Dashboard]:
        needle = query.lower()
        return [d for d in self.dashboard_list if needle in d.title.lower()]

    async def feature_toggles(self) -> dict[str, bool]:
        return dict(self.toggles)

    async def build_info(self) -> BuildInfo:
        return self.build


# ---------------------------------------------------------------------------
# HTTP API
# ---------------------------------------------------------------------------


class HttpEnvironment:
    """Environment backed by a Grafana-style HTTP API.

    Base URL and token default to GRAFANA_URL / GRAFANA_TOKEN.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        base_url = base_url or os.getenv("GRAFANA_URL", "http://localhost:3000")
        token = token or os.getenv("GRAFANA_TOKEN")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, **params):
        response = await self._client.get(path, params=params or None)
        response.raise_for_status()
        return response.json()

    async def user(self) -> UserInfo | None:
        data = await self._get("/api/user")
        if not data:
            return None
        org_role = None
        orgs = await self._get("/api/user/orgs")
        for org in orgs or []:
            if org.get("orgId") == data.get("orgId"):
                org_role = org.get("role")
                break
        permissions = await self._get("/api/access-control/user/permissions")
        return UserInfo(
            login=data.get("login", ""),
            org_role=org_role,
            is_grafana_admin=bool(data.get("isGrafanaAdmin")),
            permissions=sorted(permissions or {}),
        )

    async def has_permission(self, action: str) -> bool:
        permissions = await self._get("/api/access-control/user/permissions")
        return action in (permissions or {})

    async def datasources(self) -> list[DataSource]:
        return [
            DataSource(name=d.get("name", ""), uid=d.get("uid", ""), type=d.get("type", ""))
            for d in await self._get("/api/datasources") or []
        ]

    async def plugins(self) -> list[Plugin]:
        plugins = await self._get("/api/plugins", enabled=1)
        return [Plugin(id=p["id"], enabled=p.get("enabled", True)) for p in plugins or []]

    async def search_dashboards(self, query: str) -> list[Dashboard]:
        found = await self._get("/api/search", type="dash-db", limit=100, deleted="false", query=query)
        return [Dashboard(title=d.get("title", ""), uid=d.get("uid", "")) for d in found or []]

    async def _frontend_settings(self) -> dict:
        return await self._get("/api/frontend/settings") or {}

    async def feature_toggles(self) -> dict[str, bool]:
        settings = await self._frontend_settings()
        return {k: bool(v) for k, v in (settings.get("featureToggles") or {}).items()}

    async def build_info(self) -> BuildInfo:
        info = (await self._frontend_settings()).get("buildInfo") or {}
        return BuildInfo(version=info.get("version") or "0.0.0", env=info.get("env") or "unknown")
