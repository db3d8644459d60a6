"""Automatic check implementations keyed by check ``type``.

A check receives its declaration, the ledger record of the provider it
targets and a shared httpx client, and returns whether it passed. Raising
counts as a failed check.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List
from urllib.parse import quote

import httpx

from vriksh.core.errors import ScoringError
from vriksh.domain.models import ProviderRecord
from vriksh.specs.models import AutomaticCheck

CheckFunc = Callable[[AutomaticCheck, ProviderRecord, httpx.AsyncClient], Awaitable[bool]]

_CHECKS: Dict[str, CheckFunc] = {}


def register_check(name: str) -> Callable[[CheckFunc], CheckFunc]:
    def decorator(func: CheckFunc) -> CheckFunc:
        _CHECKS[name] = func
        return func

    return decorator


def get_check(name: str) -> CheckFunc:
    try:
        return _CHECKS[name]
    except KeyError:
        raise ScoringError(f"Unknown check type: {name}", {"check_type": name}) from None


def list_checks() -> List[str]:
    return sorted(_CHECKS)


def provider_url(provider: ProviderRecord) -> str:
    url = provider.metadata.get("url")
    if not url:
        raise ScoringError(
            f"Provider '{provider.provider_id}' has no url to check",
            {"provider_id": provider.provider_id},
        )
    return str(url).rstrip("/")


@register_check("http_status")
async def http_status(
    check: AutomaticCheck, provider: ProviderRecord, client: httpx.AsyncClient
) -> bool:
    """GET ``config.path`` on the provider and compare ``config.expected_status`` (200)."""
    path = check.config.get("path", "/")
    expected = int(check.config.get("expected_status", 200))
    response = await client.get(f"{provider_url(provider)}{path}")
    return response.status_code == expected


@register_check("gitlab_pipeline")
async def gitlab_pipeline(
    check: AutomaticCheck, provider: ProviderRecord, client: httpx.AsyncClient
) -> bool:
    """Latest pipeline of ``config.project`` (optionally on ``config.ref``) succeeded."""
    project = check.config.get("project")
    if not project:
        raise ScoringError(f"Check '{check.id}' needs a project", {"check_id": check.id})

    token = check.config.get("token") or provider.metadata.get("token")
    headers = {"PRIVATE-TOKEN": str(token)} if token else {}
    params: Dict[str, Any] = {"per_page": 1}
    if check.config.get("ref"):
        params["ref"] = check.config["ref"]

    url = f"{provider_url(provider)}/api/v4/projects/{quote(str(project), safe='')}/pipelines"
    response = await client.get(url, headers=headers, params=params)
    if response.status_code != 200:
        return False

    pipelines = response.json()
    if not isinstance(pipelines, list) or not pipelines:
        return False
    latest = pipelines[0]
    if not isinstance(latest, dict):
        return False
    return latest.get("status") == "success"
