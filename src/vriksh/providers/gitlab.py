from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Any

from vriksh.providers.container import ContainerProvider
from vriksh.providers.registry import register_provider

if TYPE_CHECKING:
    from vriksh.specs.models import ProviderConfig

ROOT_USERNAME = "root"


class GitLabProvider(ContainerProvider):
    """GitLab CE instance with a known root password.

    Extra config keys: ``root_password`` (generated when absent) and
    ``token``, a personal access token the scoring checks can use.
    """

    type_name = "gitlab"
    default_image = "gitlab/gitlab-ce:latest"
    default_ports = {"8923": "80"}
    default_health_path = "/users/sign_in"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._root_password: str | None = None

    def _password(self, config: ProviderConfig) -> str:
        if self._root_password is None:
            self._root_password = str(
                config.config.get("root_password") or secrets.token_urlsafe(16)
            )
        return self._root_password

    def extra_env(self, config: ProviderConfig, url: str | None) -> list[str]:
        env = [f"GITLAB_ROOT_PASSWORD={self._password(config)}"]
        if url:
            # nginx keeps listening on 80 inside the container
            env.append(f"GITLAB_OMNIBUS_CONFIG=external_url '{url}'; nginx['listen_port'] = 80")
        return env

    def extra_metadata(self, config: ProviderConfig) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "credentials": {"username": ROOT_USERNAME, "password": self._password(config)},
        }
        if config.config.get("token"):
            metadata["token"] = str(config.config["token"])
        return metadata


register_provider(
    GitLabProvider.type_name,
    GitLabProvider,
    description="GitLab CE with root credentials",
)
