from __future__ import annotations

from typing import Mapping, Protocol

import structlog

logger = structlog.get_logger()


class SiteDeployer(Protocol):
    """
    Hosting-side half of provisioning: create/deploy a tenant project and
    push environment changes to it.
    """

    async def deploy(self, project_name: str, domain: str, env: Mapping[str, str]) -> str: ...

    async def update_env(self, deployment_id: str, env: Mapping[str, str]) -> None: ...


class RecordOnlyDeployer:
    """
    Default deployer: records what would be deployed and returns a stable
    project id. Hosting integrations implement SiteDeployer.
    """

    async def deploy(self, project_name: str, domain: str, env: Mapping[str, str]) -> str:
        logger.info("deployer.deploy", project=project_name, domain=domain, env_keys=sorted(env))
        return f"prj_{project_name}"

    async def update_env(self, deployment_id: str, env: Mapping[str, str]) -> None:
        logger.info("deployer.update_env", deployment_id=deployment_id, env_keys=sorted(env))


_default_deployer = RecordOnlyDeployer()


def get_deployer() -> SiteDeployer:
    return _default_deployer
