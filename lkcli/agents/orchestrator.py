"""
Agent deployment orchestration.

Drives the lifecycle commands: create, deploy, update, rollback, delete,
plus the read-only status/versions/list/secrets views. A deployment moves
through these states:

    ABSENT -> AWAITING_UPLOAD -> BUILDING -> DEPLOYED
                                  |
                                  +-> FAILED_BUILD

A deployed agent can go back to AWAITING_UPLOAD (deploy), stay DEPLOYED
(update, rollback) or return to ABSENT (delete).

User interaction goes through a `ui` object with message, confirm, ask,
select, multi_select and log_line methods and `interactive` and
`assume_yes` flags, so the same flows run under the terminal front end
and under tests.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import structlog

from lkcli.core.errors import (
    ConflictError,
    CredentialsError,
    FatalError,
    InputError,
    NotFoundError,
    OperationCancelled,
    ProtocolError,
)
from lkcli.core.models import ProjectContext, ProjectSource
from lkcli.core.project_file import (
    PROJECT_FILE_NAME,
    AgentSection,
    ProjectFile,
    ProjectSection,
    load_project_file,
    project_file_exists,
    save_project_file,
)

from .client import AgentClient
from .detect import ProjectType, require_project_type
from .docker import create_dockerfile, has_dockerfile
from .sdk_version import require_sdk_version
from .secrets import CREDENTIAL_NAMES, SecretsResult, collect_secrets, missing_credentials
from .tarball import package_and_upload

logger = structlog.get_logger()

_SUBDOMAIN_URL = re.compile(r"^(?:https?|wss?)://([^.]+)\.")


class DeployState(str, Enum):
    ABSENT = "absent"
    AWAITING_UPLOAD = "awaiting_upload"
    BUILDING = "building"
    DEPLOYED = "deployed"
    FAILED_BUILD = "failed_build"


TRANSITIONS = {
    DeployState.ABSENT: {DeployState.AWAITING_UPLOAD},
    DeployState.AWAITING_UPLOAD: {DeployState.BUILDING, DeployState.ABSENT},
    DeployState.BUILDING: {DeployState.DEPLOYED, DeployState.FAILED_BUILD},
    DeployState.DEPLOYED: {DeployState.AWAITING_UPLOAD, DeployState.DEPLOYED, DeployState.ABSENT},
    DeployState.FAILED_BUILD: {DeployState.AWAITING_UPLOAD, DeployState.ABSENT},
}


@dataclass
class SecretOptions:
    pairs: list[str] = field(default_factory=list)
    secrets_file: str | None = None


def project_subdomain(project: ProjectContext) -> str:
    m = _SUBDOMAIN_URL.match(project.url)
    if not m:
        raise CredentialsError(f"invalid project URL [{project.url}]")
    return m.group(1)


def parse_cpu(value: str) -> float:
    """Kubernetes CPU quantity in cores ("250m" -> 0.25)."""
    value = value.strip()
    if not value:
        return 0.0
    if value.endswith("m"):
        return float(value[:-1]) / 1000
    return float(value)


_MEM_SUFFIXES = {
    "Ki": 1024,
    "Mi": 1024**2,
    "Gi": 1024**3,
    "Ti": 1024**4,
    "k": 1000,
    "K": 1000,
    "M": 1000**2,
    "G": 1000**3,
    "T": 1000**4,
}


def parse_mem(value: str, suffix: bool = False) -> str:
    """Kubernetes memory quantity rendered in GiB with two significant digits."""
    value = value.strip()
    if not value:
        return "-"
    multiplier = 1
    for unit in sorted(_MEM_SUFFIXES, key=len, reverse=True):
        if value.endswith(unit):
            multiplier = _MEM_SUFFIXES[unit]
            value = value[: -len(unit)]
            break
    gb = float(value) * multiplier / 1024**3
    return f"{gb:.2g}GB" if suffix else f"{gb:.2g}"


def status_rows(agents: list[dict]) -> list[list[str]]:
    rows = []
    for agent in agents:
        for dep in agent.get("agent_deployments", []):
            try:
                cur_cpu = f"{parse_cpu(dep.get('cur_cpu', '')):.4g}"
            except ValueError:
                logger.error("agent_cpu_unparseable", value=dep.get("cur_cpu"))
                cur_cpu = dep.get("cur_cpu", "")
            try:
                cur_mem = parse_mem(dep.get("cur_mem", ""))
                mem_req = parse_mem(dep.get("mem_req", ""), suffix=True)
            except ValueError:
                logger.error("agent_mem_unparseable", cur=dep.get("cur_mem"), req=dep.get("mem_req"))
                cur_mem, mem_req = dep.get("cur_mem", ""), dep.get("mem_req", "")
            rows.append(
                [
                    dep.get("region", ""),
                    dep.get("status", ""),
                    f"{cur_cpu} / {dep.get('cpu_req', '')}",
                    f"{cur_mem} / {mem_req}",
                    f"{dep.get('replicas', 0)} / {dep.get('min_replicas', 0)} / {dep.get('max_replicas', 0)}",
                    agent.get("deployed_at", "") or "-",
                ]
            )
    return rows


class AgentOrchestrator:
    """Agent lifecycle commands for one project and working directory."""

    def __init__(
        self,
        client: AgentClient,
        project: ProjectContext,
        ui: Any,
        working_dir: Path | str = ".",
        *,
        silent: bool = False,
    ):
        self.client = client
        self.project = project
        self.ui = ui
        self.working_dir = Path(working_dir)
        self.silent = silent
        self.state = DeployState.ABSENT
        self.history: list[DeployState] = [self.state]

    def _advance(self, to: DeployState) -> None:
        if to not in TRANSITIONS[self.state]:
            raise FatalError(f"invalid deployment transition {self.state.value} -> {to.value}")
        logger.debug("agent_state", frm=self.state.value, to=to.value)
        self.state = to
        self.history.append(to)

    def _say(self, text: str) -> None:
        if not self.silent:
            self.ui.message(text)

    # Project file

    def verify_project_match(self) -> ProjectFile | None:
        """The directory's livekit.toml must belong to the active project."""
        pf = load_project_file(self.working_dir)
        if pf is not None and pf.project.subdomain:
            if project_subdomain(self.project) != pf.project.subdomain:
                raise CredentialsError(f"project does not match agent subdomain [{pf.project.subdomain}]")
        return pf

    def require_agent_file(self) -> ProjectFile:
        pf = load_project_file(self.working_dir)
        if pf is None:
            raise InputError(f"config file [{PROJECT_FILE_NAME}] required to update agent")
        if pf.agent is None or not pf.agent.name:
            raise InputError(f"no agent config found in [{PROJECT_FILE_NAME}]")
        return pf

    def resolve_agent_name(self, name: str = "") -> str:
        if name:
            return name
        return self.require_agent_file().agent.name

    # Pipeline steps

    def _collect_secrets(self, opts: SecretOptions, *, required: bool, lazy: bool) -> SecretsResult:
        result = collect_secrets(
            opts.pairs,
            directory=self.working_dir,
            secrets_file=opts.secrets_file,
            required=required,
            lazy=lazy,
            select=None if self.silent else self.ui.multi_select,
        )
        if result.file is not None:
            self._say(f"Using secrets file [{result.file}]")
        if result.ignored:
            self._say(f"Ignoring {', '.join(result.ignored)}: LIVEKIT_ secrets are injected automatically")
        return result

    def _check_credentials(self, result: SecretsResult) -> None:
        """Confirm the platform may provision credentials the user did not set."""
        missing = missing_credentials(result)
        if not missing or self.silent:
            return
        ok = self.ui.confirm(
            f"{' and '.join(missing)} not set. Generate credentials for the agent automatically?",
            default=True,
        )
        if not ok:
            raise OperationCancelled()
        logger.debug("agent_credentials_generated", names=list(CREDENTIAL_NAMES))

    async def _check_source(self) -> ProjectType:
        project_type = require_project_type(self.working_dir)
        settings = await self.client.get_client_settings()
        result = require_sdk_version(self.working_dir, project_type, settings)
        logger.debug("sdk_version_ok", file=result.file, version=result.version)

        if has_dockerfile(self.working_dir):
            self._say("Using existing Dockerfile")
            return project_type

        if not self.silent and not self.ui.confirm("No Dockerfile found. Generate one?", default=True):
            raise InputError("a Dockerfile is required to deploy an agent")
        self._say("Creating Dockerfile")
        create_dockerfile(self.working_dir, project_type, settings, select=self.ui.select)
        return project_type

    async def _upload(self, project_type: ProjectType, upload: dict) -> None:
        await package_and_upload(
            self.working_dir,
            project_type,
            presigned_url=upload.get("presigned_url") or None,
            presigned_post=upload.get("presigned_post_request") or None,
            exclude=[PROJECT_FILE_NAME],
        )
        self._advance(DeployState.BUILDING)

    async def _build(self, agent_id: str) -> None:
        try:
            await self.client.build(agent_id, self.ui.log_line)
        except ProtocolError:
            self._advance(DeployState.FAILED_BUILD)
            raise
        self._advance(DeployState.DEPLOYED)

    # Commands

    async def create(self, name: str = "", secrets: SecretOptions | None = None) -> dict:
        secrets = secrets or SecretOptions()
        subdomain = project_subdomain(self.project)

        if self.project.source is not ProjectSource.PROJECT_FLAG and not self.silent:
            if not self.ui.confirm(
                f"Use project [{self.project.name}] with subdomain [{subdomain}] to create agent?", default=True
            ):
                raise OperationCancelled()

        pf = self.verify_project_match()
        if pf is not None and pf.agent is not None and pf.agent.name:
            if name and pf.agent.name != name:
                raise InputError(
                    f"agent name passed in command line: [{name}] does not match name in "
                    f"[{PROJECT_FILE_NAME}]: [{pf.agent.name}]"
                )
            self._say(f"Using agent configuration [{PROJECT_FILE_NAME}]")
        else:
            if not name:
                if self.silent:
                    raise InputError("agent name is required")
                name = self.ui.ask("Agent name")
            if not name:
                raise InputError("name is required")
            pf = ProjectFile.new_agent_file(subdomain, name)
            save_project_file(pf, self.working_dir)
            self._say(f"Creating config file [{PROJECT_FILE_NAME}]")

        agent = pf.agent
        pf.validate_replicas()
        self._say(f"Creating agent [{agent.name}]")

        found = self._collect_secrets(secrets, required=False, lazy=False)
        self._check_credentials(found)
        project_type = await self._check_source()

        resp = await self.client.create_agent(
            agent.name,
            secrets=found.secrets,
            replicas=agent.replicas,
            max_replicas=agent.max_replicas,
            cpu_req=agent.cpu,
            regions=agent.regions,
        )
        self._advance(DeployState.AWAITING_UPLOAD)
        agent_id = resp.get("agent_id", "")
        if agent_id and agent.id != agent_id:
            agent.id = agent_id
            save_project_file(pf, self.working_dir)

        await self._upload(project_type, resp)
        self._say(f"Created agent [{resp.get('agent_name') or agent.name}] with ID [{agent_id}]")
        await self._build(agent_id)
        self._say("Build completed")

        # the agent is deployed; a run that cannot prompt just returns
        can_ask = self.ui.interactive or self.ui.assume_yes
        if not self.silent and can_ask and self.ui.confirm(
            "Agent deploying. Would you like to view logs?", default=True
        ):
            self.ui.message("Tailing logs...safe to exit at any time")
            await self.client.stream_logs(agent_id, "deploy", self.ui.log_line)
        return resp

    async def deploy(self, secrets: SecretOptions | None = None) -> dict:
        secrets = secrets or SecretOptions()
        self.verify_project_match()
        pf = self.require_agent_file()
        pf.validate_replicas()
        # Redeploying starts from an existing deployment
        self.state = DeployState.DEPLOYED
        self.history = [self.state]

        found = self._collect_secrets(secrets, required=False, lazy=True)
        project_type = await self._check_source()
        resp = await self.client.deploy_agent(
            pf.agent.name,
            secrets=found.secrets,
            replicas=pf.agent.replicas,
            max_replicas=pf.agent.max_replicas,
            cpu_req=pf.agent.cpu,
        )
        if not resp.get("success", False):
            raise ProtocolError(f"failed to deploy agent: {resp.get('message', '')}")
        self._advance(DeployState.AWAITING_UPLOAD)

        agent_id = resp.get("agent_id", "") or pf.agent.id
        await self._upload(project_type, resp)
        self._say(f"Updated agent [{agent_id}]")
        await self._build(agent_id)
        self._say("Deployed agent")
        return resp

    async def update(self, secrets: SecretOptions | None = None) -> None:
        secrets = secrets or SecretOptions()
        self.verify_project_match()
        pf = self.require_agent_file()
        pf.validate_replicas()
        found = self._collect_secrets(secrets, required=False, lazy=True)
        resp = await self.client.update_agent(
            pf.agent.name,
            secrets=found.secrets,
            replicas=pf.agent.replicas,
            max_replicas=pf.agent.max_replicas,
            cpu_req=pf.agent.cpu,
        )
        if not resp.get("success", False):
            raise ProtocolError(f"failed to update agent: {resp.get('message', '')}")
        self.ui.message(f"Updated agent [{pf.agent.name}]")

    async def rollback(self, version: str, name: str = "") -> None:
        """Switch to a previous version; "latest" is resolved by the service."""
        if not version:
            raise InputError("version is required")
        agent_name = self.resolve_agent_name(name)
        resp = await self.client.rollback_agent(agent_name, version)
        if not resp.get("success", False):
            raise ProtocolError(f"failed to rollback agent {resp.get('message', '')}".rstrip())
        self.ui.message(f"Rolled back agent [{agent_name}] to version {version}")

    async def delete(self, name: str = "") -> bool:
        agent_name = self.resolve_agent_name(name)
        if not self.ui.confirm(f"Are you sure you want to delete agent [{agent_name}]?", default=False):
            return False
        resp = await self.client.delete_agent(agent_name)
        if not resp.get("success", False):
            raise ProtocolError(f"failed to delete agent {resp.get('message', '')}".rstrip())
        self.state = DeployState.ABSENT
        self.ui.message(f"Deleted agent [{agent_name}]")
        return True

    async def logs(self, name: str = "", log_type: str = "deploy") -> None:
        agent_name = self.resolve_agent_name(name)
        agents = await self.client.list_agents(agent_name)
        if not agents:
            raise NotFoundError(f"agent [{agent_name}] not found")
        await self.client.stream_logs(agents[0].get("agent_id", ""), log_type, self.ui.log_line)

    async def status(self, name: str = "") -> list[list[str]]:
        agent_name = self.resolve_agent_name(name)
        agents = await self.client.list_agents(agent_name)
        if not agents:
            raise NotFoundError("no agents found")
        return status_rows(agents)

    async def versions(self, name: str = "") -> list[list[str]]:
        agent_name = self.resolve_agent_name(name)
        versions = await self.client.list_agent_versions(agent_name)
        return [
            [v.get("version", ""), "true" if v.get("current") else "false", v.get("created_at", "") or "-"]
            for v in versions
        ]

    async def list_agents(self, ids: list[str] | None = None) -> list[list[str]]:
        items: list[dict] = []
        wanted = [i for i in ids or [] if i]
        if wanted:
            for agent_id in wanted:
                items.extend(await self.client.list_agents(agent_id=agent_id))
        else:
            items = await self.client.list_agents()
        rows = []
        for agent in items:
            regions = ",".join(d.get("region", "") for d in agent.get("agent_deployments", []))
            rows.append([agent.get("agent_id", ""), agent.get("agent_name", ""), regions])
        return rows

    async def secrets(self, name: str = "") -> list[list[str]]:
        agent_name = self.resolve_agent_name(name)
        secrets = await self.client.list_agent_secrets(agent_name)
        return [
            [s.get("name", ""), s.get("created_at", "") or "-", s.get("updated_at", "") or "-"]
            for s in secrets
            if s.get("name") not in CREDENTIAL_NAMES
        ]

    async def update_secrets(self, secrets: SecretOptions, name: str = "", overwrite: bool = False) -> None:
        agent_name = self.resolve_agent_name(name)
        found = self._collect_secrets(secrets, required=True, lazy=True)
        resp = await self.client.update_agent_secrets(agent_name, found.secrets, overwrite=overwrite)
        if not resp.get("success", False):
            raise ProtocolError(f"failed to update agent secrets: {resp.get('message', '')}")
        self.ui.message("Updated agent secrets")

    async def write_config(self, name: str = "") -> Path:
        """Write livekit.toml describing an existing deployment."""
        if project_file_exists(self.working_dir):
            if not self.ui.confirm(f"Config file [{PROJECT_FILE_NAME}] file already exists. Overwrite?", default=False):
                raise ConflictError(f"config file [{PROJECT_FILE_NAME}] already exists")
        if not name:
            name = self.ui.ask("Agent name")
        if not name:
            raise InputError("name is required")

        agents = await self.client.list_agents(name)
        if not agents:
            raise NotFoundError("agent not found")
        agent = agents[0]
        deployments = agent.get("agent_deployments") or [{}]
        dep = deployments[0]

        pf = ProjectFile(
            project=ProjectSection(subdomain=project_subdomain(self.project)),
            agent=AgentSection(
                id=agent.get("agent_id", ""),
                name=agent.get("agent_name", name),
                cpu=dep.get("cpu_req") or "1",
                replicas=dep.get("replicas", 1) or 1,
                max_replicas=dep.get("max_replicas", 10) or 10,
                regions=[d["region"] for d in deployments if d.get("region")],
            ),
        )
        path = save_project_file(pf, self.working_dir)
        self.ui.message(f"Created config file [{PROJECT_FILE_NAME}]")
        return path


