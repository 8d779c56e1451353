"""Warm sandbox lifecycle: absent -> created -> started -> ready.

A warm sandbox keeps the version-controlled workspace mounted at
``$HOME/arcadia`` for its whole life so tasks skip the expensive mount and
auth steps. Every sandbox gets its own store directory (stores cannot be
shared between concurrent mounts) while one object-store volume is shared
by all of them to avoid re-downloading objects.
"""

import asyncio
import logging
import shlex
import time
from typing import Dict, Iterable, List, Optional

from ..core.config import OrchestratorConfig
from ..core.errors import SandboxNotReadyError
from ..core.models import SandboxHandle, SandboxState
from ..core.run_logger import format_duration
from .executor import CommandExecutor
from .runtime import DockerRuntime, bind_mounts

logger = logging.getLogger(__name__)

REPO_MOUNT = '"$HOME/arcadia"'
CONTAINER_TASKS_DIR = "/workspace/.cache/tasks"
CONTAINER_TOKEN_PATH = "/tmp/host-arc-token"
CONTAINER_DOTENV_PATH = "/tmp/host-dotenv"
MOUNT_PROBE = f"mountpoint -q {REPO_MOUNT} && echo OK || echo NO"


class SandboxLifecycle:
    """Create, start and verify warm sandboxes."""

    def __init__(
        self,
        config: OrchestratorConfig,
        runtime: Optional[DockerRuntime] = None,
        executor: Optional[CommandExecutor] = None,
    ):
        self.config = config
        self.runtime = runtime or DockerRuntime()
        self.executor = executor or CommandExecutor()

    @property
    def vcs_home(self) -> str:
        return f'"$HOME/.{self.config.vcs_binary}"'

    def store_path(self, name: str) -> str:
        return f"$HOME/.{self.config.vcs_binary}/stores/{name}"

    def _token_bootstrap(self) -> str:
        token_dest = f'"$HOME/.{self.config.vcs_binary}/token"'
        return (
            f"if [ -f {CONTAINER_TOKEN_PATH} ] && [ -s {CONTAINER_TOKEN_PATH} ]; then "
            f"mkdir -p {self.vcs_home}; "
            f"cp {CONTAINER_TOKEN_PATH} {token_dest} || true; "
            f"chmod 400 {token_dest} 2>/dev/null || true; fi"
        )

    def bootstrap_script(self, name: str) -> str:
        """Shell script that provisions auth, mounts the workspace and idles."""
        vcs = shlex.quote(self.config.vcs_binary)
        store = f'"{self.store_path(name)}"'
        object_store = f'"$HOME/.{self.config.vcs_binary}/object-store"'
        return "\n".join([
            "set -euo pipefail",
            f"mkdir -p {self.vcs_home}",
            self._token_bootstrap(),
            f"mkdir -p {REPO_MOUNT}",
            f"mkdir -p {store}",
            f"if ! mountpoint -q {REPO_MOUNT} 2>/dev/null; then "
            f'echo "Warm mount: {self.config.vcs_binary} mount..."; '
            f"{vcs} mount {REPO_MOUNT} --allow-other --store {store} --object-store {object_store}; fi",
            f"cd {REPO_MOUNT}",
            'export PATH="$HOME/arcadia:$PATH"',
            'echo "Warm container ready. Keeping mount alive..."',
            "tail -f /dev/null",
        ])

    def _common_mounts(self) -> Dict[str, str]:
        mounts = {str(self.config.tasks_dir): f"{CONTAINER_TASKS_DIR}:rw"}
        token = self.config.host_token_path()
        if token is not None:
            mounts[str(token)] = f"{CONTAINER_TOKEN_PATH}:ro"
        if self.config.dotenv_path.exists():
            mounts[str(self.config.dotenv_path)] = f"{CONTAINER_DOTENV_PATH}:ro"
        return mounts

    def warm_container_spec(self, name: str, environment: Optional[Dict[str, str]] = None) -> Dict:
        """Keyword arguments for ``containers.run`` of a warm sandbox."""
        mounts = self._common_mounts()
        mounts[self.config.object_store_volume] = f"/root/.{self.config.vcs_binary}/object-store:rw"
        env = {"NODE_ENV": "production", "ARCADIA": "~/arcadia"}
        env.update(environment or {})
        return {
            "command": ["bash", "-lc", self.bootstrap_script(name)],
            "platform": self.config.platform,
            "network": self.config.network,
            # FUSE mount needs these
            "cap_add": ["SYS_ADMIN"],
            "devices": ["/dev/fuse:/dev/fuse:rwm"],
            "security_opt": ["apparmor=unconfined"],
            "environment": env,
            "volumes": bind_mounts(mounts),
        }

    async def ensure_ready(
        self,
        name: str,
        environment: Optional[Dict[str, str]] = None,
    ) -> SandboxHandle:
        """Bring ``name`` to READY, creating or starting it as needed.

        Cheap on an already-ready sandbox: one state check and one mount
        probe. Raises SandboxLifecycleError on create/start failure and
        SandboxNotReadyError if the mount never appears.
        """
        start = time.monotonic()
        await asyncio.to_thread(self.runtime.ensure_volume, self.config.object_store_volume)

        state = await asyncio.to_thread(self.runtime.container_state, name)
        if state == SandboxState.ABSENT:
            logger.info(f"Creating warm container: {name}")
            spec = self.warm_container_spec(name, environment)
            command = spec.pop("command")
            await asyncio.to_thread(self.runtime.run_container, name, self.config.image, command, **spec)
        elif state == SandboxState.CREATED:
            logger.info(f"Starting existing warm container: {name}")
            await asyncio.to_thread(self.runtime.start_container, name)

        await self.wait_until_mounted(name)
        warmup_ms = int((time.monotonic() - start) * 1000)
        logger.info(f"Warm container {name} ready in {format_duration(warmup_ms)}")
        return SandboxHandle(
            name=name,
            state=SandboxState.READY,
            store_path=self.store_path(name),
            object_store_volume=self.config.object_store_volume,
            warmup_ms=warmup_ms,
        )

    async def is_mounted(self, name: str) -> bool:
        result = await self.executor.exec_async(name, MOUNT_PROBE)
        return result.exit_code == 0 and "OK" in result.stdout

    async def wait_until_mounted(self, name: str) -> None:
        """Poll the mount point until it is mounted or the timeout expires."""
        timeout = self.config.mount_timeout_seconds
        deadline = time.monotonic() + timeout
        while True:
            if await self.is_mounted(name):
                return
            if time.monotonic() >= deadline:
                raise SandboxNotReadyError(name, timeout)
            await asyncio.sleep(self.config.mount_poll_interval_seconds)

    async def remove(self, name: str) -> bool:
        return await asyncio.to_thread(self.runtime.remove_container, name)

    async def remove_matching(self, name_filters: Iterable[str]) -> List[str]:
        """Force-remove every container whose name matches one of the filters."""
        names = await asyncio.to_thread(self.runtime.list_container_names, list(name_filters))
        for name in names:
            logger.info(f"Removing container: {name}")
            await self.remove(name)
        return names

    def service_script(self) -> str:
        return "\n".join([
            "set -euo pipefail",
            "cd /workspace",
            'export NVM_DIR="$HOME/.nvm"',
            '[ -s "$NVM_DIR/nvm.sh" ] && . "$NVM_DIR/nvm.sh" || true',
            f"if [ -f {CONTAINER_DOTENV_PATH} ]; then cp {CONTAINER_DOTENV_PATH} ./.env || true; fi",
            self._token_bootstrap(),
            self.config.service_command,
        ])

    async def ensure_service_container(self) -> str:
        """Keep the long-lived queue watcher container running."""
        name = self.config.service_container_name
        state = await asyncio.to_thread(self.runtime.container_state, name)
        if state == SandboxState.ABSENT:
            logger.info(f"Creating service container: {name}")
            await asyncio.to_thread(
                self.runtime.run_container,
                name,
                self.config.image,
                ["bash", "-lc", self.service_script()],
                platform=self.config.platform,
                network=self.config.network,
                restart_policy={"Name": "unless-stopped"},
                environment={"NODE_ENV": "production", "QUEUE_MODE": "ci"},
                volumes=bind_mounts(self._common_mounts()),
            )
        elif state == SandboxState.CREATED:
            logger.info(f"Starting existing service container: {name}")
            await asyncio.to_thread(self.runtime.start_container, name)
        return name

    async def ensure_infrastructure(self) -> None:
        """Daemon reachable, network present and image built for the right platform."""
        # Docker would create a missing bind source owned by root
        self.config.tasks_dir.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(lambda: self.runtime.client)
        await asyncio.to_thread(self.runtime.ensure_network, self.config.network)
        await asyncio.to_thread(
            self.runtime.ensure_image,
            self.config.image,
            self.config.project_root / self.config.dockerfile,
            self.config.project_root,
            self.config.platform,
            self.config.base_image,
        )
