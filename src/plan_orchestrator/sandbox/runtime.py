"""Thin wrapper over the Docker SDK for sandbox resources."""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from ..core.errors import InfrastructureError, RuntimeUnavailableError, SandboxLifecycleError
from ..core.models import SandboxState
from ..utils.subprocess_utils import CommandNotFoundError, run_command

logger = logging.getLogger(__name__)


class DockerRuntime:
    """Containers, volumes, networks and images used by the sandbox pool.

    All methods block; async callers run them through ``asyncio.to_thread``.
    """

    def __init__(self, docker_binary: str = "docker"):
        self.docker_binary = docker_binary
        self._client: Optional[docker.DockerClient] = None

    @property
    def client(self) -> docker.DockerClient:
        """Lazy-initialize Docker client."""
        if self._client is None:
            try:
                client = docker.from_env()
                client.ping()
            except DockerException as e:
                raise RuntimeUnavailableError(
                    f"failed to connect to Docker daemon. Is Docker running? {e}"
                ) from e
            self._client = client
        return self._client

    # -- volumes and networks -------------------------------------------------

    def ensure_volume(self, name: str) -> None:
        """Create the named volume unless it already exists."""
        try:
            self.client.volumes.get(name)
            return
        except NotFound:
            pass
        except APIError as e:
            raise InfrastructureError(f"Failed to inspect docker volume '{name}': {e}") from e

        logger.info(f"Creating docker volume: {name}")
        try:
            self.client.volumes.create(name=name)
        except APIError as e:
            raise InfrastructureError(f"Failed to create docker volume '{name}': {e}") from e

    def ensure_network(self, name: str) -> None:
        """Create the named bridge network unless it already exists."""
        try:
            self.client.networks.get(name)
            return
        except NotFound:
            pass
        except APIError as e:
            raise InfrastructureError(f"Failed to inspect docker network '{name}': {e}") from e

        logger.info(f"Creating Docker network {name}...")
        try:
            self.client.networks.create(name, driver="bridge")
        except APIError as e:
            raise InfrastructureError(f"Failed to create docker network '{name}': {e}") from e

    # -- containers ------------------------------------------------------------

    def container_state(self, name: str) -> SandboxState:
        """ABSENT, CREATED (exists but not running) or STARTED."""
        try:
            container = self.client.containers.get(name)
        except NotFound:
            return SandboxState.ABSENT
        except APIError as e:
            raise SandboxLifecycleError(name, f"Failed to inspect container: {e}") from e
        return SandboxState.STARTED if container.status == "running" else SandboxState.CREATED

    def run_container(self, name: str, image: str, command: List[str], **kwargs: Any) -> None:
        """Create and start a detached container."""
        try:
            self.client.containers.run(image, command=command, name=name, detach=True, **kwargs)
        except (APIError, ImageNotFound) as e:
            raise SandboxLifecycleError(name, f"Failed to create container: {e}") from e

    def start_container(self, name: str) -> None:
        try:
            self.client.containers.get(name).start()
        except (APIError, NotFound) as e:
            raise SandboxLifecycleError(name, f"Failed to start container: {e}") from e

    def remove_container(self, name: str) -> bool:
        """Force-remove a container. Returns False if it did not exist."""
        try:
            self.client.containers.get(name).remove(force=True)
            return True
        except NotFound:
            return False
        except APIError as e:
            logger.warning(f"Failed to remove container {name}: {e}")
            return False

    def list_container_names(self, name_filters: Iterable[str]) -> List[str]:
        """Names of all containers (running or not) matching any name filter."""
        names: List[str] = []
        for name_filter in name_filters:
            try:
                containers = self.client.containers.list(all=True, filters={"name": name_filter})
            except APIError as e:
                logger.warning(f"Failed to list containers matching {name_filter}: {e}")
                continue
            for container in containers:
                if container.name not in names:
                    names.append(container.name)
        return names

    # -- images ----------------------------------------------------------------

    def image_platform(self, image: str) -> Optional[str]:
        """``os/arch`` of a local image, or None when it is not present."""
        try:
            attrs = self.client.images.get(image).attrs
        except ImageNotFound:
            return None
        except APIError as e:
            logger.warning(f"Failed to inspect image {image}: {e}")
            return None
        os_name = attrs.get("Os")
        arch = attrs.get("Architecture")
        return f"{os_name}/{arch}" if os_name and arch else None

    def has_buildx(self) -> bool:
        try:
            result = run_command([self.docker_binary, "buildx", "version"], check=False, errors="replace")
        except CommandNotFoundError:
            return False
        return result.returncode == 0

    def build_image(
        self,
        image: str,
        dockerfile: Path,
        context: Path,
        platform: str,
        base_image: Optional[str] = None,
    ) -> None:
        """Build the sandbox image with the docker CLI (output streams to the terminal).

        buildx is preferred because the classic builder may ignore --platform.
        """
        if not dockerfile.exists():
            raise InfrastructureError(f"{dockerfile.name} not found at {dockerfile}")

        if self.has_buildx():
            logger.info(f"Building image for platform: {platform}")
            args = ["buildx", "build", "--load", "--platform", platform, "-f", str(dockerfile), "-t", image]
        else:
            if platform != "linux/amd64":
                logger.warning(
                    f"docker buildx is not available; platform '{platform}' may be ignored by the classic builder"
                )
            args = ["build", "-f", str(dockerfile), "-t", image]

        if base_image:
            args += ["--build-arg", f"BASE_IMAGE={base_image}"]
            logger.info(f"Using base image: {base_image}")
        args.append(str(context))

        try:
            result = run_command([self.docker_binary, *args], check=False, capture_output=False)
        except CommandNotFoundError as e:
            raise RuntimeUnavailableError(e.stderr) from e
        if result.returncode != 0:
            raise InfrastructureError(f"Failed to build Docker image {image}")
        logger.info("Docker image built successfully")

    def ensure_image(
        self,
        image: str,
        dockerfile: Path,
        context: Path,
        platform: str,
        base_image: Optional[str] = None,
    ) -> bool:
        """Build the image when missing or built for another platform. Returns True if built."""
        local_platform = self.image_platform(image)
        if local_platform == platform:
            logger.info("Using existing Docker image")
            return False
        if local_platform:
            logger.info(f"Local image platform mismatch: have {local_platform}, need {platform}. Rebuilding...")
        self.build_image(image, dockerfile, context, platform, base_image)
        return True


def bind_mounts(mounts: Dict[str, str]) -> Dict[str, Dict[str, str]]:
    """``{"src": "dest:mode"}`` -> SDK volume spec."""
    spec: Dict[str, Dict[str, str]] = {}
    for source, target in mounts.items():
        bind, _, mode = target.partition(":")
        spec[source] = {"bind": bind, "mode": mode or "rw"}
    return spec
