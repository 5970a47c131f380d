"""
Network ensurer for the shared overlay network.

Deployed stacks attach to one external overlay network that the reverse
proxy also joins. Before each deploy the network must exist with swarm
scope; a network of the same name with local scope is replaced.
"""

import logging

from kova_common.errors import NetworkError

from .runner import ProcessRunner

logger = logging.getLogger(__name__)

REQUIRED_SCOPE = "swarm"


class NetworkEnsurer:
    """
    Idempotent check and repair of the shared overlay network.

    Args:
        runner: Process runner used to invoke the docker CLI
        network_name: Name of the overlay network
        docker_binary: docker executable
    """

    def __init__(
        self,
        runner: ProcessRunner,
        network_name: str = "proxy",
        docker_binary: str = "docker",
    ):
        self.runner = runner
        self.network_name = network_name
        self.docker_binary = docker_binary

    async def inspect_scope(self) -> str | None:
        """
        Get the scope of the network.

        Returns:
            Scope string (e.g. "swarm", "local"), or None if the network doesn't exist
        """
        result = await self.runner.run(
            [
                self.docker_binary,
                "network",
                "inspect",
                self.network_name,
                "--format",
                "{{.Scope}}",
            ]
        )
        if not result.ok:
            return None
        return result.output.strip()

    async def ensure_network(self) -> None:
        """
        Make sure the network exists with swarm scope.

        Raises:
            NetworkError: If removal, creation or verification fails
        """
        try:
            scope = await self.inspect_scope()
        except OSError as e:
            raise NetworkError(f"failed to inspect network: {e}") from e

        if scope is None:
            logger.warning(
                f"Network '{self.network_name}' does not exist, creating it..."
            )
            await self._create()
            return

        logger.info(f"Found network '{self.network_name}' with scope: {scope}")

        if scope == REQUIRED_SCOPE:
            return

        logger.warning(
            f"Network '{self.network_name}' has wrong scope '{scope}' "
            f"(need '{REQUIRED_SCOPE}'), recreating it"
        )
        await self._remove()
        await self._create()

    async def _remove(self) -> None:
        try:
            result = await self.runner.run(
                [self.docker_binary, "network", "rm", self.network_name]
            )
        except OSError as e:
            raise NetworkError(f"failed to remove network: {e}") from e

        if not result.ok:
            raise NetworkError(f"failed to remove network: {result.output}")
        logger.info(f"Removed network '{self.network_name}'")

    async def _create(self) -> None:
        try:
            result = await self.runner.run(
                [
                    self.docker_binary,
                    "network",
                    "create",
                    "--driver",
                    "overlay",
                    "--attachable",
                    "--scope",
                    REQUIRED_SCOPE,
                    self.network_name,
                ]
            )
            if not result.ok:
                raise NetworkError(f"failed to create network: {result.output}")
            logger.info(
                f"Created network '{self.network_name}' (ID: {result.output.strip()})"
            )

            scope = await self.inspect_scope()
        except OSError as e:
            raise NetworkError(f"failed to create network: {e}") from e

        if scope != REQUIRED_SCOPE:
            raise NetworkError(
                f"network '{self.network_name}' has scope {scope!r} after creation"
            )
