"""MEE node deployment with Docker compose.

We run the node from the public deployment repository. On the first
clone we point the chain config at our Anvil fork and write the
``.env`` the compose file expects. Later runs only ``git pull``.

The node runs in Docker, so the RPC override uses
``host.docker.internal`` to reach Anvil on the host.
"""

import json
import logging
from pathlib import Path

from mee_harness.stack.commands import capture_command, run_command
from mee_harness.utils import strip_hex_prefix

logger = logging.getLogger(__name__)

#: Public compose deployment of the MEE node
MEE_NODE_REPO_URL = "https://github.com/bcnmy/mee-node-deployment"

#: Where Anvil is reachable from inside the node container
DOCKER_ANVIL_RPC_URL = "http://host.docker.internal:8545"

#: Node HTTP port
MEE_NODE_PORT = 3000

#: Containers compose brings up, both must be running
MEE_NODE_CONTAINERS = ("mee-node-node-1", "mee-node-redis-1")


class ContainersNotRunning(Exception):
    """Docker compose returned but the containers are not running."""


class MeeNodeDeployment:
    """Checked out MEE node deployment directory.

    :param directory:
        Where the deployment repository is cloned

    :param chain_id:
        Chain whose config gets the Anvil RPC override
    """

    def __init__(self, directory: Path, chain_id: int, repo_url: str = MEE_NODE_REPO_URL):
        assert isinstance(directory, Path), f"Expected Path, got {directory}"
        self.directory = directory
        self.chain_id = chain_id
        self.repo_url = repo_url

    def __repr__(self) -> str:
        return f"<MeeNodeDeployment {self.directory} chain {self.chain_id}>"

    def exists(self) -> bool:
        return self.directory.exists()

    def prepare(self, private_key: str):
        """Clone the deployment, or update an existing checkout.

        Chain config and ``.env`` are only written on the first clone,
        so local edits survive later runs.
        """
        if not self.exists():
            logger.info("Cloning MEE Node to %s", self.directory)
            run_command(["git", "clone", self.repo_url, str(self.directory)])
            self.write_chain_config()
            self.write_env_file(private_key)
        else:
            run_command(["git", "pull"], cwd=self.directory)

    def write_chain_config(self, rpc_url: str = DOCKER_ANVIL_RPC_URL) -> Path:
        """Copy the production chain config over the testnet one with our RPC.

        :return:
            Path of the written config
        """
        src = self.directory / "chains-prod" / f"{self.chain_id}.json"
        dst = self.directory / "chains-testnet" / f"{self.chain_id}.json"
        cfg = json.loads(src.read_text(encoding="utf-8"))
        cfg["rpc"] = rpc_url
        dst.parent.mkdir(parents=True, exist_ok=True)
        dst.write_text(json.dumps(cfg, indent=2), encoding="utf-8")
        logger.info("Wrote chain %d RPC override to %s", self.chain_id, dst)
        return dst

    def write_env_file(self, private_key: str) -> Path:
        """Write the compose ``.env``.

        :param private_key:
            Node signing key, with or without ``0x``
        """
        env = {
            "KEY": strip_hex_prefix(private_key),
            "PORT": str(MEE_NODE_PORT),
            "REDIS_HOST": "redis",
            "REDIS_PORT": "6379",
            "HEALTH_CHECK_INTERVAL": "10",
        }
        path = self.directory / ".env"
        path.write_text("".join(f"{k}={v}\n" for k, v in env.items()), encoding="utf-8")
        return path

    def up(self):
        """Start the containers.

        :raise ContainersNotRunning:
            If any container is not running after compose returns
        """
        run_command(["docker", "compose", "--env-file", ".env", "up", "-d"], cwd=self.directory)
        stopped = [name for name in MEE_NODE_CONTAINERS if not container_running(name)]
        if stopped:
            raise ContainersNotRunning(f"🛑 Docker containers failed to start: {', '.join(stopped)}")

    def down(self):
        """Tear down the containers, if we have a checkout."""
        if self.exists():
            run_command(["docker", "compose", "down", "--remove-orphans"], cwd=self.directory)


def container_running(name: str) -> bool:
    """Check ``docker inspect`` state of a container."""
    try:
        code, stdout = capture_command(["docker", "inspect", "--format={{.State.Status}}", name])
    except OSError as e:
        logger.debug("docker inspect %s failed: %s", name, e)
        return False
    return code == 0 and stdout.strip() == "running"
