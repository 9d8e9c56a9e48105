"""MEE node deployment checkout and compose commands."""

import json
from pathlib import Path
from unittest.mock import call, patch

import pytest

from mee_harness.stack.mee_node import DOCKER_ANVIL_RPC_URL, MEE_NODE_REPO_URL, ContainersNotRunning, MeeNodeDeployment, container_running


@pytest.fixture()
def checkout(tmp_path) -> Path:
    directory = tmp_path / "mee-node"
    (directory / "chains-prod").mkdir(parents=True)
    (directory / "chains-prod" / "1.json").write_text(json.dumps({"chainId": "1", "name": "Ethereum", "rpc": "https://eth.example.com"}))
    return directory


def test_write_chain_config(checkout):
    deployment = MeeNodeDeployment(checkout, chain_id=1)
    path = deployment.write_chain_config()

    assert path == checkout / "chains-testnet" / "1.json"
    cfg = json.loads(path.read_text())
    assert cfg == {"chainId": "1", "name": "Ethereum", "rpc": DOCKER_ANVIL_RPC_URL}
    # Pretty printed
    assert "\n  " in path.read_text()


def test_write_chain_config_missing_source(tmp_path):
    deployment = MeeNodeDeployment(tmp_path, chain_id=8453)
    with pytest.raises(FileNotFoundError):
        deployment.write_chain_config()


def test_write_env_file(checkout):
    deployment = MeeNodeDeployment(checkout, chain_id=1)
    path = deployment.write_env_file("0x" + "ab" * 32)
    lines = path.read_text().splitlines()
    assert lines == [
        "KEY=" + "ab" * 32,
        "PORT=3000",
        "REDIS_HOST=redis",
        "REDIS_PORT=6379",
        "HEALTH_CHECK_INTERVAL=10",
    ]


def test_prepare_clones_fresh_checkout(checkout):
    target = checkout.parent / "fresh"
    deployment = MeeNodeDeployment(target, chain_id=1)

    def fake_clone(cmd_line, cwd=None):
        (target / "chains-prod").mkdir(parents=True)
        (target / "chains-prod" / "1.json").write_text("{}")

    with patch("mee_harness.stack.mee_node.run_command", side_effect=fake_clone) as run:
        deployment.prepare("ab" * 32)

    run.assert_called_once_with(["git", "clone", MEE_NODE_REPO_URL, str(target)])
    assert json.loads((target / "chains-testnet" / "1.json").read_text()) == {"rpc": DOCKER_ANVIL_RPC_URL}
    assert (target / ".env").read_text().startswith("KEY=" + "ab" * 32)


def test_prepare_pulls_existing_checkout(checkout):
    deployment = MeeNodeDeployment(checkout, chain_id=1)
    with patch("mee_harness.stack.mee_node.run_command") as run:
        deployment.prepare("ab" * 32)
    run.assert_called_once_with(["git", "pull"], cwd=checkout)
    assert not (checkout / ".env").exists()


def test_down_only_with_checkout(tmp_path, checkout):
    with patch("mee_harness.stack.mee_node.run_command") as run:
        MeeNodeDeployment(tmp_path / "missing", chain_id=1).down()
        run.assert_not_called()

        MeeNodeDeployment(checkout, chain_id=1).down()
        run.assert_called_once_with(["docker", "compose", "down", "--remove-orphans"], cwd=checkout)


def test_up(checkout):
    deployment = MeeNodeDeployment(checkout, chain_id=1)
    with (
        patch("mee_harness.stack.mee_node.run_command") as run,
        patch("mee_harness.stack.mee_node.container_running", return_value=True) as running,
    ):
        deployment.up()
    run.assert_called_once_with(["docker", "compose", "--env-file", ".env", "up", "-d"], cwd=checkout)
    assert running.call_args_list == [call("mee-node-node-1"), call("mee-node-redis-1")]


def test_up_containers_not_running(checkout):
    deployment = MeeNodeDeployment(checkout, chain_id=1)
    with (
        patch("mee_harness.stack.mee_node.run_command"),
        patch("mee_harness.stack.mee_node.container_running", side_effect=lambda name: name != "mee-node-redis-1"),
    ):
        with pytest.raises(ContainersNotRunning, match="mee-node-redis-1"):
            deployment.up()


@pytest.mark.parametrize(
    "result, expected",
    [
        ((0, "running\n"), True),
        ((0, "exited\n"), False),
        ((1, ""), False),
    ],
)
def test_container_running(result, expected):
    with patch("mee_harness.stack.mee_node.capture_command", return_value=result) as capture:
        assert container_running("mee-node-node-1") is expected
    assert capture.call_args.args[0][-1] == "mee-node-node-1"


def test_container_running_without_docker():
    with patch("mee_harness.stack.mee_node.capture_command", side_effect=FileNotFoundError("docker")):
        assert not container_running("mee-node-node-1")
