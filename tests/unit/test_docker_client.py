from __future__ import annotations

import json
import subprocess
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from stack_deployer.config.serialization import load_yaml
from stack_deployer.core.docker import DockerCLIClient, parse_labels, parse_timestamp
from stack_deployer.errors import ControlPlaneError


def _completed(stdout: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=[], returncode=0, stdout=stdout, stderr="")


@pytest.fixture
def run() -> Iterator[MagicMock]:
    with patch("stack_deployer.core.docker.subprocess.run") as mock:
        mock.return_value = _completed()
        yield mock


def _argv(run: MagicMock, call: int = 0) -> list[str]:
    return run.call_args_list[call].args[0]


class TestParsing:
    def test_timestamp_nanoseconds(self) -> None:
        parsed = parse_timestamp("2025-01-02T03:04:05.123456789Z")
        assert parsed == datetime(2025, 1, 2, 3, 4, 5, 123456, tzinfo=UTC)

    def test_timestamp_offset(self) -> None:
        parsed = parse_timestamp("2025-01-02T03:04:05+02:00")
        assert parsed == datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone(timedelta(hours=2)))

    @pytest.mark.parametrize("value", [None, "", "3 weeks ago"])
    def test_timestamp_unparseable(self, value: str | None) -> None:
        assert parse_timestamp(value) is None

    def test_labels(self) -> None:
        assert parse_labels("a=1,b=x=y,,c=") == {"a": "1", "b": "x=y", "c": ""}


class TestCommands:
    def test_failure_raises_control_plane_error(self, run: MagicMock) -> None:
        run.side_effect = subprocess.CalledProcessError(1, ["docker"], stderr="no such secret\n")

        with pytest.raises(ControlPlaneError, match="no such secret") as exc_info:
            DockerCLIClient().remove_secret("abc")

        assert exc_info.value.operation == "remove secret"
        assert exc_info.value.target == "abc"
        assert isinstance(exc_info.value.__cause__, subprocess.CalledProcessError)

    def test_missing_executable(self, run: MagicMock) -> None:
        run.side_effect = FileNotFoundError("docker")
        with pytest.raises(ControlPlaneError):
            DockerCLIClient().remove_config("abc")

    def test_deploy_stack(self, run: MagicMock) -> None:
        spec = {"version": "3.9", "services": {"web": {"image": "nginx"}}}

        DockerCLIClient().deploy_stack(spec, "demo", {"TAG": "1"})

        argv = _argv(run)
        assert argv[:3] == ["docker", "stack", "deploy"]
        assert "--prune" in argv
        assert argv[-3:] == ["--compose-file", "-", "demo"]
        kwargs = run.call_args.kwargs
        assert load_yaml(kwargs["input"]) == spec
        assert kwargs["env"]["TAG"] == "1"
        assert kwargs["check"] is True

    def test_normalize_stack(self, run: MagicMock) -> None:
        run.return_value = _completed("version: '3.9'\nservices:\n  web:\n    image: nginx\n")

        spec = DockerCLIClient().normalize_stack([Path("/a.yaml"), Path("/b.yaml")], {})

        assert spec["services"]["web"]["image"] == "nginx"
        assert _argv(run) == [
            "docker",
            "stack",
            "config",
            "--compose-file=/a.yaml",
            "--compose-file=/b.yaml",
            "--skip-interpolation",
        ]

    def test_normalize_stack_empty_output(self, run: MagicMock) -> None:
        with pytest.raises(ControlPlaneError, match="no content"):
            DockerCLIClient().normalize_stack([Path("a.yaml")], {})

    def test_list_services(self, run: MagicMock) -> None:
        listed = {"ID": "abc123", "Name": "demo_web", "Replicas": "1/2"}
        inspected = [
            {
                "ID": "abc123def456",
                "CreatedAt": "2025-01-01T00:00:00.5Z",
                "UpdateStatus": {"State": "updating", "Message": "update in progress"},
            }
        ]
        run.side_effect = [_completed(json.dumps(listed) + "\n"), _completed(json.dumps(inspected))]

        (service,) = DockerCLIClient().list_services(["com.docker.stack.namespace=demo"])

        assert service.id == "abc123def456"
        assert service.name == "demo_web"
        assert (service.running_tasks, service.desired_tasks) == (1, 2)
        assert service.update_status is not None
        assert service.update_status.state == "updating"
        assert _argv(run)[-2:] == ["--filter", "label=com.docker.stack.namespace=demo"]
        assert _argv(run, 1) == ["docker", "inspect", "--type=service", "abc123"]

    def test_list_services_without_inspect(self, run: MagicMock) -> None:
        run.return_value = _completed(json.dumps({"ID": "a", "Name": "s", "Replicas": "2/2"}))

        (service,) = DockerCLIClient().list_services([], inspect=False)

        assert service.update_status is None
        assert service.running_tasks == 2
        assert run.call_count == 1

    def test_list_secrets(self, run: MagicMock) -> None:
        inspected = [
            {
                "ID": "s1",
                "CreatedAt": "2024-01-01T00:00:00Z",
                "Spec": {"Name": "demo-db-abc1234", "Labels": {"k": "v"}},
            }
        ]
        run.side_effect = [_completed("s1\n"), _completed(json.dumps(inspected))]

        (item,) = DockerCLIClient().list_secrets(["com.matchory.deployment.stack=demo"])

        assert item.id == "s1"
        assert item.name == "demo-db-abc1234"
        assert item.labels == {"k": "v"}
        assert item.created_at == datetime(2024, 1, 1, tzinfo=UTC)
        assert _argv(run) == [
            "docker",
            "secret",
            "ls",
            "--quiet",
            "--filter",
            "label=com.matchory.deployment.stack=demo",
        ]

    def test_empty_inventory_skips_inspect(self, run: MagicMock) -> None:
        assert DockerCLIClient().list_configs([]) == []
        assert run.call_count == 1

    def test_service_logs(self, run: MagicMock) -> None:
        run.return_value = _completed(
            "2025-01-01T00:00:01.000000001Z com.docker.swarm.task.id=t1 starting up\n"
        )
        since = datetime(2025, 1, 1, tzinfo=UTC)

        (entry,) = DockerCLIClient().get_service_logs("svc", since=since, tail=100)

        assert entry.message == "starting up"
        assert entry.metadata == {"com.docker.swarm.task.id": "t1"}
        argv = _argv(run)
        assert "--tail=100" in argv
        assert f"--since={since.isoformat()}" in argv

    def test_service_tasks(self, run: MagicMock) -> None:
        inspected = [
            {
                "ID": "t1",
                "ServiceID": "svc",
                "DesiredState": "shutdown",
                "UpdatedAt": "2025-01-01T00:00:00Z",
                "Status": {"State": "rejected", "Err": "no such image"},
            }
        ]
        run.side_effect = [_completed("t1\n"), _completed(json.dumps(inspected))]

        (task,) = DockerCLIClient().list_service_tasks("svc")

        assert task.state == "rejected"
        assert task.error == "no such image"
        assert task.desired_state == "shutdown"
