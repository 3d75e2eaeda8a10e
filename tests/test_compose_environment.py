import os
import subprocess
from unittest.mock import MagicMock, patch

import pytest
from stackfixtures import ComposeEnvironment, ComposeError, RemoveImages, using_containers

compose_file = os.path.join(os.path.dirname(__file__), "compose-example.yml")


def completed(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess([], returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def run():
    with patch("stackfixtures.compose.subprocess.run", return_value=completed()) as run:
        yield run


def commands(run):
    return [call.args[0][6:] for call in run.call_args_list]


# ------------------------------------------------------------------------------
def test_requires_existing_compose_files():
    with pytest.raises(ValueError):
        ComposeEnvironment()
    with pytest.raises(FileNotFoundError, match="compose file not found"):
        ComposeEnvironment("/no/such/docker-compose.yml")


def test_compose_command():
    environment = ComposeEnvironment(
        compose_file, project_name="demo", docker_command="/usr/bin/docker"
    )
    assert environment.compose_command("up", "-d") == [
        "/usr/bin/docker",
        "compose",
        "-p",
        "demo",
        "-f",
        os.path.abspath(compose_file),
        "up",
        "-d",
    ]


def test_missing_docker_command(run):
    environment = ComposeEnvironment(compose_file)
    environment.docker_command = None
    with pytest.raises(RuntimeError, match="docker_command not found"):
        environment.stop()
    run.assert_not_called()


def test_project_names_are_unique():
    first = ComposeEnvironment(compose_file, docker_command="docker")
    second = ComposeEnvironment(compose_file, docker_command="docker")
    assert first.project_name != second.project_name
    assert first.project_name == first.project_name.lower()


# ------------------------------------------------------------------------------
@pytest.mark.parametrize(
    "remove_mode, down_command",
    [
        (None, ["down", "-v"]),
        (RemoveImages.LOCAL, ["down", "-v", "--rmi", "local"]),
        (RemoveImages.ALL, ["down", "-v", "--rmi", "all"]),
    ],
)
def test_lifecycle_commands(run, remove_mode, down_command):
    environment = (
        ComposeEnvironment(compose_file, docker_command="docker")
        .with_build(True)
        .with_remove_images(remove_mode)
        .with_env("PORT", 8080)
    )
    with environment:
        pass

    assert commands(run) == [["up", "-d", "--build"], down_command]
    env = run.call_args_list[0].kwargs["env"]
    assert env["PORT"] == "8080"
    assert run.call_args_list[0].kwargs["cwd"] == os.path.dirname(os.path.abspath(compose_file))


def test_exposed_services_are_awaited(run, monkeypatch):
    monkeypatch.delenv("DOCKER_HOST", raising=False)
    run.side_effect = [completed(), completed("0.0.0.0:49153\n"), completed()]
    environment = ComposeEnvironment(compose_file, docker_command="docker")
    environment.with_exposed_service("web", 80)

    with patch("stackfixtures.compose.wait_for_tcp_port") as wait_for_tcp_port:
        with environment:
            pass

    wait_for_tcp_port.assert_called_once_with(49153, host="localhost", timeout=60)
    assert commands(run) == [["up", "-d"], ["port", "web", "80"], ["down", "-v"]]


def test_unpublished_port(run):
    environment = ComposeEnvironment(compose_file, docker_command="docker")
    with pytest.raises(LookupError, match="not published"):
        environment.get_service_port("web", 80)


def test_failed_start_tears_down_the_project(run):
    run.side_effect = [completed(returncode=1, stderr="no such image"), completed()]
    environment = ComposeEnvironment(compose_file, docker_command="docker")

    with pytest.raises(ComposeError, match="no such image") as error:
        environment.start()
    assert error.value.returncode == 1
    assert commands(run) == [["up", "-d"], ["down", "-v"]]


# ------------------------------------------------------------------------------
def test_inline_compose_is_written_as_yaml():
    environment = ComposeEnvironment.from_inline(
        {"services": {"web": {"image": "nginx:alpine"}}}, docker_command="docker"
    )
    path = environment.compose_files[0]
    with open(path) as f:
        assert "image: nginx:alpine" in f.read()

    environment.close()
    assert not os.path.exists(os.path.dirname(path))


def test_service_container_is_found_by_labels():
    environment = ComposeEnvironment(compose_file, project_name="demo", docker_command="docker")
    client = MagicMock()
    client.containers.list.return_value = []
    with patch("stackfixtures.compose.docker_client", return_value=client):
        with pytest.raises(LookupError):
            environment.get_service_container("web")
    client.containers.list.assert_called_once_with(
        filters={
            "label": [
                "com.docker.compose.project=demo",
                "com.docker.compose.service=web",
            ]
        }
    )


def test_using_containers_with_compose_options():
    stack = using_containers(
        compose_file=compose_file,
        compose_env={"PORT": "8080"},
        compose_remove_images=RemoveImages.LOCAL,
        stack_name="mystack",
        docker_command="docker",
    )
    assert stack.compose.project_name == "mystack"
    assert stack.compose.build is True
    assert stack.compose.remove_images is RemoveImages.LOCAL
    assert stack.compose.compose_env == {"PORT": "8080"}


def test_pull_runs_before_up(run):
    environment = ComposeEnvironment(compose_file, docker_command="docker").with_pull(True)
    with environment:
        pass
    assert commands(run) == [["pull"], ["up", "-d"], ["down", "-v"]]
