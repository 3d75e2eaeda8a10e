import pytest
from stackfixtures import using_containers, get_free_tcp_port, wait_for_tcp_port
import os

pytestmark = pytest.mark.docker

# locate the compose file
compose_file = os.path.join(os.path.dirname(__file__), "compose-example.yml")

# get a free tcp port
free_tcp_port = get_free_tcp_port()


# ------------------------------------------------------------------------------
@using_containers(compose_file=compose_file, compose_env={"PORT": str(free_tcp_port)})
def test_check_compose_works(stack: using_containers):
    wait_for_tcp_port(free_tcp_port)
    assert stack.compose.get_service_port("web", 80) == free_tcp_port


# ------------------------------------------------------------------------------
@using_containers(
    stack_name="inline_compose_test",
    inline_compose={
        "services": {
            "web": {
                "image": "nginx:alpine",
                "ports": ["80"],
            },
        },
    }
)
def test_check_inline_compose_works(stack: using_containers):
    port = stack.compose.get_service_port("web", 80)
    wait_for_tcp_port(port)
    result = stack.compose.exec_in_service("web", ["nginx", "-v"])
    assert result.exit_code == 0
    assert "nginx version" in result.stderr
