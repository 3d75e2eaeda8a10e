"""
Declarative container definitions, as accepted by `using_containers`.
"""

from dataclasses import dataclass, field


# ------------------------------------------------------------------------------
@dataclass
class ImageBuild:
    """
    Image build definition
    """

    context: str | None = None
    dockerfile: str | None = None
    tag: str | None = None
    buildargs: dict | None = None

    @staticmethod
    def from_dict(data: dict | None):
        if not data:
            return None
        return ImageBuild(
            context=data.get("context"),
            dockerfile=data.get("dockerfile"),
            tag=data.get("tag"),
            buildargs=data.get("buildargs"),
        )


# ------------------------------------------------------------------------------
@dataclass
class ContainerDefinition:
    """
    Container definition. `ports` maps host ports to container ports.
    """

    image: str | None = None
    name: str | None = None
    ports: dict | None = None
    environment: dict | list | None = None
    volumes: dict | list | None = None
    build: ImageBuild | None = None
    working_dir: str | None = None
    user: str | int | None = None
    command: str | list[str] | None = None
    network: str | None = None
    network_aliases: list[str] = field(default_factory=list)

    @staticmethod
    def from_dict(data: dict):
        return ContainerDefinition(
            image=data.get("image"),
            name=data.get("name"),
            ports=data.get("ports"),
            environment=data.get("environment"),
            volumes=data.get("volumes"),
            build=ImageBuild.from_dict(data.get("build")),
            working_dir=data.get("working_dir"),
            user=data.get("user"),
            command=data.get("command"),
            network=data.get("network"),
            network_aliases=list(data.get("network_aliases") or []),
        )

    @property
    def image_name(self) -> str | None:
        if self.image:
            return self.image
        return self.build.tag if self.build else None


# ------------------------------------------------------------------------------
def read_definitions(definition):
    """Flatten strings, dicts and nested sequences into container definitions"""
    if isinstance(definition, str):
        yield ContainerDefinition(image=definition)
    elif isinstance(definition, dict):
        yield ContainerDefinition.from_dict(definition)
    elif isinstance(definition, (list, tuple)):
        for item in definition:
            yield from read_definitions(item)
    elif isinstance(definition, ContainerDefinition):
        yield definition
    else:
        raise ValueError(f"Invalid definition: '{definition}'")
