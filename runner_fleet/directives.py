"""Installation and service-activation directives for the manager instance."""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class InitPackage(BaseModel):
    kind: Literal["package"] = "package"
    name: str
    manager: str = "yum"


class InitCommand(BaseModel):
    kind: Literal["command"] = "command"
    key: str
    command: str


class InitFile(BaseModel):
    kind: Literal["file"] = "file"
    path: str
    content: str
    owner: str = "root"
    group: str = "root"
    mode: str = "000644"


class InitService(BaseModel):
    kind: Literal["service"] = "service"
    name: str
    enabled: bool = True
    ensure_running: bool = True
    # Paths whose change restarts the service
    restart_on: List[str] = Field(default_factory=list)


InitElement = Union[InitPackage, InitCommand, InitFile, InitService]


class InitConfig(BaseModel):
    """One named config of the bootstrap sequence."""

    name: str
    elements: List[Annotated[InitElement, Field(discriminator="kind")]] = Field(
        default_factory=list
    )

    def to_metadata(self) -> Dict[str, Any]:
        """Render in the ``AWS::CloudFormation::Init`` config layout."""
        section: Dict[str, Any] = {}
        for element in self.elements:
            if isinstance(element, InitPackage):
                packages = section.setdefault("packages", {}).setdefault(element.manager, {})
                packages[element.name] = []
            elif isinstance(element, InitCommand):
                section.setdefault("commands", {})[element.key] = {
                    "command": element.command
                }
            elif isinstance(element, InitFile):
                section.setdefault("files", {})[element.path] = {
                    "content": element.content,
                    "owner": element.owner,
                    "group": element.group,
                    "mode": element.mode,
                }
            elif isinstance(element, InitService):
                service: Dict[str, Any] = {
                    "enabled": element.enabled,
                    "ensureRunning": element.ensure_running,
                }
                if element.restart_on:
                    service["files"] = list(element.restart_on)
                section.setdefault("services", {}).setdefault("sysvinit", {})[
                    element.name
                ] = service
        return section


class ServiceDirectives(BaseModel):
    """Everything the manager needs to install and start the runner agent."""

    user_data: List[str]
    config_sets: Dict[str, List[str]]
    configs: List[InitConfig]

    def config(self, name: str) -> Optional[InitConfig]:
        for config in self.configs:
            if config.name == name:
                return config
        return None

    def files(self) -> Dict[str, InitFile]:
        """Every generated file keyed by its target path."""
        return {
            element.path: element
            for config in self.configs
            for element in config.elements
            if isinstance(element, InitFile)
        }

    def to_metadata(self) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {"configSets": dict(self.config_sets)}
        for config in self.configs:
            metadata[config.name] = config.to_metadata()
        return metadata
