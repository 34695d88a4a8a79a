from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Any, Dict, List, Tuple


def parse_image_reference(image: str) -> Tuple[str, str]:
    """
    Split an image reference into application name and version tag.

    ``registry.local:5000/team/api:1.4`` -> ``("api", "1.4")``;
    a missing tag means ``latest``, a digest reference yields the digest.
    """
    if '@' in image:
        repository, _, tag = image.partition('@')
    else:
        repository, tag = image, 'latest'
        slash = image.rfind('/')
        colon = image.rfind(':')
        if colon > slash:
            repository, tag = image[:colon], image[colon + 1:]
    app = repository.rsplit('/', 1)[-1]
    return app, tag


class ContainerDescriptor(BaseModel):
    """A running container as reported by one host's /containers/json"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    host: str
    name: str = ""
    image: str = ""
    app: str = ""
    tag: str = ""
    status: str = ""
    created: int = 0

    @classmethod
    def from_api(cls, host: str, data: Dict[str, Any]) -> "ContainerDescriptor":
        """
        Build a descriptor from one entry of the Docker list response

        Raises:
            KeyError, TypeError, ValueError: If the entry has an unexpected shape
        """
        if not isinstance(data, dict):
            raise TypeError(f"container entry is {type(data).__name__}, expected object")

        container_id = data["Id"]
        names = data.get("Names") or []
        name = str(names[0]).lstrip('/') if names else str(container_id)[:12]
        image = data.get("Image") or ""
        app, tag = parse_image_reference(image)

        return cls(
            id=container_id,
            host=host,
            name=name,
            image=image,
            app=app,
            tag=tag,
            status=data.get("Status") or "",
            created=int(data.get("Created") or 0)
        )

    @property
    def short_id(self) -> str:
        return self.id[:12]

    def tags(self) -> Dict[str, Any]:
        """Fields stamped onto every log record shipped for this container"""
        return {
            "host": self.host,
            "container_id": self.id,
            "name": self.name,
            "image": self.image,
            "app": self.app,
            "tag": self.tag,
            "status": self.status,
            "created": self.created,
        }


class ProcessTable(BaseModel):
    """Output of /containers/{id}/top: column titles plus one row per process"""

    titles: List[str]
    processes: List[List[str]] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_row_lengths(self):
        for index, row in enumerate(self.processes):
            if len(row) != len(self.titles):
                raise ValueError(
                    f"process row {index} has {len(row)} cells, expected {len(self.titles)}"
                )
        return self

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ProcessTable":
        if not isinstance(data, dict):
            raise TypeError(f"top response is {type(data).__name__}, expected object")
        return cls(titles=data.get("Titles"), processes=data.get("Processes") or [])

    def rows(self) -> List[Dict[str, str]]:
        return [dict(zip(self.titles, row)) for row in self.processes]
