"""
Types for the events produced by DeployManager.watch_objects
"""

# Standard
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class KubeEventType(Enum):
    """The event types of a kubernetes watch"""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass
class KubeWatchEvent:
    """One change to one object, with the time it was received"""

    type: KubeEventType
    resource: dict
    timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_stream_event(cls, raw_event: dict) -> "KubeWatchEvent":
        """Build an event from an item of a kubernetes Watch stream. The object
        may be a dict or a client model.
        """
        resource = raw_event["object"]
        if not isinstance(resource, dict):
            resource = resource.to_dict()
        return cls(type=KubeEventType(raw_event["type"]), resource=resource)

    @property
    def kind(self) -> str:
        return self.resource.get("kind")

    @property
    def name(self) -> str:
        return self._metadata.get("name")

    @property
    def namespace(self) -> Optional[str]:
        return self._metadata.get("namespace")

    @property
    def resource_version(self) -> Optional[str]:
        return self._metadata.get("resourceVersion")

    @property
    def _metadata(self) -> dict:
        return self.resource.get("metadata") or {}
