"""MQTT topic layout: every channel lives under one configured prefix."""

from __future__ import annotations

from dataclasses import dataclass

from . import constants


@dataclass(frozen=True, slots=True)
class Topics:
    prefix: str
    status: str
    cmd: str
    result: str
    cpu: str
    network: str
    sketch: str
    log: str

    @classmethod
    def from_prefix(cls, prefix: str) -> "Topics":
        base = prefix.strip("/")

        def join(name: str) -> str:
            return f"{base}/{name}" if base else name

        return cls(
            prefix=base,
            status=join(constants.TOPIC_STATUS),
            cmd=join(constants.TOPIC_CMD),
            result=join(constants.TOPIC_RESULT),
            cpu=join(constants.TOPIC_CPU),
            network=join(constants.TOPIC_NETWORK),
            sketch=join(constants.TOPIC_SKETCH),
            log=join(constants.TOPIC_LOG),
        )

    def subtopic(self, name: str) -> str:
        return f"{self.prefix}/{name}" if self.prefix else name
