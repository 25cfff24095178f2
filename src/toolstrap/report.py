"""Run report of a bootstrap: what was found, what was installed, what was built."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import cbor2

PrerequisiteStatus = Literal["present", "installed", "failed", "cancelled"]
ModuleStatus = Literal["built", "failed", "cancelled"]


@dataclass(frozen=True, slots=True)
class PrerequisiteRecord:
    name: str
    status: PrerequisiteStatus
    location: str | None = None


@dataclass(slots=True)
class BootstrapReport:
    installation_prefix: str
    prerequisites: list[PrerequisiteRecord] = field(default_factory=list)
    module: str | None = None
    module_status: ModuleStatus | None = None
    schema_version: int = 1

    def record(self, name: str, status: PrerequisiteStatus, location: str | Path | None = None) -> None:
        self.prerequisites.append(
            PrerequisiteRecord(name=name, status=status, location=str(location) if location is not None else None)
        )

    def status_of(self, name: str) -> PrerequisiteStatus | None:
        for entry in self.prerequisites:
            if entry.name == name:
                return entry.status
        return None

    @property
    def installed(self) -> tuple[str, ...]:
        return tuple(entry.name for entry in self.prerequisites if entry.status == "installed")

    def to_json(self, path: str | Path | None = None) -> str:
        encoded = json.dumps(self._payload(), indent=2, sort_keys=True) + "\n"
        if path is not None:
            Path(path).write_text(encoded, encoding="utf-8")
        return encoded

    def to_cbor(self, path: str | Path | None = None) -> bytes:
        encoded = cbor2.dumps(self._payload(), canonical=True)
        if path is not None:
            Path(path).write_bytes(encoded)
        return encoded

    @classmethod
    def from_cbor(cls, payload: bytes) -> BootstrapReport:
        data = cbor2.loads(payload)
        return cls(
            installation_prefix=data["installation_prefix"],
            prerequisites=[PrerequisiteRecord(**entry) for entry in data["prerequisites"]],
            module=data.get("module"),
            module_status=data.get("module_status"),
            schema_version=data.get("schema_version", 1),
        )

    def _payload(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "installation_prefix": self.installation_prefix,
            "prerequisites": [
                {"name": entry.name, "status": entry.status, "location": entry.location}
                for entry in self.prerequisites
            ],
            "module": self.module,
            "module_status": self.module_status,
        }


__all__ = ["BootstrapReport", "ModuleStatus", "PrerequisiteRecord", "PrerequisiteStatus"]
