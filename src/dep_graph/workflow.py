"""Output records produced by dependency graph resolution."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .errors import CatalogError

CONTENT_TYPE_JSON = "application/json"
CONTENT_TYPE_JSONL = "application/jsonl"

META_KEY_CONTENT_LOCATION = "Content-Location"
META_KEY_NORMALISED_TARGET_FILE = "normalisedTargetFile"
META_KEY_TARGET_FILE_FROM_PLUGIN = "targetFileFromPlugin"
META_KEY_TARGET = "target"


@dataclass
class WorkflowOutput:
    """A serialized dependency graph together with its metadata and attached errors."""

    payload: bytes
    metadata: dict[str, str] = field(default_factory=dict)
    content_type: str = CONTENT_TYPE_JSON
    errors: list[CatalogError] = field(default_factory=list)

    @classmethod
    def for_dep_graph(
        cls,
        payload: bytes,
        normalised_target_file: str,
        target_file_from_plugin: str | None = None,
        target: bytes | None = None,
        content_type: str = CONTENT_TYPE_JSON,
    ) -> WorkflowOutput:
        """Create an output for a serialized dependency graph."""
        metadata = {
            META_KEY_CONTENT_LOCATION: normalised_target_file,
            META_KEY_NORMALISED_TARGET_FILE: normalised_target_file,
        }
        if target_file_from_plugin is not None:
            metadata[META_KEY_TARGET_FILE_FROM_PLUGIN] = target_file_from_plugin
        if target is not None:
            metadata[META_KEY_TARGET] = target.decode()
        return cls(payload=payload, metadata=metadata, content_type=content_type)

    @property
    def normalised_target_file(self) -> str:
        return self.metadata.get(META_KEY_NORMALISED_TARGET_FILE, "")

    @property
    def target_file_from_plugin(self) -> str | None:
        return self.metadata.get(META_KEY_TARGET_FILE_FROM_PLUGIN)

    def add_error(self, error: CatalogError) -> None:
        self.errors.append(error)

    def to_obj(self) -> dict[str, Any]:
        """Convert the output to one record of the line-delimited protocol.

        Combined outputs already hold line-delimited records; they are
        represented by their metadata only.
        """
        obj: dict[str, Any] = {"normalisedTargetFile": self.normalised_target_file}
        if self.content_type == CONTENT_TYPE_JSON and self.payload:
            obj["depGraph"] = json.loads(self.payload)
        if self.target_file_from_plugin is not None:
            obj["targetFileFromPlugin"] = self.target_file_from_plugin
        if META_KEY_TARGET in self.metadata:
            obj["target"] = json.loads(self.metadata[META_KEY_TARGET])
        if self.errors:
            obj["error"] = {"errors": [error.to_obj() for error in self.errors]}
        return obj

    def to_jsonl(self) -> bytes:
        """Serialize the output as line-delimited protocol records."""
        if self.content_type == CONTENT_TYPE_JSONL:
            return self.payload if self.payload.endswith(b"\n") else self.payload + b"\n"
        return json.dumps(self.to_obj()).encode() + b"\n"
