"""Interface of the SBOM-based resolution sources."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import DepGraph


@dataclass
class Options:
    """Options passed to every source plugin."""

    all_projects: bool = False
    target_file: str = ""
    dev: bool = False
    exclude: list[str] | None = None


@dataclass
class Metadata:
    """Identity of the project a finding describes."""

    package_manager: str
    name: str
    version: str = ""
    runtime: str = ""  # e.g. python@3.12.1


@dataclass
class WorkspacePackage:
    """A package that is a member of a workspace."""

    name: str
    version: str
    path: str  # relative to the workspace root


@dataclass
class Finding:
    """The result of resolving one manifest.

    A finding carries either a resolved `dep_graph` or raw `sbom` bytes still
    to be converted. When `error` is set, resolving the manifest failed and
    `dep_graph` is None.
    """

    dep_graph: DepGraph | None = None
    sbom: bytes | None = None
    file_exclusions: list[str] = field(default_factory=list)  # files other sources should skip
    lock_file: str = ""  # relative to the input directory
    manifest_file: str = ""  # relative to the input directory
    error: BaseException | None = None
    metadata: Metadata | None = None
    workspace_packages: list[WorkspacePackage] = field(default_factory=list)


class ScaPlugin(ABC):
    """A source of findings, e.g. a package manager specific SBOM exporter."""

    name: str

    @abstractmethod
    def build_findings_from_dir(self, directory: str, options: Options) -> list[Finding]:
        """Resolve the manifests found in directory.

        Failures that concern a single manifest are reported as findings with
        an `error`; raising aborts the whole resolution.
        """
        raise NotImplementedError


def parse_exclude_flag(exclude: str) -> list[str] | None:
    """Split a comma separated exclude value, dropping blank entries.

    Returns None when no entry remains.
    """
    entries = [entry.strip() for entry in exclude.split(",")]
    entries = [entry for entry in entries if entry]
    return entries or None
