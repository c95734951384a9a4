"""SBOM based resolution of uv projects."""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import PurePosixPath
from shutil import which
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from semantic_version import Version
from tqdm import tqdm

from .conversion import sbom_to_dep_graphs
from .discovery import COMMON_EXCLUDES, FindResult, find_files
from .errors import GeneralSCAFailureError, UnprocessableFileError
from .plugin import Finding, Metadata, Options, ScaPlugin, WorkspacePackage

if TYPE_CHECKING:
    from .models import DepGraph
    from .sbom_client import SBOMConvertClient

logger = logging.getLogger(__name__)

UV_LOCK_FILE_NAME = "uv.lock"
PYPROJECT_TOML_FILE_NAME = "pyproject.toml"
REQUIREMENTS_TXT_FILE_NAME = "requirements.txt"
UV_WORKSPACE_PATH_PROPERTY = "uv:workspace:path"

# First uv release able to export CycloneDX SBOMs.
MIN_UV_VERSION = Version("0.9.11")

_VERSION_RE = re.compile(r"(\d+)\.(\d+)\.(\d+)")


class _CycloneDXProperty(BaseModel):
    name: str = ""
    value: str = ""


class _CycloneDXComponent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    version: str = ""
    properties: list[_CycloneDXProperty] = Field(default_factory=list)


class _CycloneDXMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    component: _CycloneDXComponent | None = None


class CycloneDXSBOM(BaseModel):
    """The subset of a CycloneDX document needed to describe a uv project."""

    model_config = ConfigDict(extra="ignore")

    metadata: _CycloneDXMetadata = Field(default_factory=_CycloneDXMetadata)
    components: list[_CycloneDXComponent] = Field(default_factory=list)

    @property
    def root_component(self) -> _CycloneDXComponent:
        if self.metadata.component is None:
            msg = "SBOM missing root component at metadata.component"
            raise ValueError(msg)
        return self.metadata.component


def parse_and_validate_sbom(sbom: bytes) -> CycloneDXSBOM:
    """Parse the SBOM, requiring a named root component.

    Raises:
        UnprocessableFileError: if the SBOM is not valid JSON or lacks a named root component

    """
    try:
        parsed = CycloneDXSBOM.model_validate_json(sbom)
    except ValidationError as e:
        msg = f"Failed to parse SBOM JSON: {e}"
        raise UnprocessableFileError(msg, cause=e) from e
    if parsed.metadata.component is None:
        msg = "SBOM missing root component at metadata.component - uv project may be missing a root package"
        raise UnprocessableFileError(msg)
    if not parsed.metadata.component.name:
        msg = "SBOM root component missing name - invalid SBOM structure"
        raise UnprocessableFileError(msg)
    return parsed


def extract_metadata(sbom: CycloneDXSBOM) -> Metadata:
    root = sbom.root_component
    return Metadata(package_manager="pip", name=root.name, version=root.version)


def extract_workspace_packages(sbom: CycloneDXSBOM) -> list[WorkspacePackage]:
    """Return the components that uv marks as workspace members."""
    workspace_packages = []
    for component in sbom.components:
        for prop in component.properties:
            if prop.name == UV_WORKSPACE_PATH_PROPERTY:
                workspace_packages.append(
                    WorkspacePackage(name=component.name, version=component.version, path=prop.value)
                )
                break
    return workspace_packages


def parse_and_validate_version(binary: str, version_output: str) -> Version:
    """Parse the output of `uv --version` and check it is recent enough.

    Raises:
        GeneralSCAFailureError: if the version cannot be parsed or is too old

    """
    match = _VERSION_RE.search(version_output)
    if match is None:
        msg = f"unable to parse {binary} version from output: {version_output}"
        raise GeneralSCAFailureError(msg)
    version = Version(major=int(match[1]), minor=int(match[2]), patch=int(match[3]))
    if version < MIN_UV_VERSION:
        msg = f"{binary} version {version} is not supported. Minimum required version is {MIN_UV_VERSION}"
        raise GeneralSCAFailureError(msg)
    return version


class UvClient:
    """Exports CycloneDX SBOMs using the uv binary."""

    def __init__(self, uv_binary: str = "uv") -> None:
        self.uv_binary: str = uv_binary

    def _resolve_binary(self) -> str:
        resolved = which(self.uv_binary)
        if resolved is None:
            msg = f"{self.uv_binary} binary not found in PATH"
            raise GeneralSCAFailureError(msg)
        return resolved

    def check_version(self, binary: str) -> Version:
        try:
            result = subprocess.run(  # noqa: S603
                [binary, "--version"],
                capture_output=True,
                check=True,
                text=True,
            )
        except (OSError, subprocess.CalledProcessError) as e:
            msg = f"failed to get {binary} version: {e}"
            raise GeneralSCAFailureError(msg, cause=e) from e
        return parse_and_validate_version(binary, result.stdout)

    def execute(self, directory: str, *args: str) -> bytes:
        """Run uv with args in directory and return its output."""
        binary = self._resolve_binary()
        self.check_version(binary)
        try:
            result = subprocess.run(  # noqa: S603
                [binary, *args],
                cwd=directory,
                capture_output=True,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            output = (e.stdout or b"") + (e.stderr or b"")
            msg = f"failed to execute uv export command: {e}\noutput: {output.decode(errors='replace')}"
            raise GeneralSCAFailureError(msg, cause=e) from e
        except OSError as e:
            msg = f"failed to execute uv export command: {e}"
            raise GeneralSCAFailureError(msg, cause=e) from e
        return result.stdout

    def export_sbom(self, directory: str, options: Options) -> bytes:
        """Export the SBOM of the uv project in directory.

        Raises:
            GeneralSCAFailureError: if uv is missing, too old or fails
            UnprocessableFileError: if the exported SBOM is invalid

        """
        args = ["export", "--format", "cyclonedx1.5", "--frozen", "--preview"]
        if options.all_projects:
            args.append("--all-packages")
        if not options.dev:
            args.append("--no-dev")
        sbom = self.execute(directory, *args)
        parse_and_validate_sbom(sbom)
        return sbom


class UvPlugin(ScaPlugin):
    """Builds findings for uv projects from their exported SBOMs."""

    name = "uv"

    def __init__(
        self,
        client: UvClient,
        sbom_client: SBOMConvertClient,
        remote_repo_url: str = "",
        *,
        report_file_exclusions: bool = False,
    ) -> None:
        """Initialize the plugin.

        Args:
            client: uv client used to export SBOMs
            sbom_client: conversion service client
            remote_repo_url: remote repository URL passed to the conversion service
            report_file_exclusions: whether findings ask other sources to skip the manifests of
                resolved projects; the legacy resolver only accepts file or directory names, not paths,
                so this is off by default

        """
        self.client: UvClient = client
        self.sbom_client: SBOMConvertClient = sbom_client
        self.remote_repo_url: str = remote_repo_url
        self.report_file_exclusions: bool = report_file_exclusions

    def build_findings_from_dir(self, directory: str, options: Options) -> list[Finding]:
        if options.target_file and PurePosixPath(options.target_file).name != UV_LOCK_FILE_NAME:
            logger.info("Skipping uv plugin for %s as it is not a '%s' file", options.target_file, UV_LOCK_FILE_NAME)
            return []

        files = self.discover_lock_files(directory, options)
        findings: list[Finding] = []
        for file in tqdm(files, desc="exporting uv SBOMs", leave=False, unit=" lockfiles"):
            lock_file = file.rel_path
            lock_file_dir = str(PurePosixPath(lock_file).parent)
            logger.info("Building dependency graph for %s", lock_file)
            try:
                sbom = self.client.export_sbom(str(file.path.parent), options)
            except (GeneralSCAFailureError, UnprocessableFileError) as e:
                logger.warning("Failed to build dependency graph for %s: %s", lock_file, e)
                findings.append(Finding(lock_file=lock_file, error=e))
                continue
            findings.extend(self.build_findings(sbom, lock_file, lock_file_dir))
            if not options.all_projects:
                break
        return findings

    def build_findings(self, sbom: bytes, lock_file: str, lock_file_dir: str) -> list[Finding]:
        """Convert an exported SBOM and create one finding per resulting graph."""
        parsed = parse_and_validate_sbom(sbom)
        metadata = extract_metadata(parsed)
        workspace_packages = extract_workspace_packages(parsed)
        dep_graphs = sbom_to_dep_graphs(sbom, metadata, self.sbom_client, self.remote_repo_url)

        findings = []
        for dep_graph in dep_graphs:
            workspace_package = find_workspace_package(dep_graph, workspace_packages)
            package_path = PurePosixPath(lock_file_dir)
            if workspace_package is not None:
                package_path /= workspace_package.path
            manifest_file = str(package_path / PYPROJECT_TOML_FILE_NAME)
            file_exclusions = []
            if self.report_file_exclusions:
                file_exclusions = [manifest_file, str(package_path / REQUIREMENTS_TXT_FILE_NAME)]
            findings.append(
                Finding(
                    dep_graph=dep_graph,
                    file_exclusions=file_exclusions,
                    lock_file=lock_file,
                    manifest_file=manifest_file,
                    metadata=metadata,
                    workspace_packages=workspace_packages,
                )
            )
        return findings

    @staticmethod
    def discover_lock_files(directory: str, options: Options) -> list[FindResult]:
        """Find the lock files to resolve.

        With --all-projects the whole tree is searched; otherwise only the
        target file or, without one, the root `uv.lock`.
        """
        if options.all_projects:
            excludes = [*COMMON_EXCLUDES, *(options.exclude or ())]
            return find_files(directory, includes=[UV_LOCK_FILE_NAME], excludes=excludes)
        target_file = options.target_file or UV_LOCK_FILE_NAME
        return find_files(directory, target_file=target_file)


def find_workspace_package(dep_graph: DepGraph, workspace_packages: list[WorkspacePackage]) -> WorkspacePackage | None:
    """Return the workspace package that is the root of dep_graph, if any."""
    root = dep_graph.get_root_pkg()
    if root is None:
        return None
    for workspace_package in workspace_packages:
        if workspace_package.name == root.info.name:
            return workspace_package
    return None
