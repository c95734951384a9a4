"""Dependency graphs of requirements files, built from pip's installation report."""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import PurePosixPath
from shutil import which
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, ValidationError
from tqdm import tqdm

from .builder import DepGraphBuilder
from .discovery import FindResult, find_files
from .errors import (
    CatalogError,
    ConflictingRequirementsError,
    EcosystemError,
    InstallationFailureError,
    PythonPackageNotFoundError,
    SyntaxIssuesError,
    UnprocessableFileError,
    UnsupportedPythonVersionError,
)
from .models import NodeInfo, PkgInfo, PkgManager
from .plugin import Finding, Metadata, Options, ScaPlugin

if TYPE_CHECKING:
    from .models import DepGraph

logger = logging.getLogger(__name__)

REQUIREMENTS_TXT_FILE_NAME = "requirements.txt"
PKG_MANAGER_PIP = "pip"
ROOT_PKG_NAME = "root"
ROOT_PKG_VERSION = "0.0.0"
PRUNED_LABEL = "pruned"

PYTHON_EXCLUDES = (".*", "__pycache__", "*.egg-info", "dist", "build", "venv")

_DEP_NAME_RE = re.compile(r"^([a-zA-Z0-9._-]+)")
_EXTRA_RE = re.compile(r"""extra\s*==\s*['"]([^'"]+)['"]""")

# Checked in order; the first group with a matching stderr fragment wins.
_PIP_ERRORS: tuple[tuple[tuple[str, ...], type[EcosystemError], str], ...] = (
    (
        ("Invalid requirement", "Could not parse", "invalid requirement", "InvalidVersion", "Invalid version"),
        SyntaxIssuesError,
        "Invalid syntax in requirements file",
    ),
    (("Could not find a version", "No matching distribution"), PythonPackageNotFoundError, "Package not found"),
    (("requires Python", "Requires-Python"), UnsupportedPythonVersionError, "Python version mismatch"),
    (("Conflict", "conflicting", "incompatible"), ConflictingRequirementsError, "Conflicting package requirements"),
)


def normalize_package_name(name: str) -> str:
    return name.lower().replace("_", "-")


def extract_package_name(requirement: str) -> str:
    """Extract the package name of a `requires_dist` entry, e.g. `urllib3 (<3,>=1.21.1)` -> `urllib3`."""
    match = _DEP_NAME_RE.match(requirement)
    return match[1] if match else ""


def extract_extra_name(requirement: str) -> str:
    """Extract the extra a `requires_dist` entry is conditional on, e.g. `pytest ; extra == 'test'` -> `test`."""
    match = _EXTRA_RE.search(requirement)
    return match[1] if match else ""


def extract_dep_names_with_extras(requires_dist: list[str], requested_extras: list[str]) -> list[str]:
    """Return the unique package names of requires_dist.

    Entries conditional on an extra are only kept if that extra was requested
    (compared case-insensitively).
    """
    requested = {extra.lower() for extra in requested_extras}
    seen: set[str] = set()
    names = []
    for requirement in requires_dist:
        extra = extract_extra_name(requirement)
        if extra and extra.lower() not in requested:
            continue
        name = extract_package_name(requirement)
        if name and normalize_package_name(name) not in seen:
            seen.add(normalize_package_name(name))
            names.append(name)
    return names


class PackageMetadata(BaseModel):
    name: str
    version: str = ""
    requires_dist: list[str] | None = None

    @property
    def normalized_name(self) -> str:
        return normalize_package_name(self.name)

    @property
    def normalized_version(self) -> str:
        return self.version or "?"


class InstallItem(BaseModel):
    """A package pip would install."""

    metadata: PackageMetadata
    requested: bool = False  # listed in the requirements, i.e. a direct dependency
    requested_extras: list[str] | None = None

    @property
    def node_id(self) -> str:
        return f"{self.metadata.normalized_name}@{self.metadata.normalized_version}"

    @property
    def pkg_info(self) -> PkgInfo:
        return PkgInfo(name=self.metadata.normalized_name, version=self.metadata.normalized_version)

    def dependency_names(self) -> list[str]:
        return sorted(extract_dep_names_with_extras(self.metadata.requires_dist or [], self.requested_extras or []))


class InstallReport(BaseModel):
    """The part of `pip install --report` output needed to build a dependency graph."""

    install: list[InstallItem] = Field(default_factory=list)

    def to_dep_graph(self, pkg_manager: str = PKG_MANAGER_PIP) -> DepGraph:
        """Convert the report into a dependency graph below a `root@0.0.0` package.

        The graph is walked depth first from the sorted direct dependencies.
        A package met again below the same direct dependency becomes a
        `<id>:pruned` leaf labelled `pruned`, and the children of a package
        are only added once.
        """
        builder = DepGraphBuilder(PkgManager(name=pkg_manager), PkgInfo(name=ROOT_PKG_NAME, version=ROOT_PKG_VERSION))
        lookup = {item.metadata.normalized_name: item for item in self.install}
        for item in self.install:
            if not item.metadata.version:
                logger.debug("Package %s has no version, using '?'", item.metadata.name)
        direct_deps = sorted(item.metadata.normalized_name for item in self.install if item.requested)
        logger.debug(
            "Converting pip report with %d packages (%d direct) to a dependency graph",
            len(self.install),
            len(direct_deps),
        )
        _add_dependencies(builder, lookup, builder.get_root_node().node_id, direct_deps, None, set())
        return builder.build()


def _add_dependencies(  # noqa: PLR0913
    builder: DepGraphBuilder,
    lookup: dict[str, InstallItem],
    parent_id: str,
    dep_names: list[str],
    visited: set[str] | None,
    processed: set[str],
) -> None:
    for dep_name in dep_names:
        item = lookup.get(normalize_package_name(dep_name))
        if item is None:
            continue
        # each direct dependency starts a fresh visited set
        branch_visited = set() if visited is None else visited
        node_id = item.node_id
        if node_id in branch_visited:
            pruned_id = f"{node_id}:{PRUNED_LABEL}"
            builder.add_node(pruned_id, item.pkg_info, NodeInfo(labels={PRUNED_LABEL: "true"}))
            builder.connect_nodes(parent_id, pruned_id)
            continue

        builder.add_node(node_id, item.pkg_info)
        builder.connect_nodes(parent_id, node_id)
        branch_visited.add(node_id)
        if node_id not in processed:
            processed.add(node_id)
            _add_dependencies(builder, lookup, node_id, item.dependency_names(), branch_visited, processed)


def classify_pip_error(stderr: str, cause: BaseException | None = None) -> EcosystemError:
    """Map the standard error of a failed pip run to a catalog error."""
    for fragments, error_class, prefix in _PIP_ERRORS:
        if any(fragment in stderr for fragment in fragments):
            return error_class(f"{prefix}: {stderr}", cause=cause)
    return InstallationFailureError(f"Pip install failed: {stderr}", cause=cause)


class PipClient:
    """Runs `pip install --dry-run --report` to resolve requirements without installing them."""

    def __init__(self, pip_binary: str = "pip", index_url: str = "", *, no_build_isolation: bool = False) -> None:
        self.pip_binary: str = pip_binary
        self.index_url: str = index_url
        self.no_build_isolation: bool = no_build_isolation

    def python_version(self) -> str:
        """Return the version of the Python interpreter on the PATH, trying `python3` then `python`.

        Raises:
            InstallationFailureError: if neither interpreter can be run

        """
        for command in ("python3", "python"):
            try:
                result = subprocess.run(  # noqa: S603
                    [command, "--version"],
                    capture_output=True,
                    check=True,
                    text=True,
                )
            except (OSError, subprocess.CalledProcessError) as e:
                logger.debug("Failed to run %s --version: %s", command, e)
                continue
            return result.stdout.strip().removeprefix("Python ")
        msg = (
            "Python is not installed or not found in PATH. "
            "Please install Python 3 and ensure it is available in your system PATH."
        )
        raise InstallationFailureError(msg)

    def _resolve_binary(self) -> str:
        resolved = which(self.pip_binary)
        if resolved is None:
            msg = f"{self.pip_binary} binary not found in PATH"
            raise InstallationFailureError(msg)
        return resolved

    def install_report(self, package_args: list[str], constraints: list[str] | None = None) -> InstallReport:
        """Ask pip what it would install for package_args.

        Constraints are passed on standard input.

        Raises:
            EcosystemError: classified from pip's output if pip fails
            UnprocessableFileError: if the report cannot be parsed

        """
        args = ["install", "--dry-run", "--ignore-installed", "--report", "-", "--quiet", *package_args]
        stdin = None
        if constraints:
            args.extend(["-c", "/dev/stdin"])
            stdin = "\n".join(constraints).encode()
        if self.no_build_isolation:
            args.append("--no-build-isolation")
        if self.index_url:
            args.extend(["--index-url", self.index_url])

        binary = self._resolve_binary()
        logger.debug("Running %s %s", binary, " ".join(args))
        try:
            result = subprocess.run(  # noqa: S603
                [binary, *args],
                input=stdin,
                capture_output=True,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            raise classify_pip_error((e.stderr or b"").decode(errors="replace"), e) from e
        except OSError as e:
            msg = f"Pip install failed: {e}"
            raise InstallationFailureError(msg, cause=e) from e

        try:
            return InstallReport.model_validate_json(result.stdout)
        except ValidationError as e:
            msg = f"failed to parse pip report: {e}"
            raise UnprocessableFileError(msg, cause=e) from e

    def install_report_from_requirements(self, requirements_file: str) -> InstallReport:
        if not requirements_file:
            msg = "requirements file path cannot be empty"
            raise ValueError(msg)
        return self.install_report(["-r", requirements_file])

    def install_report_from_packages(self, packages: list[str], constraints: list[str] | None = None) -> InstallReport:
        if not packages:
            msg = "packages list cannot be empty"
            raise ValueError(msg)
        return self.install_report(packages, constraints)


class PipPlugin(ScaPlugin):
    """Builds dependency graphs for projects described by `requirements.txt` files."""

    name = "pip"
    manifest_file_name = REQUIREMENTS_TXT_FILE_NAME

    def __init__(self, client: PipClient, *, report_file_exclusions: bool = False) -> None:
        self.client: PipClient = client
        self.report_file_exclusions: bool = report_file_exclusions

    def handles_target_file(self, target_file: str) -> bool:
        return PurePosixPath(target_file).suffix == ".txt"

    def build_findings_from_dir(self, directory: str, options: Options) -> list[Finding]:
        if options.target_file and not self.handles_target_file(options.target_file):
            logger.info("Skipping %s plugin for %s", self.name, options.target_file)
            return []

        files = self.discover_manifests(directory, options)
        if not files:
            logger.info("No %s files found in %s", self.manifest_file_name, directory)
            return []
        try:
            runtime = f"python@{self.client.python_version()}"
        except InstallationFailureError as e:
            logger.warning("Skipping %s plugin: %s", self.name, e.detail)
            return []

        findings = []
        for file in tqdm(files, desc=f"resolving {self.name} projects", leave=False, unit=" files"):
            logger.info("Building dependency graph for %s", file.rel_path)
            try:
                finding = self.build_finding(file, options, runtime)
            except CatalogError as e:
                logger.error("Failed to build dependency graph for %s: %s", file.rel_path, e.detail)  # noqa: TRY400
                finding = self.error_finding(file, runtime, e)
            findings.append(finding)
        return findings

    def discover_manifests(self, directory: str, options: Options) -> list[FindResult]:
        """Find the manifests to resolve.

        The target file if one is given, every manifest below directory with
        --all-projects, otherwise only the manifest at the root.
        """
        if options.target_file:
            return find_files(directory, target_file=options.target_file)
        if options.all_projects:
            excludes = [*PYTHON_EXCLUDES, *(options.exclude or ())]
            return find_files(directory, includes=[self.manifest_file_name], excludes=excludes)
        return find_files(directory, target_file=self.manifest_file_name)

    def build_finding(self, file: FindResult, options: Options, runtime: str) -> Finding:  # noqa: ARG002
        report = self.client.install_report_from_requirements(str(file.path))
        return Finding(
            dep_graph=report.to_dep_graph(PKG_MANAGER_PIP),
            file_exclusions=[file.rel_path] if self.report_file_exclusions else [],
            lock_file=file.rel_path,
            manifest_file=file.rel_path,
            metadata=Metadata(PKG_MANAGER_PIP, ROOT_PKG_NAME, ROOT_PKG_VERSION, runtime),
        )

    def error_finding(self, file: FindResult, runtime: str, error: BaseException) -> Finding:
        return Finding(
            lock_file=file.rel_path,
            manifest_file=file.rel_path,
            error=error,
            metadata=Metadata(PKG_MANAGER_PIP, ROOT_PKG_NAME, ROOT_PKG_VERSION, runtime),
        )
