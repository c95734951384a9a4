"""Dependency graphs of Pipenv projects.

The packages of the Pipfile are resolved with pip, pinned to the versions of
the Pipfile.lock next to it.
"""

from __future__ import annotations

import logging
import sys
import tomllib
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ManifestNotFoundError, UnprocessableFileError
from .pip import ROOT_PKG_NAME, ROOT_PKG_VERSION, InstallReport, PipPlugin, normalize_package_name
from .plugin import Finding, Metadata

if TYPE_CHECKING:
    from pathlib import Path

    from .discovery import FindResult
    from .plugin import Options

logger = logging.getLogger(__name__)

PIPFILE_FILE_NAME = "Pipfile"
PIPFILE_LOCK_FILE_NAME = "Pipfile.lock"
PKG_MANAGER_PIPENV = "pipenv"

_PLATFORMS = ("win32", "darwin", "linux")


def matches_platform_marker(marker: str, platform: str | None = None) -> bool:
    """Check a `sys_platform` marker against the running platform.

    Only `==` and `!=` comparisons with win32, darwin and linux are
    understood; any other marker matches and is left to pip.
    """
    if "sys_platform" not in marker:
        return True
    platform = platform or sys.platform
    for candidate in _PLATFORMS:
        if f"'{candidate}'" not in marker and f'"{candidate}"' not in marker:
            continue
        if "!=" in marker:
            return platform != candidate
        return platform == candidate
    return True


def format_requirement(name: str, spec: Any) -> str:  # noqa: ANN401
    """Convert a Pipfile package entry into a pip requirement.

    Returns an empty string for packages that do not apply to this platform.
    """
    if isinstance(spec, str):
        return name if spec == "*" else name + spec
    if not isinstance(spec, dict):
        return name

    markers = spec.get("markers")
    if isinstance(markers, str) and not matches_platform_marker(markers):
        return ""
    git = spec.get("git")
    if isinstance(git, str):
        requirement = f"{name} @ git+{git}"
        for key in ("ref", "tag", "branch"):
            if isinstance(spec.get(key), str):
                return f"{requirement}@{spec[key]}"
        return requirement
    path = spec.get("path")
    if isinstance(path, str):
        return f"-e {path}" if spec.get("editable") is True else path
    url = spec.get("url")
    if isinstance(url, str):
        return url

    requirement = name
    extras = spec.get("extras")
    if isinstance(extras, list) and extras:
        requirement = f"{name}[{','.join(str(extra) for extra in extras)}]"
    version = spec.get("version")
    if isinstance(version, str) and version != "*":
        return requirement + version
    return requirement


class PipfileSource(BaseModel):
    name: str = ""
    url: str = ""
    verify_ssl: bool = True


class PipfileRequires(BaseModel):
    python_version: str = ""


class Pipfile(BaseModel):
    """The sections of a Pipfile needed to resolve it."""

    model_config = ConfigDict(populate_by_name=True)

    source: list[PipfileSource] = Field(default_factory=list)
    packages: dict[str, Any] = Field(default_factory=dict)
    dev_packages: dict[str, Any] = Field(default_factory=dict, alias="dev-packages")
    requires: PipfileRequires = Field(default_factory=PipfileRequires)

    @classmethod
    def from_file(cls, path: Path) -> Pipfile:
        """Parse a Pipfile.

        Raises:
            UnprocessableFileError: if the file cannot be read or is not a valid Pipfile

        """
        try:
            with path.open("rb") as f:
                return cls.model_validate(tomllib.load(f))
        except (OSError, tomllib.TOMLDecodeError, ValidationError) as e:
            msg = f"failed to parse Pipfile: {e}"
            raise UnprocessableFileError(msg, cause=e) from e

    def to_requirements(self, include_dev: bool = False) -> list[str]:
        sections = [self.packages, self.dev_packages] if include_dev else [self.packages]
        requirements = (format_requirement(name, spec) for section in sections for name, spec in section.items())
        return [requirement for requirement in requirements if requirement]


class LockedPackage(BaseModel):
    version: str = ""
    hashes: list[str] = Field(default_factory=list)
    markers: str = ""
    index: str = ""
    extras: list[str] = Field(default_factory=list)
    git: str = ""
    ref: str = ""
    path: str = ""
    editable: bool = False


def format_constraint(name: str, package: LockedPackage) -> str:
    """Pin a locked package, e.g. `requests==2.31.0`.

    Git and path packages cannot be pinned and yield an empty string.
    """
    if package.git or package.path or not package.version:
        return ""
    version = package.version if package.version.startswith("==") else f"=={package.version}"
    return normalize_package_name(name) + version


class PipfileLock(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    meta: dict[str, Any] = Field(default_factory=dict, alias="_meta")
    default: dict[str, LockedPackage] = Field(default_factory=dict)
    develop: dict[str, LockedPackage] = Field(default_factory=dict)

    @classmethod
    def from_file(cls, path: Path) -> PipfileLock:
        """Parse a Pipfile.lock.

        Raises:
            UnprocessableFileError: if the file cannot be read or is not a valid lock file

        """
        try:
            return cls.model_validate_json(path.read_bytes())
        except (OSError, ValidationError) as e:
            msg = f"failed to parse Pipfile.lock: {e}"
            raise UnprocessableFileError(msg, cause=e) from e

    def to_constraints(self, include_dev: bool = False) -> list[str]:
        sections = [self.default, self.develop] if include_dev else [self.default]
        constraints = (format_constraint(name, package) for section in sections for name, package in section.items())
        return [constraint for constraint in constraints if constraint]


class PipenvPlugin(PipPlugin):
    """Builds dependency graphs for Pipenv projects.

    A Pipfile without a Pipfile.lock next to it fails; an unreadable lock file
    is logged and the Pipfile is resolved without pins.
    """

    name = "pipenv"
    manifest_file_name = PIPFILE_FILE_NAME

    def handles_target_file(self, target_file: str) -> bool:
        return PurePosixPath(target_file).name == PIPFILE_FILE_NAME

    def resolve_pipfile(self, pipfile: Pipfile, lock_file: PipfileLock | None, include_dev: bool) -> InstallReport:
        packages = pipfile.to_requirements(include_dev)
        if not packages:
            # an empty Pipfile yields a graph holding only the root
            return InstallReport()
        constraints = lock_file.to_constraints(include_dev) if lock_file is not None else None
        return self.client.install_report_from_packages(packages, constraints)

    def build_finding(self, file: FindResult, options: Options, runtime: str) -> Finding:
        pipfile = Pipfile.from_file(file.path)
        if pipfile.requires.python_version:
            logger.debug("%s requires Python %s", file.rel_path, pipfile.requires.python_version)

        lock_path = file.path.parent / PIPFILE_LOCK_FILE_NAME
        if not lock_path.exists():
            msg = f"Pipfile.lock not found at {lock_path}. Run 'pipenv lock' to generate it."
            raise ManifestNotFoundError(msg)
        try:
            lock_file: PipfileLock | None = PipfileLock.from_file(lock_path)
        except UnprocessableFileError as e:
            logger.error("%s, proceeding without constraints", e.detail)  # noqa: TRY400
            lock_file = None

        dep_graph = self.resolve_pipfile(pipfile, lock_file, options.dev).to_dep_graph(PKG_MANAGER_PIPENV)
        logger.info("Successfully built dependency graph from %s", file.rel_path)
        lock_rel_path = lock_file_of(file.rel_path)
        return Finding(
            dep_graph=dep_graph,
            file_exclusions=[file.rel_path, lock_rel_path] if self.report_file_exclusions else [],
            lock_file=lock_rel_path,
            manifest_file=file.rel_path,
            metadata=Metadata(PKG_MANAGER_PIPENV, ROOT_PKG_NAME, ROOT_PKG_VERSION, runtime),
        )

    def error_finding(self, file: FindResult, runtime: str, error: BaseException) -> Finding:
        return Finding(
            lock_file=lock_file_of(file.rel_path),
            manifest_file=file.rel_path,
            error=error,
            metadata=Metadata(PKG_MANAGER_PIPENV, ROOT_PKG_NAME, ROOT_PKG_VERSION, runtime),
        )


def lock_file_of(pipfile: str) -> str:
    return str(PurePosixPath(pipfile).parent / PIPFILE_LOCK_FILE_NAME)
