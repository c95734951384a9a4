"""Configuration settings for dep-graph."""

from __future__ import annotations

from pathlib import Path  # noqa: TC003

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    CliImplicitFlag,
    SettingsConfigDict,
)

from .legacy import LegacyFlags
from .orchestrator import ResolutionOptions

DEFAULT_API_URL = "https://api.snyk.io"


class Settings(BaseSettings):
    """Settings for dep-graph."""

    target: str = Field(default=".", description="Directory to resolve.")
    org: str = Field(
        default="",
        description="""Organization the SBOM conversion runs for. Required with
        `--use-sbom-resolution`.""",
    )
    api_url: str = Field(default=DEFAULT_API_URL, description="Base URL of the SBOM conversion API.")
    remote_repo_url: str = Field(
        default="",
        description="Remote repository URL passed along with converted SBOMs.",
    )
    use_sbom_resolution: CliImplicitFlag[bool] = Field(
        default=False,
        description="""Resolve supported projects by exporting and converting
        their SBOM, using the legacy resolver for the rest.""",
    )
    all_projects: CliImplicitFlag[bool] = Field(
        default=False,
        description="Resolve every project found below the target directory.",
    )
    fail_fast: CliImplicitFlag[bool] = Field(
        default=False,
        description="With `--all-projects`, stop at the first project that fails.",
    )
    dev: CliImplicitFlag[bool] = Field(default=False, description="Include dev dependencies.")
    exclude: str = Field(
        default="",
        description="Comma separated list of file and directory names to skip.",
    )
    file: str = Field(default="", description="Resolve only this manifest or lock file.")
    detection_depth: str = Field(
        default="",
        description="How many subdirectories the legacy resolver searches.",
    )
    prune_repeated_subdependencies: CliImplicitFlag[bool] = Field(
        default=False,
        description="Ask the legacy resolver to prune repeated sub-dependencies.",
    )
    print_effective_graph: CliImplicitFlag[bool] = Field(
        default=False,
        description="Ask the legacy resolver for the effective graph, as line-delimited JSON.",
    )
    print_effective_graph_with_errors: CliImplicitFlag[bool] = Field(
        default=False,
        description="""Like `--print-effective-graph`, also reporting the projects
        that failed.""",
    )
    workspace_packages: CliImplicitFlag[bool] = Field(
        default=False,
        description="""With `--file`, combine the graphs of all workspace packages
        into a single output.""",
    )
    legacy_cli: str = Field(default="snyk", description="Command running the legacy resolver.")
    uv_binary: str = Field(default="uv", description="The uv binary to export SBOMs with.")
    pip_binary: str = Field(default="pip", description="The pip binary resolving requirements files and Pipfiles.")
    pip_index_url: str = Field(default="", description="Package index pip resolves against, instead of PyPI.")
    pip_no_build_isolation: CliImplicitFlag[bool] = Field(
        default=False,
        description="Disable build isolation when pip builds source distributions.",
    )
    force: CliImplicitFlag[bool] = Field(
        default=False,
        description="""Force the overwrite of the output file if it already
        exists.""",
    )
    log_level: str = Field(default="info", description="Log level")
    output_file: Path | None = Field(
        default=None,
        description="""Output file path. If not provided, the output will be
        written to stdout.""",
    )
    version: CliImplicitFlag[bool] = Field(
        default=False,
        description="""Show the version of dep-graph and exit.""",
    )

    model_config = SettingsConfigDict(
        cli_parse_args=True,
        cli_kebab_case=True,
        env_prefix="DEP_GRAPH_",
    )

    def to_resolution_options(self) -> ResolutionOptions:
        return ResolutionOptions(
            all_projects=self.all_projects,
            dev=self.dev,
            exclude=self.exclude,
            target_file=self.file,
            fail_fast=self.fail_fast,
            workspace_packages=self.workspace_packages,
            print_effective_graph=self.print_effective_graph,
            print_effective_graph_with_errors=self.print_effective_graph_with_errors,
        )

    def to_legacy_flags(self) -> LegacyFlags:
        return LegacyFlags(
            detection_depth=self.detection_depth,
            debug=self.log_level.lower() == "debug",
            prune_repeated_subdependencies=self.prune_repeated_subdependencies,
        )
