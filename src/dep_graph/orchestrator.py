"""Coordination of the resolution sources and the legacy fallback."""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .conversion import sbom_to_dep_graphs
from .errors import (
    EmptyOrgError,
    NoSupportedProjectsError,
    ResolutionError,
    create_fail_fast_error,
    find_catalog_error,
    is_exit_code_3,
)
from .plugin import Options, parse_exclude_flag
from .workflow import CONTENT_TYPE_JSONL, WorkflowOutput

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from .models import DepGraph
    from .plugin import Finding, ScaPlugin
    from .sbom_client import SBOMConvertClient

    LegacyFallback = Callable[[str, "ResolutionOptions"], list[WorkflowOutput]]
    SBOMConverter = Callable[[Finding], list[DepGraph]]
    WarningSink = Callable[[str], None]

logger = logging.getLogger(__name__)


@dataclass
class ResolutionOptions:
    """Options of one resolution run."""

    all_projects: bool = False
    dev: bool = False
    exclude: str = ""  # comma separated
    target_file: str = ""
    fail_fast: bool = False
    # Merge the graphs of all workspace packages into a single output.
    workspace_packages: bool = False
    print_effective_graph: bool = False
    print_effective_graph_with_errors: bool = False

    def to_plugin_options(self) -> Options:
        return Options(
            all_projects=self.all_projects,
            target_file=self.target_file,
            dev=self.dev,
            exclude=parse_exclude_flag(self.exclude),
        )


@dataclass
class ProblemFinding:
    """A project that could not be resolved, reported in the aggregated warning."""

    lock_file: str
    manifest_file: str
    error: BaseException

    @property
    def message(self) -> str:
        catalog_error = find_catalog_error(self.error)
        if catalog_error is not None and catalog_error.detail:
            return catalog_error.detail
        return str(self.error)


def get_exclusions_from_findings(findings: Iterable[Finding]) -> list[str]:
    return [exclusion for finding in findings for exclusion in finding.file_exclusions]


def append_exclusions(exclude: str, exclusions: list[str]) -> str:
    """Append exclusions to a comma separated exclude value, keeping the existing entries."""
    if not exclusions:
        return exclude
    joined = ",".join(exclusions)
    if exclude:
        return f"{exclude},{joined}"
    return joined


def render_problem_warning(problems: list[ProblemFinding], total: int) -> str:
    """Render the human readable warning listing every project that failed."""
    lines = ["Dependency graphs could not be resolved for some projects:"]
    for problem in problems:
        location = problem.lock_file or problem.manifest_file or "<unknown>"
        if problem.lock_file and problem.manifest_file and problem.manifest_file != problem.lock_file:
            location = f"{problem.lock_file} ({problem.manifest_file})"
        lines.append(f"  {location}: {problem.message}")
    lines.append(f"{len(problems)}/{total} projects failed")
    return "\n".join(lines)


class ResolutionOrchestrator:
    """Resolves a directory using the SBOM sources first and the legacy resolver as fallback.

    Sources are consulted in order. Without `all_projects` the first source
    that finds anything wins and only its first finding is used; with
    `all_projects` every source contributes and the legacy resolver covers
    whatever the sources did not.
    """

    def __init__(  # noqa: PLR0913
        self,
        plugins: list[ScaPlugin],
        legacy_resolver: LegacyFallback,
        org_id: str,
        converter: SBOMConverter | None = None,
        warn: WarningSink | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            plugins: Sources of findings, in order of precedence
            legacy_resolver: Fallback resolving a directory through the legacy resolver
            org_id: Organization the resolution runs for
            converter: Converts findings that only carry an SBOM into dependency graphs
            warn: Receives the aggregated warning about failed projects, logs it by default

        """
        self.plugins: list[ScaPlugin] = list(plugins)
        self.legacy_resolver: LegacyFallback = legacy_resolver
        self.org_id: str = org_id
        self.converter: SBOMConverter | None = converter
        self.warn: WarningSink = warn if warn is not None else logger.warning

    def collect_findings(self, directory: str, options: ResolutionOptions) -> list[Finding]:
        """Run the sources.

        Raises:
            ExitCodeError: with exit code 2 if fail fast is requested and a project failed
            ResolutionError: if a source fails, or the single project found could not be resolved

        """
        plugin_options = options.to_plugin_options()
        findings: list[Finding] = []
        for plugin in self.plugins:
            try:
                plugin_findings = plugin.build_findings_from_dir(directory, plugin_options)
            except Exception as e:
                msg = f"error building SBOM with {plugin.name}: {e}"
                raise ResolutionError(msg) from e
            logger.debug("%s found %d project(s)", plugin.name, len(plugin_findings))

            if not options.all_projects:
                if not plugin_findings:
                    continue
                finding = plugin_findings[0]
                if finding.error is not None:
                    msg = f"error building SBOM for {finding.lock_file}: {finding.error}"
                    raise ResolutionError(msg) from finding.error
                return [finding]

            findings.extend(plugin_findings)
            if options.fail_fast:
                for finding in findings:
                    if finding.error is not None:
                        raise create_fail_fast_error(finding.lock_file, finding.error)
        return findings

    def _dep_graphs_of(self, finding: Finding) -> list[DepGraph]:
        if finding.dep_graph is not None:
            return [finding.dep_graph]
        if finding.sbom is None:
            msg = f"finding for {finding.lock_file} holds neither a dependency graph nor an SBOM"
            raise ResolutionError(msg)
        if self.converter is None:
            msg = f"no converter available for the SBOM of {finding.lock_file}"
            raise ResolutionError(msg)
        try:
            return self.converter(finding)
        except Exception as e:
            msg = f"error converting SBOM: {e}"
            raise ResolutionError(msg) from e

    def findings_to_outputs(
        self, findings: list[Finding], options: ResolutionOptions
    ) -> tuple[list[WorkflowOutput], list[ProblemFinding]]:
        """Split findings into outputs and problems."""
        problems: list[ProblemFinding] = []
        resolved: list[tuple[Finding, DepGraph]] = []
        for finding in findings:
            if finding.error is not None:
                problems.append(ProblemFinding(finding.lock_file, finding.manifest_file, finding.error))
                continue
            resolved.extend((finding, dep_graph) for dep_graph in self._dep_graphs_of(finding))

        if not resolved:
            return [], problems
        if options.target_file and options.workspace_packages:
            return [combined_output(resolved, options.target_file)], problems
        outputs = [
            WorkflowOutput.for_dep_graph(
                dep_graph.to_json(),
                finding.lock_file,
                target_file_from_plugin=finding.manifest_file or None,
            )
            for finding, dep_graph in resolved
        ]
        return outputs, problems

    def run_legacy(
        self, directory: str, options: ResolutionOptions, findings: list[Finding]
    ) -> list[WorkflowOutput]:
        """Run the legacy fallback, skipping the files the sources already resolved.

        Returns an empty list when the legacy resolver found no project but the
        sources did.
        """
        legacy_options = dataclasses.replace(
            options,
            exclude=append_exclusions(options.exclude, get_exclusions_from_findings(findings)),
            print_effective_graph=False,
            print_effective_graph_with_errors=True,
        )
        try:
            return self.legacy_resolver(directory, legacy_options)
        except Exception as e:
            if not is_exit_code_3(e):
                msg = f"error handling legacy workflow: {e}"
                raise ResolutionError(msg) from e
            if not findings:
                raise NoSupportedProjectsError(e) from e
            logger.info("Legacy resolver found no additional projects")
            return []

    def resolve(self, directory: str, options: ResolutionOptions) -> list[WorkflowOutput]:
        """Resolve the dependency graphs of the projects in directory.

        Raises:
            EmptyOrgError: if no organization id is set
            ExitCodeError: with exit code 2 if fail fast is requested and a project failed
            NoSupportedProjectsError: if no project was found at all
            ResolutionError: if a source, the conversion or the legacy resolver fails

        """
        if not self.org_id:
            raise EmptyOrgError

        findings = self.collect_findings(directory, options)
        outputs, problems = self.findings_to_outputs(findings, options)
        total = len(findings)

        if not findings or options.all_projects:
            for output in self.run_legacy(directory, options, findings):
                total += 1
                if output.errors:
                    problems.append(
                        ProblemFinding(
                            output.normalised_target_file,
                            output.target_file_from_plugin or "",
                            output.errors[0],
                        )
                    )
                else:
                    outputs.append(output)

        if problems:
            self.warn(render_problem_warning(problems, total))
        return outputs


def combined_output(resolved: list[tuple[Finding, DepGraph]], target_file: str) -> WorkflowOutput:
    """Merge the graphs of several workspace packages into one line-delimited output.

    Some consumers accept a single output per target file only. Every record
    names the requested target file and the package's own manifest, in the
    format of the legacy `--print-effective-graph` output.
    """
    lines = []
    for finding, dep_graph in resolved:
        record = {"depGraph": dep_graph.to_obj(), "normalisedTargetFile": target_file}
        if finding.manifest_file:
            record["targetFileFromPlugin"] = finding.manifest_file
        lines.append(json.dumps(record, separators=(",", ":")).encode())
    return WorkflowOutput.for_dep_graph(
        b"\n".join(lines) + b"\n",
        target_file,
        content_type=CONTENT_TYPE_JSONL,
    )


def sbom_converter(client: SBOMConvertClient, remote_repo_url: str = "") -> SBOMConverter:
    """Return a converter turning findings that carry an SBOM into dependency graphs."""

    def convert(finding: Finding) -> list[DepGraph]:
        if finding.metadata is None:
            msg = f"missing metadata for the SBOM of {finding.lock_file}"
            raise ResolutionError(msg)
        return sbom_to_dep_graphs(finding.sbom or b"", finding.metadata, client, remote_repo_url)

    return convert
