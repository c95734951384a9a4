"""Dependency graph resolution through the legacy resolver process."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .errors import (
    CatalogError,
    DepGraphDecodeError,
    DepGraphValidationError,
    NoDepGraphsFoundError,
    OutputParseError,
    extract_legacy_cli_error,
)
from .models import DepGraph
from .parsers import JSONLOutputParser, PlainTextOutputParser
from .workflow import WorkflowOutput

if TYPE_CHECKING:
    from .orchestrator import ResolutionOptions
    from .parsers import DepGraphOutput, OutputParser

logger = logging.getLogger(__name__)


@dataclass
class LegacyFlags:
    """Resolver flags that are passed through to the legacy resolver unchanged."""

    detection_depth: str = ""
    debug: bool = False
    prune_repeated_subdependencies: bool = False
    extra_args: list[str] = field(default_factory=list)


def choose_graph_argument(options: ResolutionOptions) -> tuple[str, OutputParser]:
    """Select the graph printing flag and the parser able to read the resulting output."""
    if options.print_effective_graph:
        return "--print-effective-graph", JSONLOutputParser()
    if options.print_effective_graph_with_errors:
        return "--print-effective-graph-with-errors", JSONLOutputParser()
    return "--print-graph", PlainTextOutputParser()


def prepare_legacy_args(
    graph_argument: str,
    directory: str,
    options: ResolutionOptions,
    flags: LegacyFlags | None = None,
) -> list[str]:
    """Build the arguments of a legacy resolver invocation.

    Args:
        graph_argument: The graph printing flag, see `choose_graph_argument`
        directory: Directory to resolve, used when no target file is set
        options: Resolution options
        flags: Additional pass-through flags

    Returns:
        The argument list, without the command itself

    """
    flags = flags or LegacyFlags()
    args = ["test", "--json", graph_argument]
    if options.all_projects:
        args.append("--all-projects")
    if options.fail_fast:
        args.append("--fail-fast")
    if options.exclude:
        args.append(f"--exclude={options.exclude}")
        logger.debug("Exclude: %s", options.exclude)
    if flags.detection_depth:
        args.append(f"--detection-depth={flags.detection_depth}")
        logger.debug("Detection depth: %s", flags.detection_depth)
    if options.target_file:
        args.append(f"--file={options.target_file}")
        logger.debug("File: %s", options.target_file)
    elif directory:
        args.append(directory)
        logger.debug("Target directory: %s", directory)
    if flags.debug:
        args.append("--debug")
    if options.dev:
        args.append("--dev")
        logger.debug("Dev dependencies: true")
    if flags.prune_repeated_subdependencies:
        args.append("--prune-repeated-subdependencies")
    args.extend(flags.extra_args)
    return args


def decode_dep_graph(payload: bytes, target_file: str) -> DepGraph:
    """Decode a graph payload of the legacy resolver and check its invariants.

    Raises:
        OutputParseError: if the payload is not a valid dependency graph

    """
    try:
        dep_graph = DepGraph.from_json(payload)
        dep_graph.check_invariants()
    except (DepGraphDecodeError, DepGraphValidationError) as e:
        msg = f"invalid dependency graph for {target_file or '<unknown target>'}: {e}"
        raise OutputParseError(msg) from e
    return dep_graph


def map_to_workflow_outputs(dep_graphs: list[DepGraphOutput]) -> list[WorkflowOutput]:
    """Convert parsed legacy records to outputs, attaching any embedded errors.

    Raises:
        OutputParseError: if a record holds an invalid dependency graph

    """
    outputs = []
    for dep_graph in dep_graphs:
        if dep_graph.dep_graph is not None:
            decode_dep_graph(dep_graph.dep_graph, dep_graph.normalised_target_file)
        output = WorkflowOutput.for_dep_graph(
            dep_graph.dep_graph or b"",
            dep_graph.normalised_target_file,
            target_file_from_plugin=dep_graph.target_file_from_plugin,
            target=dep_graph.target,
        )
        if dep_graph.error is not None:
            try:
                errors = CatalogError.from_jsonapi(dep_graph.error)
            except ValueError as e:
                logger.warning("failed to parse error from depgraph output: %s", e)
            else:
                for error in errors:
                    output.add_error(error)
        outputs.append(output)
    return outputs


class LegacyResolver:
    """Resolves dependency graphs by running the legacy resolver command.

    Instances are callables usable as the orchestrator's fallback.
    """

    def __init__(self, command: str = "snyk", flags: LegacyFlags | None = None) -> None:
        self.command: str = command
        self.flags: LegacyFlags = flags or LegacyFlags()

    def run(self, args: list[str]) -> bytes:
        """Run the command and return its standard output.

        Raises:
            CatalogError: if the process cannot be started or exits with a non-zero code

        """
        logger.info("Running %s %s", self.command, " ".join(args))
        try:
            result = subprocess.run(  # noqa: S603
                [self.command, *args],
                capture_output=True,
                check=False,
            )
        except OSError as e:
            raise extract_legacy_cli_error(e) from e
        if result.returncode != 0:
            err = subprocess.CalledProcessError(
                result.returncode, [self.command, *args], output=result.stdout, stderr=result.stderr
            )
            raise extract_legacy_cli_error(err, result.stdout) from err
        return result.stdout

    def __call__(self, directory: str, options: ResolutionOptions) -> list[WorkflowOutput]:
        """Resolve directory, returning one output per dependency graph.

        Raises:
            CatalogError: if the legacy resolver fails
            OutputParseError: if its output cannot be parsed
            NoDepGraphsFoundError: if it produced no dependency graph

        """
        graph_argument, output_parser = choose_graph_argument(options)
        args = prepare_legacy_args(graph_argument, directory, options, self.flags)
        output = self.run(args)

        try:
            dep_graphs = output_parser.parse_output(output)
        except OutputParseError as e:
            msg = f"error parsing dep graphs: {e}"
            raise OutputParseError(msg) from e
        if not dep_graphs:
            raise NoDepGraphsFoundError

        outputs = map_to_workflow_outputs(dep_graphs)
        logger.info("DepGraph workflow done (extracted %d dependency graphs)", len(outputs))
        return outputs
