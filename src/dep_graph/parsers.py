"""Parsers for the output of the legacy resolver."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from .errors import OutputParseError

logger = logging.getLogger(__name__)

SEPARATOR_END = b"DepGraph end"
SEPARATOR_DATA = b"DepGraph data:"
SEPARATOR_TARGET = b"DepGraph target:"


@dataclass
class DepGraphOutput:
    """One dependency graph extracted from the legacy resolver output.

    `dep_graph`, `target` and `error` hold raw JSON; absent optional values are None.
    """

    dep_graph: bytes | None
    normalised_target_file: str = ""
    target_file_from_plugin: str | None = None
    target: bytes | None = None
    error: bytes | None = None


class OutputParser(ABC):
    """Turns the raw output of the legacy resolver into dependency graph records."""

    @abstractmethod
    def parse_output(self, output: bytes) -> list[DepGraphOutput]:
        raise NotImplementedError


class PlainTextOutputParser(OutputParser):
    """Parses the `--print-graph` output.

    The output is a sequence of blocks separated by `DepGraph end`. A block is
    only recognized when it contains `DepGraph data:` followed later by
    `DepGraph target:`; everything else is ignored. The payload is not
    validated here.
    """

    def parse_output(self, output: bytes) -> list[DepGraphOutput]:
        dep_graphs: list[DepGraphOutput] = []
        for block in output.split(SEPARATOR_END):
            data_index = block.find(SEPARATOR_DATA)
            if data_index < 0:
                continue
            graph_start = data_index + len(SEPARATOR_DATA)
            graph_end = block.find(SEPARATOR_TARGET, graph_start)
            if graph_end < 0:
                logger.debug("Ignoring dependency graph block without a target")
                continue
            target_name = block[graph_end + len(SEPARATOR_TARGET) :]
            dep_graphs.append(
                DepGraphOutput(
                    dep_graph=block[graph_start:graph_end],
                    normalised_target_file=target_name.decode(errors="replace").strip(),
                )
            )
        return dep_graphs


class JSONLOutputParser(OutputParser):
    """Parses the `--print-effective-graph[-with-errors]` output: one JSON record per line.

    A single malformed line fails the whole parse.
    """

    def parse_output(self, output: bytes) -> list[DepGraphOutput]:
        dep_graphs: list[DepGraphOutput] = []
        for line_number, line in enumerate(output.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except ValueError as e:
                msg = f"could not parse dependency graph output on line {line_number}: {e}"
                raise OutputParseError(msg) from e
            if not isinstance(record, dict):
                msg = f"could not parse dependency graph output on line {line_number}: expected a JSON object"
                raise OutputParseError(msg)
            dep_graphs.append(
                DepGraphOutput(
                    dep_graph=_raw_json(record.get("depGraph")),
                    normalised_target_file=_string_field(record, "normalisedTargetFile", line_number) or "",
                    target_file_from_plugin=_string_field(record, "targetFileFromPlugin", line_number),
                    target=_raw_json(record.get("target")),
                    error=_raw_json(record.get("error")),
                )
            )
        return dep_graphs


def _string_field(record: dict, key: str, line_number: int) -> str | None:
    value = record.get(key)
    if value is not None and not isinstance(value, str):
        msg = f"could not parse dependency graph output on line {line_number}: {key} must be a string"
        raise OutputParseError(msg)
    return value


def _raw_json(value: object) -> bytes | None:
    if value is None:
        return None
    return json.dumps(value, separators=(",", ":")).encode()
