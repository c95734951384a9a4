"""Command-line interface for dep-graph."""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

from . import __version__ as dep_graph_version
from .config import Settings
from .errors import DepGraphError, SBOMExtensionError, exit_code_of, find_catalog_error
from .legacy import LegacyResolver
from .logger import setup_logger
from .orchestrator import ResolutionOrchestrator, sbom_converter
from .pip import PipClient, PipPlugin
from .pipenv import PipenvPlugin
from .sbom_client import SBOMConvertClient
from .uv import UvClient, UvPlugin

if TYPE_CHECKING:
    from .workflow import WorkflowOutput

logger = logging.getLogger(__name__)


def resolve(settings: Settings) -> list[WorkflowOutput]:
    """Resolve the target directory as configured by settings."""
    legacy_resolver = LegacyResolver(settings.legacy_cli, settings.to_legacy_flags())
    options = settings.to_resolution_options()
    if not settings.use_sbom_resolution:
        return legacy_resolver(settings.target, options)

    sbom_client = SBOMConvertClient(settings.api_url, settings.org)
    pip_client = PipClient(
        settings.pip_binary,
        settings.pip_index_url,
        no_build_isolation=settings.pip_no_build_isolation,
    )
    plugins = [
        UvPlugin(UvClient(settings.uv_binary), sbom_client, settings.remote_repo_url),
        PipenvPlugin(pip_client),
        PipPlugin(pip_client),
    ]
    converter = sbom_converter(sbom_client, settings.remote_repo_url)
    orchestrator = ResolutionOrchestrator(plugins, legacy_resolver, settings.org, converter)
    return orchestrator.resolve(settings.target, options)


def error_message(err: BaseException) -> str:
    if isinstance(err, SBOMExtensionError):
        return err.user_msg
    catalog_error = find_catalog_error(err)
    if catalog_error is not None and catalog_error.detail:
        return catalog_error.detail
    return str(err)


def main() -> int:
    settings = Settings()
    setup_logger(settings.log_level)

    logger.debug("Starting dep-graph with settings: %s", settings)

    if settings.version:
        logger.info("dep-graph version %s", dep_graph_version)
        return 0

    if settings.output_file is not None and not settings.force and settings.output_file.exists():
        logger.error("%s already exists!\nRe-run with `--force` to overwrite the file.", settings.output_file)
        return 1

    try:
        outputs = resolve(settings)
    except DepGraphError as e:
        logger.debug("Resolution failed", exc_info=True)
        logger.error("%s", error_message(e))  # noqa: TRY400
        return exit_code_of(e) or 1

    output = b"".join(output.to_jsonl() for output in outputs)
    if settings.output_file is None:
        sys.stdout.buffer.write(output)
        sys.stdout.flush()
    else:
        settings.output_file.write_bytes(output)
        logger.info("Output saved to %s", settings.output_file.absolute())
    return 0
