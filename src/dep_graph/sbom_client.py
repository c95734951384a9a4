"""Client for the remote SBOM conversion service."""

from __future__ import annotations

import gzip
import logging
from typing import TYPE_CHECKING, Annotated, Any, Literal, Union

import requests
from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, ValidationError

from .errors import new_sca_error
from .models import DepGraph

if TYPE_CHECKING:
    from typing import BinaryIO

logger = logging.getLogger(__name__)

SBOM_CONVERT_API_VERSION = "2025-03-06"
MIME_TYPE_OCTET_STREAM = "application/octet-stream"
REQUEST_ID_HEADER = "snyk-request-id"
DEP_GRAPH_FACT_TYPE = "depGraph"

_CLIENT_ERROR = 400
_SERVER_ERROR = 500


class _ResponseModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class DepGraphFact(_ResponseModel):
    type: Literal["depGraph"]
    data: DepGraph


class OtherFact(_ResponseModel):
    type: str = ""
    data: Any = None


def _fact_tag(value: object) -> str:
    fact_type = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return "depGraph" if fact_type == DEP_GRAPH_FACT_TYPE else "other"


# A `depGraph` fact must hold a valid graph; any other fact type keeps its raw data.
ScanResultFact = Annotated[
    Union[Annotated[DepGraphFact, Tag("depGraph")], Annotated[OtherFact, Tag("other")]],
    Discriminator(_fact_tag),
]


class ScanResultTarget(_ResponseModel):
    remote_url: str = Field(default="", alias="remoteUrl")


class ScanResultIdentity(_ResponseModel):
    type: str = ""
    target_file: str | None = Field(default=None, alias="targetFile")
    args: dict[str, str] | None = None


class ScanResult(_ResponseModel):
    """One project found in a converted SBOM."""

    name: str = ""
    policy: str | None = None
    facts: list[ScanResultFact] = Field(default_factory=list)
    target: ScanResultTarget = Field(default_factory=ScanResultTarget)
    identity: ScanResultIdentity = Field(default_factory=ScanResultIdentity)
    target_reference: str | None = Field(default=None, alias="targetReference")

    def dep_graphs(self) -> list[DepGraph]:
        """Return the dependency graphs of all `depGraph` facts."""
        return [fact.data for fact in self.facts if isinstance(fact, DepGraphFact)]


class ConversionWarning(_ResponseModel):
    type: str = ""
    bom_ref: str = ""
    msg: str = ""


class SBOMConvertResponse(_ResponseModel):
    scan_results: list[ScanResult] = Field(default_factory=list, alias="scanResults")
    warnings: list[ConversionWarning] = Field(default_factory=list)


def _error_with_request_id(message: str, response: requests.Response) -> str:
    status = f"{response.status_code} {response.reason}".strip()
    request_id = response.headers.get(REQUEST_ID_HEADER)
    if not request_id:
        return f"{message} ({status})"
    return f"{message} ({status} - requestId: {request_id})"


class SBOMConvertClient:
    """Converts SBOM documents into scan results holding dependency graphs.

    Requests are not retried and get no timeout of their own; redirects are not followed.
    """

    def __init__(self, api_base_url: str, org_id: str, session: requests.Session | None = None) -> None:
        """Initialize the client.

        Args:
            api_base_url: Base URL of the API
            org_id: Organization the conversion is performed for
            session: HTTP session to use, a new one by default

        """
        self.api_base_url: str = api_base_url
        self.org_id: str = org_id
        self.session: requests.Session = session if session is not None else requests.Session()

    def convert_url(self) -> str:
        return f"{self.api_base_url.rstrip('/')}/hidden/orgs/{self.org_id}/sboms/convert"

    def sbom_convert(
        self, sbom: bytes | BinaryIO, remote_repo_url: str = ""
    ) -> tuple[list[ScanResult], list[ConversionWarning]]:
        """Convert an SBOM document.

        Raises:
            SBOMExtensionError: on network failures, rejected or failed requests and undecodable responses

        """
        content = sbom if isinstance(sbom, bytes) else sbom.read()
        body = gzip.compress(content)
        try:
            response = self.session.post(
                self.convert_url(),
                params={"version": SBOM_CONVERT_API_VERSION, "remote_repo_url": remote_repo_url},
                data=body,
                headers={"Content-Type": MIME_TYPE_OCTET_STREAM, "Content-Encoding": "gzip"},
                allow_redirects=False,
            )  # noqa: S113
        except requests.RequestException as e:
            logger.exception("Failed to execute HTTP request for SBOM conversion")
            raise new_sca_error(e) from e

        if _CLIENT_ERROR <= response.status_code < _SERVER_ERROR:
            msg = _error_with_request_id("request to analyze SBOM document was rejected", response)
            raise new_sca_error(RuntimeError(msg))
        if response.status_code >= _SERVER_ERROR:
            msg = _error_with_request_id("analysis of SBOM document failed due to error", response)
            raise new_sca_error(RuntimeError(msg))

        try:
            convert_response = SBOMConvertResponse.model_validate_json(response.content)
        except ValidationError as e:
            logger.exception("Failed to decode SBOM conversion response")
            raise new_sca_error(e) from e
        return convert_response.scan_results, convert_response.warnings
