"""Writes deployment streams as zip deployment packages.

A package starts with ``META-INF/MANIFEST.MF`` describing every artifact,
followed by the bytes of the artifacts that are actually shipped. In a fix
package the artifacts the target already has are listed in the manifest with
``DeploymentPackage-Missing: true`` and carry no bytes.
"""

import logging
import shutil
import zipfile
from pathlib import Path
from typing import BinaryIO
from urllib.parse import unquote, urlparse

import httpx

from .artifact import ArtifactData
from .diff import DeploymentStream, artifact_order

logger = logging.getLogger(__name__)

MANIFEST_NAME = "META-INF/MANIFEST.MF"
MAX_LINE_BYTES = 72
CHUNK_SIZE = 64 * 1024


class ArtifactSource:
    """Opens artifact URLs: http(s) through httpx, file URLs and plain paths locally."""

    def __init__(self, timeout: float = 30.0, client: httpx.Client | None = None):
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def _local_path(url: str) -> Path | None:
        parsed = urlparse(url)
        if parsed.scheme in ("http", "https"):
            return None
        if parsed.scheme == "file":
            return Path(unquote(parsed.path))
        return Path(url)

    def copy_to(self, artifact: ArtifactData, out: BinaryIO) -> None:
        """Copy the artifact's bytes into ``out``."""
        path = self._local_path(artifact.url)
        if path is not None:
            with path.open("rb") as f:
                shutil.copyfileobj(f, out, CHUNK_SIZE)
            return
        with self._client.stream("GET", artifact.url) as response:
            response.raise_for_status()
            for chunk in response.iter_bytes(CHUNK_SIZE):
                out.write(chunk)

    def size(self, artifact: ArtifactData) -> int:
        """Size in bytes, or -1 when it cannot be determined."""
        if artifact.size >= 0:
            return artifact.size
        path = self._local_path(artifact.url)
        if path is not None:
            try:
                return path.stat().st_size
            except OSError:
                return -1
        try:
            response = self._client.head(artifact.url)
        except httpx.HTTPError as e:
            logger.debug(f"Could not determine size of {artifact.url}: {e}")
            return -1
        if response.status_code != 200:
            return -1
        length = response.headers.get("Content-Length")
        return int(length) if length and length.isascii() and length.isdigit() else -1


def _header(name: str, value: str) -> bytes:
    """One manifest header, continued on lines starting with a space."""
    line = f"{name}: {value}".encode("utf-8")
    parts = [line[:MAX_LINE_BYTES]]
    line = line[MAX_LINE_BYTES:]
    while line:
        parts.append(b" " + line[: MAX_LINE_BYTES - 1])
        line = line[MAX_LINE_BYTES - 1 :]
    return b"".join(part + b"\r\n" for part in parts)


def _entry_attributes(artifact: ArtifactData, missing: bool) -> list[tuple[str, str]]:
    attributes = []
    if artifact.is_bundle:
        attributes.append(("Bundle-SymbolicName", artifact.symbolic_name))
        attributes.append(("Bundle-Version", artifact.normalized_version))
    if artifact.processor_pid:
        attributes.append(("Resource-Processor", artifact.processor_pid))
    for key, value in artifact.directives.items():
        attributes.append((key, value))
    if missing:
        attributes.append(("DeploymentPackage-Missing", "true"))
    return attributes


def build_manifest(stream: DeploymentStream) -> bytes:
    """Render the manifest of a deployment stream."""
    out = [
        _header("Manifest-Version", "1.0"),
        _header("DeploymentPackage-SymbolicName", stream.target),
        _header("DeploymentPackage-Version", stream.version),
    ]
    if stream.is_fix_package:
        out.append(_header("DeploymentPackage-FixPack", f"[{stream.from_version},{stream.version})"))
    out.append(b"\r\n")

    entries = [(a, False) for a in stream.artifacts] + [(a, True) for a in stream.missing]
    entries.sort(key=lambda pair: artifact_order(pair[0]))
    for artifact, missing in entries:
        out.append(_header("Name", artifact.filename))
        for name, value in _entry_attributes(artifact, missing):
            out.append(_header(name, value))
        out.append(b"\r\n")
    return b"".join(out)


def write_deployment_package(stream: DeploymentStream, fp: BinaryIO, source: ArtifactSource) -> None:
    """Write ``stream`` as a zip deployment package to ``fp``."""
    with zipfile.ZipFile(fp, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(MANIFEST_NAME, build_manifest(stream))
        for artifact in stream.artifacts:
            with archive.open(artifact.filename, "w") as out:
                source.copy_to(artifact, out)
    logger.info(
        f"Wrote {'fix' if stream.is_fix_package else 'full'} package "
        f"{stream.target}@{stream.version} with {len(stream.artifacts)} artifacts"
    )


def estimate_size(stream: DeploymentStream, source: ArtifactSource) -> int:
    """Sum of the sizes of the shipped artifacts, or -1 if any is unknown."""
    total = 0
    for artifact in stream.artifacts:
        size = source.size(artifact)
        if size < 0:
            return -1
        total += size
    return total
