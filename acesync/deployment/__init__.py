"""Deployment snapshots and the streams shipped to targets."""

from .artifact import ArtifactData, DeploymentSnapshot, Version
from .diff import DeploymentDiffEngine, DeploymentStream, UsageLimiter
from .package import ArtifactSource, build_manifest, estimate_size, write_deployment_package
from .provider import RepositoryDeploymentProvider

__all__ = [
    "ArtifactData",
    "ArtifactSource",
    "DeploymentDiffEngine",
    "DeploymentSnapshot",
    "DeploymentStream",
    "RepositoryDeploymentProvider",
    "UsageLimiter",
    "Version",
    "build_manifest",
    "estimate_size",
    "write_deployment_package",
]
