"""Deployment targets: each one builds the ordered steps for its environment."""

from ..config import AppConfig
from .azure import AzureTarget
from .baremetal import BareMetalTarget
from .common import StackSteps
from .docker import DockerTarget

TARGETS = {
    AzureTarget.name: AzureTarget,
    BareMetalTarget.name: BareMetalTarget,
    DockerTarget.name: DockerTarget,
}


def create_target(name: str, config: AppConfig, **kwargs):
    try:
        target_cls = TARGETS[name]
    except KeyError:
        raise ValueError(f"unknown target {name!r}; choose one of {', '.join(sorted(TARGETS))}") from None
    return target_cls(config, **kwargs)


__all__ = ["AzureTarget", "BareMetalTarget", "DockerTarget", "StackSteps", "TARGETS", "create_target"]
