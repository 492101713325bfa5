"""Control-plane provisioning: one capability protocol, two backends."""

from .base import (
    InstanceSpec,
    NetworkInterfaceSpec,
    NetworkSpec,
    PowerState,
    ProvisioningBackend,
    PublicAddressSpec,
    ResourceGroupSpec,
    ResourceHandle,
    SecurityGroupSpec,
)
from .cli_backend import AzureCLIBackend, AzureCLIError
from .provisioner import ResourceProvisioner, select_backend
from .sdk_backend import AzureSDKBackend

__all__ = [
    "AzureCLIBackend",
    "AzureCLIError",
    "AzureSDKBackend",
    "InstanceSpec",
    "NetworkInterfaceSpec",
    "NetworkSpec",
    "PowerState",
    "ProvisioningBackend",
    "PublicAddressSpec",
    "ResourceGroupSpec",
    "ResourceHandle",
    "ResourceProvisioner",
    "SecurityGroupSpec",
    "select_backend",
]
