"""Self-deployment package.

`deploy.types` is the persisted state contract; the pipeline lives in
`deploy.coordinator` and talks to the outside world through
`deploy.capabilities`. `deploy.request` hands a deploy asked for on the
command line over to the gateway process that owns the pipeline.
"""

from gatewarden.deploy.capabilities import DeployCapabilities, ShellDeployCapabilities
from gatewarden.deploy.coordinator import DeploymentCoordinator
from gatewarden.deploy.request import take_deploy_request, write_deploy_request
from gatewarden.deploy.types import DeployRequest, DeployResult, DeployState

__all__ = [
    "DeployCapabilities",
    "ShellDeployCapabilities",
    "DeploymentCoordinator",
    "DeployRequest",
    "DeployResult",
    "DeployState",
    "take_deploy_request",
    "write_deploy_request",
]
