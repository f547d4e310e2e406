"""Read the active kubeconfig context as an explicit, injectable dependency."""

import logging
import re
from typing import Any, Optional

from kubernetes import config
from kubernetes.config.config_exception import ConfigException

logger = logging.getLogger(__name__)

_EKS_CLUSTER_ARN = re.compile(r"^arn:aws[a-z-]*:eks:[a-z0-9-]+:\d{12}:cluster/(?P<name>.+)$")
_EKSCTL_CLUSTER = re.compile(r"^(?P<name>[^.]+)\.[a-z0-9-]+\.eksctl\.io$")


class KubeContextError(Exception):
    """Raised when no usable kubeconfig context can be read."""


def cluster_name_from_context(context: dict[str, Any]) -> str:
    """Return the EKS cluster name a kubeconfig context points at.

    ``aws eks update-kubeconfig`` writes the cluster ARN, eksctl writes
    ``<name>.<region>.eksctl.io``; anything else is taken verbatim.
    """
    ref = (context.get("context") or {}).get("cluster") or context.get("name") or ""
    for pattern in (_EKS_CLUSTER_ARN, _EKSCTL_CLUSTER):
        match = pattern.match(ref)
        if match:
            return match.group("name")
    return ref


class KubeContextResolver:
    """Resolve the cluster targeted by a kubeconfig file."""

    def __init__(
        self,
        kubeconfig_path: Optional[str] = None,
        context_name: Optional[str] = None,
    ):
        self.kubeconfig_path = kubeconfig_path or None
        self.context_name = context_name or None

    def active_context(self) -> dict[str, Any]:
        try:
            contexts, active = config.list_kube_config_contexts(
                config_file=self.kubeconfig_path
            )
        except (ConfigException, OSError) as e:
            raise KubeContextError(f"Failed to read kubeconfig: {e}") from e

        if self.context_name:
            for context in contexts or []:
                if context.get("name") == self.context_name:
                    return context
            raise KubeContextError(
                f"Context '{self.context_name}' not found in kubeconfig"
            )

        if not active:
            raise KubeContextError("kubeconfig has no current-context")
        return active

    def active_cluster_name(self) -> str:
        context = self.active_context()
        name = cluster_name_from_context(context)
        logger.debug("Active kubeconfig context %s -> cluster %s", context.get("name"), name)
        return name

    __call__ = active_cluster_name
