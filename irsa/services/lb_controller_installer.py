"""Render the Helm install for the AWS Load Balancer Controller.

The script is only rendered here; running it belongs to whoever owns the
cluster session (an SSM access node, a CI job, an operator shell).
"""

import shlex
from typing import Optional

from irsa.models import ROLE_ARN_ANNOTATION, ClusterIdentity, ServiceAccountBinding

EKS_CHARTS_REPO = "https://aws.github.io/eks-charts"
RELEASE_NAME = "aws-load-balancer-controller"


def _annotation_set_key(annotation: str) -> str:
    # Helm --set treats unescaped dots as nesting.
    return "serviceAccount.annotations." + annotation.replace(".", "\\.")


def build_install_script(
    cluster: ClusterIdentity,
    binding: ServiceAccountBinding,
    chart_version: Optional[str] = None,
    vpc_id: Optional[str] = None,
) -> str:
    """Build a shell script that installs the controller bound to ``binding``."""
    q = shlex.quote

    lines = [
        "#!/bin/bash",
        "set -euo pipefail",
        "",
        f"CLUSTER_NAME={q(cluster.cluster_name)}",
        f"REGION={q(cluster.region)}",
        "",
        "# Configure kubectl",
        'echo "==> Configuring kubectl for $CLUSTER_NAME in $REGION..."',
        'aws eks update-kubeconfig --name "$CLUSTER_NAME" --region "$REGION"',
        "",
        'echo "==> Adding EKS Helm repository..."',
        f"helm repo add eks {EKS_CHARTS_REPO}",
        "helm repo update",
        "",
        'echo "==> Installing AWS Load Balancer Controller..."',
        f"helm upgrade --install {RELEASE_NAME} eks/{RELEASE_NAME} \\",
        f"  --namespace {q(binding.namespace)} \\",
    ]
    if chart_version:
        lines.append(f"  --version {q(chart_version)} \\")
    lines.extend(
        [
            '  --set clusterName="$CLUSTER_NAME" \\',
            '  --set region="$REGION" \\',
            "  --set serviceAccount.create=true \\",
            f"  --set serviceAccount.name={q(binding.name)} \\",
            f"  --set {q(_annotation_set_key(ROLE_ARN_ANNOTATION) + '=' + binding.role_arn)} \\",
        ]
    )
    if vpc_id:
        lines.append(f"  --set vpcId={q(vpc_id)} \\")
    lines.extend(
        [
            "  --wait --timeout 5m",
            "",
            f"kubectl -n {q(binding.namespace)} rollout status deployment/{RELEASE_NAME}",
            'echo "==> AWS Load Balancer Controller installed!"',
            "",
        ]
    )
    return "\n".join(lines)
