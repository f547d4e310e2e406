"""
Bootstrap IRSA for a service account on an EKS cluster.

Usage:
    irsa-bootstrap \
        --cluster-name demo \
        --region us-east-1 \
        --policy-name AWSLoadBalancerControllerIAMPolicy \
        --policy-document iam_policy.json

    irsa-bootstrap \
        --cluster-name demo \
        --region us-east-1 \
        --account-id 123456789012 \
        --policy-arn arn:aws:iam::123456789012:policy/AWSLoadBalancerControllerIAMPolicy \
        --install-script install-lbc.sh

Every step is idempotent: re-run after fixing whatever made a step fail.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from irsa.errors import BootstrapError
from irsa.models import ClusterIdentity
from irsa.services.identity_bootstrapper import IdentityBootstrapper
from irsa.services.lb_controller_installer import build_install_script
from irsa.settings import Settings

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Bind a Kubernetes service account to an IAM role via the cluster's OIDC provider."
    )
    parser.add_argument("--cluster-name", required=True, help="EKS cluster name")
    parser.add_argument("--region", required=True, help="AWS region (e.g. us-east-1)")
    parser.add_argument(
        "--account-id", help="AWS account ID (default: account of the current credentials)"
    )
    parser.add_argument("--namespace", default="kube-system", help="Service account namespace")
    parser.add_argument(
        "--service-account",
        default="aws-load-balancer-controller",
        help="Service account name",
    )
    parser.add_argument("--role-name", help="IAM role name (default from settings)")

    policy = parser.add_mutually_exclusive_group(required=True)
    policy.add_argument("--policy-arn", help="Existing permissions policy to attach")
    policy.add_argument("--policy-name", help="Managed policy to create if missing and attach")
    parser.add_argument(
        "--policy-document",
        type=Path,
        help="JSON policy document used with --policy-name",
    )

    parser.add_argument("--kubeconfig", help="kubeconfig file to check the active context in")
    parser.add_argument("--context", help="kubeconfig context to use instead of current-context")
    parser.add_argument(
        "--install-script",
        type=Path,
        help="Write the Load Balancer Controller Helm install script here",
    )
    parser.add_argument("--chart-version", help="Chart version for the install script")
    parser.add_argument("--vpc-id", help="VPC ID passed to the controller in the install script")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.policy_name and not args.policy_document:
        parser.error("--policy-name requires --policy-document")

    overrides = {"aws_region": args.region}
    if args.kubeconfig:
        overrides["kubeconfig_path"] = args.kubeconfig
    if args.context:
        overrides["kube_context"] = args.context
    settings = Settings(**overrides)

    bootstrapper = IdentityBootstrapper(settings=settings)

    try:
        account_id = args.account_id or bootstrapper.resolve_account_id()
        cluster = ClusterIdentity(
            cluster_name=args.cluster_name,
            region=args.region,
            account_id=account_id,
        )
        # Nothing is created in IAM until kubeconfig points at the requested cluster.
        bootstrapper.resolve_context(cluster)

        policy_arn = args.policy_arn
        if args.policy_name:
            document = json.loads(args.policy_document.read_text())
            policy_arn = bootstrapper.ensure_managed_policy(cluster, args.policy_name, document)

        result = bootstrapper.bootstrap(
            cluster,
            args.namespace,
            args.service_account,
            policy_arn,
            args.role_name,
        )
    except BootstrapError as e:
        logger.error("❌ Step '%s' failed: %s", e.step, e.message)
        return 1
    except (ValueError, OSError) as e:
        logger.error("❌ %s", e)
        return 1

    logger.info(
        "✅ Done. provider_created=%s role_created=%s trust_policy_updated=%s policy_attached=%s",
        result.provider_created,
        result.role_created,
        result.trust_policy_updated,
        result.policy_attached,
    )

    if args.install_script:
        script = build_install_script(
            cluster,
            result.binding,
            chart_version=args.chart_version,
            vpc_id=args.vpc_id,
        )
        args.install_script.write_text(script)
        logger.info("Install script written to %s", args.install_script)

    print(result.role_arn)
    return 0


if __name__ == "__main__":
    sys.exit(main())
