"""Pure helpers for IRSA trust relationships.

Nothing here talks to AWS: given the cluster's OIDC issuer and the target
service account, these functions derive the provider ARN and the role trust
policy that lets exactly that service account assume the role.
"""

import json
from typing import Any, Optional, Union
from urllib.parse import unquote

STS_AUDIENCE = "sts.amazonaws.com"
POLICY_VERSION = "2012-10-17"


def issuer_host_path(issuer_url: str) -> str:
    """Strip the scheme from an issuer URL.

    ``https://oidc.eks.us-east-1.amazonaws.com/id/ABC`` becomes
    ``oidc.eks.us-east-1.amazonaws.com/id/ABC``.
    """
    host_path = issuer_url.strip()
    for scheme in ("https://", "http://"):
        if host_path.startswith(scheme):
            host_path = host_path[len(scheme):]
            break
    return host_path.rstrip("/")


def oidc_provider_arn(account_id: str, host_path: str) -> str:
    return f"arn:aws:iam::{account_id}:oidc-provider/{host_path}"


def service_account_subject(namespace: str, service_account_name: str) -> str:
    return f"system:serviceaccount:{namespace}:{service_account_name}"


def build_trust_policy(
    provider_arn: str,
    host_path: str,
    namespace: str,
    service_account_name: str,
) -> dict[str, Any]:
    """Build the assume-role policy binding one service account to the provider."""
    return {
        "Version": POLICY_VERSION,
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": {"Federated": provider_arn},
                "Action": "sts:AssumeRoleWithWebIdentity",
                "Condition": {
                    "StringEquals": {
                        f"{host_path}:aud": STS_AUDIENCE,
                        f"{host_path}:sub": service_account_subject(
                            namespace, service_account_name
                        ),
                    }
                },
            }
        ],
    }


def render_trust_policy(policy: dict[str, Any]) -> str:
    """Serialize a policy document; identical input always yields identical text."""
    return json.dumps(policy, indent=2)


def parse_policy_document(document: Union[str, dict[str, Any]]) -> dict[str, Any]:
    """Normalize a policy document returned by IAM.

    boto3 usually decodes policy documents already, but the raw API returns
    them URL-encoded.
    """
    if isinstance(document, dict):
        return document
    return json.loads(unquote(document))


def _statements(policy: dict[str, Any]) -> list[dict[str, Any]]:
    # IAM accepts a single statement object as well as a list.
    statements = policy.get("Statement", [])
    if isinstance(statements, dict):
        return [statements]
    return list(statements)


def merge_trust_policy(
    existing: Union[str, dict[str, Any], None], desired: dict[str, Any]
) -> Optional[dict[str, Any]]:
    """Add the statements of ``desired`` that ``existing`` lacks.

    Statements already in the role's trust policy (other clusters, other
    service accounts, AWS services) are kept. Returns ``None`` when nothing
    is missing.
    """
    if existing is None:
        return desired

    current = parse_policy_document(existing)
    current_statements = _statements(current)
    missing = [s for s in _statements(desired) if s not in current_statements]
    if not missing:
        return None

    merged = dict(current)
    merged.setdefault("Version", POLICY_VERSION)
    merged["Statement"] = current_statements + missing
    return merged
