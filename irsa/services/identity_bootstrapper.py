import asyncio
import json
import logging
from typing import Any, Callable, Optional, Union

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from irsa.errors import (
    ARNResolutionFailed,
    ContextMismatch,
    PolicyAttachFailed,
    PolicyCreationFailed,
    ProviderAssociationFailed,
    RoleCreationFailed,
)
from irsa.kube_context import KubeContextError, KubeContextResolver
from irsa.models import (
    BootstrapResult,
    ClusterIdentity,
    IAMRole,
    OIDCProvider,
    ServiceAccountBinding,
)
from irsa.settings import Settings, settings as default_settings
from irsa.trust_policy import (
    STS_AUDIENCE,
    build_trust_policy,
    issuer_host_path,
    merge_trust_policy,
    oidc_provider_arn,
    render_trust_policy,
)

logger = logging.getLogger(__name__)

AWS_ERRORS = (ClientError, BotoCoreError)


def _error_code(error: Exception) -> Optional[str]:
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code")
    return None


class IdentityBootstrapper:
    """Bind a Kubernetes service account to an IAM role through the cluster's OIDC issuer.

    Every step is a check-then-act checkpoint, so a failed run can simply be
    re-invoked once the cause is fixed. Concurrent runs against the same
    account are not coordinated.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        context_resolver: Optional[Callable[[], str]] = None,
    ):
        self.settings = settings or default_settings
        self.context_resolver = context_resolver or KubeContextResolver(
            kubeconfig_path=self.settings.kubeconfig_path,
            context_name=self.settings.kube_context,
        )
        self._clients: dict = {}
        self._credentials: Optional[dict] = None

    def _client_config(self) -> Config:
        timeout = self.settings.aws_call_timeout_seconds
        return Config(
            connect_timeout=timeout,
            read_timeout=timeout,
            retries={"total_max_attempts": 1, "mode": "standard"},
        )

    def _get_credentials(self) -> dict:
        """Explicit keys, an assumed role, or nothing (default credential chain)."""
        if self._credentials is not None:
            return self._credentials

        credentials: dict = {}
        if self.settings.aws_access_key_id and self.settings.aws_secret_access_key:
            credentials = {
                "aws_access_key_id": self.settings.aws_access_key_id,
                "aws_secret_access_key": self.settings.aws_secret_access_key,
            }

        if self.settings.assume_role_arn:
            assume_kwargs: dict[str, Any] = {
                "RoleArn": self.settings.assume_role_arn,
                "RoleSessionName": "irsa-bootstrap",
                "DurationSeconds": 900,
            }
            if self.settings.external_id:
                assume_kwargs["ExternalId"] = self.settings.external_id

            # ClientError / BotoCoreError propagate so the calling step wraps them.
            sts = boto3.client(
                "sts",
                region_name=self.settings.aws_region,
                config=self._client_config(),
                **credentials,
            )
            logger.info("Assuming role %s", self.settings.assume_role_arn)
            assumed = sts.assume_role(**assume_kwargs)

            creds = assumed["Credentials"]
            credentials = {
                "aws_access_key_id": creds["AccessKeyId"],
                "aws_secret_access_key": creds["SecretAccessKey"],
                "aws_session_token": creds["SessionToken"],
            }

        self._credentials = credentials
        return credentials

    def _get_client(self, service: str, region: Optional[str] = None):
        """Get a boto3 client with a fixed per-call timeout and no retries."""
        region = region or self.settings.aws_region
        key = (service, region)
        if key in self._clients:
            return self._clients[key]

        client = boto3.client(
            service,
            region_name=region,
            config=self._client_config(),
            **self._get_credentials(),
        )
        self._clients[key] = client
        return client

    # -- Checkpoints (blocking I/O) --

    def resolve_context(self, cluster: ClusterIdentity) -> None:
        """Refuse to continue unless kubeconfig targets the requested cluster."""
        try:
            active = self.context_resolver()
        except KubeContextError as e:
            raise ContextMismatch(cluster.cluster_name, None, detail=str(e)) from e

        if active != cluster.cluster_name:
            raise ContextMismatch(cluster.cluster_name, active)
        logger.info("Kubeconfig context targets cluster %s", active)

    def _find_oidc_provider(self, iam, host_path: str) -> Optional[str]:
        response = iam.list_open_id_connect_providers()
        suffix = f":oidc-provider/{host_path}"
        for provider in response.get("OpenIDConnectProviderList", []):
            if provider["Arn"].endswith(suffix):
                return provider["Arn"]
        return None

    def _ensure_sts_audience(self, iam, provider_arn: str) -> None:
        """A provider without the STS client id cannot issue IRSA tokens."""
        provider = iam.get_open_id_connect_provider(OpenIDConnectProviderArn=provider_arn)
        if STS_AUDIENCE in provider.get("ClientIDList", []):
            return
        logger.info("Adding client id %s to OIDC provider %s", STS_AUDIENCE, provider_arn)
        iam.add_client_id_to_open_id_connect_provider(
            OpenIDConnectProviderArn=provider_arn,
            ClientID=STS_AUDIENCE,
        )

    def ensure_oidc_provider(self, cluster: ClusterIdentity) -> tuple[OIDCProvider, bool]:
        """Make sure an IAM OIDC provider exists for the cluster's issuer.

        Returns the provider and whether this call created it.
        """
        try:
            eks = self._get_client("eks", cluster.region)
            described = eks.describe_cluster(name=cluster.cluster_name)
        except AWS_ERRORS as e:
            raise ProviderAssociationFailed(str(e)) from e

        issuer_url = (
            described.get("cluster", {}).get("identity", {}).get("oidc", {}).get("issuer")
        )
        if not issuer_url:
            raise ProviderAssociationFailed(
                f"Cluster {cluster.cluster_name} does not expose an OIDC issuer"
            )

        host_path = issuer_host_path(issuer_url)
        provider_arn = oidc_provider_arn(cluster.account_id, host_path)

        try:
            iam = self._get_client("iam", cluster.region)
            existing = self._find_oidc_provider(iam, host_path)
            if existing:
                logger.info("OIDC provider for %s already exists, skipping", host_path)
                self._ensure_sts_audience(iam, existing)
                return OIDCProvider(issuer_url=issuer_url, provider_arn=existing), False

            create_kwargs: dict[str, Any] = {
                "Url": issuer_url,
                "ClientIDList": [STS_AUDIENCE],
            }
            if self.settings.oidc_thumbprint:
                create_kwargs["ThumbprintList"] = [self.settings.oidc_thumbprint]

            logger.info("Creating OIDC provider for %s", host_path)
            created = iam.create_open_id_connect_provider(**create_kwargs)
        except ClientError as e:
            if _error_code(e) == "EntityAlreadyExists":
                logger.info("OIDC provider for %s was created concurrently", host_path)
                return OIDCProvider(issuer_url=issuer_url, provider_arn=provider_arn), False
            raise ProviderAssociationFailed(str(e)) from e
        except BotoCoreError as e:
            raise ProviderAssociationFailed(str(e)) from e

        return (
            OIDCProvider(
                issuer_url=issuer_url,
                provider_arn=created.get("OpenIDConnectProviderArn", provider_arn),
            ),
            True,
        )

    def ensure_managed_policy(
        self,
        cluster: ClusterIdentity,
        policy_name: str,
        policy_document: Union[str, dict],
    ) -> str:
        """Create a customer managed policy unless one with this name exists."""
        policy_arn = f"arn:aws:iam::{cluster.account_id}:policy/{policy_name}"
        if isinstance(policy_document, dict):
            policy_document = json.dumps(policy_document)

        try:
            iam = self._get_client("iam", cluster.region)
            try:
                existing = iam.get_policy(PolicyArn=policy_arn)
                logger.info("Policy %s already exists, skipping", policy_name)
                return existing["Policy"]["Arn"]
            except ClientError as e:
                if _error_code(e) != "NoSuchEntity":
                    raise

            logger.info("Creating policy %s", policy_name)
            created = iam.create_policy(
                PolicyName=policy_name,
                PolicyDocument=policy_document,
            )
            return created["Policy"]["Arn"]
        except ClientError as e:
            if _error_code(e) == "EntityAlreadyExists":
                return policy_arn
            raise PolicyCreationFailed(str(e)) from e
        except BotoCoreError as e:
            raise PolicyCreationFailed(str(e)) from e

    def ensure_role(
        self,
        cluster: ClusterIdentity,
        role_name: str,
        trust_policy: dict,
    ) -> tuple[bool, bool]:
        """Create the role, or bring an existing role's trust policy up to date.

        Returns ``(created, trust_policy_updated)``.
        """
        document = render_trust_policy(trust_policy)
        try:
            iam = self._get_client("iam", cluster.region)
            try:
                existing = iam.get_role(RoleName=role_name)
            except ClientError as e:
                if _error_code(e) != "NoSuchEntity":
                    raise
                existing = None

            if existing is None:
                logger.info("Creating IAM role %s", role_name)
                iam.create_role(
                    RoleName=role_name,
                    AssumeRolePolicyDocument=document,
                    Description=f"IRSA role for EKS cluster {cluster.cluster_name}",
                )
                return True, False

            merged = merge_trust_policy(
                existing["Role"].get("AssumeRolePolicyDocument"), trust_policy
            )
            if merged is None:
                logger.info("IAM role %s already trusts the service account, skipping", role_name)
                return False, False

            logger.info("Adding service account trust to existing IAM role %s", role_name)
            iam.update_assume_role_policy(
                RoleName=role_name,
                PolicyDocument=render_trust_policy(merged),
            )
            return False, True
        except ClientError as e:
            if _error_code(e) == "EntityAlreadyExists":
                logger.info("IAM role %s was created concurrently", role_name)
                return False, False
            raise RoleCreationFailed(str(e)) from e
        except BotoCoreError as e:
            raise RoleCreationFailed(str(e)) from e

    def _ensure_attached(
        self, cluster: ClusterIdentity, role_name: str, policy_arn: str
    ) -> tuple[bool, set[str]]:
        try:
            iam = self._get_client("iam", cluster.region)
            attached: set[str] = set()
            paginator = iam.get_paginator("list_attached_role_policies")
            for page in paginator.paginate(RoleName=role_name):
                attached.update(p["PolicyArn"] for p in page.get("AttachedPolicies", []))

            if policy_arn in attached:
                logger.info("Policy %s already attached to %s, skipping", policy_arn, role_name)
                return False, attached

            logger.info("Attaching policy %s to %s", policy_arn, role_name)
            iam.attach_role_policy(RoleName=role_name, PolicyArn=policy_arn)
            return True, attached | {policy_arn}
        except AWS_ERRORS as e:
            raise PolicyAttachFailed(str(e)) from e

    def attach_policy(self, cluster: ClusterIdentity, role_name: str, policy_arn: str) -> bool:
        """Attach ``policy_arn`` unless it already is. Returns whether it attached."""
        attached, _ = self._ensure_attached(cluster, role_name, policy_arn)
        return attached

    def resolve_role_arn(self, cluster: ClusterIdentity, role_name: str) -> str:
        """Read the canonical role ARN back from IAM."""
        try:
            iam = self._get_client("iam", cluster.region)
            role = iam.get_role(RoleName=role_name)
        except AWS_ERRORS as e:
            raise ARNResolutionFailed(str(e)) from e

        role_arn = role.get("Role", {}).get("Arn")
        if not role_arn:
            raise ARNResolutionFailed(f"IAM returned no ARN for role {role_name}")
        return role_arn

    def resolve_account_id(self) -> str:
        """Account of the credentials in use."""
        try:
            sts = self._get_client("sts")
            return sts.get_caller_identity()["Account"]
        except NoCredentialsError as e:
            raise ValueError(
                f"Failed to locate AWS credentials: {e}. "
                "Use env vars, IAM role (EC2/IRSA), or other default provider chain."
            ) from e
        except AWS_ERRORS as e:
            raise ValueError(f"Failed to resolve caller identity: {e}") from e

    def bootstrap(
        self,
        cluster: ClusterIdentity,
        namespace: str,
        service_account_name: str,
        policy_arn: str,
        role_name: Optional[str] = None,
    ) -> BootstrapResult:
        """Run every checkpoint in order and return the resolved role."""
        role_name = role_name or self.settings.default_role_name

        self.resolve_context(cluster)

        provider, provider_created = self.ensure_oidc_provider(cluster)
        trust_policy = build_trust_policy(
            provider.provider_arn,
            provider.host_path,
            namespace,
            service_account_name,
        )
        role_created, trust_policy_updated = self.ensure_role(cluster, role_name, trust_policy)
        policy_attached, attached_policy_arns = self._ensure_attached(
            cluster, role_name, policy_arn
        )
        role_arn = self.resolve_role_arn(cluster, role_name)

        logger.info(
            "Service account %s/%s can assume %s", namespace, service_account_name, role_arn
        )
        return BootstrapResult(
            role_arn=role_arn,
            role_name=role_name,
            provider=provider,
            trust_policy=trust_policy,
            role=IAMRole(
                role_name=role_name,
                role_arn=role_arn,
                trust_policy=trust_policy,
                attached_policy_arns=attached_policy_arns,
            ),
            binding=ServiceAccountBinding(
                namespace=namespace,
                name=service_account_name,
                role_arn=role_arn,
            ),
            provider_created=provider_created,
            role_created=role_created,
            trust_policy_updated=trust_policy_updated,
            policy_attached=policy_attached,
        )

    def bootstrap_role_arn(
        self,
        cluster: ClusterIdentity,
        namespace: str,
        service_account_name: str,
        policy_arn: str,
        role_name: Optional[str] = None,
    ) -> str:
        return self.bootstrap(
            cluster, namespace, service_account_name, policy_arn, role_name
        ).role_arn

    # -- Async wrappers (run blocking calls in a thread) --

    async def bootstrap_async(
        self,
        cluster: ClusterIdentity,
        namespace: str,
        service_account_name: str,
        policy_arn: str,
        role_name: Optional[str] = None,
    ) -> BootstrapResult:
        return await asyncio.to_thread(
            self.bootstrap,
            cluster,
            namespace,
            service_account_name,
            policy_arn,
            role_name,
        )
