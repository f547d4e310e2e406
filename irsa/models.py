from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from irsa.trust_policy import issuer_host_path

ROLE_ARN_ANNOTATION = "eks.amazonaws.com/role-arn"


class ClusterIdentity(BaseModel):
    """The EKS cluster an IRSA binding is bootstrapped for."""

    model_config = ConfigDict(frozen=True)

    cluster_name: str = Field(..., min_length=1, description="EKS cluster name")
    region: str = Field(..., min_length=1, description="AWS region of the cluster")
    account_id: str = Field(
        ...,
        description="AWS account ID owning the cluster",
        pattern=r"^\d{12}$",
    )


class OIDCProvider(BaseModel):
    """IAM OIDC identity provider trusted for the cluster's issuer."""

    issuer_url: str
    provider_arn: str

    @property
    def host_path(self) -> str:
        return issuer_host_path(self.issuer_url)


class IAMRole(BaseModel):
    """IAM role assumed by a service account through web identity."""

    role_name: str
    role_arn: str
    trust_policy: dict[str, Any]
    attached_policy_arns: set[str] = Field(default_factory=set)


class ServiceAccountBinding(BaseModel):
    """Kubernetes service account annotated with the role it may assume."""

    namespace: str
    name: str
    role_arn: str

    @property
    def annotations(self) -> dict[str, str]:
        return {ROLE_ARN_ANNOTATION: self.role_arn}


class BootstrapRequest(BaseModel):
    """Input for a bootstrap run."""

    cluster: ClusterIdentity
    namespace: str = Field(default="kube-system", min_length=1)
    service_account_name: str = Field(
        default="aws-load-balancer-controller", min_length=1
    )
    policy_arn: str = Field(
        ...,
        description="Permissions policy to attach to the role",
        pattern=r"^arn:aws[a-z-]*:iam::(\d{12}|aws):policy/.+$",
    )
    role_name: Optional[str] = Field(
        default=None,
        description="Role name; defaults to the configured default role name",
        max_length=64,
    )


class TrustPolicyRequest(BaseModel):
    """Input for rendering a trust policy without touching AWS."""

    cluster: ClusterIdentity
    issuer_url: str = Field(..., pattern=r"^https://.+$")
    namespace: str = Field(default="kube-system", min_length=1)
    service_account_name: str = Field(
        default="aws-load-balancer-controller", min_length=1
    )


class TrustPolicyResponse(BaseModel):
    provider_arn: str
    host_path: str
    trust_policy: dict[str, Any]
    document: str


class BootstrapResult(BaseModel):
    """Outcome of a bootstrap run, with the checkpoints that changed state."""

    role_arn: str
    role_name: str
    provider: OIDCProvider
    trust_policy: dict[str, Any]
    role: IAMRole
    binding: ServiceAccountBinding
    provider_created: bool = False
    role_created: bool = False
    trust_policy_updated: bool = False
    policy_attached: bool = False


class BootstrapErrorResponse(BaseModel):
    """Error body returned when a bootstrap step fails."""

    error: str
    step: str
    message: str
