import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from irsa.errors import BootstrapError, ContextMismatch
from irsa.models import (
    BootstrapRequest,
    BootstrapResult,
    TrustPolicyRequest,
    TrustPolicyResponse,
)
from irsa.services.identity_bootstrapper import IdentityBootstrapper
from irsa.trust_policy import (
    build_trust_policy,
    issuer_host_path,
    oidc_provider_arn,
    render_trust_policy,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/irsa", tags=["irsa"])


def get_bootstrapper() -> IdentityBootstrapper:
    return IdentityBootstrapper()


@router.post(
    "/bootstrap",
    response_model=BootstrapResult,
    summary="Bootstrap IRSA for a service account",
    description="Ensure the cluster's OIDC provider, the IAM role trusted by the "
    "service account, and the policy attachment exist. Safe to repeat; "
    "concurrent runs against the same account are not supported.",
    responses={
        status.HTTP_409_CONFLICT: {"description": "Kubeconfig targets another cluster"},
        status.HTTP_502_BAD_GATEWAY: {"description": "An AWS step failed"},
    },
)
async def bootstrap_irsa(
    request: BootstrapRequest,
    bootstrapper: IdentityBootstrapper = Depends(get_bootstrapper),
):
    """Run the bootstrap and return the role ARN to annotate on the service account."""
    logger.info(
        "Bootstrapping IRSA for %s/%s on cluster %s",
        request.namespace,
        request.service_account_name,
        request.cluster.cluster_name,
    )
    try:
        return await bootstrapper.bootstrap_async(
            request.cluster,
            request.namespace,
            request.service_account_name,
            request.policy_arn,
            request.role_name,
        )
    except ContextMismatch as e:
        logger.warning("Refusing bootstrap: %s", e)
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=e.to_response().model_dump(),
        )
    except BootstrapError as e:
        logger.error("Bootstrap step %s failed: %s", e.step, e.message)
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content=e.to_response().model_dump(),
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post(
    "/trust-policy",
    response_model=TrustPolicyResponse,
    summary="Render a trust policy",
    description="Render the role trust policy for a service account without calling AWS.",
)
async def render_irsa_trust_policy(request: TrustPolicyRequest) -> TrustPolicyResponse:
    host_path = issuer_host_path(request.issuer_url)
    provider_arn = oidc_provider_arn(request.cluster.account_id, host_path)
    policy = build_trust_policy(
        provider_arn, host_path, request.namespace, request.service_account_name
    )
    return TrustPolicyResponse(
        provider_arn=provider_arn,
        host_path=host_path,
        trust_policy=policy,
        document=render_trust_policy(policy),
    )
