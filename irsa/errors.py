from irsa.models import BootstrapErrorResponse


class BootstrapError(Exception):
    """Base class for a failed bootstrap step.

    ``message`` is the underlying AWS or kubeconfig error text, unmodified.
    """

    step = "bootstrap"

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"{self.step} failed: {message}")

    def to_response(self) -> BootstrapErrorResponse:
        """Convert to API response format."""
        return BootstrapErrorResponse(
            error=type(self).__name__,
            step=self.step,
            message=self.message,
        )


class ContextMismatch(BootstrapError):
    """The active kubeconfig context points at a different cluster."""

    step = "resolve_context"

    def __init__(self, expected: str, actual: str | None, detail: str | None = None):
        self.expected = expected
        self.actual = actual
        super().__init__(
            detail
            or f"active kubeconfig context targets cluster '{actual}', "
            f"expected '{expected}'"
        )


class ProviderAssociationFailed(BootstrapError):
    step = "ensure_oidc_provider"


class PolicyCreationFailed(BootstrapError):
    step = "ensure_managed_policy"


class RoleCreationFailed(BootstrapError):
    step = "ensure_role"


class PolicyAttachFailed(BootstrapError):
    step = "attach_policy"


class ARNResolutionFailed(BootstrapError):
    step = "resolve_role_arn"
