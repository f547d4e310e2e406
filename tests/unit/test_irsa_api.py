"""
Unit tests for the IRSA HTTP API.
"""
import pytest
from fastapi.testclient import TestClient

from irsa.main import app
from irsa.routes.irsa import get_bootstrapper
from irsa.services.identity_bootstrapper import IdentityBootstrapper
from irsa.settings import Settings

ROLE_ARN = "arn:aws:iam::123456789012:role/AmazonEKSLoadBalancerControllerRole"
POLICY_ARN = "arn:aws:iam::123456789012:policy/AWSLoadBalancerControllerIAMPolicy"
HOST_PATH = "oidc.eks.us-east-1.amazonaws.com/id/EXAMPLE"


def _request(**overrides):
    body = {
        "cluster": {"cluster_name": "demo", "region": "us-east-1", "account_id": "123456789012"},
        "namespace": "kube-system",
        "service_account_name": "aws-load-balancer-controller",
        "policy_arn": POLICY_ARN,
    }
    body.update(overrides)
    return body


@pytest.fixture
def api_client():
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


def _use(bootstrapper):
    app.dependency_overrides[get_bootstrapper] = lambda: bootstrapper


class TestHealth:
    def test_health(self, api_client):
        response = api_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestBootstrapEndpoint:
    """Test POST /api/v1/irsa/bootstrap."""

    def test_success(self, api_client, bootstrapper, fake_iam):
        _use(bootstrapper)

        response = api_client.post("/api/v1/irsa/bootstrap", json=_request())

        assert response.status_code == 200
        data = response.json()
        assert data["role_arn"] == ROLE_ARN
        assert data["binding"]["role_arn"] == ROLE_ARN
        assert data["provider"]["provider_arn"] == (
            f"arn:aws:iam::123456789012:oidc-provider/{HOST_PATH}"
        )
        assert data["role_created"] is True
        assert data["role"]["attached_policy_arns"] == [POLICY_ARN]

    def test_context_mismatch_is_conflict(self, api_client, aws_clients, test_settings):
        _use(IdentityBootstrapper(settings=test_settings, context_resolver=lambda: "other-cluster"))

        response = api_client.post("/api/v1/irsa/bootstrap", json=_request())

        assert response.status_code == 409
        data = response.json()
        assert data["error"] == "ContextMismatch"
        assert data["step"] == "resolve_context"
        aws_clients["factory"].assert_not_called()

    def test_aws_failure_is_bad_gateway(self, api_client, bootstrapper, aws_clients, make_client_error):
        aws_clients["iam"].create_role.side_effect = make_client_error(
            "AccessDenied", "CreateRole", "not authorized to perform iam:CreateRole"
        )
        _use(bootstrapper)

        response = api_client.post("/api/v1/irsa/bootstrap", json=_request())

        assert response.status_code == 502
        data = response.json()
        assert data["error"] == "RoleCreationFailed"
        assert data["step"] == "ensure_role"
        assert "not authorized to perform iam:CreateRole" in data["message"]

    def test_assume_role_denied_is_bad_gateway(self, api_client, aws_clients, make_client_error):
        aws_clients["sts"].assume_role.side_effect = make_client_error(
            "AccessDenied", "AssumeRole", "not authorized to perform: sts:AssumeRole"
        )
        _use(
            IdentityBootstrapper(
                settings=Settings(
                    assume_role_arn="arn:aws:iam::123456789012:role/platform-admin"
                ),
                context_resolver=lambda: "demo",
            )
        )

        response = api_client.post("/api/v1/irsa/bootstrap", json=_request())

        assert response.status_code == 502
        data = response.json()
        assert data["error"] == "ProviderAssociationFailed"
        assert data["step"] == "ensure_oidc_provider"
        assert "sts:AssumeRole" in data["message"]

    def test_invalid_account_id(self, api_client, bootstrapper):
        _use(bootstrapper)
        body = _request()
        body["cluster"]["account_id"] = "12345"

        response = api_client.post("/api/v1/irsa/bootstrap", json=body)

        assert response.status_code == 422

    def test_invalid_policy_arn(self, api_client, bootstrapper):
        _use(bootstrapper)

        response = api_client.post(
            "/api/v1/irsa/bootstrap", json=_request(policy_arn="AWSLoadBalancerControllerIAMPolicy")
        )

        assert response.status_code == 422


class TestTrustPolicyEndpoint:
    """Test POST /api/v1/irsa/trust-policy."""

    def test_renders_without_aws(self, api_client):
        response = api_client.post(
            "/api/v1/irsa/trust-policy",
            json={
                "cluster": {
                    "cluster_name": "demo",
                    "region": "us-east-1",
                    "account_id": "123456789012",
                },
                "issuer_url": f"https://{HOST_PATH}",
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["host_path"] == HOST_PATH
        assert (
            '"Federated": "arn:aws:iam::123456789012:oidc-provider/'
            'oidc.eks.us-east-1.amazonaws.com/id/EXAMPLE"'
        ) in data["document"]
        conditions = data["trust_policy"]["Statement"][0]["Condition"]["StringEquals"]
        assert conditions[f"{HOST_PATH}:sub"] == (
            "system:serviceaccount:kube-system:aws-load-balancer-controller"
        )
