"""
Pytest configuration for unit tests.

Provides an in-memory IAM double and a bootstrapper wired to mocked boto3 clients.
"""
import json
import pytest
from unittest.mock import MagicMock, patch

from botocore.exceptions import ClientError

from irsa.models import ClusterIdentity
from irsa.services.identity_bootstrapper import IdentityBootstrapper
from irsa.settings import Settings

ACCOUNT_ID = "123456789012"
ISSUER_URL = "https://oidc.eks.us-east-1.amazonaws.com/id/EXAMPLE"
LBC_POLICY_ARN = f"arn:aws:iam::{ACCOUNT_ID}:policy/AWSLoadBalancerControllerIAMPolicy"


def client_error(code, operation="Operation", message=None):
    """Build a botocore ClientError with the given error code."""
    return ClientError(
        {"Error": {"Code": code, "Message": message or f"{code} raised"}},
        operation,
    )


class FakeAttachedPoliciesPaginator:
    def __init__(self, iam):
        self.iam = iam

    def paginate(self, RoleName):
        if RoleName not in self.iam.roles:
            raise client_error("NoSuchEntity", "ListAttachedRolePolicies")
        attached = self.iam.attached[RoleName]
        # Two pages to exercise pagination
        half = len(attached) // 2
        return [
            {"AttachedPolicies": [{"PolicyArn": arn} for arn in attached[:half]]},
            {"AttachedPolicies": [{"PolicyArn": arn} for arn in attached[half:]]},
        ]


class FakeIam:
    """Minimal stateful IAM covering the calls the bootstrapper makes."""

    def __init__(self, account_id=ACCOUNT_ID):
        self.account_id = account_id
        self.providers = []
        self.client_ids = {}
        self.roles = {}
        self.attached = {}
        self.policies = {}

    def list_open_id_connect_providers(self):
        return {"OpenIDConnectProviderList": [{"Arn": arn} for arn in self.providers]}

    def create_open_id_connect_provider(self, Url, ClientIDList, ThumbprintList=None):
        arn = f"arn:aws:iam::{self.account_id}:oidc-provider/{Url[len('https://'):]}"
        if arn in self.providers:
            raise client_error("EntityAlreadyExists", "CreateOpenIDConnectProvider")
        self.providers.append(arn)
        self.client_ids[arn] = list(ClientIDList)
        return {"OpenIDConnectProviderArn": arn}

    def get_open_id_connect_provider(self, OpenIDConnectProviderArn):
        if OpenIDConnectProviderArn not in self.providers:
            raise client_error("NoSuchEntity", "GetOpenIDConnectProvider")
        client_ids = self.client_ids.setdefault(OpenIDConnectProviderArn, ["sts.amazonaws.com"])
        return {"ClientIDList": list(client_ids)}

    def add_client_id_to_open_id_connect_provider(self, OpenIDConnectProviderArn, ClientID):
        self.client_ids.setdefault(OpenIDConnectProviderArn, []).append(ClientID)
        return {}

    def get_role(self, RoleName):
        if RoleName not in self.roles:
            raise client_error("NoSuchEntity", "GetRole")
        return {"Role": dict(self.roles[RoleName])}

    def create_role(self, RoleName, AssumeRolePolicyDocument, Description=None):
        if RoleName in self.roles:
            raise client_error("EntityAlreadyExists", "CreateRole")
        self.roles[RoleName] = {
            "RoleName": RoleName,
            "Arn": f"arn:aws:iam::{self.account_id}:role/{RoleName}",
            "AssumeRolePolicyDocument": json.loads(AssumeRolePolicyDocument),
        }
        self.attached[RoleName] = []
        return {"Role": dict(self.roles[RoleName])}

    def update_assume_role_policy(self, RoleName, PolicyDocument):
        self.roles[RoleName]["AssumeRolePolicyDocument"] = json.loads(PolicyDocument)
        return {}

    def get_paginator(self, operation_name):
        assert operation_name == "list_attached_role_policies"
        return FakeAttachedPoliciesPaginator(self)

    def attach_role_policy(self, RoleName, PolicyArn):
        if RoleName not in self.roles:
            raise client_error("NoSuchEntity", "AttachRolePolicy")
        self.attached[RoleName].append(PolicyArn)
        return {}

    def get_policy(self, PolicyArn):
        if PolicyArn not in self.policies:
            raise client_error("NoSuchEntity", "GetPolicy")
        return {"Policy": {"Arn": PolicyArn, "PolicyName": self.policies[PolicyArn]}}

    def create_policy(self, PolicyName, PolicyDocument):
        arn = f"arn:aws:iam::{self.account_id}:policy/{PolicyName}"
        self.policies[arn] = PolicyName
        return {"Policy": {"Arn": arn, "PolicyName": PolicyName}}


@pytest.fixture
def make_client_error():
    return client_error


@pytest.fixture
def cluster():
    return ClusterIdentity(cluster_name="demo", region="us-east-1", account_id=ACCOUNT_ID)


@pytest.fixture
def fake_iam():
    return FakeIam()


@pytest.fixture
def aws_clients(fake_iam):
    """Patch boto3.client so each service returns a recording mock."""
    eks = MagicMock()
    eks.describe_cluster.return_value = {
        "cluster": {"name": "demo", "identity": {"oidc": {"issuer": ISSUER_URL}}}
    }
    sts = MagicMock()
    sts.get_caller_identity.return_value = {"Account": ACCOUNT_ID}
    clients = {"eks": eks, "iam": MagicMock(wraps=fake_iam), "sts": sts}

    with patch("irsa.services.identity_bootstrapper.boto3.client") as mock_boto3:
        mock_boto3.side_effect = lambda service, **kwargs: clients[service]
        clients["factory"] = mock_boto3
        yield clients


@pytest.fixture
def test_settings():
    return Settings(
        aws_access_key_id="",
        aws_secret_access_key="",
        assume_role_arn="",
        external_id="",
        oidc_thumbprint="",
        default_role_name="AmazonEKSLoadBalancerControllerRole",
    )


@pytest.fixture
def bootstrapper(aws_clients, test_settings):
    return IdentityBootstrapper(settings=test_settings, context_resolver=lambda: "demo")
