from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="IRSA_",
    )

    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""
    aws_region: str = "us-east-1"

    # Optional cross-account access; empty means the default credential chain.
    assume_role_arn: str = ""
    external_id: str = ""

    kubeconfig_path: str = ""
    kube_context: str = ""

    aws_call_timeout_seconds: int = 30
    oidc_thumbprint: str = ""
    default_role_name: str = "AmazonEKSLoadBalancerControllerRole"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
