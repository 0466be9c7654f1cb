"""
Application Configuration Management

Loads configuration from environment variables (and a local .env file).
In AWS Lambda, secrets referenced by ARN are resolved through AWS Secrets
Manager before the settings object is built.

Settings are frozen: they are loaded once and shared read-only by every
request.
"""

import os
from functools import lru_cache
from typing import List, Literal, Optional

import boto3
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with validation"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Environment
    environment: str = Field(default="development", description="Environment name")

    # Application
    app_name: str = Field(default="Stripe Conversions Relay")
    app_version: str = Field(default="1.0.0")
    log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)

    # Stripe
    stripe_secret_key: Optional[str] = Field(
        default=None,
        description="Stripe secret API key",
        validation_alias=AliasChoices("stripe_secret_key", "stripe_api_key"),
    )
    stripe_webhook_secret: Optional[str] = Field(
        default=None, description="Stripe webhook signing secret"
    )
    stripe_api_version: Optional[str] = Field(default=None)
    stripe_max_network_retries: int = Field(default=2, ge=0)
    webhook_tolerance_seconds: int = Field(
        default=300, gt=0, description="Replay window for webhook signatures"
    )

    # Meta Conversions API
    fb_pixel_id: Optional[str] = Field(
        default=None,
        description="Meta pixel / dataset ID",
        validation_alias=AliasChoices("fb_pixel_id", "meta_pixel_id"),
    )
    fb_access_token: Optional[str] = Field(
        default=None,
        description="Conversions API access token",
        validation_alias=AliasChoices("fb_access_token", "fb_capi_token"),
    )
    fb_test_event_code: Optional[str] = Field(
        default=None, description="Routes events to the Test Events view"
    )
    event_source_url: str = Field(
        default="https://pay.stripe.com",
        description="Attribution source URL sent with every event",
    )
    graph_api_host: str = Field(default="graph.facebook.com")
    graph_api_version: str = Field(default="v20.0")

    # Delivery
    delivery_timeout_seconds: float = Field(default=10.0, gt=0)
    delivery_max_attempts: int = Field(default=3, ge=1)
    delivery_backoff: Literal["none", "fixed", "exponential"] = Field(
        default="exponential"
    )
    delivery_backoff_base: float = Field(default=0.5, ge=0)
    delivery_backoff_max: float = Field(default=4.0, ge=0)
    delivery_backoff_jitter: bool = Field(default=True)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v_upper

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment"""
        valid_envs = ["development", "test", "staging", "production"]
        v_lower = v.lower()
        if v_lower not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}")
        return v_lower

    @field_validator("event_source_url", mode="before")
    @classmethod
    def default_blank_source_url(cls, v: Optional[str]) -> str:
        """An empty override falls back to the default source URL"""
        return v or "https://pay.stripe.com"

    @property
    def is_development(self) -> bool:
        """Check if running in development"""
        return self.environment == "development"

    def missing_required(self) -> List[str]:
        """
        List required settings that are absent.
        Only names are returned, never values.
        """
        missing = []

        if not self.stripe_secret_key:
            missing.append("stripe_secret_key")
        if not self.stripe_webhook_secret:
            missing.append("stripe_webhook_secret")
        if not self.fb_pixel_id:
            missing.append("fb_pixel_id")
        if not self.fb_access_token:
            missing.append("fb_access_token")

        return missing


# Env var holding a Secrets Manager ARN -> env var the secret is injected into
SECRET_ARN_VARIABLES = {
    "STRIPE_SECRET_KEY_ARN": "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET_ARN": "STRIPE_WEBHOOK_SECRET",
    "FB_ACCESS_TOKEN_ARN": "FB_ACCESS_TOKEN",
}


def _fetch_secret_by_arn(arn: str, region: str) -> str:
    """
    Fetch a secret value from AWS Secrets Manager using ARN.

    Args:
        arn: The ARN of the secret
        region: AWS region

    Returns:
        The secret value as a string
    """
    try:
        client = boto3.client("secretsmanager", region_name=region)
        response = client.get_secret_value(SecretId=arn)
        return response.get("SecretString", "")
    except Exception as e:
        raise RuntimeError(f"Failed to retrieve secret from ARN {arn}: {e}") from e


def load_secrets_from_arns() -> List[str]:
    """
    Resolve ``*_ARN`` environment variables into their plain counterparts.

    A plain variable that is already set wins over its ARN. Failures are
    reported and skipped; the request-time configuration check reports
    whatever is still missing.

    Returns:
        Names of the environment variables that were populated
    """
    region = os.getenv("AWS_REGION", "us-east-1")
    populated = []

    for arn_var, target_var in SECRET_ARN_VARIABLES.items():
        arn = os.getenv(arn_var)
        if not arn or os.getenv(target_var):
            continue
        try:
            os.environ[target_var] = _fetch_secret_by_arn(arn, region)
            populated.append(target_var)
        except RuntimeError as e:
            print(f"Error loading secret for {target_var} from Secrets Manager: {e}")

    return populated


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    In Lambda, secrets referenced by STRIPE_SECRET_KEY_ARN,
    STRIPE_WEBHOOK_SECRET_ARN and FB_ACCESS_TOKEN_ARN are fetched from
    Secrets Manager first. Missing required values are not fatal here;
    the webhook route answers 500 until they are provided.
    """
    if os.getenv("AWS_LAMBDA_FUNCTION_NAME"):
        load_secrets_from_arns()

    return Settings()
