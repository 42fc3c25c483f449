from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bucketflow.config import BucketFlowConfig


ACCESS_KEY_ENV_NAMES = ("AWS_ACCESS_KEY_ID", "AWS_ACCESS_KEY")
SECRET_KEY_ENV_NAMES = ("AWS_SECRET_ACCESS_KEY", "AWS_SECRET_KEY")
SESSION_TOKEN_ENV_NAME = "AWS_SESSION_TOKEN"


@dataclass(slots=True, frozen=True)
class AwsCredentials:
    access_key_id: str
    secret_access_key: str
    session_token: str | None = None

    def as_client_kwargs(self) -> dict[str, str]:
        kwargs = {
            "aws_access_key_id": self.access_key_id,
            "aws_secret_access_key": self.secret_access_key,
        }
        if self.session_token:
            kwargs["aws_session_token"] = self.session_token
        return kwargs


def _first_env(names: tuple[str, ...]) -> str:
    for name in names:
        value = os.getenv(name, "").strip()
        if value:
            return value
    return ""


def resolve_credentials(config: BucketFlowConfig | None = None) -> AwsCredentials | None:
    """Resolve explicit credentials from env or config.

    ``None`` means no explicit pair was found and boto3's own provider chain
    (shared credentials file, profiles, instance roles) decides.
    """
    access_key = _first_env(ACCESS_KEY_ENV_NAMES)
    secret_key = _first_env(SECRET_KEY_ENV_NAMES)
    if access_key and secret_key:
        token = os.getenv(SESSION_TOKEN_ENV_NAME, "").strip() or None
        return AwsCredentials(access_key, secret_key, token)

    if config is not None and config.access_key_id and config.secret_access_key:
        return AwsCredentials(
            config.access_key_id.strip(),
            config.secret_access_key.strip(),
            (config.session_token or "").strip() or None,
        )
    return None


def has_ambient_credentials() -> bool:
    """Check whether boto3 can find credentials on its own (best effort)."""
    try:
        import boto3

        return boto3.Session().get_credentials() is not None
    except Exception:
        return False


def missing_credentials_hint() -> str:
    return (
        "No AWS credentials found. Set `AWS_ACCESS_KEY_ID`/`AWS_SECRET_ACCESS_KEY`, "
        "configure a profile with `aws configure`, or add `access_key_id` and "
        "`secret_access_key` to `.bucketflow.json`."
    )
