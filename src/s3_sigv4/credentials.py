"""Credentials and the sources that supply them."""

import inspect
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Optional, Protocol, Union

import boto3
from botocore.exceptions import BotoCoreError

from s3_sigv4.errors import CredentialError, CredentialUnavailable


@dataclass(frozen=True)
class Credentials:
    """Immutable snapshot of the secrets used to sign one request."""

    access_key: str
    secret_key: str
    session_token: Optional[str] = None

    def __repr__(self) -> str:
        return f"Credentials(access_key={self.access_key!r}, secret_key='***')"

    def validate(self) -> "Credentials":
        """Return self, or raise CredentialError if a key is empty."""
        if not self.access_key:
            raise CredentialError("Access key must not be empty")
        if not self.secret_key:
            raise CredentialError("Secret key must not be empty")
        return self


class CredentialSource(Protocol):
    """Anything with a ``get()`` returning Credentials or an awaitable of them."""

    def get(self) -> Union[Credentials, Awaitable[Credentials]]:
        ...


class StaticCredentialSource:
    """Always returns the same credentials."""

    def __init__(self, access_key: str, secret_key: str, session_token: Optional[str] = None):
        self._credentials = Credentials(access_key, secret_key, session_token)

    def get(self) -> Credentials:
        return self._credentials


class EnvCredentialSource:
    """Read credentials from MinIO or AWS environment variables.

    ``MINIO_ACCESS_KEY``/``MINIO_SECRET_KEY``/``MINIO_SESSION_TOKEN`` win
    over ``AWS_ACCESS_KEY_ID``/``AWS_SECRET_ACCESS_KEY``/``AWS_SESSION_TOKEN``.
    The environment is read on every call so rotated values are picked up.
    """

    def get(self) -> Credentials:
        access_key = os.getenv("MINIO_ACCESS_KEY")
        secret_key = os.getenv("MINIO_SECRET_KEY")
        if access_key and secret_key:
            return Credentials(access_key, secret_key, os.getenv("MINIO_SESSION_TOKEN"))

        access_key = os.getenv("AWS_ACCESS_KEY_ID", os.getenv("AWS_ACCESS_KEY"))
        secret_key = os.getenv("AWS_SECRET_ACCESS_KEY", os.getenv("AWS_SECRET_KEY"))
        if access_key and secret_key:
            return Credentials(access_key, secret_key, os.getenv("AWS_SESSION_TOKEN"))

        raise CredentialUnavailable("No credentials found in environment")


class Boto3CredentialSource:
    """Credentials resolved by a boto3 session (profiles, env, instance roles).

    Refreshable botocore credentials are frozen on every call so the access
    key, secret key and token always come from the same rotation.
    """

    def __init__(self, profile_name: Optional[str] = None, session: Any = None):
        self._session = session or boto3.Session(profile_name=profile_name)

    def get(self) -> Credentials:
        try:
            resolved = self._session.get_credentials()
        except BotoCoreError as e:
            raise CredentialUnavailable(str(e)) from e
        if resolved is None:
            raise CredentialUnavailable("boto3 session resolved no credentials")
        frozen = resolved.get_frozen_credentials()
        return Credentials(frozen.access_key, frozen.secret_key, frozen.token)


async def snapshot_credentials(source: CredentialSource) -> Credentials:
    """Take one validated credentials snapshot from a sync or async source."""
    try:
        result = source.get()
        if inspect.isawaitable(result):
            result = await result
    except CredentialError:
        raise
    except Exception as e:
        raise CredentialUnavailable(f"Credential source failed: {e}") from e
    if not isinstance(result, Credentials):
        raise CredentialUnavailable(f"Credential source returned {type(result).__name__}")
    return result.validate()
