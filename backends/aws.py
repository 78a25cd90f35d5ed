"""AWS backends: Secrets Manager, SSM Parameter Store, STS, IAM Identity Center, and the unified "aws" router."""

import base64
import hashlib
import json
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Mapping, Optional, Tuple

from core.config.fields import get_int, get_mapping, get_str, require_str
from core.config.merger import deep_merge
from core.secrets.base import BackendAdapter
from core.secrets.exceptions import AdapterError, SecretConfigError
from core.secrets.provider import AdapterProvider
from core.secrets.references import (
    STS_FIELDS,
    extract_json_path,
    parse_secrets_manager_reference,
    parse_ssm_reference,
    parse_sso_reference,
    parse_sts_reference,
    sso_field,
)
from core.secrets.registry import register_provider
from core.secrets.router import UnifiedRouter
from core.secrets.types import Capabilities, Metadata, RawSecret, StructuredReference
from core.utils.logging import get_logger

logger = get_logger(__name__)

AWS_AUTH_METHODS = {"iam", "profile", "environment", "instance-role"}

SECRETS_MANAGER_CAPABILITIES = Capabilities(
    supports_versioning=True,
    supports_metadata=True,
    supports_binary=True,
    requires_auth=True,
    auth_methods=AWS_AUTH_METHODS,
)

SSM_CAPABILITIES = Capabilities(
    supports_versioning=True,
    supports_metadata=True,
    requires_auth=True,
    auth_methods=AWS_AUTH_METHODS,
)

STS_CAPABILITIES = Capabilities(
    supports_metadata=True,
    requires_auth=True,
    auth_methods=AWS_AUTH_METHODS | {"assume-role"},
)

SSO_CAPABILITIES = Capabilities(
    supports_metadata=True,
    requires_auth=True,
    auth_methods={"sso", "browser"},
)

DEFAULT_STS_DURATION = 3600


def build_session(config: Mapping[str, Any]):
    """boto3 session from the common ``region`` and ``profile`` settings."""
    import boto3

    return boto3.Session(
        profile_name=get_str(config, "profile"),
        region_name=get_str(config, "region"),
    )


def _select(raw: str, ref: StructuredReference) -> str:
    if not ref.field:
        return raw
    try:
        return extract_json_path(raw, ref.field)
    except ValueError as e:
        raise AdapterError("extract", str(e), path=ref.name, cause=e)


# ============================================================
# SECRETS MANAGER
# ============================================================


class SecretsManagerAdapter(BackendAdapter):
    """
    Reads secrets with GetSecretValue.

    Version tails that look like UUIDs select a VersionId, anything else a
    VersionStage (AWSCURRENT, AWSPREVIOUS, custom labels).
    """

    def __init__(self, client):
        self.client = client

    def get_secret(self, token: Optional[str], ref: StructuredReference) -> RawSecret:
        kwargs = {"SecretId": ref.name}
        if ref.version is not None:
            version = str(ref.version)
            if len(version) == 36 and version.count("-") == 4:
                kwargs["VersionId"] = version
            else:
                kwargs["VersionStage"] = version

        response = self.client.get_secret_value(**kwargs)
        if response.get("SecretString") is not None:
            raw = response["SecretString"]
            binary = False
        else:
            blob = response.get("SecretBinary") or b""
            try:
                raw = blob.decode("utf-8")
                binary = False
            except UnicodeDecodeError:
                raw = base64.b64encode(blob).decode("ascii")
                binary = True

        metadata = {"arn": response.get("ARN", "")}
        if response.get("VersionStages"):
            metadata["stages"] = ",".join(response["VersionStages"])
        if binary:
            metadata["encoding"] = "base64"

        return RawSecret(
            value=_select(raw, ref),
            version=response.get("VersionId"),
            updated_at=response.get("CreatedDate"),
            metadata=metadata,
        )

    def describe_item(self, token: Optional[str], ref: StructuredReference) -> Metadata:
        response = self.client.describe_secret(SecretId=ref.name)
        current = None
        for version_id, stages in (response.get("VersionIdsToStages") or {}).items():
            if "AWSCURRENT" in stages:
                current = version_id
        tags = {t["Key"]: t["Value"] for t in response.get("Tags") or []}
        if response.get("RotationEnabled"):
            tags["rotation_enabled"] = "true"
        return Metadata(
            exists=True,
            version=current,
            updated_at=response.get("LastChangedDate"),
            type="secretsmanager",
            tags=tags,
        )

    def list_items(
        self, token: Optional[str], path: Optional[str] = None, limit: Optional[int] = None
    ) -> List[str]:
        kwargs = {"MaxResults": limit or 100}
        if path:
            kwargs["Filters"] = [{"Key": "name", "Values": [path]}]
        response = self.client.list_secrets(**kwargs)
        return [s["Name"] for s in response.get("SecretList") or []][:limit]


# ============================================================
# SSM PARAMETER STORE
# ============================================================


class SSMAdapter(BackendAdapter):
    """Reads parameters with GetParameter, decrypting SecureStrings."""

    def __init__(self, client, parameter_prefix: str = ""):
        self.client = client
        self.parameter_prefix = parameter_prefix

    def parameter_name(self, ref: StructuredReference) -> str:
        if ref.name.startswith("arn:") or not self.parameter_prefix:
            return ref.name
        return self.parameter_prefix + ref.name

    def get_secret(self, token: Optional[str], ref: StructuredReference) -> RawSecret:
        name = self.parameter_name(ref)
        if ref.version is not None:
            name = f"{name}:{ref.version}"
        parameter = self.client.get_parameter(Name=name, WithDecryption=True)["Parameter"]
        version = parameter.get("Version")
        return RawSecret(
            value=parameter.get("Value", ""),
            version=str(version) if version is not None else None,
            updated_at=parameter.get("LastModifiedDate"),
            metadata={"type": parameter.get("Type", ""), "arn": parameter.get("ARN", "")},
        )

    def describe_item(self, token: Optional[str], ref: StructuredReference) -> Metadata:
        name = self.parameter_name(ref)
        response = self.client.describe_parameters(
            ParameterFilters=[{"Key": "Name", "Option": "Equals", "Values": [name]}]
        )
        parameters = response.get("Parameters") or []
        if not parameters:
            return Metadata(exists=False)
        parameter = parameters[0]
        version = parameter.get("Version")
        tags = {"tier": parameter["Tier"]} if parameter.get("Tier") else {}
        return Metadata(
            exists=True,
            version=str(version) if version is not None else None,
            updated_at=parameter.get("LastModifiedDate"),
            type=parameter.get("Type"),
            tags=tags,
        )

    def list_items(
        self, token: Optional[str], path: Optional[str] = None, limit: Optional[int] = None
    ) -> List[str]:
        kwargs = {"MaxResults": min(limit or 50, 50)}
        path = path or self.parameter_prefix.rstrip("/")
        if path:
            kwargs["ParameterFilters"] = [{"Key": "Path", "Option": "Recursive", "Values": [path]}]
        response = self.client.describe_parameters(**kwargs)
        return [p["Name"] for p in response.get("Parameters") or []][:limit]


# ============================================================
# STS
# ============================================================


def _credentials_document(credentials: Mapping[str, Any]) -> dict:
    expiration = credentials.get("Expiration")
    return {
        "access_key_id": credentials.get("AccessKeyId", ""),
        "secret_access_key": credentials.get("SecretAccessKey", ""),
        "session_token": credentials.get("SessionToken", ""),
        "expiration": expiration.isoformat() if isinstance(expiration, datetime) else str(expiration or ""),
    }


class STSAdapter(BackendAdapter):
    """
    Issues temporary credentials.

    The cached token is the JSON credential set of the configured role (or
    of GetSessionToken when no role is configured). A key naming another
    role ARN assumes that role on the spot and is not cached.
    """

    token_based = True

    def __init__(
        self,
        client,
        role_arn: Optional[str] = None,
        session_name: Optional[str] = None,
        external_id: Optional[str] = None,
        duration: int = DEFAULT_STS_DURATION,
        clock=time.time,
    ):
        self.client = client
        self.role_arn = role_arn
        self.session_name = session_name or f"secret-router-{int(clock())}"
        self.external_id = external_id
        self.duration = duration

    def _assume(self, role_arn: str) -> dict:
        kwargs = {
            "RoleArn": role_arn,
            "RoleSessionName": self.session_name,
            "DurationSeconds": self.duration,
        }
        if self.external_id:
            kwargs["ExternalId"] = self.external_id
        return self.client.assume_role(**kwargs)["Credentials"]

    def authenticate(self) -> Tuple[str, float]:
        if self.role_arn:
            credentials = self._assume(self.role_arn)
        else:
            credentials = self.client.get_session_token(DurationSeconds=self.duration)["Credentials"]

        ttl = float(self.duration)
        expiration = credentials.get("Expiration")
        if isinstance(expiration, datetime):
            ttl = (expiration - datetime.now(timezone.utc)).total_seconds()
        return json.dumps(_credentials_document(credentials)), ttl

    def _document(self, token: str, ref: StructuredReference) -> dict:
        if ref.name in ("session", self.role_arn):
            return json.loads(token)
        return _credentials_document(self._assume(ref.name))

    def get_secret(self, token: Optional[str], ref: StructuredReference) -> RawSecret:
        document = self._document(token, ref)
        field = ref.field or "credentials"
        value = json.dumps(document, sort_keys=True) if field == "credentials" else document[field]
        return RawSecret(
            value=value,
            metadata={"role_arn": ref.name if ref.name != "session" else (self.role_arn or "")},
        )

    def describe_item(self, token: Optional[str], ref: StructuredReference) -> Metadata:
        document = self._document(token, ref)
        return Metadata(
            exists=True,
            type="sts-credentials",
            tags={"expiration": document.get("expiration", "")},
        )

    def list_items(
        self, token: Optional[str], path: Optional[str] = None, limit: Optional[int] = None
    ) -> List[str]:
        identity = self.client.get_caller_identity()
        return [identity.get("Arn", "")][:limit]


# ============================================================
# IAM IDENTITY CENTER (SSO)
# ============================================================


DEFAULT_SSO_CACHE_DIR = "~/.aws/sso/cache"


def sso_cache_file(start_url: str, cache_dir: str = DEFAULT_SSO_CACHE_DIR) -> Path:
    """The AWS CLI names its SSO token cache after the SHA-1 of the start URL."""
    digest = hashlib.sha1(start_url.encode("utf-8")).hexdigest()
    return Path(cache_dir).expanduser() / f"{digest}.json"


def _parse_cache_expiry(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    text = value.replace("UTC", "+00:00").replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class SSOAdapter(BackendAdapter):
    """
    Role credentials from IAM Identity Center.

    The SSO access token is read from the AWS CLI cache written by
    'aws sso login'; it is never refreshed here. The cached token of the
    provider is the JSON credential set from GetRoleCredentials.
    """

    token_based = True

    def __init__(
        self,
        client,
        start_url: str,
        account_id: str,
        role_name: str,
        cache_dir: str = DEFAULT_SSO_CACHE_DIR,
        clock=time.time,
    ):
        self.client = client
        self.start_url = start_url
        self.account_id = account_id
        self.role_name = role_name
        self.cache_dir = cache_dir
        self.clock = clock

    def access_token(self) -> str:
        path = sso_cache_file(self.start_url, self.cache_dir)
        try:
            cached = json.loads(path.read_text())
        except FileNotFoundError as e:
            raise AdapterError("auth", f"no SSO session cached for {self.start_url}", path=str(path), cause=e)
        except (OSError, ValueError) as e:
            raise AdapterError("auth", f"unreadable SSO token cache: {e}", path=str(path), cause=e)

        if cached.get("startUrl") != self.start_url:
            raise AdapterError("auth", "cached SSO token start URL mismatch", path=str(path))
        expires_at = _parse_cache_expiry(cached.get("expiresAt"))
        if expires_at is None or expires_at.timestamp() <= self.clock():
            raise AdapterError("auth", "SSO token expired", path=str(path))
        return cached["accessToken"]

    def authenticate(self) -> Tuple[str, float]:
        response = self.client.get_role_credentials(
            roleName=self.role_name,
            accountId=self.account_id,
            accessToken=self.access_token(),
        )
        credentials = response["roleCredentials"]
        # Expiration is epoch milliseconds
        expires = (credentials.get("expiration") or 0) / 1000
        document = {
            "access_key_id": credentials.get("accessKeyId", ""),
            "secret_access_key": credentials.get("secretAccessKey", ""),
            "session_token": credentials.get("sessionToken", ""),
            "expiration": datetime.fromtimestamp(expires, timezone.utc).isoformat(),
        }
        return json.dumps(document), expires - self.clock()

    def get_secret(self, token: Optional[str], ref: StructuredReference) -> RawSecret:
        document = json.loads(token)
        field = ref.field or "credentials"
        value = json.dumps(document, sort_keys=True) if field == "credentials" else document[field]
        return RawSecret(
            value=value,
            metadata={
                "source": f"sso:{self.account_id}/{self.role_name}",
                "expires_at": document["expiration"],
            },
        )

    def describe_item(self, token: Optional[str], ref: StructuredReference) -> Metadata:
        return Metadata(
            exists=True,
            type="sso-credentials",
            tags={
                "start_url": self.start_url,
                "account_id": self.account_id,
                "role_name": self.role_name,
            },
        )

    def list_items(
        self, token: Optional[str], path: Optional[str] = None, limit: Optional[int] = None
    ) -> List[str]:
        return [f"{self.account_id}/{self.role_name}"][:limit]


# ============================================================
# FACTORIES
# ============================================================


@register_provider("aws.secretsmanager")
def create_secrets_manager_provider(name: str, config: Mapping[str, Any], client=None) -> AdapterProvider:
    client = client or build_session(config).client("secretsmanager")
    return AdapterProvider(
        name,
        SecretsManagerAdapter(client),
        parse_secrets_manager_reference,
        SECRETS_MANAGER_CAPABILITIES,
        backend="aws.secretsmanager",
    )


@register_provider("aws.ssm")
def create_ssm_provider(name: str, config: Mapping[str, Any], client=None) -> AdapterProvider:
    client = client or build_session(config).client("ssm")
    adapter = SSMAdapter(client, parameter_prefix=get_str(config, "parameter_prefix", ""))
    return AdapterProvider(name, adapter, parse_ssm_reference, SSM_CAPABILITIES, backend="aws.ssm")


@register_provider("aws.sts")
def create_sts_provider(name: str, config: Mapping[str, Any], client=None) -> AdapterProvider:
    duration = get_int(config, "duration", DEFAULT_STS_DURATION)
    if not 900 <= duration <= 43200:
        raise SecretConfigError("duration", f"{duration}s is outside 900-43200", "Use a duration in seconds between 900 and 43200")
    client = client or build_session(config).client("sts")
    adapter = STSAdapter(
        client,
        role_arn=get_str(config, "role_arn"),
        session_name=get_str(config, "role_session_name"),
        external_id=get_str(config, "external_id"),
        duration=duration,
    )
    return AdapterProvider(name, adapter, parse_sts_reference, STS_CAPABILITIES, backend="aws.sts")


@register_provider("aws.sso")
def create_sso_provider(name: str, config: Mapping[str, Any], client=None) -> AdapterProvider:
    start_url = require_str(config, "start_url", "Provide your SSO portal URL, e.g. https://my-sso-portal.awsapps.com/start")
    account_id = require_str(config, "account_id", "Provide the AWS account ID as a quoted string")
    role_name = require_str(config, "role_name", "Provide the SSO role name, e.g. AdministratorAccess")
    if client is None:
        region = get_str(config, "sso_region") or get_str(config, "region") or "us-east-1"
        client = build_session(config).client("sso", region_name=region)
    adapter = SSOAdapter(
        client,
        start_url=start_url,
        account_id=account_id,
        role_name=role_name,
        cache_dir=get_str(config, "cache_path", DEFAULT_SSO_CACHE_DIR),
    )
    return AdapterProvider(name, adapter, parse_sso_reference, SSO_CAPABILITIES, backend="aws.sso")


AWS_SERVICES = ("secretsmanager", "ssm", "sts", "sso")

AWS_ALIASES = {
    "secretsmanager": "secretsmanager",
    "sm": "secretsmanager",
    "ssm": "ssm",
    "parameter": "ssm",
    "sts": "sts",
    "credentials": "sts",
    "sso": "sso",
}


def _is_arn_of(service: str):
    return lambda key: key.startswith("arn:") and f":{service}:" in key


def aws_rules(credential_service: Optional[str] = None):
    """
    Structural rules for the aws router.

    Bare credential fields go to ``credential_service`` (sts, else sso)
    when one is configured.
    """
    rules = [
        ("ssm", lambda key: key.startswith("/")),
        ("secretsmanager", _is_arn_of("secretsmanager")),
        ("ssm", _is_arn_of("ssm")),
        ("sts", lambda key: key.startswith("arn:") and ":iam:" in key and ":role/" in key),
    ]
    if credential_service == "sts":
        rules.append(("sts", lambda key: key.partition("#")[0].lower() in STS_FIELDS))
    elif credential_service == "sso":
        rules.append(("sso", lambda key: sso_field(key) is not None))
    return rules


@register_provider("aws")
def create_aws_provider(name: str, config: Mapping[str, Any]) -> UnifiedRouter:
    """
    One provider for every AWS secret service.

    Config:
        region / profile     shared by every service
        default_service      secretsmanager (default), ssm, sts or sso
        secretsmanager: {}   per-service overrides
        ssm: {parameter_prefix: /myapp/}
        sts: {role_arn: ...} or assume_role: {role_arn: ...}
        sso: {start_url: ..., account_id: ..., role_name: ...}
    """
    default_service = get_str(config, "default_service", "secretsmanager")
    if default_service not in AWS_SERVICES:
        raise SecretConfigError(
            "default_service",
            f"unknown service: {default_service}",
            f"Use one of: {', '.join(AWS_SERVICES)}",
        )

    reserved = AWS_SERVICES + ("assume_role", "default_service")
    common = {k: v for k, v in config.items() if k not in reserved}

    services = {
        "secretsmanager": create_secrets_manager_provider(
            f"{name}.secretsmanager", deep_merge(common, get_mapping(config, "secretsmanager"))
        ),
        "ssm": create_ssm_provider(f"{name}.ssm", deep_merge(common, get_mapping(config, "ssm"))),
    }
    if "sts" in config or "assume_role" in config:
        sts_config = deep_merge(get_mapping(config, "assume_role"), get_mapping(config, "sts"))
        services["sts"] = create_sts_provider(f"{name}.sts", deep_merge(common, sts_config))
    sso_config = get_mapping(config, "sso")
    if sso_config:
        services["sso"] = create_sso_provider(f"{name}.sso", deep_merge(common, sso_config))

    credential_service = next((s for s in ("sts", "sso") if s in services), None)
    logger.debug(f"aws provider '{name}' services: {', '.join(services)}")
    return UnifiedRouter(
        name,
        "aws",
        services,
        AWS_ALIASES,
        rules=aws_rules(credential_service),
        default_service=default_service,
    )
