"""
Table-driven classification of raw backend errors.

Each backend gets an ErrorClassifier: an ordered list of rules over
exception type names, vendor error codes, status codes and message
substrings, plus exclusion patterns. The first matching rule wins and
anything ambiguous is classified as OTHER, which providers surface as an
operational error with a suggestion.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional, Sequence, Tuple


class ErrorKind(Enum):
    NOT_FOUND = "not_found"
    AUTH = "auth"
    OTHER = "other"


@dataclass(frozen=True)
class ClassificationRule:
    """
    Attributes:
        kind: Kind assigned when the rule matches
        patterns: Lower-case substrings searched in the error text
        status_codes: HTTP-ish status codes that match on their own
        exclude: Lower-case substrings that veto the rule
    """

    kind: ErrorKind
    patterns: Tuple[str, ...] = ()
    status_codes: FrozenSet[int] = frozenset()
    exclude: Tuple[str, ...] = ()

    def matches(self, text: str, status: Optional[int]) -> bool:
        if any(p in text for p in self.exclude):
            return False
        if status is not None and status in self.status_codes:
            return True
        return any(p in text for p in self.patterns)


def error_text(exc: BaseException) -> str:
    """
    Lower-cased text a classifier matches against.

    Includes the exception type name, the message, the botocore error code
    when present, and the same for a chained cause.
    """
    parts = [f"{type(exc).__name__}: {exc}"]
    code = _vendor_code(exc)
    if code:
        parts.append(code)
    cause = getattr(exc, "cause", None) or exc.__cause__
    if isinstance(cause, BaseException) and cause is not exc:
        parts.append(f"{type(cause).__name__}: {cause}")
        cause_code = _vendor_code(cause)
        if cause_code:
            parts.append(cause_code)
    return " | ".join(parts).lower()


def status_code(exc: BaseException) -> Optional[int]:
    """Best-effort status code from AdapterError, httpx, azure-core, google-api-core or botocore errors."""
    for candidate in (exc, getattr(exc, "cause", None), exc.__cause__):
        if candidate is None:
            continue
        for attr in ("status_code", "code"):
            value = getattr(candidate, attr, None)
            if isinstance(value, int) and not isinstance(value, bool):
                return int(value)
        response = getattr(candidate, "response", None)
        if isinstance(response, dict):
            value = response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            if isinstance(value, int):
                return value
        elif response is not None:
            value = getattr(response, "status_code", None)
            if isinstance(value, int):
                return value
    return None


def _vendor_code(exc: BaseException) -> Optional[str]:
    response = getattr(exc, "response", None)
    if isinstance(response, dict):
        return response.get("Error", {}).get("Code")
    return None


# ============================================================
# CLASSIFIER
# ============================================================


GENERIC_SUGGESTIONS: Tuple[Tuple[str, str], ...] = (
    ("timeout", "The operation timed out. Check your network connection and try again"),
    ("timed out", "The operation timed out. Check your network connection and try again"),
    ("connection refused", "Unable to connect. Check your network and provider configuration"),
    ("no such host", "Unable to connect. Check your network and provider configuration"),
    ("name or service not known", "Unable to connect. Check your network and provider configuration"),
)


class ErrorClassifier:
    """
    Ordered rules plus an ordered suggestion table for one backend.

    Usage:
        kind = classifier.classify(exc)
        hint = classifier.suggest(exc)
    """

    def __init__(
        self,
        rules: Sequence[ClassificationRule],
        suggestions: Sequence[Tuple[str, str]] = (),
        default_suggestion: str = "Check the provider configuration and try again",
    ):
        self.rules = tuple(rules)
        self.suggestions = tuple(suggestions)
        self.default_suggestion = default_suggestion

    def classify(self, exc: BaseException) -> ErrorKind:
        text = error_text(exc)
        status = status_code(exc)
        for rule in self.rules:
            if rule.matches(text, status):
                return rule.kind
        return ErrorKind.OTHER

    def suggest(self, exc: BaseException) -> str:
        text = error_text(exc)
        for pattern, suggestion in self.suggestions + GENERIC_SUGGESTIONS:
            if pattern in text:
                return suggestion
        return self.default_suggestion


# Tool or binary missing, never a missing secret
_MISSING_TOOL = ("command not found", "executable", "not on path", "not installed")

GENERIC_RULES: Tuple[ClassificationRule, ...] = (
    ClassificationRule(
        ErrorKind.AUTH,
        patterns=(
            "unauthorized",
            "unauthenticated",
            "forbidden",
            "access denied",
            "permission denied",
            "permissiondenied",
            "invalid token",
            "token expired",
            "authentication failed",
            "invalid credentials",
        ),
        status_codes=frozenset({401, 403}),
        exclude=_MISSING_TOOL,
    ),
    ClassificationRule(
        ErrorKind.NOT_FOUND,
        patterns=("not found", "notfound", "does not exist", "no such secret"),
        status_codes=frozenset({404}),
        exclude=_MISSING_TOOL + ("file is missing",),
    ),
)


def _classifier(
    not_found: Sequence[str] = (),
    auth: Sequence[str] = (),
    exclude: Sequence[str] = (),
    suggestions: Sequence[Tuple[str, str]] = (),
    default_suggestion: str = "Check the provider configuration and try again",
) -> ErrorClassifier:
    """Vendor rules first, then the generic ones."""
    vendor_exclude = tuple(exclude) + _MISSING_TOOL
    rules = []
    if auth:
        rules.append(ClassificationRule(ErrorKind.AUTH, tuple(auth), exclude=vendor_exclude))
    if not_found:
        rules.append(
            ClassificationRule(ErrorKind.NOT_FOUND, tuple(not_found), exclude=vendor_exclude)
        )
    return ErrorClassifier(rules + list(GENERIC_RULES), suggestions, default_suggestion)


# ============================================================
# PER-BACKEND TABLES
# ============================================================

_AWS_AUTH = (
    "accessdenied",
    "not authorized",
    "unrecognizedclient",
    "invalidclienttokenid",
    "expiredtoken",
    "signaturedoesnotmatch",
    "nocredentialserror",
    "unable to locate credentials",
)

CLASSIFIERS: Dict[str, ErrorClassifier] = {
    "aws.secretsmanager": _classifier(
        not_found=("resourcenotfoundexception",),
        auth=_AWS_AUTH,
        suggestions=(
            ("accessdenied", "Check IAM permissions for secretsmanager:GetSecretValue"),
            ("credentials", "Configure AWS credentials: 'aws configure' or set AWS_PROFILE"),
            ("resourcenotfoundexception", "Verify the secret name and region. List secrets with: 'aws secretsmanager list-secrets'"),
            ("throttlingexception", "AWS rate limit exceeded. Wait a moment and try again"),
            ("decryptionfailure", "Check kms:Decrypt permission on the key that encrypts this secret"),
        ),
        default_suggestion="Check AWS credentials, region, and IAM permissions for Secrets Manager",
    ),
    "aws.ssm": _classifier(
        not_found=("parameternotfound", "parameterversionnotfound"),
        auth=_AWS_AUTH,
        suggestions=(
            ("accessdenied", "Check IAM permissions: ssm:GetParameter, ssm:DescribeParameters, and kms:Decrypt (for SecureString)"),
            ("parameternotfound", "Verify the parameter name and path. SSM parameters are case-sensitive"),
            ("invalidkeyid", "The KMS key for this SecureString parameter may not exist or you lack kms:Decrypt permission"),
            ("throttl", "Request was throttled. Consider adding exponential backoff or reducing request rate"),
            ("region", "Check that you're using the correct AWS region where the parameter is stored"),
        ),
        default_suggestion="Check AWS credentials, region, and IAM permissions for SSM Parameter Store",
    ),
    "aws.sts": _classifier(
        auth=_AWS_AUTH + ("is not authorized to perform: sts:assumerole",),
        suggestions=(
            ("assumerole", "Check the role trust policy allows your principal to call sts:AssumeRole"),
            ("credentials", "Configure AWS credentials: 'aws configure' or set AWS_PROFILE"),
            ("validationerror", "Check role_arn, session_name and duration in the sts configuration"),
        ),
        default_suggestion="Check AWS credentials and the role configuration for STS",
    ),
    "aws.sso": _classifier(
        auth=("unauthorizedexception", "sso token expired", "start url mismatch"),
        suggestions=(
            ("unauthorizedexception", "Your SSO session may have expired. Run 'aws sso login' to re-authenticate"),
            ("sso token expired", "Run 'aws sso login' to re-authenticate"),
            ("no sso session", "Run 'aws sso login' to create an SSO session for this start URL"),
            ("accessdenied", "You don't have permission to use this role. Check with your SSO administrator"),
            ("resourcenotfoundexception", "The account or role was not found. Verify account_id and role_name"),
            ("toomanyrequests", "Request was throttled. Wait a moment and try again"),
        ),
        default_suggestion="Check your SSO configuration and run 'aws sso login'",
    ),
    "gcp.secretmanager": _classifier(
        not_found=("notfound",),
        auth=("permissiondenied", "unauthenticated", "defaultcredentialserror", "refresherror"),
        suggestions=(
            ("defaultcredentialserror", "Run 'gcloud auth application-default login' or set GOOGLE_APPLICATION_CREDENTIALS"),
            ("permissiondenied", "Grant roles/secretmanager.secretAccessor on the secret to your principal"),
            ("notfound", "Verify the secret name and project. List secrets with: 'gcloud secrets list'"),
            ("failedprecondition", "The secret version may be disabled or destroyed"),
        ),
        default_suggestion="Check the GCP project id and credentials for Secret Manager",
    ),
    "azure.keyvault": _classifier(
        not_found=("resourcenotfounderror", "secretnotfound"),
        auth=("clientauthenticationerror", "credentialunavailableerror", "forbiddenbypolicy"),
        suggestions=(
            ("credentialunavailableerror", "Run 'az login' or configure a service principal (tenant_id, client_id, client_secret)"),
            ("forbidden", "Grant the 'Key Vault Secrets User' role or a get-secret access policy"),
            ("secretnotfound", "Verify the secret name. List secrets with: 'az keyvault secret list --vault-name <vault>'"),
        ),
        default_suggestion="Check vault_url and Azure credentials for Key Vault",
    ),
    "azure.identity": _classifier(
        auth=("clientauthenticationerror", "credentialunavailableerror", "aadsts"),
        suggestions=(
            ("credentialunavailableerror", "Run 'az login' or configure a managed identity for this host"),
            ("aadsts", "Check tenant_id, client_id and the requested scope"),
        ),
        default_suggestion="Check Azure identity configuration and the requested scope",
    ),
    "vault": _classifier(
        not_found=("invalidpath",),
        auth=("forbidden", "unauthorized", "missing client token"),
        suggestions=(
            ("permission denied", "Check the token policies allow read on this path"),
            ("forbidden", "Check the token policies allow read on this path"),
            ("invalidpath", "Verify the path and the KV mount. List keys with: 'vault kv list <mount>/<path>'"),
            ("sealed", "The Vault server is sealed. Unseal it before reading secrets"),
        ),
        default_suggestion="Check the Vault address, token or AppRole credentials, and mount",
    ),
    "doppler": _classifier(
        suggestions=(
            ("401", "Check the Doppler service token (DOPPLER_TOKEN)"),
            ("404", "Verify project, config and secret name in Doppler"),
        ),
        default_suggestion="Check the Doppler token, project and config",
    ),
    "infisical": _classifier(
        suggestions=(
            ("401", "Check the Infisical machine identity client_id/client_secret or service token"),
            ("403", "Grant the machine identity access to this project and environment"),
            ("404", "Verify the secret name, folder path, project_id and environment"),
        ),
        default_suggestion="Check the Infisical host, project_id and environment",
    ),
    "akeyless": _classifier(
        not_found=("item not found", "failed to get item"),
        auth=("access denied", "invalid access"),
        suggestions=(
            ("401", "Check the Akeyless access_id and access_key"),
            ("403", "Check the access role grants read on this item path"),
            ("item not found", "Verify the item path. Akeyless paths start with '/'"),
        ),
        default_suggestion="Check the Akeyless gateway URL and access credentials",
    ),
    "bitwarden": _classifier(
        not_found=("not found.", "more than one result was found"),
        auth=("you are not logged in", "not logged in", "vault is locked", "session key is invalid"),
        suggestions=(
            ("not logged in", "Run 'bw login' to authenticate with Bitwarden"),
            ("vault is locked", "Run 'bw unlock' and export the BW_SESSION environment variable"),
            ("not found", "Verify the item name exists in Bitwarden. Use 'bw list items --search <name>' to search"),
            ("not installed", "Install Bitwarden CLI: https://bitwarden.com/help/cli/"),
        ),
        default_suggestion="Check that the Bitwarden CLI is logged in and unlocked",
    ),
    "onepassword": _classifier(
        not_found=("isn't an item", "no item found", "isn't a field"),
        auth=("not currently signed in", "not signed in", "session expired", "authorization prompt dismissed"),
        suggestions=(
            ("session expired", "Your 1Password session has expired. Run 'op signin' again"),
            ("not signed in", "Run 'op signin' to authenticate with 1Password"),
            ("not currently signed in", "Run 'op signin' to authenticate with 1Password"),
            ("isn't an item", "Verify the item exists. Use 'op item list' to see available items"),
            ("not installed", "Install 1Password CLI: https://developer.1password.com/docs/cli/get-started/"),
        ),
        default_suggestion="Check that the 1Password CLI is signed in",
    ),
    "pass": _classifier(
        not_found=("is not in the password store",),
        auth=("decryption failed", "no secret key"),
        suggestions=(
            ("is not in the password store", "Check available entries with 'pass ls'"),
            ("decryption failed", "Unlock your GPG key or start gpg-agent"),
            ("not installed", "Install pass: https://www.passwordstore.org/"),
        ),
        default_suggestion="Check the password store directory and your GPG setup",
    ),
    "generic": _classifier(),
}


def classifier_for(backend: str) -> ErrorClassifier:
    """The classifier for a backend family, falling back to the generic table."""
    return CLASSIFIERS.get(backend, CLASSIFIERS["generic"])
