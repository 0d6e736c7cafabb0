"""OBS environment overlay: the key/value overrides a nested block sees."""

from collections.abc import Mapping
from types import MappingProxyType

from obscope.models import ResolvedCredential

OBS_DEFAULT_REGION = "OBS_DEFAULT_REGION"
OBS_REGION = "OBS_REGION"
OBS_ENDPOINT_URL = "OBS_ENDPOINT_URL"
OBS_ACCESS_KEY_ID = "OBS_ACCESS_KEY_ID"
OBS_SECRET_ACCESS_KEY = "OBS_SECRET_ACCESS_KEY"

# Read-only, insertion-ordered view over str -> str overrides
OverlaySpec = Mapping[str, str]


def build_overlay(
    region: str,
    endpoint_url: str,
    credential: ResolvedCredential | None = None,
) -> OverlaySpec:
    """Build the overrides for one invocation.

    Empty region or endpoint values are written rather than skipped so an
    outer scope's setting can be cleared. Credential keys are only present
    when a credential was resolved.
    """
    overrides: dict[str, str] = {}
    overrides[OBS_DEFAULT_REGION] = region
    overrides[OBS_REGION] = region
    overrides[OBS_ENDPOINT_URL] = endpoint_url

    if credential is not None:
        overrides[OBS_ACCESS_KEY_ID] = credential.username
        overrides[OBS_SECRET_ACCESS_KEY] = credential.secret.get_secret_value()

    return MappingProxyType(overrides)
