"""
PayPal credential resolution.

Credentials are looked up from an ordered list of named sources every time an
operation needs them, so secrets injected after process start (rotated env vars,
a freshly mounted runtime-config file) are picked up without a restart.
"""
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Protocol, Sequence

from scholarz_billing.core.config import Settings, get_settings
from scholarz_billing.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

SANDBOX_API_BASE = "https://api-m.sandbox.paypal.com"
LIVE_API_BASE = "https://api-m.paypal.com"
LIVE_ENVIRONMENTS = {"live", "production", "prod"}


class ConfigSource(Protocol):
    name: str

    def try_get(self, key: str) -> Optional[str]:
        ...


class EnvSource:
    def __init__(self, prefix: str, environ: Optional[Mapping[str, str]] = None):
        self.prefix = prefix
        self.name = f"env:{prefix}*"
        self._environ = environ

    def try_get(self, key: str) -> Optional[str]:
        environ = self._environ if self._environ is not None else os.environ
        value = environ.get(f"{self.prefix}{key.upper()}")
        if value is None:
            return None
        return value.strip() or None


class LegacyConfigSource:
    """Legacy runtime-config document: ``{"paypal": {"client_id": ..., "client_secret": ..., "mode": ...}}``."""

    def __init__(self, path: Optional[str]):
        self.path = path
        self.name = f"legacy:{path}"

    def try_get(self, key: str) -> Optional[str]:
        if not self.path or not os.path.exists(self.path):
            return None
        try:
            with open(self.path, encoding="utf-8") as fh:
                document = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable legacy config %s: %s", self.path, exc)
            return None
        section = document.get("paypal") if isinstance(document, dict) else None
        if not isinstance(section, dict):
            return None
        value = section.get(key.lower())
        if value is None:
            return None
        return str(value).strip() or None


def mask(value: Optional[str], visible: int = 6) -> str:
    if not value:
        return "<missing>"
    return value[:visible] + "..." if len(value) > visible else "***"


@dataclass(frozen=True)
class BillingCredentials:
    client_id: Optional[str]
    client_secret: Optional[str]
    environment: str
    api_base: str
    source: Optional[str] = None
    checked_sources: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_sandbox(self) -> bool:
        return self.environment == "sandbox"

    def diagnostics(self) -> dict:
        return {
            "environment": self.environment,
            "client_id": mask(self.client_id),
            "has_secret": bool(self.client_secret),
            "source": self.source,
            "checked_sources": list(self.checked_sources),
        }


def normalize_environment(raw: Optional[str]) -> str:
    if raw and raw.strip().lower() in LIVE_ENVIRONMENTS:
        return "live"
    return "sandbox"


class CredentialResolver:
    def __init__(self, sources: Sequence[ConfigSource]):
        self.sources = list(sources)

    def lookup(self, *keys: str) -> tuple[Optional[str], Optional[str]]:
        """Return (value, source name) of the first source that knows any of ``keys``."""
        for source in self.sources:
            for key in keys:
                value = source.try_get(key)
                if value:
                    return value, source.name
        return None, None

    def resolve(self) -> BillingCredentials:
        # id, secret and environment are taken from one source, never mixed
        client_id, source_name = self.lookup("client_id")
        source = next((s for s in self.sources if s.name == source_name), None)
        client_secret = env_raw = None
        if source is not None:
            client_secret = source.try_get("client_secret")
            env_raw = source.try_get("environment") or source.try_get("mode")
        environment = normalize_environment(env_raw)
        return BillingCredentials(
            client_id=client_id,
            client_secret=client_secret,
            environment=environment,
            api_base=SANDBOX_API_BASE if environment == "sandbox" else LIVE_API_BASE,
            source=source_name,
            checked_sources=tuple(s.name for s in self.sources),
        )


def default_sources(settings: Settings) -> list[ConfigSource]:
    return [
        EnvSource("PAYPAL_"),
        EnvSource("VITE_PAYPAL_"),
        LegacyConfigSource(settings.paypal_legacy_config_path),
    ]


def get_credential_resolver(settings: Optional[Settings] = None) -> CredentialResolver:
    return CredentialResolver(default_sources(settings or get_settings()))


def require_credentials(credentials: BillingCredentials) -> BillingCredentials:
    if not credentials.client_id or not credentials.client_secret:
        diagnostics = credentials.diagnostics()
        logger.error("PayPal credentials missing: %s", diagnostics)
        raise ConfigurationError("PayPal credentials are not configured", context=diagnostics)
    return credentials
