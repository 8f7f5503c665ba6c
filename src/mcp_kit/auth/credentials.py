"""
Credential manager.

Resolves named secrets (API keys, client secrets, refresh tokens) from, in
order: values set at runtime, environment variables, and an optional YAML
secrets file. Values are held as ``SecretStr`` so they do not leak into
logs or reprs.
"""

import logging
import os
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

import yaml
from pydantic import SecretStr

from .exceptions import MissingCredentialError

logger = logging.getLogger(__name__)


def mask(value: Optional[str]) -> str:
    """Show at most the first four characters of a secret."""
    if not value:
        return ""
    if len(value) <= 4:
        return "****"
    return f"{value[:4]}****"


class CredentialManager:
    """Look up secrets by name across runtime overrides, environment and file."""

    def __init__(
        self,
        env_prefix: str = "MCP_KIT_",
        secrets_file: Optional[Union[str, Path]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize the credential manager.

        Args:
            env_prefix: Prefix for environment lookups (``api_key`` -> ``MCP_KIT_API_KEY``)
            secrets_file: Optional YAML file with a flat ``name: value`` mapping
            environ: Environment mapping, defaults to ``os.environ``
        """
        self.env_prefix = env_prefix
        self.secrets_file = Path(secrets_file) if secrets_file else None
        self._environ = environ if environ is not None else os.environ
        self._overrides: Dict[str, SecretStr] = {}
        self._file_secrets: Dict[str, SecretStr] = {}

        if self.secrets_file is not None:
            self._file_secrets = self._load_file(self.secrets_file)

    @staticmethod
    def _normalize(name: str) -> str:
        return name.strip().lower().replace("-", "_")

    def _load_file(self, path: Path) -> Dict[str, SecretStr]:
        if not path.exists():
            logger.warning("Secrets file not found", extra={"path": str(path)})
            return {}

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Secrets file {path} must contain a mapping")

        secrets = {
            self._normalize(str(k)): SecretStr(str(v))
            for k, v in data.items()
            if v is not None
        }
        logger.info("Loaded secrets file", extra={"path": str(path), "count": len(secrets)})
        return secrets

    def env_var(self, name: str) -> str:
        return f"{self.env_prefix}{self._normalize(name).upper()}"

    def _lookup(self, name: str) -> Optional[tuple]:
        key = self._normalize(name)
        if key in self._overrides:
            return self._overrides[key], "runtime"
        env_value = self._environ.get(self.env_var(key))
        if env_value:
            return SecretStr(env_value), "environment"
        if key in self._file_secrets:
            return self._file_secrets[key], "file"
        return None

    def get_secret(self, name: str) -> Optional[SecretStr]:
        found = self._lookup(name)
        return found[0] if found else None

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Return the plain secret value, or ``default`` if unset."""
        secret = self.get_secret(name)
        return secret.get_secret_value() if secret is not None else default

    def require(self, name: str) -> str:
        """
        Return a secret that must exist.

        Raises:
            MissingCredentialError: If the secret is not configured
        """
        value = self.get(name)
        if value is None:
            sources = ["runtime", f"env:{self.env_var(name)}"]
            if self.secrets_file:
                sources.append(f"file:{self.secrets_file}")
            raise MissingCredentialError(name, sources)
        return value

    def set(self, name: str, value: str) -> None:
        """Set or replace a secret at runtime, e.g. a rotated refresh token."""
        self._overrides[self._normalize(name)] = SecretStr(value)

    def has(self, name: str) -> bool:
        return self._lookup(name) is not None

    def describe(self) -> List[Dict[str, str]]:
        """List known secret names with their source and a masked preview."""
        names = set(self._overrides) | set(self._file_secrets)
        prefix = self.env_prefix
        for env_name in self._environ:
            if env_name.startswith(prefix) and len(env_name) > len(prefix):
                names.add(self._normalize(env_name[len(prefix):]))

        entries = []
        for name in sorted(names):
            found = self._lookup(name)
            if found is None:
                continue
            secret, source = found
            entries.append({"name": name, "source": source, "preview": mask(secret.get_secret_value())})
        return entries
