"""
Scoped access to externally stored credentials.

A CredentialScope resolves a named secret when its block is entered and
clears every binding when the block exits, whichever way it exits.
"""

import base64
import logging
import os
import re
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, TypeVar

from kubernetes.client.rest import ApiException

from controller.src.errors import AuthError, CredentialScopeError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MASK = "****"
ENV_PREFIX = "DEPLOYLINE_CREDENTIAL_"


class CredentialStore:
    """Resolves a credential id to its fields (e.g. username/password)."""

    def resolve(self, credential_id: str) -> Dict[str, str]:
        raise NotImplementedError


def _env_key(value: str) -> str:
    return re.sub(r"[^A-Z0-9]", "_", value.upper())


class EnvCredentialStore(CredentialStore):
    """
    Reads DEPLOYLINE_CREDENTIAL_<ID>_<FIELD> variables.

    `docker-cred` with fields username/password is read from
    DEPLOYLINE_CREDENTIAL_DOCKER_CRED_USERNAME and ..._PASSWORD.
    """

    def __init__(self, environ: Optional[Dict[str, str]] = None):
        self._environ = environ if environ is not None else os.environ

    def resolve(self, credential_id: str) -> Dict[str, str]:
        prefix = f"{ENV_PREFIX}{_env_key(credential_id)}_"
        fields = {
            key[len(prefix):].lower(): value
            for key, value in self._environ.items()
            if key.startswith(prefix)
        }
        if not fields:
            raise AuthError(f"Credential '{credential_id}' not found in environment")
        return fields


class FileCredentialStore(CredentialStore):
    """Reads <dir>/<id>/<field> files, the layout of a mounted Secret."""

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)

    def resolve(self, credential_id: str) -> Dict[str, str]:
        cred_dir = self.base_dir / credential_id
        if not cred_dir.is_dir():
            raise AuthError(f"Credential '{credential_id}' not found in {self.base_dir}")

        fields = {}
        for path in sorted(cred_dir.iterdir()):
            if path.is_file() and not path.name.startswith("."):
                fields[path.name] = path.read_text().rstrip("\n")
        if not fields:
            raise AuthError(f"Credential '{credential_id}' has no fields")
        return fields


class KubernetesSecretStore(CredentialStore):
    """Reads a Secret of the same name from the controller namespace."""

    def __init__(self, core_api, namespace: str):
        self.core_api = core_api
        self.namespace = namespace

    def resolve(self, credential_id: str) -> Dict[str, str]:
        try:
            secret = self.core_api.read_namespaced_secret(
                name=credential_id,
                namespace=self.namespace,
            )
        except ApiException as e:
            raise AuthError(f"Failed to read secret '{credential_id}': {e.reason}")

        data = secret.data or {}
        if not data:
            raise AuthError(f"Secret '{credential_id}' is empty")
        return {
            key: base64.b64decode(value).decode("utf-8")
            for key, value in data.items()
        }


class CredentialScope:
    """
    Exposes credential fields under binding names for one block of work.

        with CredentialScope(store, "docker-cred",
                             {"username": "REGISTRY_USER",
                              "password": "REGISTRY_PASSWORD"}) as creds:
            runner.run(..., env=creds.env())

    Reads outside the block raise CredentialScopeError.
    """

    def __init__(self, store: CredentialStore, credential_id: str, bindings: Dict[str, str]):
        self.store = store
        self.credential_id = credential_id
        self.bindings = dict(bindings)
        self._values: Optional[Dict[str, str]] = None

    @property
    def active(self) -> bool:
        return self._values is not None

    def __enter__(self) -> "CredentialScope":
        if self.active:
            raise CredentialScopeError(f"Credential scope '{self.credential_id}' is already open")

        fields = self.store.resolve(self.credential_id)
        values = {}
        for field, name in self.bindings.items():
            if field not in fields:
                raise AuthError(
                    f"Credential '{self.credential_id}' has no field '{field}'"
                )
            values[name] = fields[field]

        self._values = values
        logger.debug(f"Acquired credential '{self.credential_id}'")
        return self

    def __exit__(self, exc_type, exc, tb):
        values, self._values = self._values, None
        if values:
            values.clear()
        logger.debug(f"Released credential '{self.credential_id}'")
        return False

    def _require_active(self) -> Dict[str, str]:
        if self._values is None:
            raise CredentialScopeError(
                f"Credential '{self.credential_id}' is not available outside its scope"
            )
        return self._values

    def __getitem__(self, name: str) -> str:
        values = self._require_active()
        if name not in values:
            raise KeyError(name)
        return values[name]

    def env(self) -> Dict[str, str]:
        """Bindings as environment variables for a tool subprocess."""
        return dict(self._require_active())

    def secret_values(self) -> List[str]:
        return [v for v in self._require_active().values() if v]


def with_credential(
    store: CredentialStore,
    credential_id: str,
    bindings: Dict[str, str],
    body: Callable[[CredentialScope], T],
) -> T:
    """Run `body` with the credential bound; release happens on every exit path."""
    with CredentialScope(store, credential_id, bindings) as scope:
        return body(scope)


def mask_secrets(text: str, secrets: Iterable[str]) -> str:
    if not text:
        return text
    # Longest first so a secret containing another is masked whole
    for secret in sorted(set(secrets), key=len, reverse=True):
        if secret:
            text = text.replace(secret, MASK)
    return text


def create_credential_store(settings, core_api=None) -> CredentialStore:
    """Build the store selected by `credential_backend`."""
    backend = settings.credential_backend
    if backend == "env":
        return EnvCredentialStore()
    if backend == "file":
        return FileCredentialStore(settings.credentials_dir)
    if backend == "kubernetes":
        if core_api is None:
            from controller.src.k8s.client import get_core_api
            core_api = get_core_api()
        return KubernetesSecretStore(core_api, settings.k8s_namespace)
    raise ValueError(f"Unknown credential backend '{backend}'")
