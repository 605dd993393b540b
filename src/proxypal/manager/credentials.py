"""Provider credential files in the engine's auth directory.

The engine stores one JSON file per linked account, named by provider
prefix (claude-<email>.json, codex-<email>.json, vertex-<project>.json...).
Which providers are connected is derived from those filenames.
"""

from __future__ import annotations

__all__ = [
    "AuthStatus",
    "import_vertex_credential",
    "remove_provider_credentials",
    "resolve_auth_dir",
    "scan_auth_status",
]

import json
import logging
import re
from pathlib import Path

from pydantic import RootModel

from proxypal.constants import APP_NAME, AUTH_FILE_PREFIXES
from proxypal.exceptions import CredentialImportError, CredentialRemovalError, UnknownProviderError
from proxypal.utils.file_helpers import atomic_write_text, set_secure_permissions

_logger = logging.getLogger(f"{APP_NAME}.manager.credentials")

# project_id is used in a filename
_SAFE_PROJECT_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class AuthStatus(RootModel[dict[str, bool]]):
    """Provider -> connected."""

    def connected(self) -> list[str]:
        return [provider for provider, ok in self.root.items() if ok]


def resolve_auth_dir(auth_dir: str) -> Path:
    return Path(auth_dir).expanduser()


def scan_auth_status(auth_dir: str | Path) -> AuthStatus:
    """Derive connected providers from credential filenames.

    A missing or unreadable directory means nothing is connected.
    """
    status = {provider: False for provider in AUTH_FILE_PREFIXES}
    directory = resolve_auth_dir(str(auth_dir))
    try:
        names = [entry.name.lower() for entry in directory.iterdir() if entry.is_file()]
    except OSError:
        return AuthStatus(status)

    for name in names:
        if not name.endswith(".json"):
            continue
        for provider, prefixes in AUTH_FILE_PREFIXES.items():
            if name.startswith(prefixes):
                status[provider] = True
                break
    return AuthStatus(status)


def remove_provider_credentials(provider: str, auth_dir: str | Path) -> list[Path]:
    """Delete every credential file of one provider.

    Disconnecting a provider removes its accounts from the engine: the
    engine rescans the auth directory and stops routing to them.

    Returns:
        Removed files (empty if the provider had none).

    Raises:
        UnknownProviderError: If provider has no credential prefix.
        CredentialRemovalError: If a file cannot be deleted.
    """
    prefixes = AUTH_FILE_PREFIXES.get(provider)
    if prefixes is None:
        raise UnknownProviderError(provider)

    directory = resolve_auth_dir(str(auth_dir))
    try:
        targets = [
            entry
            for entry in directory.iterdir()
            if entry.is_file() and entry.name.lower().endswith(".json") and entry.name.lower().startswith(prefixes)
        ]
    except FileNotFoundError:
        return []
    except OSError as e:
        raise CredentialRemovalError(provider, str(e)) from e

    removed: list[Path] = []
    for target in sorted(targets):
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            raise CredentialRemovalError(provider, str(e)) from e
        removed.append(target)

    _logger.info(
        {
            "event": "provider_credentials_removed",
            "message": f"Removed {len(removed)} credential file(s) for {provider}",
            "details": {"provider": provider, "files": [path.name for path in removed]},
        }
    )
    return removed


def import_vertex_credential(source: str | Path, auth_dir: str | Path) -> Path:
    """Copy a Google service account key into the auth directory.

    Args:
        source: Service account JSON file chosen by the user.
        auth_dir: Engine auth directory.

    Returns:
        Path of the stored credential (vertex-<project_id>.json).

    Raises:
        CredentialImportError: If the file is unreadable, not a service
            account key, or cannot be stored.
    """
    source_path = Path(source).expanduser()
    try:
        content = source_path.read_text(encoding="utf-8")
    except OSError as e:
        raise CredentialImportError(f"Failed to read file: {e}") from e

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise CredentialImportError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise CredentialImportError("Invalid service account: expected a JSON object")

    project_id = data.get("project_id")
    if not isinstance(project_id, str) or not project_id:
        raise CredentialImportError("Missing 'project_id' field in service account JSON")
    if data.get("type") != "service_account":
        raise CredentialImportError("Invalid service account: 'type' must be 'service_account'")
    if not _SAFE_PROJECT_ID.match(project_id):
        raise CredentialImportError(f"Invalid project_id: {project_id!r}")

    directory = resolve_auth_dir(str(auth_dir))
    target = directory / f"vertex-{project_id}.json"
    try:
        directory.mkdir(parents=True, exist_ok=True)
        set_secure_permissions(directory, is_directory=True)
        atomic_write_text(target, content)
    except OSError as e:
        raise CredentialImportError(f"Failed to save credential: {e}") from e

    _logger.info(
        {
            "event": "vertex_credential_imported",
            "message": f"Imported Vertex service account for project {project_id}",
            "details": {"project_id": project_id},
        }
    )
    return target
