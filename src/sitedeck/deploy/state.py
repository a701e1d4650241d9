"""Deployment state store.

One JSON record per (application, environment) under a state directory:
``state.json`` for the default environment, ``state.<env>.json`` otherwise.
"""

from __future__ import annotations

import json
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from sitedeck.config.validator import flatten_pydantic_errors
from sitedeck.lib.errors import DeploymentError, StateCorruptError
from sitedeck.lib.logging_config import get_logger
from sitedeck.models.state import STATE_VERSION, DeploymentState

logger = get_logger(__name__)

DEFAULT_STATE_DIR = ".sitedeck"
DEFAULT_ENVIRONMENT = "default"
_STATE_FILE_PATTERN = re.compile(r"^state(?:\.(?P<env>[^/\\]+))?\.json$")
_ENV_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def state_file_name(environment: str) -> str:
    """File name holding the record of an environment."""
    if environment == DEFAULT_ENVIRONMENT:
        return "state.json"
    return f"state.{environment}.json"


class StateStore:
    """Loads and saves deployment state records on the local filesystem."""

    def __init__(self, state_dir: str | Path = DEFAULT_STATE_DIR) -> None:
        self.state_dir = Path(state_dir)

    def path_for(self, environment: str) -> Path:
        if not _ENV_NAME_PATTERN.match(environment):
            raise DeploymentError(
                "state", f"Invalid environment name for state file: {environment!r}"
            )
        return self.state_dir / state_file_name(environment)

    def exists(self, app: str, environment: str) -> bool:
        """Whether a record for this app and environment is on disk."""
        return self.load(app, environment) is not None

    def load(self, app: str, environment: str) -> DeploymentState | None:
        """Load a record.

        Returns:
            The record, or None when no state file exists

        Raises:
            StateCorruptError: If the file is malformed or belongs to another
                application or environment
        """
        path = self.path_for(environment)
        if not path.exists():
            return None

        try:
            content = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise DeploymentError(
                operation="state",
                message=f"Failed to read deployment state at {path}: {exc}",
            ) from exc

        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            raise StateCorruptError(str(path), f"invalid JSON ({exc})") from exc
        if not isinstance(data, dict):
            raise StateCorruptError(str(path), "top-level value must be an object")

        try:
            state = DeploymentState.model_validate(data)
        except ValidationError as exc:
            raise StateCorruptError(
                str(path), "; ".join(flatten_pydantic_errors(exc))
            ) from exc

        if state.app != app:
            raise StateCorruptError(
                str(path), f"record belongs to app '{state.app}', expected '{app}'"
            )
        if state.environment != environment:
            raise StateCorruptError(
                str(path),
                f"record belongs to environment '{state.environment}', "
                f"expected '{environment}'",
            )
        return state

    def get_or_create(self, app: str, environment: str) -> DeploymentState:
        """Return the stored record or a fresh empty one (not yet saved)."""
        state = self.load(app, environment)
        if state is None:
            state = DeploymentState(app=app, environment=environment)
        return state

    def save(self, state: DeploymentState) -> Path:
        """Persist a record atomically.

        Stamps ``last_deployed`` and ``version`` and writes exactly the digest
        map held by the record.
        """
        path = self.path_for(state.environment)
        state.last_deployed = datetime.now(timezone.utc)
        state.version = STATE_VERSION
        payload = json.dumps(
            state.model_dump(mode="json", by_alias=True), indent=2, sort_keys=False
        )

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.write("\n")
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise DeploymentError(
                operation="state",
                message=f"Failed to write deployment state to {path}: {exc}",
            ) from exc

        logger.debug("Saved state for %s/%s to %s", state.app, state.environment, path)
        return path

    def delete(self, app: str, environment: str) -> bool:
        """Delete a record; removes the state directory when left empty.

        Returns:
            True if a file was deleted
        """
        path = self.path_for(environment)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as exc:
            raise DeploymentError(
                "state", f"Failed to delete deployment state at {path}: {exc}"
            ) from exc
        logger.debug("Deleted state for %s/%s", app, environment)

        try:
            next(self.state_dir.iterdir())
        except StopIteration:
            self.state_dir.rmdir()
        except OSError as exc:
            logger.debug("Left state directory %s in place: %s", self.state_dir, exc)
        return True

    def list_environments(self) -> list[str]:
        """Sorted environment names that have a record on disk."""
        if not self.state_dir.is_dir():
            return []
        names = []
        for entry in self.state_dir.iterdir():
            match = _STATE_FILE_PATTERN.match(entry.name)
            if match and entry.is_file():
                names.append(match.group("env") or DEFAULT_ENVIRONMENT)
        return sorted(names)
