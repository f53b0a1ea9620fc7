"""
Auth-Data Store

Locates and removes the on-disk credential/cache bundle whatsapp-web.js
(LocalAuth) keeps for each session.

Bundles live under the current data directory, but older installs kept them
next to the application in `.wwebjs_auth`, so both roots are always checked.
"""

import logging
import shutil
from pathlib import Path
from typing import List, Union

from .errors import AuthDataClearError

logger = logging.getLogger(__name__)

AUTH_DIR_NAME = "wwebjs_auth"
LEGACY_AUTH_DIR_NAME = ".wwebjs_auth"


class AuthDataStore:
    """Credential path resolver for current and legacy storage locations"""

    def __init__(self, data_dir: Union[str, Path], legacy_dir: Union[str, Path]):
        self.auth_root = Path(data_dir) / AUTH_DIR_NAME
        self.legacy_root = Path(legacy_dir) / LEGACY_AUTH_DIR_NAME

    @staticmethod
    def session_dir_name(session_id: str) -> str:
        # LocalAuth names the folder after its clientId
        return f"session-{session_id}"

    def primary_path(self, session_id: str) -> Path:
        return self.auth_root / self.session_dir_name(session_id)

    def legacy_path(self, session_id: str) -> Path:
        return self.legacy_root / self.session_dir_name(session_id)

    def locations(self, session_id: str) -> List[Path]:
        return [self.primary_path(session_id), self.legacy_path(session_id)]

    def path_for(self, session_id: str) -> Path:
        """Where the session's bundle lives (or will live, if there is none yet)"""
        primary = self.primary_path(session_id)
        if primary.exists():
            return primary
        legacy = self.legacy_path(session_id)
        if legacy.exists():
            return legacy
        return primary

    def has_auth_data(self, session_id: str) -> bool:
        return any(path.exists() for path in self.locations(session_id))

    def clear(self, session_id: str) -> None:
        """
        Remove the session's bundle from every location.

        Missing directories count as success. A failure on one location is
        logged and tolerated; AuthDataClearError is raised only when both fail.
        """
        failures = []

        for path in self.locations(session_id):
            try:
                shutil.rmtree(path)
                logger.info(f"Cleared session auth data: {path}")
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.error(f"Error clearing session auth data at {path}: {e}")
                failures.append((path, e))

        if len(failures) == len(self.locations(session_id)):
            details = "; ".join(f"{path}: {err}" for path, err in failures)
            raise AuthDataClearError(f"Could not clear auth data for session {session_id}: {details}")
