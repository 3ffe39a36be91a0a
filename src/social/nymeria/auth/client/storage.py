"""
Client-side state persistence.

Holds the few values that must outlive a single orchestrator instance: the device id, the
DID and session id of the current sign-in, and the key that signs OAuth state values. The
device id is never cleared, so one installation keeps one device id across sign-outs.
"""

from abc import ABC, abstractmethod
import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional, Union

logger = logging.getLogger(__name__)

DEVICE_ID_KEY = "nymeria-device-id"
CURRENT_DID_KEY = "nymeria-current-did"
SESSION_ID_KEY = "nymeria-session-id"
STATE_KEY_KEY = "nymeria-state-key"


class ClientStateStore(ABC):

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


class MemoryClientStateStore(ClientStateStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self.values: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key, None)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value

    def delete(self, key: str) -> None:
        self.values.pop(key, None)


class JsonFileClientStateStore(ClientStateStore):
    """
    State kept in a single JSON object on disk.

    Writes go to a sibling temporary file that is then renamed over the original, so a
    crash mid-write leaves the previous contents intact. An unreadable file is treated as
    empty.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def _load(self) -> Dict[str, str]:
        try:
            with open(self.path) as fd:
                data = json.load(fd)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable client state %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _save(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temporary = self.path.with_name(self.path.name + ".tmp")
        with open(temporary, "w") as fd:
            json.dump(data, fd)
        os.replace(temporary, self.path)

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key, None)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def delete(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)
