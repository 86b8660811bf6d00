"""Device context providers."""

from __future__ import annotations

import locale
import platform
import threading
from types import MappingProxyType
from typing import Any, Mapping, Protocol


class ContextProvider(Protocol):
    """
    Supplies the device snapshot stamped onto every event.

    collect() runs on the producer's thread, so it must be cheap and must
    never touch the network.
    """

    def collect(self) -> Mapping[str, Any]:
        ...


class StaticContextProvider:
    """Provider returning a fixed snapshot."""

    def __init__(self, values: Mapping[str, Any] | None = None):
        self._values = MappingProxyType(dict(values or {}))

    def collect(self) -> Mapping[str, Any]:
        return self._values


class PlatformContextProvider:
    """
    Provider built from the local interpreter and OS.

    The snapshot is computed on first use and cached; none of these values
    change while the process runs.
    """

    def __init__(self, app_version: str | None = None):
        self.app_version = app_version
        self._snapshot: Mapping[str, Any] | None = None
        self._lock = threading.Lock()

    def collect(self) -> Mapping[str, Any]:
        if self._snapshot is None:
            with self._lock:
                if self._snapshot is None:
                    self._snapshot = MappingProxyType(self._gather())
        return self._snapshot

    def _gather(self) -> dict[str, Any]:
        language, country = _split_locale(locale.getlocale()[0])
        return {
            "os_name": platform.system() or None,
            "os_version": platform.release() or None,
            "platform": platform.platform(),
            "device_model": platform.machine() or None,
            "language": language,
            "country": country,
            "app_version": self.app_version,
            "python_version": platform.python_version(),
        }


def _split_locale(name: str | None) -> tuple[str | None, str | None]:
    """Split a locale name like "fr_FR" into ("fr", "FR")."""
    if not name:
        return None, None
    language, _, country = name.partition("_")
    return language or None, country or None
