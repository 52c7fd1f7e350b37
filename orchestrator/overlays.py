"""
Overlay library: named instruction fragments loaded from prompts/.

Each file in prompts/overlays/ is one overlay, keyed by its stem. The library
is loaded once per process and exposed read-only.
"""

import logging
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Iterator, Mapping

logger = logging.getLogger(__name__)

_PROMPT_DIR = Path(__file__).parent.parent / "prompts"
_OVERLAY_DIR = _PROMPT_DIR / "overlays"
_BASE_IDENTITY_FILE = "base_identity.txt"


class OverlayLibrary:
    """Immutable mapping of overlay key -> instruction text, plus the base identity."""

    def __init__(self, overlays: Mapping[str, str], base_identity: str = ""):
        self._overlays = MappingProxyType(dict(overlays))
        self.base_identity = base_identity

    @classmethod
    def from_directory(cls, overlay_dir: Path, base_identity_path: Path | None = None) -> "OverlayLibrary":
        overlays = {
            path.stem: path.read_text(encoding="utf-8").strip()
            for path in sorted(overlay_dir.glob("*.txt"))
        }
        base_identity = ""
        if base_identity_path is not None:
            base_identity = base_identity_path.read_text(encoding="utf-8").strip()
        logger.info("Loaded %d overlays from %s", len(overlays), overlay_dir)
        return cls(overlays, base_identity)

    @property
    def overlays(self) -> Mapping[str, str]:
        return self._overlays

    def get(self, key: str) -> str | None:
        return self._overlays.get(key)

    def keys(self) -> list[str]:
        return list(self._overlays.keys())

    def __contains__(self, key: object) -> bool:
        return key in self._overlays

    def __iter__(self) -> Iterator[str]:
        return iter(self._overlays)

    def __len__(self) -> int:
        return len(self._overlays)


@lru_cache(maxsize=1)
def get_overlay_library() -> OverlayLibrary:
    """Process-wide overlay library, loaded on first use."""
    return OverlayLibrary.from_directory(_OVERLAY_DIR, _PROMPT_DIR / _BASE_IDENTITY_FILE)
