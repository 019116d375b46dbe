"""User settings and runtime state.

``Settings`` is the user-facing record persisted as JSON; ``RuntimeState``
tracks where it lives and whether the in-memory copy is ahead of the file.
"""

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from loguru import logger


@dataclass
class Settings:
    """Persisted user settings.

    Attributes:
        enable: Whether the proxy core should be running
        current_sub: Base configuration the core was last started with
    """

    enable: bool = False
    current_sub: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        """Build settings from a decoded document, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def open(cls, path: Path) -> "Settings":
        """Load settings from a JSON file.

        Raises:
            OSError: If the file cannot be read
            ValueError: If the file is not a JSON object
        """
        with Path(path).open(encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            msg = f"Settings file {path} does not contain an object"
            raise ValueError(msg)
        return cls.from_dict(data)

    @classmethod
    def open_or_default(cls, path: Path) -> "Settings":
        """Load settings, falling back to defaults when the file is unusable."""
        try:
            return cls.open(path)
        except FileNotFoundError:
            logger.info(f"No settings at {path}, using defaults")
        except (OSError, ValueError) as e:
            logger.warning(f"Could not load settings from {path}: {e}")
        return cls()

    def save(self, path: Path) -> None:
        """Overwrite the settings file with the current values."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=4), encoding="utf-8")

    def copy(self) -> "Settings":
        return Settings(**self.to_dict())


@dataclass
class RuntimeState:
    """Process-wide runtime state.

    Attributes:
        home: Home directory the settings file is resolved against
        dirty: In-memory settings may be newer than the file on disk
        revision: Bumped on every ``mark_dirty`` so a flush can tell whether
            settings changed while it was writing
    """

    home: Path = field(default_factory=Path.home)
    dirty: bool = False
    revision: int = 0

    def mark_dirty(self) -> None:
        self.dirty = True
        self.revision += 1
