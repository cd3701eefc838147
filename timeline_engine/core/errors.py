from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass(frozen=True)
class EngineError(Exception):
    """Base error envelope. Analysis stages return these as data; only loaders raise."""

    code: str
    message: str
    file: Optional[str] = None
    path: Optional[str] = None

    def __str__(self) -> str:
        parts: list[str] = []
        if self.file:
            parts.append(self.file)
        if self.path:
            parts.append(self.path)
        loc = ":".join(parts) if parts else "<project>"
        return f"{loc}: {self.code}: {self.message}"

    def to_dict(self) -> dict[str, Optional[str]]:
        return {
            "code": self.code,
            "message": self.message,
            "file": self.file,
            "path": self.path,
        }


class ProjectLoadError(EngineError):
    pass


class AnalysisWarning(EngineError):
    """Recoverable problem recorded during analysis. Never raised."""


def sorted_warnings(warnings: Iterable[AnalysisWarning]) -> list[AnalysisWarning]:
    return sorted(
        list(warnings),
        key=lambda w: (w.file or "", w.path or "", w.code, w.message),
    )
