"""Value types shared by the probe, splitter and pipeline."""

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class AudioSource:
    """An input audio file and its probed properties."""

    path: Path
    duration: float
    format: str

    @property
    def base_name(self) -> str:
        return self.path.stem


@dataclass(frozen=True)
class ChunkSpec:
    """One planned slice of the source audio."""

    index: int
    start: float
    duration: float

    @property
    def end(self) -> float:
        return self.start + self.duration


@dataclass(frozen=True)
class ChunkArtifact:
    """A chunk that has been written to disk and accepted by the splitter."""

    spec: ChunkSpec
    path: Path
    byte_size: int
    encoded_duration: float

    @property
    def index(self) -> int:
        return self.spec.index
