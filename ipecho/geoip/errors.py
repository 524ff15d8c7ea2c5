"""GeoIP dataset errors."""

from pathlib import Path


class FetchFailure(Exception):
    """Raised when a dataset could not be downloaded or stored."""

    def __init__(self, url: str, dest: Path, reason: str):
        self.url = url
        self.dest = dest
        super().__init__(f"Failed to fetch {url} -> {dest}: {reason}")


class LoadFailure(Exception):
    """Raised when a dataset file could not be opened as a database."""

    def __init__(self, path: Path, purpose: str, reason: str):
        self.path = path
        self.purpose = purpose
        super().__init__(f"Failed to load {purpose} database {path}: {reason}")
