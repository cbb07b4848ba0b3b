import os
from pathlib import Path
from dataclasses import dataclass

# Creates the directory (and its parents) if it doesn't exist yet, returns the path.
def ensure_directory(path: Path):
    path.mkdir(parents=True,exist_ok=True)
    return path

# Dataclass for accessing paths across program. Directories are only resolved here, they get created by
# whoever writes into them first, so importing never touches the disk.
@dataclass(frozen=False)
class ProjectPaths:

    data: Path
    logs: Path
    snapshots: Path

    @staticmethod
    def build():
        # An explicit home always wins, mostly useful for tests and portable installs
        home = os.getenv("TKEEP_HOME")
        if home:
            data = Path(home)
        # Windows keeps user data in APPDATA
        elif os.getenv("APPDATA"):
            data = Path(os.getenv("APPDATA")) / "TimeKeeper"
        else:
            xdg = os.getenv("XDG_DATA_HOME")
            base = Path(xdg) if xdg else Path.home() / ".local" / "share"
            data = base / "timekeeper"

        return ProjectPaths(
            data = data,
            logs = data / "logs",
            snapshots = data / "snapshots",
        )
PATHS = ProjectPaths.build()
