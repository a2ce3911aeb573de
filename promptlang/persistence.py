import os
import glob
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ValidationError

from .schemas import ChainReport, SessionState


class Transcript(BaseModel):
    """Serializable record of one finished chain."""
    unit: str
    timestamp: str
    session: SessionState
    report: ChainReport


class PersistenceManager:
    """Manages saving and loading chain transcripts."""

    def __init__(self, base_path: str = "./.promptlang_state"):
        self.base_path = base_path
        os.makedirs(self.base_path, exist_ok=True)

    def save_state(self, name: str, session: SessionState, report: ChainReport) -> str:
        """Save a transcript to disk. Returns the filename."""
        safe_name = "".join(c for c in name if c.isalnum() or c in ('-', '_'))
        timestamp = datetime.now().isoformat().replace(":", "-")
        filename = f"{safe_name}_{timestamp}.json"
        path = os.path.join(self.base_path, filename)

        transcript = Transcript(unit=name, timestamp=timestamp, session=session, report=report)
        with open(path, "w", encoding="utf-8") as f:
            f.write(transcript.model_dump_json(indent=2))
        return path

    def load_state(self, path: str) -> Transcript:
        """Load a transcript from a file path."""
        if not os.path.exists(path):
            raise FileNotFoundError(f"State file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
        try:
            return Transcript.model_validate_json(raw)
        except ValidationError as e:
            raise ValueError(f"File content is not a valid transcript: {path}") from e

    def list_states(self, name_filter: str = "") -> List[str]:
        """List available transcript files, sorted by newest first."""
        pattern = os.path.join(self.base_path, f"{name_filter}*.json")
        files = glob.glob(pattern)
        files.sort(key=os.path.getmtime, reverse=True)
        return files

    def get_latest_state(self, name: str) -> Optional[str]:
        """Get the most recent transcript file for a given unit name."""
        files = self.list_states(name + "_")
        return files[0] if files else None
