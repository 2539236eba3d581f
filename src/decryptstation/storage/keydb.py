import json
import logging

from pathlib import Path
from typing import Dict, Iterable, Optional

from decryptstation.utils.dataModels import TitleRecord
from decryptstation.utils.errors import DatabaseError

logger = logging.getLogger(__name__)


class TitleDatabase:
    """Read-only digest -> title/key mapping backed by a JSON array file."""

    def __init__(self, records: Iterable[TitleRecord] = ()):
        self._by_sha1: Dict[str, TitleRecord] = {}
        for record in records:
            if record.sha1:
                self._by_sha1[record.sha1.lower()] = record

    @classmethod
    def load(cls, path: Path) -> "TitleDatabase":
        path = Path(path)
        if not path.is_file():
            raise DatabaseError(f"Game database file not found: {path}")
        try:
            obj = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DatabaseError(f"Error loading game database: {e}") from e
        if not isinstance(obj, list):
            raise DatabaseError("Game database must be a JSON array")
        db = cls(TitleRecord.from_dict(entry) for entry in obj if isinstance(entry, dict))
        logger.info("loaded %d titles from %s", len(db), path)
        return db

    def lookup(self, digest: str) -> Optional[TitleRecord]:
        return self._by_sha1.get(digest.lower())

    def __len__(self) -> int:
        return len(self._by_sha1)
