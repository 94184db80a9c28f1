# castgate/storage.py
import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import ValidationError
from .logger import logger

USERS = "users"
POSTS = "posts"
SESSIONS = "sessions"

NAMESPACES = (USERS, POSTS, SESSIONS)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_iso(value: str) -> datetime:
    dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _check_key(key: Any) -> str:
    k = str(key).strip()
    if not k or k in (".", "..") or "/" in k or "\\" in k or "\x00" in k:
        raise ValidationError(f"invalid record key: {key!r}")
    return k


class FlatFileStore:
    """
    One JSON document per record, one directory per namespace:

        <root>/users/<fid>.json
        <root>/posts/<timestamp>_<hash>.json
        <root>/sessions/<signer_id>.json

    There is no index beyond the file name; list_all + filter is the only query.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)
        for ns in NAMESPACES:
            (self.root / ns).mkdir(parents=True, exist_ok=True)

    def _dir(self, namespace: str) -> Path:
        if namespace not in NAMESPACES:
            raise ValueError(f"unknown namespace: {namespace}")
        return self.root / namespace

    def _path(self, namespace: str, key: Any) -> Path:
        return self._dir(namespace) / f"{_check_key(key)}.json"

    def _read(self, path: Path) -> Optional[Dict[str, Any]]:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.error("store.read_failed", extra={"path": str(path), "error": str(e)})
            return None

    def put(self, namespace: str, key: Any, value: Dict[str, Any]) -> Dict[str, Any]:
        """Full overwrite; stamps updatedAt. Returns the stored document."""
        path = self._path(namespace, key)
        doc = {**value, "updatedAt": utc_now_iso()}

        # write-then-rename; readers never see a partial document
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp_", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(doc, f, indent=2, default=str)
            os.replace(tmp, path)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise
        return doc

    def get(self, namespace: str, key: Any) -> Optional[Dict[str, Any]]:
        return self._read(self._path(namespace, key))

    def delete(self, namespace: str, key: Any) -> bool:
        try:
            self._path(namespace, key).unlink()
            return True
        except FileNotFoundError:
            return False

    def keys(self, namespace: str) -> List[str]:
        return sorted(
            p.stem for p in self._dir(namespace).glob("*.json") if not p.name.startswith(".")
        )

    def list_all(self, namespace: str) -> List[Dict[str, Any]]:
        out = []
        for key in self.keys(namespace):
            doc = self._read(self._dir(namespace) / f"{key}.json")
            if doc is not None:
                out.append(doc)
        return out

    def count_all(self, namespace: str) -> int:
        return len(self.keys(namespace))

    # -------------------------------------------------------------------------
    # Derived queries
    # -------------------------------------------------------------------------
    def posts_by_fid(self, fid: int, limit: int = 50) -> List[Dict[str, Any]]:
        posts = [p for p in self.list_all(POSTS) if p.get("fid") == fid]
        posts.sort(key=lambda p: p.get("timestamp", 0), reverse=True)
        return posts[:limit]

    def recent_posts(self, limit: int = 100) -> List[Dict[str, Any]]:
        posts = self.list_all(POSTS)
        posts.sort(key=lambda p: p.get("timestamp", 0), reverse=True)
        return posts[:limit]

    def stats(self) -> Dict[str, Any]:
        return {
            "users": self.count_all(USERS),
            "posts": self.count_all(POSTS),
            "sessions": self.count_all(SESSIONS),
            "lastUpdated": utc_now_iso(),
        }
