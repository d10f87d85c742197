# FILE: capsule/client/ledger.py
"""
Device-local ownership ledger

Records which codes this device created (with their secret keys) and which
it has only visited. Lives entirely on the client; the server never sees it.
"""
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_PATH = Path.home() / ".capsule" / "ledger.json"


class OwnershipLedger:
    """JSON-file ledger of owned and visited codes"""

    def __init__(self, ledger_path: Optional[str] = None):
        self.path = Path(ledger_path) if ledger_path else DEFAULT_LEDGER_PATH
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {"owned": [], "visited": []}

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ledger at {self.path} unreadable, starting empty: {e}")
            return {"owned": [], "visited": []}

        return {
            "owned": [e for e in data.get("owned", []) if isinstance(e, dict) and e.get("code")],
            "visited": [c for c in data.get("visited", []) if isinstance(c, str)],
        }

    def _save(self, data: Dict[str, Any]):
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.path)

    def record_owned(self, code: str, secret_key: str):
        """Remember a code this device created"""
        data = self._load()
        if any(entry["code"] == code for entry in data["owned"]):
            return
        data["owned"].append({"code": code, "secretKey": secret_key})
        data["visited"] = [c for c in data["visited"] if c != code]
        self._save(data)
        logger.debug(f"Ledger: recorded owned {code}")

    def record_visited(self, code: str):
        """Remember a viewed code, unless this device owns it"""
        data = self._load()
        if any(entry["code"] == code for entry in data["owned"]) or code in data["visited"]:
            return
        data["visited"].append(code)
        self._save(data)
        logger.debug(f"Ledger: recorded visited {code}")

    def forget(self, code: str):
        """Drop a code from both lists"""
        data = self._load()
        owned = [entry for entry in data["owned"] if entry["code"] != code]
        visited = [c for c in data["visited"] if c != code]
        if len(owned) == len(data["owned"]) and len(visited) == len(data["visited"]):
            return
        self._save({"owned": owned, "visited": visited})
        logger.debug(f"Ledger: forgot {code}")

    def owned(self) -> List[Dict[str, str]]:
        return self._load()["owned"]

    def visited(self) -> List[str]:
        return self._load()["visited"]

    def secret_key_for(self, code: str) -> Optional[str]:
        for entry in self.owned():
            if entry["code"] == code:
                return entry.get("secretKey")
        return None

    def is_owner(self, code: str) -> bool:
        return self.secret_key_for(code) is not None

    def all_codes(self) -> List[str]:
        """Owned then visited codes, without duplicates"""
        data = self._load()
        codes = [entry["code"] for entry in data["owned"]] + data["visited"]
        return list(dict.fromkeys(codes))
