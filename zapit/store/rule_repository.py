"""
Rule Repository - Durable, hostname-partitioned rule storage.

Rules for one site live under a single ``rules_<hostname>`` key as an
ordered list of plain records. The backing store is a JSON file used
as an async key-value store; the global ``editMode`` flag lives in the
same file.
"""

from pathlib import Path
from typing import Any, Dict, Iterable, List, Union
import asyncio
import json
import logging
import os
import tempfile

from zapit.core.errors import InvalidRuleError, StorageError
from zapit.core.rule import STORAGE_KEY_PREFIX, Rule, storage_key

logger = logging.getLogger(__name__)

EDIT_MODE_KEY = "editMode"


class JsonStorage:
    """
    Async key-value store persisted as one JSON document.

    Writes replace the file atomically. Concurrent writers in other
    processes follow last-write-wins.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Storage root must be an object, got {type(data).__name__}")
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".zapit-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            os.unlink(tmp_path)
            raise

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Return the stored values for ``keys`` (missing keys are omitted)."""
        try:
            data = await asyncio.to_thread(self._read)
        except (OSError, ValueError) as e:
            raise StorageError(f"Could not read {self.path}: {e}") from e
        return {key: data[key] for key in keys if key in data}

    async def keys(self) -> List[str]:
        try:
            data = await asyncio.to_thread(self._read)
        except (OSError, ValueError) as e:
            raise StorageError(f"Could not read {self.path}: {e}") from e
        return list(data)

    async def set(self, items: Dict[str, Any]) -> None:
        """Merge ``items`` into the store."""
        def update():
            data = self._read()
            data.update(items)
            self._write(data)

        try:
            await asyncio.to_thread(update)
        except (OSError, ValueError, TypeError) as e:
            raise StorageError(f"Could not write {self.path}: {e}") from e


class RuleRepository:
    """
    Hostname-partitioned rule collection.

    Failures on ``add``, ``remove_by_id`` and ``clear`` propagate as
    StorageError; ``list`` degrades to an empty list so rule application
    never aborts on a bad read.

    Example:
        >>> repo = RuleRepository(JsonStorage("~/.zapit/storage.json"))
        >>> await repo.add("example.com", rule)
        >>> rules = await repo.list("example.com")
    """

    def __init__(self, storage: JsonStorage):
        self.storage = storage
        self._lock = asyncio.Lock()

    async def _load_records(self, hostname: str) -> List[Dict[str, Any]]:
        key = storage_key(hostname)
        result = await self.storage.get([key])
        return list(result.get(key) or [])

    async def add(self, hostname: str, rule: Rule) -> Rule:
        """Append ``rule`` to the hostname's partition."""
        async with self._lock:
            records = await self._load_records(hostname)
            records.append(rule.to_dict())
            await self.storage.set({storage_key(hostname): records})
        logger.info(f"[RuleRepository] Rule saved for {hostname}: {rule}")
        return rule

    async def list(self, hostname: str) -> List[Rule]:
        """Rules for ``hostname`` in creation order; [] if the read fails."""
        try:
            records = await self._load_records(hostname)
        except StorageError as e:
            logger.warning(f"[RuleRepository] Error while retrieving rules for {hostname}: {e}")
            return []

        rules: List[Rule] = []
        for record in records:
            try:
                rules.append(Rule.from_dict(record))
            except InvalidRuleError as e:
                logger.warning(f"[RuleRepository] Skipping unreadable rule in {hostname}: {e}")
        return rules

    async def remove_by_id(self, hostname: str, rule_id: Any) -> bool:
        """
        Drop the rule with ``rule_id`` from the partition.

        Returns:
            True if a rule was removed
        """
        target = str(rule_id)
        async with self._lock:
            records = await self._load_records(hostname)
            kept = [record for record in records if str(record.get("id")) != target]
            await self.storage.set({storage_key(hostname): kept})
        removed = len(kept) != len(records)
        logger.info(f"[RuleRepository] Rule {target} deleted for {hostname}" if removed
                    else f"[RuleRepository] No rule {target} in {hostname}")
        return removed

    async def clear(self, hostname: str) -> None:
        async with self._lock:
            await self.storage.set({storage_key(hostname): []})
        logger.info(f"[RuleRepository] All rules cleared for {hostname}")

    async def hostnames(self) -> List[str]:
        """Every hostname with a partition (possibly empty)."""
        keys = await self.storage.keys()
        return sorted(k[len(STORAGE_KEY_PREFIX):] for k in keys if k.startswith(STORAGE_KEY_PREFIX))

    async def initialize_defaults(self) -> None:
        """Ensure ``editMode`` exists, defaulting to off."""
        result = await self.storage.get([EDIT_MODE_KEY])
        if EDIT_MODE_KEY not in result:
            await self.storage.set({EDIT_MODE_KEY: False})

    async def get_edit_mode(self) -> bool:
        try:
            result = await self.storage.get([EDIT_MODE_KEY])
        except StorageError as e:
            logger.warning(f"[RuleRepository] Error getting edit mode: {e}")
            return False
        return bool(result.get(EDIT_MODE_KEY, False))

    async def set_edit_mode(self, enabled: bool) -> None:
        await self.storage.set({EDIT_MODE_KEY: bool(enabled)})

