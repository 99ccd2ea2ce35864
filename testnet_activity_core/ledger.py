"""
Process-wide activity counters and their on-disk snapshot.

The ledger is plain owned state: the scenario creates one and hands it to the
submitter, the rebalance policy and the scheduler. All mutation happens on the
single event-loop thread, so no locking is needed.
"""
import json
import logging
import os
import time
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Dict, Optional, Union

from . import config as core_config

logger = logging.getLogger(__name__)

# Action category name -> ActivityStats counter field
CATEGORY_COUNTERS: Dict[str, str] = {
    "SWAP": "swaps",
    "ADD_LIQUIDITY": "adds_liquidity",
    "REMOVE_LIQUIDITY": "removes_liquidity",
    "SEND_AND_RECEIVE": "sends_and_receives",
    "RANDOM_SEND": "random_sends",
    "CUSTOM_CONTRACT_CALL": "custom_contract_calls",
}


@dataclass
class ActivityStats:
    """
    Counters for one run. successful_actions + failed_actions does not have to
    equal total_transactions: one action may send zero, one or several
    transactions (an approval plus a swap, for example).
    """
    total_transactions: int = 0
    successful_actions: int = 0
    failed_actions: int = 0
    swaps: int = 0
    adds_liquidity: int = 0
    removes_liquidity: int = 0
    sends_and_receives: int = 0
    random_sends: int = 0
    custom_contract_calls: int = 0
    rebalances: int = 0
    start_time: float = field(default_factory=time.time)

    def to_record(self) -> Dict[str, Union[int, float]]:
        """Flat key-value form used for persistence."""
        return asdict(self)

    @classmethod
    def from_record(cls, record: Dict[str, Union[int, float]]) -> "ActivityStats":
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in record.items():
            if key not in known:
                logger.warning(f"Ignoring unknown key '{key}' in stats snapshot.")
                continue
            try:
                values[key] = float(value) if key == "start_time" else int(value)
            except TypeError as e:
                raise ValueError(f"Stats snapshot value for '{key}' is not a number: {value!r}") from e
        return cls(**values)


class StatsStore:
    """Loads and saves an ActivityStats snapshot as a flat JSON object."""
    def __init__(self, path: str = core_config.STATS_FILE_PATH):
        self.path = path

    def load(self) -> Optional[ActivityStats]:
        if not os.path.exists(self.path):
            logger.info(f"No previous stats snapshot at {self.path}. Starting fresh.")
            return None
        with open(self.path, "r", encoding="utf-8") as f_in:
            record = json.load(f_in)
        if not isinstance(record, dict):
            raise ValueError(f"Stats snapshot at {self.path} is not a JSON object")
        logger.info(f"Loaded previous stats snapshot from {self.path}.")
        return ActivityStats.from_record(record)

    def save(self, stats: ActivityStats) -> None:
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f_out:
            json.dump(stats.to_record(), f_out, indent=2, sort_keys=True)
        os.replace(tmp_path, self.path)


class ActivityLedger:
    """
    Owns the ActivityStats for a run and the per-wallet last-activity times.

    :param store: Where snapshots are flushed. None keeps everything in memory.
    :param restore_snapshot: Load the previous snapshot from `store` at construction.
    """
    def __init__(self, store: Optional[StatsStore] = None, restore_snapshot: bool = True):
        self.store = store
        self.stats = ActivityStats()
        self.last_activity: Dict[str, str] = {}
        if store is not None and restore_snapshot:
            self.restore()

    def restore(self) -> None:
        """Replaces the in-memory stats with the stored snapshot, if one exists."""
        try:
            restored = self.store.load()
        except (OSError, ValueError) as e:
            logger.warning(f"Could not restore stats snapshot ({e}). Starting fresh.")
            return
        if restored is not None:
            self.stats = restored

    def record_transaction_sent(self) -> None:
        self.stats.total_transactions += 1

    def record_action_success(self, category: str) -> None:
        counter = CATEGORY_COUNTERS.get(category)
        if counter is None:
            raise KeyError(f"Unknown action category: {category}")
        setattr(self.stats, counter, getattr(self.stats, counter) + 1)
        self.stats.successful_actions += 1

    def record_action_failure(self) -> None:
        self.stats.failed_actions += 1

    def record_rebalance(self) -> None:
        self.stats.rebalances += 1

    def touch_wallet(self, address: str) -> None:
        self.last_activity[address] = datetime.now().isoformat(timespec="seconds")

    def snapshot(self) -> ActivityStats:
        return ActivityStats.from_record(self.stats.to_record())

    def flush(self) -> None:
        if self.store is None:
            return
        logger.info("Saving current activity stats...")
        try:
            self.store.save(self.stats)
        except OSError as e:
            logger.error(f"Failed to save activity stats to {self.store.path}: {e}")

    def report(self) -> None:
        logger.info("--- Activity Statistics ---")
        for key, value in self.stats.to_record().items():
            if key == "start_time":
                value = datetime.fromtimestamp(value).isoformat(timespec="seconds")
            logger.info(f"{key}: {value}")
        logger.info("---------------------------")
