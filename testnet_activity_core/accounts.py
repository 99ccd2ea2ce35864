"""
Loads the wallets the agent drives, from a list of private keys and/or a CSV
key file. Wallets live for the whole run and are never mutated.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pandas as pd
from eth_account import Account
from eth_account.signers.local import LocalAccount

from . import config as core_config
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalletHandle:
    """An address plus the signing capability for it."""
    address: str
    account: LocalAccount = field(repr=False, compare=False)

    @classmethod
    def from_private_key(cls, private_key: str) -> "WalletHandle":
        account = Account.from_key(private_key)
        return cls(address=account.address, account=account)

    @property
    def short_address(self) -> str:
        return f"{self.address[:8]}..."


def _looks_like_private_key(key: str) -> bool:
    return len(key) == 64 or (key.startswith("0x") and len(key) == 66)


class AccountManager:
    """
    Handles loading of wallets from private keys and CSV key files.

    :param private_keys: Hex private keys, usually from the PRIVATE_KEYS env var.
    :param key_file_paths: CSV files with 'pub_key' and 'priv_key' columns.
    :param max_wallets_to_load: Maximum number of unique wallets to load.
    """
    def __init__(self,
                 private_keys: Optional[List[str]] = None,
                 key_file_paths: Optional[List[str]] = None,
                 max_wallets_to_load: int = core_config.MAX_WALLETS_TO_LOAD
                ):
        if private_keys is None:
            private_keys = list(core_config.PRIVATE_KEYS)
        if key_file_paths is None:
            key_file_paths = [core_config.KEY_FILE_PATH] if core_config.KEY_FILE_PATH else []

        self.max_wallets_to_load = max_wallets_to_load
        self._wallets: List[WalletHandle] = []
        self._address_to_index: Dict[str, int] = {}

        self._load_private_keys(private_keys)
        self._load_key_files(key_file_paths)

        if not self._wallets:
            raise ConfigurationError(
                "No wallets loaded. Set PRIVATE_KEYS (comma separated) or KEY_FILE_PATH."
            )
        logger.info(f"Loaded {len(self._wallets)} wallet(s).")

    def _add_wallet(self, private_key: str, source: str, expected_address: Optional[str] = None) -> None:
        if len(self._wallets) >= self.max_wallets_to_load:
            return
        if not _looks_like_private_key(private_key):
            logger.warning(f"Skipping key from {source}: unexpected private key format.")
            return
        try:
            wallet = WalletHandle.from_private_key(private_key)
        except Exception as e:
            logger.warning(f"Skipping key from {source}: {e}")
            return
        if expected_address and wallet.address.lower() != expected_address.lower():
            logger.warning(f"Skipping key from {source}: derived address {wallet.address} does not match {expected_address}.")
            return
        if wallet.address.lower() in self._address_to_index:
            return
        self._address_to_index[wallet.address.lower()] = len(self._wallets)
        self._wallets.append(wallet)

    def _load_private_keys(self, private_keys: List[str]) -> None:
        for key in private_keys:
            self._add_wallet(key.strip(), "private key list")

    def _load_key_files(self, file_paths: List[str]) -> None:
        for file_path in file_paths:
            if len(self._wallets) >= self.max_wallets_to_load:
                break
            try:
                logger.info(f"Loading keys from: {file_path}")
                key_data_frame = pd.read_csv(file_path, dtype=str)
            except FileNotFoundError:
                logger.warning(f"Key file not found: {file_path}")
                continue
            except pd.errors.EmptyDataError:
                logger.warning(f"Key file is empty: {file_path}")
                continue

            if "priv_key" not in key_data_frame.columns:
                logger.warning(f"Key file {file_path} has no 'priv_key' column. Skipping.")
                continue

            for _, row_data in key_data_frame.iterrows():
                expected = row_data.get("pub_key")
                self._add_wallet(
                    str(row_data["priv_key"]).strip(),
                    file_path,
                    expected_address=expected.strip() if isinstance(expected, str) else None,
                )

    @property
    def wallets(self) -> List[WalletHandle]:
        """Returns a copy of the loaded wallets, in load order."""
        return list(self._wallets)

    @property
    def loaded_wallet_count(self) -> int:
        return len(self._wallets)

    def get_wallet_by_index(self, index: int) -> Optional[WalletHandle]:
        if 0 <= index < len(self._wallets):
            return self._wallets[index]
        return None

    def get_wallet_by_address(self, address: str) -> Optional[WalletHandle]:
        index = self._address_to_index.get(address.lower())
        return self._wallets[index] if index is not None else None
