# testnet_activity_core/config.py
"""
Default configuration values for the testnet activity agent.
Deployment-specific values can be overridden through environment variables;
everything else is meant to be edited here or passed explicitly to constructors.
"""
import os
from typing import Dict, List, Optional

# --- Chain Communication ---
RPC_URL: str = os.getenv("RPC_URL", "https://rpc-evm-sidechain.xrpl.org/") # XRPL EVM testnet RPC
EXPLORER_TX_URL: str = os.getenv("EXPLORER_TX_URL", "https://explorer.testnet.xrpl.org/tx/")
RPC_CALL_TIMEOUT_SECONDS: float = 30.0     # Upper bound for any single RPC round-trip
RECEIPT_POLL_INTERVAL_SECONDS: float = 2.0 # Delay between receipt lookups while awaiting confirmation

# --- Wallets ---
PRIVATE_KEYS: List[str] = [k.strip() for k in os.getenv("PRIVATE_KEYS", "").split(",") if k.strip()]
KEY_FILE_PATH: Optional[str] = os.getenv("KEY_FILE_PATH") # Optional CSV with 'pub_key' and 'priv_key' columns
MAX_WALLETS_TO_LOAD: int = 100

# --- Assets ---
NATIVE_SYMBOL: str = "XRP"           # Gas-paying asset
WRAPPED_NATIVE_SYMBOL: str = "WXRP"  # Router path stand-in for the native asset
NATIVE_DECIMALS: int = 18

TOKENS: Dict[str, str] = {
    "WXRP": "0x81Be083099c2C65b062378E74Fa8469644347BB7",
    "RISE": "0x0c28777DEebe4589e83EF2Dc7833354e6a0aFF85",
    "RIBBIT": "0x3D757474472f8F2A66Bdc1b51e4C4D11E813C16c",
}

# --- DEX ---
ROUTER_ADDRESS: str = "0xF16A31764C91805B6C8E1D488941E41A86531880" # UniswapV2-style router
# Pool-share token per paired token symbol. Anything missing is resolved through router.factory().getPair().
LP_TOKEN_ADDRESSES: Dict[str, str] = {}
SWAP_DEADLINE_SECONDS: int = 600
SLIPPAGE_TOLERANCE_BPS: int = 50 # 0.5%

# --- Gas ---
GAS_BUFFER_BASE: float = 5.0  # Testnets stall underpriced transactions, so start aggressive
GAS_BUFFER_STEP: float = 1.0  # Added per retry attempt
DEFAULT_BASE_FEE_WEI: int = 1_000_000_000       # 1 gwei, used when the latest block carries no base fee
DEFAULT_LEGACY_GAS_PRICE_WEI: int = 20_000_000_000 # 20 gwei, used when the node reports no gas price
GAS_LIMIT_COMPLEX: int = 800_000  # Swaps, liquidity operations
GAS_LIMIT_ERC20: int = 100_000    # Transfers and approvals
GAS_LIMIT_NATIVE: int = 30_000    # Plain native transfers
GAS_LIMIT_CUSTOM_CONTRACT: int = 100_000

# --- Transaction Submission ---
SUBMIT_MAX_RETRIES: int = 3
SUBMIT_INITIAL_BACKOFF_MS: int = 1_000
SUBMIT_CONFIRMATION_TIMEOUT_MS: int = 60_000

# --- Action Selection ---
ACTION_WEIGHTS: Dict[str, int] = {
    "SWAP": 40,
    "ADD_LIQUIDITY": 20,
    "REMOVE_LIQUIDITY": 10,
    "SEND_AND_RECEIVE": 15,
    "RANDOM_SEND": 15,
    "CUSTOM_CONTRACT_CALL": 0, # Set > 0 once CUSTOM_CONTRACTS is populated
}

# Random share of the native balance used for a swap, in basis points of the balance.
SWAP_AMOUNT_MIN_BPS: int = 10  # 0.1%
SWAP_AMOUNT_MAX_BPS: int = 50  # 0.5%

SEND_AND_RECEIVE_CONFIG: Dict[str, object] = {
    "send_amount": "0.001",
    "token": "RISE",
    "address_count": 1,
    "funding_amount": "0.001", # Native amount given to each fresh address so it can pay for the return transfer
}
RANDOM_SEND_CONFIG: Dict[str, object] = {
    "send_amount": "0.0005",
    "token": "RIBBIT",
    "address_count": 2,
}
ADD_LIQUIDITY_CONFIG: Dict[str, object] = {
    "base_amount": "0.005",  # Native side
    "token_amount": "0.005",
    "token": "RISE",
}
REMOVE_LIQUIDITY_CONFIG: Dict[str, object] = {
    "percentage": 50,
    "token": "RISE",
}

# Custom contract calls. Each entry: {"name", "address", "abi", "calls": [call shapes from executors.py]}
CUSTOM_CONTRACTS: List[Dict[str, object]] = []

# --- Rebalancing ---
# Whole-token amounts; a wallet below a threshold gets a corrective swap.
REBALANCE_THRESHOLDS: Dict[str, str] = {
    "XRP": "0.01",
    "RISE": "0.005",
    "RIBBIT": "0.005",
}
REBALANCE_DONOR_FRACTION_PERCENT: int = 5    # Share of a donor token swapped into the native asset
REBALANCE_NATIVE_FRACTION_PERCENT: int = 1   # Share of the native asset swapped into a low token

# --- Scheduler ---
OUTER_RETRIES_PER_WALLET: int = 3
OUTER_RETRY_DELAY_SECONDS: float = 5.0
RETRY_ON_PRECONDITION_FAILURE: bool = True
MIN_LOOP_INTERVAL_SECONDS: int = 120
MAX_LOOP_INTERVAL_SECONDS: int = 300
RUN_DURATION_SECONDS: float = 24 * 60 * 60.0

# --- Persistence ---
STATS_FILE_PATH: str = os.getenv("STATS_FILE_PATH", "activity_stats.json")

# --- Alerts ---
TELEGRAM_BOT_TOKEN: Optional[str] = os.getenv("TELEGRAM_BOT_TOKEN")
TELEGRAM_CHAT_ID: Optional[str] = os.getenv("TELEGRAM_CHAT_ID")
TELEGRAM_TIMEOUT_SECONDS: float = 10.0

# --- Logging ---
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_TO_FILE: bool = os.getenv("LOG_TO_FILE", "1").lower() not in ("0", "false", "no")
LOG_FILE_PATH: str = os.getenv("LOG_FILE_PATH", "bot_activity.log")
LOG_FILE_MAX_BYTES: int = 5 * 1024 * 1024
LOG_FILE_BACKUP_COUNT: int = 5
