# scenarios/random_activity_scenario.py
"""
Runs the testnet activity agent: wires the core components together and
exposes three commands.

    loop      drive every wallet through random actions for RUN_DURATION_SECONDS
    balances  print each wallet's balances
    rpc       check the RPC endpoint and print chain id and fee data

To run: python -m scenarios.random_activity_scenario loop
"""
import argparse
import asyncio
import logging
import random
import signal
from dataclasses import dataclass
from typing import Dict, List, Optional

from testnet_activity_core import config as core_config
from testnet_activity_core.accounts import AccountManager
from testnet_activity_core.alerts import AlertSink, build_alert_sink
from testnet_activity_core.balances import BalanceOracle
from testnet_activity_core.chain import ChainClient
from testnet_activity_core.errors import ActivityAgentError
from testnet_activity_core.executors import (
    ActionCategory,
    ActionExecutor,
    AddLiquidityExecutor,
    CustomCallExecutor,
    RandomSendExecutor,
    RemoveLiquidityExecutor,
    SendAndReceiveExecutor,
    SwapExecutor,
)
from testnet_activity_core.gas import GasPriceEstimator, format_gwei
from testnet_activity_core.ledger import ActivityLedger, StatsStore
from testnet_activity_core.logging_config import setup_logging
from testnet_activity_core.rebalance import RebalancePolicy
from testnet_activity_core.scheduler import ActionScheduler
from testnet_activity_core.submitter import TransactionSubmitter

logger = logging.getLogger("scenarios.random_activity")


@dataclass
class ActivityAgent:
    client: ChainClient
    account_manager: AccountManager
    oracle: BalanceOracle
    ledger: ActivityLedger
    submitter: TransactionSubmitter
    scheduler: ActionScheduler
    alert_sink: AlertSink


def build_executors(client: ChainClient,
                    oracle: BalanceOracle,
                    submitter: TransactionSubmitter
                   ) -> Dict[ActionCategory, ActionExecutor]:
    executor_classes = [SwapExecutor, AddLiquidityExecutor, RemoveLiquidityExecutor,
                        SendAndReceiveExecutor, RandomSendExecutor, CustomCallExecutor]
    executors = {}
    for executor_class in executor_classes:
        executors[executor_class.category] = executor_class(client, oracle, submitter)
    return executors


def build_agent(rpc_url: str = core_config.RPC_URL,
                private_keys: Optional[List[str]] = None,
                key_file_paths: Optional[List[str]] = None,
                stats_file_path: str = core_config.STATS_FILE_PATH,
                seed: Optional[int] = None
               ) -> ActivityAgent:
    """Creates every component with the configured defaults and one shared ledger."""
    account_manager = AccountManager(private_keys=private_keys, key_file_paths=key_file_paths)
    client = ChainClient(rpc_url=rpc_url)
    oracle = BalanceOracle(client)
    ledger = ActivityLedger(store=StatsStore(stats_file_path))
    submitter = TransactionSubmitter(GasPriceEstimator(client), ledger)
    executors = build_executors(client, oracle, submitter)
    rebalance_policy = RebalancePolicy(oracle, submitter, executors[ActionCategory.SWAP], ledger)
    alert_sink = build_alert_sink()
    scheduler = ActionScheduler(
        wallets=account_manager.wallets,
        oracle=oracle,
        submitter=submitter,
        rebalance_policy=rebalance_policy,
        executors=executors,
        ledger=ledger,
        alert_sink=alert_sink,
        rng=random.Random(seed),
    )
    return ActivityAgent(client, account_manager, oracle, ledger, submitter, scheduler, alert_sink)


def install_interrupt_handler(scheduler: ActionScheduler, main_task: "asyncio.Task") -> None:
    """First Ctrl+C stops after the current wallet; a second one cancels right away."""
    loop = asyncio.get_running_loop()

    def on_interrupt():
        if scheduler.stop_requested:
            logger.warning("Second interrupt received. Cancelling now.")
            main_task.cancel()
            return
        logger.info("Ctrl+C detected. Stopping the loop after the current wallet (press again to force).")
        scheduler.request_stop()

    try:
        loop.add_signal_handler(signal.SIGINT, on_interrupt)
    except NotImplementedError:
        # add_signal_handler is unavailable on Windows event loops; default KeyboardInterrupt applies.
        logger.debug("Signal handlers not supported on this platform.")


async def run_loop(agent: ActivityAgent, duration: float = core_config.RUN_DURATION_SECONDS) -> None:
    await agent.client.check_connection()
    install_interrupt_handler(agent.scheduler, asyncio.current_task())
    logger.info(f"Logs are written to {core_config.LOG_FILE_PATH}" if core_config.LOG_TO_FILE else "Logging to console only.")
    await agent.scheduler.run(duration)


async def show_balances(agent: ActivityAgent) -> None:
    print("--- Wallet Balances ---")
    for wallet in agent.account_manager.wallets:
        print(f"\n{wallet.address}")
        for symbol, amount in (await agent.oracle.describe_balances(wallet)).items():
            print(f"  {symbol}: {amount}")


async def check_rpc(agent: ActivityAgent) -> None:
    chain_id = await agent.client.check_connection()
    fee_data = await agent.client.get_fee_data()
    print(f"RPC: {agent.client.rpc_url}")
    print(f"Chain id: {chain_id}")
    if fee_data.supports_eip1559:
        print(f"Base fee: {format_gwei(fee_data.base_fee_per_gas)} gwei, "
              f"priority fee: {format_gwei(fee_data.max_priority_fee_per_gas)} gwei")
    else:
        print(f"Gas price: {format_gwei(fee_data.gas_price or 0)} gwei")


COMMANDS = {
    "loop": run_loop,
    "balances": show_balances,
    "rpc": check_rpc,
}


async def run_command(command: str, agent: ActivityAgent, duration: float = core_config.RUN_DURATION_SECONDS) -> None:
    try:
        if command == "loop":
            await run_loop(agent, duration)
        else:
            await COMMANDS[command](agent)
    finally:
        await agent.client.close()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="random_activity_scenario",
                                     description="Simulated organic activity for EVM testnet wallets.")
    parser.add_argument("command", choices=sorted(COMMANDS), help="What to run.")
    parser.add_argument("--rpc-url", default=core_config.RPC_URL, help="JSON-RPC endpoint.")
    parser.add_argument("--key-file", action="append", dest="key_files",
                        help="CSV key file with 'priv_key' (and optional 'pub_key') columns. Repeatable.")
    parser.add_argument("--stats-file", default=core_config.STATS_FILE_PATH, help="Where activity stats are saved.")
    parser.add_argument("--duration-hours", type=float, default=core_config.RUN_DURATION_SECONDS / 3600,
                        help="How long the loop runs.")
    parser.add_argument("--seed", type=int, default=None, help="Seed for action selection and sizing.")
    parser.add_argument("--log-level", default=core_config.LOG_LEVEL)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(level=args.log_level)

    try:
        agent = build_agent(rpc_url=args.rpc_url, key_file_paths=args.key_files,
                            stats_file_path=args.stats_file, seed=args.seed)
    except ActivityAgentError as e:
        logger.critical(f"Failed to initialize the agent: {e}")
        return 1

    try:
        asyncio.run(run_command(args.command, agent, duration=args.duration_hours * 3600))
    except asyncio.CancelledError:
        logger.warning("Run cancelled.")
        return 130
    except ActivityAgentError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
