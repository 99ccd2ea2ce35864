import asyncio
import random

import pytest
from unittest.mock import AsyncMock, Mock, patch
from hypothesis import given, strategies as st

from testnet_activity_core.accounts import WalletHandle
from testnet_activity_core.balances import BalanceOracle
from testnet_activity_core.chain import ChainClient, TransactionHandle
from testnet_activity_core.errors import (
    ConfigurationError,
    InsufficientAllowanceError,
    InsufficientBalanceError,
    PreconditionFailure,
    RpcTransportError,
    ZeroAmountError,
)
from testnet_activity_core.executors import (
    AddLiquidityExecutor,
    CustomCallExecutor,
    CustomCallParams,
    CustomContract,
    FunctionCall,
    RandomSendExecutor,
    RawCall,
    RemoveLiquidityExecutor,
    RemoveLiquidityParams,
    SelfAddressCall,
    SendAndReceiveExecutor,
    SwapExecutor,
    SwapParams,
    AddLiquidityParams,
    TransferParams,
    compute_burn_amount,
    compute_min_output,
    estimate_gas_cost,
)
from testnet_activity_core.gas import GasQuote
from testnet_activity_core.submitter import TransactionSubmitter

ROUTER = "0x" + "aa" * 20
WXRP = "0x" + "01" * 20
RISE = "0x" + "02" * 20
RIBBIT = "0x" + "03" * 20
LP_RISE = "0x" + "04" * 20
TOKEN_ADDRESSES = {"XRP": WXRP, "WXRP": WXRP, "RISE": RISE, "RIBBIT": RIBBIT}

QUOTE = GasQuote.legacy(10)
ETHER = 10 ** 18


@pytest.fixture
def wallet():
    return WalletHandle.from_private_key("0x" + "11" * 32)


@pytest.fixture
def mock_client():
    """Fixture for a mocked ChainClient; every send returns a fresh handle."""
    client = Mock(spec=ChainClient)
    sent = iter(range(1000))

    def new_handle(*args, **kwargs):
        return TransactionHandle(tx_hash=f"0x{next(sent):064x}", waiter=AsyncMock(return_value={"status": 1}))

    client.send_contract_transaction = AsyncMock(side_effect=new_handle)
    client.send_native = AsyncMock(side_effect=new_handle)
    client.send_raw_call = AsyncMock(side_effect=new_handle)
    client.call = AsyncMock()
    client.contract.return_value = Mock()
    return client


@pytest.fixture
def mock_oracle():
    """Fixture for a mocked BalanceOracle with plenty of every asset."""
    oracle = Mock(spec=BalanceOracle)
    oracle.native_symbol = "XRP"
    oracle.wrapped_native_symbol = "WXRP"
    oracle.is_native.side_effect = lambda symbol: symbol == "XRP"
    oracle.token_address.side_effect = lambda symbol: TOKEN_ADDRESSES[symbol]
    oracle.erc20.return_value = Mock()
    oracle.get_token_balance = AsyncMock(return_value=100 * ETHER)
    oracle.get_native_balance = AsyncMock(return_value=100 * ETHER)
    oracle.get_erc20_balance_at = AsyncMock(return_value=1_000_000)
    oracle.get_allowance = AsyncMock(return_value=2 ** 255)
    oracle.get_amounts_out = AsyncMock(side_effect=lambda amount, path: [amount, 1_000_000])
    return oracle


@pytest.fixture
def mock_submitter():
    """Fixture for a TransactionSubmitter that runs each action once with a fixed quote."""
    submitter = Mock(spec=TransactionSubmitter)

    async def run_once(action, **kwargs):
        handle = await action(QUOTE)
        return await handle.wait()

    submitter.submit = AsyncMock(side_effect=run_once)
    return submitter


def make(executor_class, mock_client, mock_oracle, mock_submitter, **kwargs):
    return executor_class(mock_client, mock_oracle, mock_submitter, router_address=ROUTER, **kwargs)


class TestPureHelpers:
    def test_slippage_floor_exact(self):
        """1,000,000 at 50 bps tolerance floors at exactly 995,000, every time."""
        assert all(compute_min_output(1_000_000, 50) == 995_000 for _ in range(100))

    @given(expected=st.integers(min_value=0, max_value=10 ** 30), bps=st.integers(min_value=0, max_value=10000))
    def test_slippage_floor_bounds(self, expected, bps):
        floor = compute_min_output(expected, bps)
        assert 0 <= floor <= expected

    def test_slippage_rejects_out_of_range(self):
        with pytest.raises(ValueError):
            compute_min_output(100, 10001)

    def test_burn_amount_half(self):
        assert compute_burn_amount(1_000_000, 50) == 500_000

    def test_burn_amount_zero_percentage(self):
        with pytest.raises(PreconditionFailure):
            compute_burn_amount(1_000_000, 0)

    def test_burn_amount_zero_balance(self):
        with pytest.raises(ZeroAmountError):
            compute_burn_amount(0, 50)

    def test_burn_amount_bad_percentage(self):
        with pytest.raises(ConfigurationError):
            compute_burn_amount(1_000_000, 150)

    def test_gas_cost(self):
        assert estimate_gas_cost(GasQuote.eip1559(max_fee_per_gas=7, max_priority_fee_per_gas=1), 100) == 700
        assert estimate_gas_cost(GasQuote.legacy(3), 100) == 300


class TestSwapExecutor:
    def test_native_to_token_swap(self, wallet, mock_client, mock_oracle, mock_submitter):
        executor = make(SwapExecutor, mock_client, mock_oracle, mock_submitter, slippage_bps=50)
        router = mock_client.contract.return_value

        with patch("testnet_activity_core.executors.time.time", return_value=1_000):
            handle = asyncio.run(executor.execute(wallet, SwapParams("XRP", "RISE", 5 * ETHER), QUOTE))

        assert handle.tx_hash
        router.functions.swapExactETHForTokens.assert_called_once_with(995_000, [WXRP, RISE], wallet.address, 1_600)
        mock_client.send_contract_transaction.assert_awaited_once()
        assert mock_client.send_contract_transaction.await_args.kwargs["value"] == 5 * ETHER
        mock_submitter.submit.assert_not_awaited()

    def test_quote_failure_uses_zero_floor(self, wallet, mock_client, mock_oracle, mock_submitter):
        mock_oracle.get_amounts_out.side_effect = RpcTransportError("getAmountsOut failed")
        executor = make(SwapExecutor, mock_client, mock_oracle, mock_submitter)
        router = mock_client.contract.return_value

        asyncio.run(executor.execute(wallet, SwapParams("XRP", "RISE", ETHER), QUOTE))

        assert router.functions.swapExactETHForTokens.call_args.args[0] == 0

    def test_native_swap_needs_gas_headroom(self, wallet, mock_client, mock_oracle, mock_submitter):
        """Balance must cover the amount plus the worst-case fee; nothing is sent otherwise."""
        mock_oracle.get_token_balance.return_value = ETHER
        executor = make(SwapExecutor, mock_client, mock_oracle, mock_submitter)

        with pytest.raises(InsufficientBalanceError) as excinfo:
            asyncio.run(executor.execute(wallet, SwapParams("XRP", "RISE", ETHER), QUOTE))

        assert excinfo.value.needed == ETHER + 800_000 * 10
        mock_client.send_contract_transaction.assert_not_awaited()

    def test_token_to_native_approves_first(self, wallet, mock_client, mock_oracle, mock_submitter):
        mock_oracle.get_allowance.side_effect = [0, ETHER]
        executor = make(SwapExecutor, mock_client, mock_oracle, mock_submitter)
        router = mock_client.contract.return_value

        asyncio.run(executor.execute(wallet, SwapParams("RISE", "XRP", ETHER), QUOTE))

        mock_submitter.submit.assert_awaited_once()
        assert mock_client.send_contract_transaction.await_count == 2 # approve + swap
        router.functions.swapExactTokensForETH.assert_called_once()
        router.functions.swapExactETHForTokens.assert_not_called()

    def test_token_to_token_route(self, wallet, mock_client, mock_oracle, mock_submitter):
        executor = make(SwapExecutor, mock_client, mock_oracle, mock_submitter)
        router = mock_client.contract.return_value

        asyncio.run(executor.execute(wallet, SwapParams("RISE", "RIBBIT", ETHER), QUOTE))

        router.functions.swapExactTokensForTokens.assert_called_once()
        mock_submitter.submit.assert_not_awaited()

    def test_allowance_still_short_after_approval(self, wallet, mock_client, mock_oracle, mock_submitter):
        mock_oracle.get_allowance.side_effect = [0, 1]
        executor = make(SwapExecutor, mock_client, mock_oracle, mock_submitter)

        with pytest.raises(InsufficientAllowanceError):
            asyncio.run(executor.execute(wallet, SwapParams("RISE", "XRP", ETHER), QUOTE))

    def test_same_token_rejected(self, wallet, mock_client, mock_oracle, mock_submitter):
        executor = make(SwapExecutor, mock_client, mock_oracle, mock_submitter)
        with pytest.raises(ConfigurationError):
            asyncio.run(executor.execute(wallet, SwapParams("RISE", "RISE", ETHER), QUOTE))

    def test_zero_amount_rejected(self, wallet, mock_client, mock_oracle, mock_submitter):
        executor = make(SwapExecutor, mock_client, mock_oracle, mock_submitter)
        with pytest.raises(ZeroAmountError):
            asyncio.run(executor.execute(wallet, SwapParams("XRP", "RISE", 0), QUOTE))


class TestLiquidityExecutors:
    def test_add_liquidity(self, wallet, mock_client, mock_oracle, mock_submitter):
        executor = make(AddLiquidityExecutor, mock_client, mock_oracle, mock_submitter)
        router = mock_client.contract.return_value

        asyncio.run(executor.execute(wallet, AddLiquidityParams("RISE", ETHER, 2 * ETHER), QUOTE))

        args = router.functions.addLiquidityETH.call_args.args
        assert args[:4] == (RISE, 2 * ETHER, 0, 0)
        assert mock_client.send_contract_transaction.await_args.kwargs["value"] == ETHER

    def test_add_liquidity_short_on_token(self, wallet, mock_client, mock_oracle, mock_submitter):
        mock_oracle.get_token_balance.return_value = 1
        executor = make(AddLiquidityExecutor, mock_client, mock_oracle, mock_submitter)

        with pytest.raises(InsufficientBalanceError) as excinfo:
            asyncio.run(executor.execute(wallet, AddLiquidityParams("RISE", ETHER, 2 * ETHER), QUOTE))
        assert excinfo.value.symbol == "RISE"

    def test_remove_liquidity_configured_lp(self, wallet, mock_client, mock_oracle, mock_submitter):
        executor = make(RemoveLiquidityExecutor, mock_client, mock_oracle, mock_submitter,
                        lp_token_addresses={"RISE": LP_RISE})
        router = mock_client.contract.return_value

        asyncio.run(executor.execute(wallet, RemoveLiquidityParams("RISE", 50), QUOTE))

        args = router.functions.removeLiquidityETH.call_args.args
        assert args[:2] == (RISE, 500_000)
        mock_client.call.assert_not_awaited()

    def test_remove_liquidity_resolves_pair(self, wallet, mock_client, mock_oracle, mock_submitter):
        mock_client.call.side_effect = ["0x" + "ff" * 20, LP_RISE]
        executor = make(RemoveLiquidityExecutor, mock_client, mock_oracle, mock_submitter, lp_token_addresses={})

        asyncio.run(executor.execute(wallet, RemoveLiquidityParams("RISE", 50), QUOTE))
        asyncio.run(executor.execute(wallet, RemoveLiquidityParams("RISE", 50), QUOTE))

        assert mock_client.call.await_count == 2 # factory() + getPair(), then cached

    def test_remove_liquidity_no_pair(self, wallet, mock_client, mock_oracle, mock_submitter):
        mock_client.call.side_effect = ["0x" + "ff" * 20, "0x" + "00" * 20]
        executor = make(RemoveLiquidityExecutor, mock_client, mock_oracle, mock_submitter, lp_token_addresses={})

        with pytest.raises(ConfigurationError):
            asyncio.run(executor.execute(wallet, RemoveLiquidityParams("RISE", 50), QUOTE))

    @pytest.mark.parametrize("balance, percentage", [(0, 50), (1_000_000, 0)])
    def test_remove_liquidity_zero_amount(self, wallet, mock_client, mock_oracle, mock_submitter, balance, percentage):
        """Nothing to burn fails before any transaction is built."""
        mock_oracle.get_erc20_balance_at.return_value = balance
        executor = make(RemoveLiquidityExecutor, mock_client, mock_oracle, mock_submitter,
                        lp_token_addresses={"RISE": LP_RISE})

        with pytest.raises(PreconditionFailure):
            asyncio.run(executor.execute(wallet, RemoveLiquidityParams("RISE", percentage), QUOTE))

        mock_client.send_contract_transaction.assert_not_awaited()
        mock_submitter.submit.assert_not_awaited()


class TestTransferExecutors:
    def test_send_and_receive(self, wallet, mock_client, mock_oracle, mock_submitter):
        """Fund, send and return: the first two confirmed through the submitter, the return handed back."""
        executor = make(SendAndReceiveExecutor, mock_client, mock_oracle, mock_submitter)

        handle = asyncio.run(executor.execute(wallet, TransferParams("RISE", 1_000, 1, 500), QUOTE))

        assert handle.tx_hash
        assert mock_submitter.submit.await_count == 2
        assert mock_client.send_native.await_args.args[2] == 500
        senders = [c.args[0] for c in mock_client.send_contract_transaction.await_args_list]
        assert senders[0] == wallet
        assert senders[1] != wallet # the fresh address sends the tokens back

    def test_send_and_receive_multiple_addresses(self, wallet, mock_client, mock_oracle, mock_submitter):
        executor = make(SendAndReceiveExecutor, mock_client, mock_oracle, mock_submitter)
        asyncio.run(executor.execute(wallet, TransferParams("RISE", 1_000, 3, 500), QUOTE))
        assert mock_submitter.submit.await_count == 3 * 3 - 1

    def test_send_and_receive_short_on_native(self, wallet, mock_client, mock_oracle, mock_submitter):
        mock_oracle.get_native_balance.return_value = 10
        executor = make(SendAndReceiveExecutor, mock_client, mock_oracle, mock_submitter)

        with pytest.raises(InsufficientBalanceError):
            asyncio.run(executor.execute(wallet, TransferParams("RISE", 1_000, 1, 500), QUOTE))
        mock_submitter.submit.assert_not_awaited()

    def test_random_send_token(self, wallet, mock_client, mock_oracle, mock_submitter):
        executor = make(RandomSendExecutor, mock_client, mock_oracle, mock_submitter)
        token = mock_oracle.erc20.return_value

        asyncio.run(executor.execute(wallet, TransferParams("RIBBIT", 500, 2), QUOTE))

        assert mock_submitter.submit.await_count == 1
        assert token.functions.transfer.call_count == 2
        recipients = {c.args[0] for c in token.functions.transfer.call_args_list}
        assert len(recipients) == 2 and wallet.address not in recipients

    def test_random_send_native(self, wallet, mock_client, mock_oracle, mock_submitter):
        executor = make(RandomSendExecutor, mock_client, mock_oracle, mock_submitter)
        asyncio.run(executor.execute(wallet, TransferParams("XRP", 500, 1), QUOTE))
        mock_client.send_native.assert_awaited_once()
        mock_client.send_contract_transaction.assert_not_awaited()

    def test_random_send_insufficient(self, wallet, mock_client, mock_oracle, mock_submitter):
        mock_oracle.get_token_balance.return_value = 999
        executor = make(RandomSendExecutor, mock_client, mock_oracle, mock_submitter)
        with pytest.raises(InsufficientBalanceError):
            asyncio.run(executor.execute(wallet, TransferParams("RIBBIT", 500, 2), QUOTE))


COUNTER_ABI = [
    {"name": "increment", "type": "function", "stateMutability": "nonpayable", "inputs": [], "outputs": []},
    {"name": "register", "type": "function", "stateMutability": "nonpayable",
     "inputs": [{"name": "who", "type": "address"}], "outputs": []},
]
COUNTER = "0x" + "cc" * 20


class TestCustomCallExecutor:
    def test_from_config_builds_call_shapes(self):
        contract = CustomContract.from_config({
            "name": "counter",
            "address": COUNTER,
            "abi": COUNTER_ABI,
            "calls": [
                {"function": "increment"},
                {"function": "register", "args": "self"},
                {"data": "0xd09de08a", "value": 5},
            ],
        })
        assert contract.calls == (FunctionCall("increment"), SelfAddressCall("register"), RawCall("0xd09de08a", 5))

    def test_unknown_function_rejected(self):
        with pytest.raises(ConfigurationError):
            CustomContract(name="counter", address=COUNTER, abi=COUNTER_ABI, calls=(FunctionCall("missing"),))

    def test_no_contracts_configured(self, mock_client, mock_oracle, mock_submitter):
        executor = make(CustomCallExecutor, mock_client, mock_oracle, mock_submitter, contracts=[])
        with pytest.raises(ConfigurationError):
            executor.choose(random.Random(1))

    def test_self_address_call(self, wallet, mock_client, mock_oracle, mock_submitter):
        contract = CustomContract(name="counter", address=COUNTER, abi=COUNTER_ABI, calls=(SelfAddressCall("register"),))
        executor = make(CustomCallExecutor, mock_client, mock_oracle, mock_submitter, contracts=[contract])
        bound = mock_client.contract.return_value

        params = executor.choose(random.Random(1))
        asyncio.run(executor.execute(wallet, params, QUOTE))

        mock_client.contract.assert_called_with(COUNTER, COUNTER_ABI)
        bound.functions.register.assert_called_once_with(wallet.address)
        mock_client.send_contract_transaction.assert_awaited_once()

    def test_raw_call(self, wallet, mock_client, mock_oracle, mock_submitter):
        contract = CustomContract(name="counter", address=COUNTER, calls=(RawCall("0xd09de08a"),))
        executor = make(CustomCallExecutor, mock_client, mock_oracle, mock_submitter, contracts=[contract])

        asyncio.run(executor.execute(wallet, CustomCallParams(contract, contract.calls[0]), QUOTE))

        assert mock_client.send_raw_call.await_args.args[1:3] == (COUNTER, "0xd09de08a")
