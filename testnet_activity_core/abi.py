"""
Contract interface definitions used by the agent. Only the functions the
executors and the balance oracle actually call are listed.
"""
from typing import Any, Dict, List


def _fn(name: str, inputs: List[tuple], outputs: List[str], mutability: str) -> Dict[str, Any]:
    return {
        "name": name,
        "type": "function",
        "stateMutability": mutability,
        "inputs": [{"name": arg_name, "type": arg_type} for arg_name, arg_type in inputs],
        "outputs": [{"name": "", "type": out_type} for out_type in outputs],
    }


ERC20_ABI: List[Dict[str, Any]] = [
    _fn("balanceOf", [("owner", "address")], ["uint256"], "view"),
    _fn("decimals", [], ["uint8"], "view"),
    _fn("symbol", [], ["string"], "view"),
    _fn("allowance", [("owner", "address"), ("spender", "address")], ["uint256"], "view"),
    _fn("transfer", [("to", "address"), ("amount", "uint256")], ["bool"], "nonpayable"),
    _fn("approve", [("spender", "address"), ("amount", "uint256")], ["bool"], "nonpayable"),
]

ROUTER_ABI: List[Dict[str, Any]] = [
    _fn("factory", [], ["address"], "view"),
    _fn("WETH", [], ["address"], "view"),
    _fn("getAmountsOut", [("amountIn", "uint256"), ("path", "address[]")], ["uint256[]"], "view"),
    _fn("swapExactETHForTokens",
        [("amountOutMin", "uint256"), ("path", "address[]"), ("to", "address"), ("deadline", "uint256")],
        ["uint256[]"], "payable"),
    _fn("swapExactTokensForETH",
        [("amountIn", "uint256"), ("amountOutMin", "uint256"), ("path", "address[]"),
         ("to", "address"), ("deadline", "uint256")],
        ["uint256[]"], "nonpayable"),
    _fn("swapExactTokensForTokens",
        [("amountIn", "uint256"), ("amountOutMin", "uint256"), ("path", "address[]"),
         ("to", "address"), ("deadline", "uint256")],
        ["uint256[]"], "nonpayable"),
    _fn("addLiquidityETH",
        [("token", "address"), ("amountTokenDesired", "uint256"), ("amountTokenMin", "uint256"),
         ("amountETHMin", "uint256"), ("to", "address"), ("deadline", "uint256")],
        ["uint256", "uint256", "uint256"], "payable"),
    _fn("removeLiquidityETH",
        [("token", "address"), ("liquidity", "uint256"), ("amountTokenMin", "uint256"),
         ("amountETHMin", "uint256"), ("to", "address"), ("deadline", "uint256")],
        ["uint256", "uint256"], "nonpayable"),
]

FACTORY_ABI: List[Dict[str, Any]] = [
    _fn("getPair", [("tokenA", "address"), ("tokenB", "address")], ["address"], "view"),
]

ZERO_ADDRESS: str = "0x0000000000000000000000000000000000000000"
