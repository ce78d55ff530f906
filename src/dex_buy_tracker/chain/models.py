"""Data models for on-chain pool events."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from eth_abi.abi import decode as abi_decode
from hexbytes import HexBytes
from web3 import Web3

# Uniswap V2 style pair event:
# Swap(address indexed sender, uint amount0In, uint amount1In,
#      uint amount0Out, uint amount1Out, address indexed to)
SWAP_EVENT_SIGNATURE = "Swap(address,uint256,uint256,uint256,uint256,address)"
SWAP_TOPIC = HexBytes(Web3.keccak(text=SWAP_EVENT_SIGNATURE))
SWAP_TOPIC_HEX = "0x" + bytes(SWAP_TOPIC).hex()

PAIR_ABI: list[dict[str, Any]] = [
    {
        "constant": True,
        "inputs": [],
        "name": "token0",
        "outputs": [{"name": "", "type": "address"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "token1",
        "outputs": [{"name": "", "type": "address"}],
        "type": "function",
    },
]

ERC20_BALANCE_ABI: list[dict[str, Any]] = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    }
]


def _to_hex(value: Any) -> str:
    # Log fields arrive as HexBytes from web3 formatters or as hex strings.
    return "0x" + bytes(HexBytes(value)).hex()


def _topic_to_address(topic: Any) -> str:
    return "0x" + bytes(HexBytes(topic))[-20:].hex()


def quantity_to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    raise ValueError(f"Cannot interpret {value!r} as an integer")


@dataclass(frozen=True)
class SwapEvent:
    """A decoded V2-style Swap log.

    Attributes:
        pool_address: Lowercase address of the emitting pair.
        amount0_in: Raw amount of token0 sent into the pair.
        amount1_in: Raw amount of token1 sent into the pair.
        amount0_out: Raw amount of token0 sent out of the pair.
        amount1_out: Raw amount of token1 sent out of the pair.
        sender: Lowercase address that called the pair (usually a router).
        to: Lowercase recipient of the output tokens (the buyer).
        tx_hash: Transaction hash (0x-prefixed).
        log_index: Position of the log within the block.
        block_number: Block the swap was mined in.
    """

    pool_address: str
    amount0_in: int
    amount1_in: int
    amount0_out: int
    amount1_out: int
    sender: str
    to: str
    tx_hash: str
    log_index: int
    block_number: int

    @property
    def dedup_key(self) -> str:
        return f"{self.tx_hash.lower()}:{self.log_index}"

    @classmethod
    def from_log(cls, log: Mapping[str, Any]) -> SwapEvent:
        """Create a SwapEvent from a raw or web3-formatted log entry.

        Args:
            log: Log mapping with address, topics, data, transactionHash,
                logIndex and blockNumber.

        Returns:
            Parsed SwapEvent.

        Raises:
            ValueError: If the log is not a well-formed Swap event.
        """
        try:
            topics = [HexBytes(t) for t in log["topics"]]
            data = bytes(HexBytes(log["data"]))
            address = log["address"]
            tx_hash = _to_hex(log["transactionHash"])
            log_index = quantity_to_int(log.get("logIndex", 0))
            block_number = quantity_to_int(log["blockNumber"])
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed log entry: {e!r}") from e
        if not isinstance(address, str) or not address:
            raise ValueError(f"Malformed log address: {address!r}")

        if len(topics) < 3 or topics[0] != SWAP_TOPIC:
            raise ValueError("Log is not a Swap event")
        if len(data) != 128:
            raise ValueError(f"Unexpected Swap data length: {len(data)}")

        amount0_in, amount1_in, amount0_out, amount1_out = abi_decode(
            ["uint256", "uint256", "uint256", "uint256"], data
        )

        return cls(
            pool_address=address.lower(),
            amount0_in=int(amount0_in),
            amount1_in=int(amount1_in),
            amount0_out=int(amount0_out),
            amount1_out=int(amount1_out),
            sender=_topic_to_address(topics[1]),
            to=_topic_to_address(topics[2]),
            tx_hash=tx_hash,
            log_index=log_index,
            block_number=block_number,
        )


@dataclass(frozen=True)
class PoolSubscription:
    """An active swap subscription for one pool on one chain."""

    chain: str
    pool_address: str
    token0: str
    token1: str
    handle: str

    def has_token(self, token_address: str) -> bool:
        token = token_address.lower()
        return token in (self.token0, self.token1)
