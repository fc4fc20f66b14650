"""Call-data encoding and return-data decoding — no I/O."""
from __future__ import annotations

from typing import Any, Sequence

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from ...errors import ChainReadError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Error(string) selector used by require()/revert("...")
_REVERT_SELECTOR = bytes.fromhex("08c379a0")


def function_selector(signature: str) -> bytes:
    """First four bytes of keccak256 of the canonical signature.

    Examples:
        "transfer(address,uint256)" → a9059cbb
    """
    return bytes(Web3.keccak(text=signature)[:4])


def argument_types(signature: str) -> list[str]:
    """Split the parameter list of a canonical signature into ABI types."""
    inner = signature[signature.index("(") + 1 : signature.rindex(")")]
    types: list[str] = []
    depth = 0
    current = ""
    for ch in inner:
        if ch == "," and depth == 0:
            types.append(current)
            current = ""
            continue
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        current += ch
    if current:
        types.append(current)
    return types


def encode_call(signature: str, args: Sequence[Any] = ()) -> str:
    """Encode a function call as 0x-prefixed hex call data."""
    payload = function_selector(signature) + encode(argument_types(signature), list(args))
    return "0x" + payload.hex()


def decode_result(types: Sequence[str], data: bytes) -> tuple[Any, ...]:
    """Decode return data; malformed or short data raises ``ChainReadError``."""
    try:
        return tuple(decode(list(types), data))
    except DecodingError as e:
        raise ChainReadError(
            f"Could not decode {len(data)} bytes as ({','.join(types)}): {e}"
        ) from e


def decode_single(type_: str, data: bytes) -> Any:
    return decode_result([type_], data)[0]


def decode_revert_reason(data: Any) -> str | None:
    """Extract the reason string from Error(string) revert data, if present."""
    if data is None:
        return None
    if isinstance(data, str):
        hex_data = data[2:] if data.startswith("0x") else data
        try:
            raw = bytes.fromhex(hex_data)
        except ValueError:
            return None
    elif isinstance(data, (bytes, bytearray)):
        raw = bytes(data)
    else:
        return None

    if not raw.startswith(_REVERT_SELECTOR):
        return None
    try:
        return decode_single("string", raw[4:])
    except Exception:
        return None


def checksum(address: str) -> str:
    return Web3.to_checksum_address(address)
