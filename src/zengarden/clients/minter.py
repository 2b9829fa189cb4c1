"""ERC-721 minting on an EVM chain through web3.py."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from web3 import Web3
from web3.logs import DISCARD

from zengarden.clients.base import ConfigurationError, MintError, MintResult

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

FLOWER_NFT_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "mint",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "uri", "type": "string"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "event",
        "name": "Transfer",
        "anonymous": False,
        "inputs": [
            {"name": "from", "type": "address", "indexed": True},
            {"name": "to", "type": "address", "indexed": True},
            {"name": "tokenId", "type": "uint256", "indexed": True},
        ],
    },
]


class EvmMinter:
    """Mint one flower token per call from a server-held minter key."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        rpc_url: str,
        private_key: str,
        contract_address: str,
        request_timeout_seconds: float = 30.0,
        receipt_timeout_seconds: float = 120.0,
        web3: Web3 | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._private_key = private_key
        self._contract_address = contract_address
        self._request_timeout_seconds = request_timeout_seconds
        self._receipt_timeout_seconds = receipt_timeout_seconds
        self._web3 = web3

    def mint(self, recipient: str, *, metadata_url: str, display_name: str) -> MintResult:
        if not self._private_key or not self._contract_address:
            raise ConfigurationError("NFT minting not configured")

        w3 = self._get_web3()
        account = w3.eth.account.from_key(self._private_key)
        contract = w3.eth.contract(
            address=Web3.to_checksum_address(self._contract_address),
            abi=FLOWER_NFT_ABI,
        )
        to_address = Web3.to_checksum_address(recipient)
        transaction = contract.functions.mint(to_address, metadata_url).build_transaction(
            {
                "from": account.address,
                "nonce": w3.eth.get_transaction_count(account.address, "pending"),
                "chainId": w3.eth.chain_id,
            },
        )
        signed = account.sign_transaction(transaction)
        tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
        tx_ref = Web3.to_hex(tx_hash)
        logger.info("Sent mint of %r to %s: %s", display_name, to_address, tx_ref)

        receipt = w3.eth.wait_for_transaction_receipt(
            tx_hash,
            timeout=self._receipt_timeout_seconds,
        )
        if receipt["status"] != 1:
            raise MintError(f"Mint transaction reverted: {tx_ref}")

        events = contract.events.Transfer().process_receipt(receipt, errors=DISCARD)
        token_id = _token_id_from_transfer_events(events, recipient=to_address)
        if token_id is None:
            logger.warning("Mint %s confirmed without a Transfer event", tx_ref)
        return MintResult(tx_ref=tx_ref, token_id=token_id)

    def _get_web3(self) -> Web3:
        if self._web3 is None:
            self._web3 = Web3(
                Web3.HTTPProvider(
                    self._rpc_url,
                    request_kwargs={"timeout": self._request_timeout_seconds},
                ),
            )
        return self._web3


def _token_id_from_transfer_events(
    events: Iterable[Mapping[str, Any]],
    *,
    recipient: str,
) -> str | None:
    """Pick the token id minted to ``recipient``, else the first Transfer seen."""

    first: str | None = None
    for event in events:
        args = event["args"]
        token_id = str(int(args["tokenId"]))
        if first is None:
            first = token_id
        if args["from"] == ZERO_ADDRESS and str(args["to"]).lower() == recipient.lower():
            return token_id
    return first
