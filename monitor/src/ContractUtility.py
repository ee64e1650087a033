"""ContractUtility: Web3 initialization, ABI loading and contract reads."""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Sequence

from web3 import Web3
from web3.contract import Contract

from .BatchQueryEngine import QueryPage

logger = logging.getLogger(__name__)

# Quote currency of every monitored reference pair.
QUOTE_SYMBOL = "USD"


class ContractUtility:
    """Utility for Web3 connection and reference contract access.

    :ivar network: Network RPC URL.
    :ivar w3: Configured Web3 instance.
    """

    NETWORKS = {
        "sapphire": "https://sapphire.oasis.io",
        "sapphire-testnet": "https://testnet.sapphire.oasis.io",
        "sapphire-localnet": "http://localhost:8545",
    }

    def __init__(self, network_name: str, w3: Web3 | None = None) -> None:
        """Initialize the contract utility.

        :param network_name: Name of a known network or an RPC URL.
        :param w3: Optional preconfigured Web3 instance.
        """
        # RPC_URL env var overrides the default for the network
        self.network = os.environ.get("RPC_URL") or self.NETWORKS.get(
            network_name, network_name
        )
        self.w3 = w3 if w3 is not None else Web3(Web3.HTTPProvider(self.network))

    @staticmethod
    def get_contract(contract_name: str) -> list:
        """Load the ABI of a contract from the packaged abi folder.

        :param contract_name: Name of the contract (e.g., "StdReference").
        :returns: Contract ABI.
        """
        abi_path = (Path(__file__).parent.parent / "abi" / f"{contract_name}.json").resolve()

        with open(abi_path, "r") as file:
            contract_data = json.load(file)

        return contract_data["abi"]

    def reference_contract(self, address: str) -> Contract:
        """Bind the reference contract at the given address.

        :param address: Contract address.
        :returns: Web3 contract instance.
        """
        return self.w3.eth.contract(
            address=Web3.to_checksum_address(address),
            abi=self.get_contract("StdReference"),
        )

    def reference_query(self, address: str) -> QueryPage:
        """Build the bulk query callable used by BatchQueryEngine.

        Each symbol is queried against USD. The returned structs are
        flattened to (rate, lastUpdatedBase, lastUpdatedQuote) per symbol.

        :param address: Reference contract address.
        :returns: Async callable taking a page of symbols.
        """
        contract = self.reference_contract(address)

        def call(symbols: list[str]) -> list[int]:
            bases = list(symbols)
            quotes = [QUOTE_SYMBOL] * len(symbols)
            response = contract.functions.getReferenceDataBulk(bases, quotes).call()
            return flatten_reference_data(response)

        async def query_page(symbols: list[str]) -> list[int]:
            logger.debug(f"getReferenceDataBulk({', '.join(symbols)})")
            return await asyncio.to_thread(call, symbols)

        return query_page

    def get_balance(self, address: str) -> int:
        """Return the native balance of an account in wei.

        :param address: Account address.
        :returns: Balance in wei.
        """
        return self.w3.eth.get_balance(Web3.to_checksum_address(address))


def flatten_reference_data(response: Sequence[Sequence[int]]) -> list[int]:
    """Flatten decoded ReferenceData structs into the 3-values-per-symbol layout.

    :param response: Sequence of (rate, lastUpdatedBase, lastUpdatedQuote).
    :returns: Flat list of integers.
    """
    flat: list[int] = []
    for rate, last_updated_base, last_updated_quote in response:
        flat.extend((int(rate), int(last_updated_base), int(last_updated_quote)))
    return flat
