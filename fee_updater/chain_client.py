"""
Chain Client - Contract reads, update transactions and status lookups

Wraps a web3 HTTP provider and the owner account. Every transport or decoding
failure surfaces as ReadError (reads) or SubmitError (broadcasts) so the core
never sees provider-specific exceptions.
"""

import logging
from typing import Optional

from web3 import Web3
from web3.exceptions import TransactionNotFound
from eth_account import Account

from .types import TxStatus, ReadError, SubmitError
from .config import ContractConfig

logger = logging.getLogger(__name__)


# Gas price contract ABI (getter + owner-only setter)
GAS_PRICE_CONTRACT_ABI = [
    {
        "inputs": [],
        "name": "get_current_gas_price",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"name": "gas_price", "type": "uint256"}],
        "name": "set_current_gas_price",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]


class Web3ChainClient:
    """
    Chain client for a single gas price contract.

    Signing state (nonce, key) is only touched from submit_update, which the
    lifecycle manager serializes.
    """

    def __init__(
        self,
        w3: Web3,
        contract_config: ContractConfig,
        owner_private_key: str,
        chain_id: Optional[int] = None
    ):
        self.w3 = w3
        self.config = contract_config
        self.owner_account = Account.from_key(owner_private_key)
        self.owner_address = Web3.to_checksum_address(contract_config.owner_address)
        self.contract_address = Web3.to_checksum_address(contract_config.address)
        self._chain_id = chain_id

        if self.owner_account.address != self.owner_address:
            logger.warning(
                f"Private key address {self.owner_account.address} does not match "
                f"configured owner {self.owner_address}"
            )

        self.contract = self.w3.eth.contract(
            address=self.contract_address,
            abi=GAS_PRICE_CONTRACT_ABI
        )

        logger.info(f"Web3ChainClient initialized for contract {self.contract_address}")

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = self.w3.eth.chain_id
        return self._chain_id

    # ========================================================================
    # Reads
    # ========================================================================

    def read_contract_price(self) -> int:
        """Gas price currently stored in the contract"""
        try:
            price = self.contract.functions.get_current_gas_price().call(block_identifier='latest')
        except Exception as e:
            raise ReadError(f"Failed to read contract gas price: {e}") from e
        return int(price)

    def read_network_gas_price(self, block_number: Optional[int] = None) -> int:
        """
        Network gas price for a block: base fee when the chain reports one,
        node gas price otherwise.
        """
        try:
            block = self.w3.eth.get_block(block_number if block_number is not None else 'latest')
            base_fee = block.get('baseFeePerGas')
            if base_fee is not None:
                return int(base_fee)
            return int(self.w3.eth.gas_price)
        except Exception as e:
            raise ReadError(f"Failed to read network gas price: {e}") from e

    def current_block_number(self) -> int:
        try:
            return int(self.w3.eth.block_number)
        except Exception as e:
            raise ReadError(f"Failed to read block number: {e}") from e

    # ========================================================================
    # Update transaction
    # ========================================================================

    def submit_update(self, new_price: int) -> str:
        """
        Sign and broadcast set_current_gas_price(new_price).

        Returns:
            Transaction hash (0x-prefixed hex)
        """
        try:
            tx = self._build_update_transaction(new_price)
            signed = self.owner_account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            raise SubmitError(f"Failed to submit gas price update ({new_price}): {e}") from e

        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.info(f"Update transaction sent: {tx_hash_hex} (price={new_price})")
        return tx_hash_hex

    def _build_update_transaction(self, new_price: int) -> dict:
        """EIP-1559 transaction calling set_current_gas_price"""
        latest_block = self.w3.eth.get_block('latest')
        base_fee = latest_block.get('baseFeePerGas', 0)
        priority_fee = self.w3.to_wei(self.config.priority_fee_gwei, 'gwei')

        # Max fee = base fee * 2 + priority fee (allow for base fee increase)
        max_fee_per_gas = (base_fee * 2) + priority_fee

        nonce = self.w3.eth.get_transaction_count(self.owner_account.address, 'pending')

        tx = self.contract.functions.set_current_gas_price(new_price).build_transaction({
            'from': self.owner_account.address,
            'nonce': nonce,
            'gas': self.config.gas_limit,
            'maxFeePerGas': max_fee_per_gas,
            'maxPriorityFeePerGas': priority_fee,
            'chainId': self.chain_id,
        })

        logger.debug(f"Update transaction built: nonce={nonce}, max_fee={max_fee_per_gas}")
        return tx

    # ========================================================================
    # Status
    # ========================================================================

    def get_tx_status(self, tx_hash: str) -> TxStatus:
        """
        Resolve the status of an update transaction.

        A successful receipt only counts as CONFIRMED when the contract now
        holds the price the transaction set; otherwise the update had no
        effect and is FAILED.
        """
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return self._status_without_receipt(tx_hash)
        except Exception as e:
            raise ReadError(f"Failed to fetch receipt for {tx_hash}: {e}") from e

        if receipt.get('status', 1) == 0:
            logger.warning(f"Update transaction {tx_hash} reverted")
            return TxStatus.FAILED

        expected_price = self._decode_update_price(tx_hash)
        current_price = self.read_contract_price()

        if expected_price is None or current_price == expected_price:
            return TxStatus.CONFIRMED

        logger.warning(
            f"Transaction {tx_hash} included but contract value doesn't match: "
            f"expected {expected_price}, actual {current_price}"
        )
        return TxStatus.FAILED

    def _status_without_receipt(self, tx_hash: str) -> TxStatus:
        try:
            self.w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return TxStatus.NOT_FOUND
        except Exception as e:
            raise ReadError(f"Failed to fetch transaction {tx_hash}: {e}") from e
        return TxStatus.PENDING

    def _decode_update_price(self, tx_hash: str) -> Optional[int]:
        """Price argument of the set_current_gas_price call in tx_hash"""
        try:
            tx = self.w3.eth.get_transaction(tx_hash)
            _, params = self.contract.decode_function_input(tx['input'])
        except Exception as e:
            raise ReadError(f"Failed to decode update transaction {tx_hash}: {e}") from e
        price = params.get('gas_price')
        return int(price) if price is not None else None
