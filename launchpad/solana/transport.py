"""
Ledger transport and signing agent contracts, with their RPC implementations.

The sequencer only talks to the cluster through ``Transport`` and
``SigningAgent``. ``RpcTransport`` and ``KeypairWallet`` back them with
solana-py and a local solders keypair.
"""

import asyncio
import time
from typing import List, Optional, Sequence

import base58
from loguru import logger
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction
from solders.transaction_status import TransactionConfirmationStatus

from launchpad.config import CONFIRMATION_COMMITMENT, CONFIRMATION_TIMEOUT, RPC_URL
from launchpad.solana.errors import NotConnected, SubmissionRejected, TransportFailure
from launchpad.solana.models import ConfirmationStatus, MintAccountState, PendingOperation, TokenAccountState
from launchpad.solana.token_program import decode_mint, decode_token_account


class Transport:
    """Abstract connection to the ledger."""

    async def get_account_info(self, address: Pubkey) -> Optional[bytes]:
        """Return the raw account data, or None when no account exists."""
        raise NotImplementedError

    async def submit(self, instructions: Sequence[Instruction], signers: Sequence[Keypair]) -> str:
        """Sign with ``signers`` (the first pays fees), send, and return the signature."""
        raise NotImplementedError

    async def confirm(self, signature: str) -> ConfirmationStatus:
        raise NotImplementedError

    async def query_token_account(self, address: Pubkey) -> Optional[TokenAccountState]:
        raise NotImplementedError

    async def query_mint(self, address: Pubkey) -> Optional[MintAccountState]:
        raise NotImplementedError


class SigningAgent:
    """Abstract wallet able to sign and send transactions."""

    @property
    def public_key(self) -> Pubkey:
        raise NotImplementedError

    async def sign_and_send_transaction(self, operation: PendingOperation) -> str:
        raise NotImplementedError


class RpcTransport(Transport):
    """
    Transport over a Solana JSON-RPC endpoint.
    """

    # Polling interval while waiting for confirmation, in seconds
    POLL_INTERVAL = 1

    def __init__(self,
                 rpc_url: str = RPC_URL,
                 commitment: str = CONFIRMATION_COMMITMENT,
                 confirmation_timeout: int = CONFIRMATION_TIMEOUT,
                 client: Optional[AsyncClient] = None):
        """
        Initialize the RPC transport.

        Args:
            rpc_url: Cluster JSON-RPC endpoint
            commitment: Commitment level that counts as confirmed
            confirmation_timeout: Seconds to wait for confirmation
            client: Optional preconfigured AsyncClient
        """
        self.rpc_url = rpc_url
        self.commitment = Commitment(commitment)
        self.confirmation_timeout = confirmation_timeout
        self.client = client if client else AsyncClient(rpc_url, commitment=self.commitment)
        logger.info(f"RpcTransport initialized for {rpc_url}")

    async def close(self):
        await self.client.close()

    async def get_account_info(self, address: Pubkey) -> Optional[bytes]:
        try:
            resp = await self.client.get_account_info(address)
        except (SolanaRpcException, RPCException) as e:
            raise TransportFailure(f"getAccountInfo {address} failed: {e}") from e

        if resp.value is None:
            return None
        return bytes(resp.value.data)

    async def submit(self, instructions: Sequence[Instruction], signers: Sequence[Keypair]) -> str:
        if not signers:
            raise NotConnected("A transaction needs at least the fee payer as signer")

        try:
            blockhash_resp = await self.client.get_latest_blockhash()
        except (SolanaRpcException, RPCException) as e:
            raise TransportFailure(f"Failed to get recent blockhash: {e}") from e

        tx = Transaction.new_signed_with_payer(
            list(instructions),
            signers[0].pubkey(),
            list(signers),
            blockhash_resp.value.blockhash
        )

        try:
            resp = await self.client.send_raw_transaction(
                bytes(tx),
                opts=TxOpts(preflight_commitment=self.commitment)
            )
        except RPCException as e:
            # Preflight simulation failed: the program rejected the transaction
            raise SubmissionRejected(f"Transaction rejected: {e}") from e
        except SolanaRpcException as e:
            raise TransportFailure(f"Failed to send transaction: {e}") from e

        signature = str(resp.value)
        logger.debug(f"Transaction sent: {signature}", extra={"signature": signature})
        return signature

    def _is_confirmed(self, confirmation_status: Optional[TransactionConfirmationStatus]) -> bool:
        if confirmation_status is None:
            return False
        if self.commitment == "finalized":
            return confirmation_status == TransactionConfirmationStatus.Finalized
        if self.commitment == "processed":
            return True
        return confirmation_status in (TransactionConfirmationStatus.Confirmed, TransactionConfirmationStatus.Finalized)

    async def confirm(self, signature: str) -> ConfirmationStatus:
        """
        Waits for a transaction to reach the configured commitment.

        Args:
            signature: Transaction signature

        Returns:
            ConfirmationStatus; ``confirmed`` is False with ``error`` set when the
            transaction failed on chain, or with no error on timeout
        """
        sig = Signature.from_string(signature)
        start_time = time.time()

        while time.time() - start_time < self.confirmation_timeout:
            try:
                resp = await self.client.get_signature_statuses([sig])
            except (SolanaRpcException, RPCException) as e:
                raise TransportFailure(f"Failed to check status of {signature}: {e}", signature=signature) from e

            status = resp.value[0]
            if status is not None:
                if status.err is not None:
                    logger.error(f"Transaction error: {status.err}", extra={"signature": signature})
                    return ConfirmationStatus(signature=signature, confirmed=False, error=str(status.err))
                if self._is_confirmed(status.confirmation_status):
                    return ConfirmationStatus(signature=signature, confirmed=True)

            await asyncio.sleep(self.POLL_INTERVAL)

        logger.warning(f"Transaction confirmation timeout for {signature}")
        return ConfirmationStatus(signature=signature, confirmed=False)

    async def query_token_account(self, address: Pubkey) -> Optional[TokenAccountState]:
        data = await self.get_account_info(address)
        if data is None:
            return None
        return decode_token_account(str(address), data)

    async def query_mint(self, address: Pubkey) -> Optional[MintAccountState]:
        data = await self.get_account_info(address)
        if data is None:
            return None
        return decode_mint(str(address), data)


class KeypairWallet(SigningAgent):
    """Signing agent backed by a local keypair."""

    def __init__(self, keypair: Keypair, transport: Transport):
        self.keypair = keypair
        self.transport = transport

    @classmethod
    def from_base58(cls, private_key: str, transport: Transport) -> "KeypairWallet":
        """
        Load a wallet from a base58 encoded 64-byte secret key.

        Raises:
            ValueError: If the key is not a valid base58 keypair
        """
        try:
            keypair = Keypair.from_bytes(base58.b58decode(private_key.strip()))
        except ValueError:
            logger.error("Invalid private key format")
            raise ValueError("Invalid private key format. Must be base58 encoded.")
        return cls(keypair, transport)

    @property
    def public_key(self) -> Pubkey:
        return self.keypair.pubkey()

    async def sign_and_send_transaction(self, operation: PendingOperation) -> str:
        signers: List[Keypair] = [self.keypair]
        signers.extend(s for s in operation.signers if s.pubkey() != self.keypair.pubkey())
        return await self.transport.submit(operation.instructions, signers)
