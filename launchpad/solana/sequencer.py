"""
Orchestration of the taxed/soulbound token workflow.

Each public action checks its preconditions, builds the instructions, submits
them through the signing agent, waits for confirmation and only then updates
the state tracker. Every action returns an ``OperationResult``; failures are
never raised to the caller and never reported as success.
"""

from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from loguru import logger
from pydantic import ValidationError
from solders.pubkey import Pubkey

from launchpad.config import (
    DEFAULT_DECIMALS,
    DEFAULT_MAXIMUM_FEE,
    DEFAULT_TRANSFER_FEE_BPS,
    LAUNCHPAD_PROGRAM_ID,
)
from launchpad.solana.account_resolver import AccountResolver, to_pubkey
from launchpad.solana.activity_log import ActivityLog
from launchpad.solana.errors import (
    EncodingError,
    LaunchpadError,
    NotConnected,
    PreconditionMissing,
    SubmissionRejected,
    TransportFailure,
)
from launchpad.solana.models import (
    AssociatedAccount,
    LogEntry,
    MintConfig,
    MintInfo,
    MintKind,
    OperationResult,
    PendingOperation,
    TokenAccountState,
)
from launchpad.solana.operation_builder import OperationBuilder, combine_operations
from launchpad.solana.state_tracker import StateTracker
from launchpad.solana.transport import SigningAgent, Transport

Address = Union[str, Pubkey]


class LaunchpadSequencer:
    """
    Entry point for launchpad actions against a single active mint.
    """

    def __init__(self,
                 transport: Transport,
                 wallet: Optional[SigningAgent] = None,
                 program_id: Optional[Address] = None,
                 tracker: Optional[StateTracker] = None,
                 activity_log: Optional[ActivityLog] = None):
        """
        Initialize the sequencer.

        Args:
            transport: Ledger transport
            wallet: Optional signing agent; actions fail with NotConnected until one is set
            program_id: Launchpad program id. Defaults to LAUNCHPAD_PROGRAM_ID.
            tracker: Optional StateTracker instance. If None, creates a new one.
            activity_log: Optional ActivityLog instance. If None, creates a new one.
        """
        self.transport = transport
        self.wallet = wallet
        self.program_id = to_pubkey(program_id or LAUNCHPAD_PROGRAM_ID, "program id")
        self.resolver = AccountResolver(transport)
        self.builder = OperationBuilder(self.resolver, self.program_id)
        self.tracker = tracker if tracker else StateTracker()
        self.activity_log = activity_log if activity_log else ActivityLog()

        logger.info(f"LaunchpadSequencer initialized for program {self.program_id}")

    @property
    def log_feed(self) -> Tuple[LogEntry, ...]:
        return self.activity_log.entries()

    def connect_wallet(self, wallet: SigningAgent):
        self.wallet = wallet
        self.activity_log.append(f"Wallet connected: {wallet.public_key}")

    def disconnect_wallet(self):
        self.wallet = None
        self.activity_log.append("Wallet disconnected")

    # Preconditions

    def _require_wallet(self) -> SigningAgent:
        if self.wallet is None:
            raise NotConnected("Wallet not connected")
        return self.wallet

    def _require_mint(self) -> MintInfo:
        if self.tracker.mint is None:
            raise PreconditionMissing("No mint selected")
        return self.tracker.mint

    def _require_payer_account(self, wallet: SigningAgent) -> AssociatedAccount:
        account = self.tracker.account_for(str(wallet.public_key))
        if account is None:
            raise PreconditionMissing("No associated account for the wallet; call ensure_associated_account first")
        return account

    # Submission

    def _is_active(self, mint: MintInfo) -> bool:
        return self.tracker.mint is not None and self.tracker.mint.address == mint.address

    def _skip_stale(self, mint: MintInfo, detail: Dict[str, Any], signature: str) -> bool:
        """
        Mark a confirmed result whose mint was replaced while it was in flight.

        Returns:
            True if the tracker must not be updated for this result
        """
        if self._is_active(mint):
            return False
        logger.warning(
            f"Mint {mint.address} is no longer active; confirmed {signature} not tracked",
            extra={"signature": signature, "mint": mint.address}
        )
        detail["tracked"] = False
        return True

    async def _submit(self, wallet: SigningAgent, operation: PendingOperation) -> str:
        """
        Sign, send and confirm an operation with the wallet checked by the action.

        Raises:
            SubmissionRejected: If the cluster or a program rejected the transaction
            TransportFailure: If confirmation did not arrive in time
        """
        signature = await wallet.sign_and_send_transaction(operation)
        logger.info(
            f"Submitted {operation.action}: {signature}",
            extra={"action": operation.action, "signature": signature}
        )
        status = await self.transport.confirm(signature)
        if status.confirmed:
            return signature
        if status.error:
            raise SubmissionRejected(f"Transaction failed: {status.error}", signature=signature)
        raise TransportFailure("Transaction not confirmed", signature=signature)

    async def _run(
        self,
        action: str,
        operation: Callable[[], Awaitable[Tuple[Dict[str, Any], Optional[str]]]]
    ) -> OperationResult:
        try:
            detail, signature = await operation()
        except LaunchpadError as e:
            return self._failure(action, e)
        except Exception as e:
            logger.exception(f"Unexpected error in {action}: {str(e)}")
            return self._failure(action, TransportFailure(f"{type(e).__name__}: {e}"))

        message = f"{action} succeeded" + (f": {signature}" if signature else "")
        self.activity_log.append(message)
        return OperationResult(ok=True, action=action, detail=detail, signature=signature)

    def _failure(self, action: str, error: LaunchpadError) -> OperationResult:
        self.activity_log.append(f"{action} failed: {error.message}", ok=False)
        logger.error(
            f"{action} failed with {error.error_kind}: {error.message}",
            extra={"action": action, "error_kind": error.error_kind, "signature": error.signature}
        )
        return OperationResult(
            ok=False,
            action=action,
            error_kind=error.error_kind,
            message=error.message,
            signature=error.signature
        )

    async def _observe(self, address: Pubkey) -> TokenAccountState:
        state = await self.transport.query_token_account(address)
        if state is None:
            raise PreconditionMissing(f"No token account at {address}")
        return state

    # Actions

    async def create_mint(self, kind: Union[MintKind, str], params: Optional[Dict[str, Any]] = None) -> OperationResult:
        """
        Create a taxed or soulbound mint through the launchpad program.

        Args:
            kind: ``taxed`` or ``soulbound``
            params: Optional overrides: decimals, transfer_fee_basis_points,
                maximum_fee, mint_authority, fee_withdraw_authority, freeze_authority

        Returns:
            OperationResult with the mint address and configuration
        """
        async def _create():
            wallet = self._require_wallet()
            values = dict(params or {})
            if "kind" in values:
                raise EncodingError("Mint kind is given as an argument, not in params")
            try:
                mint_kind = MintKind(kind)
            except ValueError:
                raise EncodingError(f"Unknown mint kind: {kind}")
            values.setdefault("decimals", DEFAULT_DECIMALS)
            if mint_kind == MintKind.TAXED:
                values.setdefault("transfer_fee_basis_points", DEFAULT_TRANSFER_FEE_BPS)
                values.setdefault("maximum_fee", DEFAULT_MAXIMUM_FEE)
            try:
                config = MintConfig(kind=mint_kind, **values)
            except ValidationError as e:
                raise EncodingError(f"Invalid mint parameters: {e}")

            operation = self.builder.build_create_mint(config, wallet.public_key)
            mint_info: MintInfo = operation.detail["mint_info"]
            self.activity_log.append(f"Creating {mint_kind.value} token, mint: {mint_info.address}")

            signature = await self._submit(wallet, operation)
            mint_info.signature = signature
            self.tracker.record_mint_created(mint_info)
            return mint_info.model_dump(mode="json"), signature

        return await self._run("create_mint", _create)

    async def ensure_associated_account(self, owner: Optional[Address] = None) -> OperationResult:
        """
        Create the associated account of ``owner`` (the wallet by default) for
        the active mint, or adopt it if it already exists.
        """
        async def _ensure():
            wallet = self._require_wallet()
            mint = self._require_mint()
            owner_key = wallet.public_key if owner is None else to_pubkey(owner, "owner")

            operation = await self.builder.build_create_associated_account(
                Pubkey.from_string(mint.address), owner_key, wallet.public_key
            )
            signature = None
            if operation.instructions:
                signature = await self._submit(wallet, operation)

            address = operation.detail["address"]
            detail = {"address": address, "owner": str(owner_key), "created": signature is not None}
            if not self._skip_stale(mint, detail, signature):
                self.tracker.record_account_created(
                    mint.address, str(owner_key), address, is_payer=owner_key == wallet.public_key
                )
            return detail, signature

        return await self._run("ensure_associated_account", _ensure)

    async def mint_tokens(self, amount: Union[int, str]) -> OperationResult:
        """Mint ``amount`` base units to the wallet's associated account."""
        async def _mint():
            wallet = self._require_wallet()
            mint = self._require_mint()
            account = self._require_payer_account(wallet)

            operation = self.builder.build_mint_to(
                Pubkey.from_string(mint.address),
                Pubkey.from_string(account.address),
                wallet.public_key,
                amount
            )
            signature = await self._submit(wallet, operation)
            detail = dict(operation.detail)
            if not self._skip_stale(mint, detail, signature):
                self.tracker.record_minted(account.address, detail["amount"])
            return detail, signature

        return await self._run("mint_tokens", _mint)

    async def transfer_with_fee(self, destination_owner: Address, amount: Union[int, str]) -> OperationResult:
        """
        Transfer from the wallet's account to ``destination_owner``'s associated
        account, creating the latter in the same transaction if needed.

        On a taxed mint the destination is re-read after confirmation and the
        result reports whether exactly the computed fee was withheld.
        """
        async def _transfer():
            wallet = self._require_wallet()
            mint = self._require_mint()
            source = self._require_payer_account(wallet)
            owner_key = to_pubkey(destination_owner, "destination owner")
            mint_key = Pubkey.from_string(mint.address)

            destination = self.resolver.derive_associated_address(mint_key, owner_key)
            # amount and fee are validated before anything touches the network
            transfer_op = self.builder.build_transfer_with_fee(
                Pubkey.from_string(source.address), mint, destination, wallet.public_key, amount
            )
            account_op = await self.builder.build_create_associated_account(mint_key, owner_key, wallet.public_key)
            operation = combine_operations("transfer_with_fee", account_op, transfer_op)

            before_amount, before_withheld = 0, 0
            if not account_op.instructions:
                before = await self._observe(destination)
                before_amount, before_withheld = before.amount, before.withheld_amount

            try:
                signature = await self._submit(wallet, operation)
            except SubmissionRejected:
                if self._is_active(mint):
                    self.tracker.record_transfer_attempted()
                raise

            detail = dict(transfer_op.detail)
            detail["destination_created"] = bool(account_op.instructions)
            observe_error = None
            try:
                source_state = await self._observe(Pubkey.from_string(source.address))
                destination_state = await self._observe(destination)
            except LaunchpadError as e:
                observe_error = TransportFailure(
                    f"Transfer confirmed but post-transfer inspection failed: {e.message}",
                    signature=signature
                )

            # all tracker writes for this transfer happen together, after the last await
            if not self._skip_stale(mint, detail, signature):
                self.tracker.record_account_created(mint.address, str(owner_key), str(destination))
                self.tracker.record_transfer_attempted()
                if observe_error is None:
                    self.tracker.record_balance(
                        source_state.address, source_state.amount, source_state.withheld_amount
                    )
                    self.tracker.record_balance(
                        destination_state.address, destination_state.amount, destination_state.withheld_amount
                    )
            if observe_error is not None:
                raise observe_error

            withheld_delta = destination_state.withheld_amount - before_withheld
            received = destination_state.amount - before_amount
            detail.update({
                "observed_withheld": withheld_delta,
                "net_received": received,
                "fee_verified": withheld_delta == detail["fee"] and received == detail["net_amount"],
            })
            if not detail["fee_verified"]:
                logger.warning(
                    f"Withheld fee {withheld_delta} differs from expected {detail['fee']}",
                    extra={"signature": signature, "destination": str(destination)}
                )
            return detail, signature

        return await self._run("transfer_with_fee", _transfer)

    async def inspect_account(self, address: Optional[Address] = None) -> OperationResult:
        """Read balance and withheld fee of a token account (the wallet's by default)."""
        async def _inspect():
            wallet = self._require_wallet()
            if address is None:
                self._require_mint()
                target = Pubkey.from_string(self._require_payer_account(wallet).address)
            else:
                target = to_pubkey(address, "account address")

            state = await self._observe(target)
            self.tracker.record_balance(state.address, state.amount, state.withheld_amount)
            self.activity_log.append(
                f"Account {state.address} balance: {state.amount} withheld: {state.withheld_amount}"
            )
            return state.model_dump(), None

        return await self._run("inspect_account", _inspect)

    async def inspect_mint(self) -> OperationResult:
        """Read the active mint, including the fee pool withheld on the mint itself."""
        async def _inspect():
            self._require_wallet()
            mint = self._require_mint()
            state = await self.transport.query_mint(Pubkey.from_string(mint.address))
            if state is None:
                raise PreconditionMissing(f"No mint account at {mint.address}")
            return state.model_dump(mode="json"), None

        return await self._run("inspect_mint", _inspect)

    async def withdraw_withheld_fees(self, destination: Address) -> OperationResult:
        """
        Withdraw withheld fees of the active mint into the token account
        ``destination``, signed by the wallet as fee-withdraw authority.

        Fees withheld on accounts this client tracks are harvested to the mint
        first; the whole operation is one transaction.
        """
        async def _withdraw():
            wallet = self._require_wallet()
            mint = self._require_mint()
            if mint.transfer_fee is None:
                raise PreconditionMissing(f"Mint {mint.address} has no transfer fee to withdraw")
            destination_key = to_pubkey(destination, "destination account")

            harvest_from = [
                Pubkey.from_string(account.address)
                for account in self.tracker.accounts.values()
                if account.mint == mint.address
            ]
            operation = self.builder.build_withdraw_withheld(
                Pubkey.from_string(mint.address), destination_key, wallet.public_key, harvest_from
            )
            signature = await self._submit(wallet, operation)

            detail = dict(operation.detail)
            state, observe_error = None, None
            try:
                state = await self._observe(destination_key)
            except LaunchpadError as e:
                observe_error = TransportFailure(
                    f"Withdrawal confirmed but destination inspection failed: {e.message}",
                    signature=signature
                )

            if not self._skip_stale(mint, detail, signature):
                self.tracker.record_harvested(detail["harvested_accounts"])
                if state is not None:
                    self.tracker.record_balance(state.address, state.amount, state.withheld_amount)
            if observe_error is not None:
                raise observe_error
            detail["destination_balance"] = state.amount
            return detail, signature

        return await self._run("withdraw_withheld_fees", _withdraw)
