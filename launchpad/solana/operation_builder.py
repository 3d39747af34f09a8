"""
Translate launchpad actions into ordered Token-2022 instructions.
"""

from typing import Optional, Sequence, Union

from loguru import logger
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from launchpad.solana.account_resolver import AccountResolver
from launchpad.solana.errors import EncodingError, PreconditionMissing
from launchpad.solana.models import MintConfig, MintInfo, MintKind, PendingOperation, TransferFeeConfig
from launchpad.solana.token_program import (
    U64_MAX,
    calculate_transfer_fee,
    create_associated_token_account_instruction,
    create_soulbound_token_instruction,
    create_taxed_token_instruction,
    harvest_withheld_tokens_to_mint_instruction,
    mint_to_instruction,
    transfer_checked_with_fee_instruction,
    withdraw_withheld_tokens_from_mint_instruction,
)


def parse_amount(value: Union[int, str, None], field: str = "amount", allow_zero: bool = True) -> int:
    """
    Validate a token amount given as an integer or an integer string.

    Raises:
        PreconditionMissing: If the amount is absent (or zero when not allowed)
        EncodingError: If the amount is not a u64 integer
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise PreconditionMissing(f"{field} is required")
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            raise EncodingError(f"{field} is not an integer: {value!r}")
    if isinstance(value, bool) or not isinstance(value, int):
        raise EncodingError(f"{field} must be an integer, got {type(value).__name__}")
    if value < 0 or value > U64_MAX:
        raise EncodingError(f"{field}={value} does not fit in an unsigned 64-bit integer")
    if value == 0 and not allow_zero:
        raise PreconditionMissing(f"{field} must be greater than zero")
    return value


def combine_operations(action: str, *operations: PendingOperation) -> PendingOperation:
    """Merge operations into one transaction, keeping instruction order."""
    combined = PendingOperation(action=action)
    for operation in operations:
        combined.instructions.extend(operation.instructions)
        combined.signers.extend(operation.signers)
        combined.detail.update(operation.detail)
    return combined


class OperationBuilder:
    """
    Builds the instruction list for each launchpad action.

    Authority checks (mint authority, fee-withdraw authority, transferability)
    are left to the receiving programs.
    """

    def __init__(self, resolver: AccountResolver, program_id: Pubkey):
        """
        Initialize the builder.

        Args:
            resolver: Resolver for associated account addresses
            program_id: Launchpad program that creates mints
        """
        self.resolver = resolver
        self.program_id = program_id

    def build_create_mint(
        self,
        config: MintConfig,
        payer: Pubkey,
        mint_keypair: Optional[Keypair] = None
    ) -> PendingOperation:
        """
        Build the launchpad call that creates a taxed or a soulbound mint.

        Args:
            config: Mint kind and parameters
            payer: Fee payer and default authority
            mint_keypair: Fresh mint identity; generated when omitted

        Returns:
            PendingOperation whose ``detail["mint_info"]`` describes the new mint
        """
        mint_keypair = mint_keypair if mint_keypair else Keypair()
        mint = mint_keypair.pubkey()
        mint_authority = Pubkey.from_string(config.mint_authority) if config.mint_authority else payer
        freeze_authority = Pubkey.from_string(config.freeze_authority) if config.freeze_authority else payer

        transfer_fee = None
        if config.kind == MintKind.TAXED:
            withdraw_authority = (
                Pubkey.from_string(config.fee_withdraw_authority) if config.fee_withdraw_authority else payer
            )
            instruction = create_taxed_token_instruction(
                program_id=self.program_id,
                payer=payer,
                mint=mint,
                mint_authority=mint_authority,
                fee_withdraw_authority=withdraw_authority,
                freeze_authority=freeze_authority,
                decimals=config.decimals,
                transfer_fee_basis_points=config.transfer_fee_basis_points,
                maximum_fee=config.maximum_fee
            )
            transfer_fee = TransferFeeConfig(
                transfer_fee_basis_points=config.transfer_fee_basis_points,
                maximum_fee=config.maximum_fee,
                withdraw_authority=str(withdraw_authority)
            )
        else:
            instruction = create_soulbound_token_instruction(
                program_id=self.program_id,
                payer=payer,
                mint=mint,
                mint_authority=mint_authority,
                freeze_authority=freeze_authority,
                decimals=config.decimals
            )

        mint_info = MintInfo(
            address=str(mint),
            kind=config.kind,
            decimals=config.decimals,
            mint_authority=str(mint_authority),
            freeze_authority=str(freeze_authority),
            transfer_fee=transfer_fee
        )
        logger.debug(f"Built create-mint for {config.kind.value} mint {mint}")
        return PendingOperation(
            action="create_mint",
            instructions=[instruction],
            signers=[mint_keypair],
            detail={"mint_info": mint_info}
        )

    async def build_create_associated_account(
        self,
        mint: Pubkey,
        owner: Pubkey,
        payer: Pubkey
    ) -> PendingOperation:
        """
        Build the associated account creation for (mint, owner).

        Returns an operation with no instructions when the account already
        exists. ``payer`` funds the account and may differ from ``owner``.
        """
        address = self.resolver.derive_associated_address(mint, owner)
        detail = {"address": str(address), "owner": str(owner), "mint": str(mint)}

        if await self.resolver.exists(address):
            logger.debug(f"Associated account {address} already exists")
            return PendingOperation(action="create_associated_account", detail=detail)

        instruction = create_associated_token_account_instruction(payer=payer, owner=owner, mint=mint)
        return PendingOperation(action="create_associated_account", instructions=[instruction], detail=detail)

    def build_mint_to(self, mint: Pubkey, destination: Pubkey, authority: Pubkey, amount: int) -> PendingOperation:
        amount = parse_amount(amount)
        instruction = mint_to_instruction(mint, destination, authority, amount)
        return PendingOperation(
            action="mint_to",
            instructions=[instruction],
            detail={"destination": str(destination), "amount": amount}
        )

    def build_transfer_with_fee(
        self,
        source: Pubkey,
        mint: MintInfo,
        destination: Pubkey,
        authority: Pubkey,
        amount: int,
        decimals: Optional[int] = None
    ) -> PendingOperation:
        """
        Build a TransferCheckedWithFee.

        The fee is computed from the mint's fee config and sent explicitly;
        the token program recomputes it and fails the transfer on mismatch.
        Soulbound mints carry no fee config, so the fee sent is zero.

        Args:
            source: Sender's associated account
            mint: Mint being transferred
            destination: Recipient's associated account
            authority: Owner of the source account
            amount: Amount in base units
            decimals: Decimals used at mint creation; defaults to the mint's

        Returns:
            PendingOperation with ``amount``, ``fee`` and ``net_amount`` in detail
        """
        amount = parse_amount(amount, allow_zero=False)
        decimals = mint.decimals if decimals is None else decimals

        fee = 0
        if mint.transfer_fee is not None:
            fee = calculate_transfer_fee(
                amount,
                mint.transfer_fee.transfer_fee_basis_points,
                mint.transfer_fee.maximum_fee
            )

        instruction = transfer_checked_with_fee_instruction(
            source=source,
            mint=Pubkey.from_string(mint.address),
            destination=destination,
            authority=authority,
            amount=amount,
            decimals=decimals,
            fee=fee
        )
        return PendingOperation(
            action="transfer_with_fee",
            instructions=[instruction],
            detail={
                "source": str(source),
                "destination": str(destination),
                "amount": amount,
                "fee": fee,
                "net_amount": amount - fee,
            }
        )

    def build_withdraw_withheld(
        self,
        mint: Pubkey,
        destination: Pubkey,
        withdraw_authority: Pubkey,
        harvest_from: Sequence[Pubkey] = ()
    ) -> PendingOperation:
        """
        Build the withdrawal of the mint's withheld fee pool to ``destination``.

        Withheld fees sit on recipient accounts until harvested, so accounts in
        ``harvest_from`` are swept into the mint first, in the same transaction.
        """
        instructions = []
        if harvest_from:
            instructions.append(harvest_withheld_tokens_to_mint_instruction(mint, list(harvest_from)))
        instructions.append(withdraw_withheld_tokens_from_mint_instruction(mint, destination, withdraw_authority))
        return PendingOperation(
            action="withdraw_withheld",
            instructions=instructions,
            detail={
                "destination": str(destination),
                "harvested_accounts": [str(account) for account in harvest_from],
            }
        )
