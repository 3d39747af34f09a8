"""
Token-2022 program utilities for the taxed token launchpad.

This module holds the program ids, the byte layouts of every instruction the
launchpad sends, and the decoders for the Token-2022 account data it reads
back.
"""

import hashlib
from typing import List, Optional, Sequence, Tuple

from borsh_construct import CStruct, U8, U16, U64
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.sysvar import RENT as RENT_SYSVAR_ID
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID
from spl.token.instructions import MintToParams, create_associated_token_account, mint_to

from launchpad.solana.errors import EncodingError
from launchpad.solana.models import MintAccountState, TokenAccountState, TransferFeeConfig

# Token-2022 instruction codes
MINT_TO_INSTRUCTION = 7
TRANSFER_FEE_EXTENSION = 26  # TokenInstruction::TransferFeeExtension

# TransferFeeExtension sub-instructions
TRANSFER_CHECKED_WITH_FEE = 1
WITHDRAW_WITHHELD_TOKENS_FROM_MINT = 2
HARVEST_WITHHELD_TOKENS_TO_MINT = 4

# Token-2022 extension types (TLV tags)
EXTENSION_TRANSFER_FEE_CONFIG = 1
EXTENSION_TRANSFER_FEE_AMOUNT = 2
EXTENSION_NON_TRANSFERABLE = 9
EXTENSION_NON_TRANSFERABLE_ACCOUNT = 13

# Account data layout
BASE_MINT_LENGTH = 82
BASE_ACCOUNT_LENGTH = 165
ACCOUNT_TYPE_OFFSET = BASE_ACCOUNT_LENGTH
TLV_START = ACCOUNT_TYPE_OFFSET + 1

U8_MAX = 2 ** 8 - 1
U16_MAX = 2 ** 16 - 1
U64_MAX = 2 ** 64 - 1
MAX_FEE_BASIS_POINTS = 10_000

CreateTaxedTokenArgs = CStruct(
    "decimals" / U8,
    "transfer_fee_basis_points" / U16,
    "maximum_fee" / U64,
)
CreateSoulboundTokenArgs = CStruct("decimals" / U8)


def sighash(name: str) -> bytes:
    """Anchor instruction discriminator for a program method."""
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


CREATE_TAXED_TOKEN_DISCRIMINATOR = sighash("create_taxed_token")
CREATE_SOULBOUND_TOKEN_DISCRIMINATOR = sighash("create_soulbound_token")


def _check_int(value: int, field: str, maximum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise EncodingError(f"{field} must be an integer, got {type(value).__name__}")
    if value < 0 or value > maximum:
        raise EncodingError(f"{field}={value} does not fit in [0, {maximum}]")
    return value


def u64_to_bytes(value: int, field: str = "value") -> bytes:
    """Encode an unsigned 64-bit integer as 8 little-endian bytes."""
    return _check_int(value, field, U64_MAX).to_bytes(8, byteorder="little")


def u8_to_bytes(value: int, field: str = "value") -> bytes:
    return _check_int(value, field, U8_MAX).to_bytes(1, byteorder="little")


def calculate_transfer_fee(amount: int, transfer_fee_basis_points: int, maximum_fee: int) -> int:
    """
    Compute the fee Token-2022 withholds on a transfer.

    The fee is ``ceil(amount * bps / 10000)`` capped at ``maximum_fee``.

    Args:
        amount: Transfer amount in base units
        transfer_fee_basis_points: Fee rate, 0 to 10000
        maximum_fee: Upper bound on the fee in base units

    Returns:
        The fee in base units
    """
    _check_int(amount, "amount", U64_MAX)
    _check_int(transfer_fee_basis_points, "transfer_fee_basis_points", MAX_FEE_BASIS_POINTS)
    _check_int(maximum_fee, "maximum_fee", U64_MAX)

    if transfer_fee_basis_points == 0 or amount == 0:
        return 0
    raw_fee = -(-amount * transfer_fee_basis_points // MAX_FEE_BASIS_POINTS)
    return min(maximum_fee, raw_fee)


def encode_transfer_checked_with_fee(amount: int, decimals: int, fee: int) -> bytes:
    """
    Build the TransferCheckedWithFee payload.

    Layout: ``[26][1][amount u64 LE][decimals u8][fee u64 LE]`` (19 bytes).

    Raises:
        EncodingError: If a value does not fit its field width
    """
    return (
        bytes([TRANSFER_FEE_EXTENSION, TRANSFER_CHECKED_WITH_FEE])
        + u64_to_bytes(amount, "amount")
        + u8_to_bytes(decimals, "decimals")
        + u64_to_bytes(fee, "fee")
    )


def decode_transfer_fee_header(data: bytes) -> Tuple[int, int]:
    """Return the (extension, sub-instruction) selector bytes of a fee-extension payload."""
    if len(data) < 2:
        raise EncodingError(f"Instruction data too short for a selector header: {len(data)} bytes")
    return data[0], data[1]


def decode_transfer_checked_with_fee(data: bytes) -> Tuple[int, int, int]:
    """Decode a TransferCheckedWithFee payload into (amount, decimals, fee)."""
    if len(data) != 19 or decode_transfer_fee_header(data) != (TRANSFER_FEE_EXTENSION, TRANSFER_CHECKED_WITH_FEE):
        raise EncodingError("Not a TransferCheckedWithFee payload")
    amount = int.from_bytes(data[2:10], byteorder="little")
    decimals = data[10]
    fee = int.from_bytes(data[11:19], byteorder="little")
    return amount, decimals, fee


def encode_withdraw_withheld_tokens_from_mint() -> bytes:
    return bytes([TRANSFER_FEE_EXTENSION, WITHDRAW_WITHHELD_TOKENS_FROM_MINT])


def encode_harvest_withheld_tokens_to_mint() -> bytes:
    return bytes([TRANSFER_FEE_EXTENSION, HARVEST_WITHHELD_TOKENS_TO_MINT])


def encode_create_taxed_token(decimals: int, transfer_fee_basis_points: int, maximum_fee: int) -> bytes:
    """Anchor payload for ``create_taxed_token(decimals, transfer_fee_basis_points, maximum_fee)``."""
    _check_int(decimals, "decimals", U8_MAX)
    _check_int(transfer_fee_basis_points, "transfer_fee_basis_points", MAX_FEE_BASIS_POINTS)
    _check_int(maximum_fee, "maximum_fee", U64_MAX)
    return CREATE_TAXED_TOKEN_DISCRIMINATOR + CreateTaxedTokenArgs.build({
        "decimals": decimals,
        "transfer_fee_basis_points": transfer_fee_basis_points,
        "maximum_fee": maximum_fee,
    })


def encode_create_soulbound_token(decimals: int) -> bytes:
    """Anchor payload for ``create_soulbound_token(decimals)``."""
    _check_int(decimals, "decimals", U8_MAX)
    return CREATE_SOULBOUND_TOKEN_DISCRIMINATOR + CreateSoulboundTokenArgs.build({"decimals": decimals})


def transfer_checked_with_fee_instruction(
    source: Pubkey,
    mint: Pubkey,
    destination: Pubkey,
    authority: Pubkey,
    amount: int,
    decimals: int,
    fee: int
) -> Instruction:
    """
    Create a Token-2022 TransferCheckedWithFee instruction.

    Args:
        source: Sender's associated token account
        mint: Token mint
        destination: Recipient's associated token account
        authority: Owner of the source account (signer)
        amount: Amount in base units
        decimals: Mint decimals the amount is expressed in
        fee: Expected fee; the program rejects the transfer if it disagrees

    Returns:
        Instruction for the transfer
    """
    keys = [
        AccountMeta(pubkey=source, is_signer=False, is_writable=True),
        AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=destination, is_signer=False, is_writable=True),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
    ]
    return Instruction(
        program_id=TOKEN_2022_PROGRAM_ID,
        data=encode_transfer_checked_with_fee(amount, decimals, fee),
        accounts=keys
    )


def mint_to_instruction(mint: Pubkey, destination: Pubkey, authority: Pubkey, amount: int) -> Instruction:
    _check_int(amount, "amount", U64_MAX)
    return mint_to(MintToParams(
        program_id=TOKEN_2022_PROGRAM_ID,
        mint=mint,
        dest=destination,
        mint_authority=authority,
        amount=amount
    ))


def create_associated_token_account_instruction(payer: Pubkey, owner: Pubkey, mint: Pubkey) -> Instruction:
    """Create the Token-2022 associated account for (mint, owner), paid for by ``payer``."""
    return create_associated_token_account(payer, owner, mint, token_program_id=TOKEN_2022_PROGRAM_ID)


def harvest_withheld_tokens_to_mint_instruction(mint: Pubkey, sources: Sequence[Pubkey]) -> Instruction:
    # Permissionless: moves withheld fees from token accounts into the mint's pool
    keys = [AccountMeta(pubkey=mint, is_signer=False, is_writable=True)]
    keys.extend(AccountMeta(pubkey=source, is_signer=False, is_writable=True) for source in sources)
    return Instruction(program_id=TOKEN_2022_PROGRAM_ID, data=encode_harvest_withheld_tokens_to_mint(), accounts=keys)


def withdraw_withheld_tokens_from_mint_instruction(
    mint: Pubkey,
    destination: Pubkey,
    authority: Pubkey
) -> Instruction:
    keys = [
        AccountMeta(pubkey=mint, is_signer=False, is_writable=True),
        AccountMeta(pubkey=destination, is_signer=False, is_writable=True),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
    ]
    return Instruction(
        program_id=TOKEN_2022_PROGRAM_ID,
        data=encode_withdraw_withheld_tokens_from_mint(),
        accounts=keys
    )


def _launchpad_mint_accounts(
    payer: Pubkey,
    mint: Pubkey,
    mint_authority: Pubkey,
    fee_withdraw_authority: Optional[Pubkey],
    freeze_authority: Pubkey
) -> List[AccountMeta]:
    keys = [
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=mint, is_signer=True, is_writable=True),
        AccountMeta(pubkey=mint_authority, is_signer=False, is_writable=False),
    ]
    if fee_withdraw_authority is not None:
        keys.append(AccountMeta(pubkey=fee_withdraw_authority, is_signer=False, is_writable=False))
    keys.extend([
        AccountMeta(pubkey=freeze_authority, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_2022_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=RENT_SYSVAR_ID, is_signer=False, is_writable=False),
    ])
    return keys


def create_taxed_token_instruction(
    program_id: Pubkey,
    payer: Pubkey,
    mint: Pubkey,
    mint_authority: Pubkey,
    fee_withdraw_authority: Pubkey,
    freeze_authority: Pubkey,
    decimals: int,
    transfer_fee_basis_points: int,
    maximum_fee: int
) -> Instruction:
    """
    Call the launchpad program's ``create_taxed_token`` method.

    The fresh mint must sign the transaction alongside the payer.
    """
    return Instruction(
        program_id=program_id,
        data=encode_create_taxed_token(decimals, transfer_fee_basis_points, maximum_fee),
        accounts=_launchpad_mint_accounts(payer, mint, mint_authority, fee_withdraw_authority, freeze_authority)
    )


def create_soulbound_token_instruction(
    program_id: Pubkey,
    payer: Pubkey,
    mint: Pubkey,
    mint_authority: Pubkey,
    freeze_authority: Pubkey,
    decimals: int
) -> Instruction:
    """Call the launchpad program's ``create_soulbound_token`` method."""
    return Instruction(
        program_id=program_id,
        data=encode_create_soulbound_token(decimals),
        accounts=_launchpad_mint_accounts(payer, mint, mint_authority, None, freeze_authority)
    )


def _read_u64(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset:offset + 8], byteorder="little")


def _read_coption_pubkey(data: bytes, offset: int) -> Optional[str]:
    tag = int.from_bytes(data[offset:offset + 4], byteorder="little")
    if tag == 0:
        return None
    return str(Pubkey.from_bytes(data[offset + 4:offset + 36]))


def _read_nonzero_pubkey(data: bytes, offset: int) -> Optional[str]:
    raw = data[offset:offset + 32]
    if raw == bytes(32):
        return None
    return str(Pubkey.from_bytes(raw))


def iter_extensions(data: bytes):
    """
    Yield ``(extension_type, value)`` pairs from the TLV area of a Token-2022 account.

    Accounts without extensions (exactly the base length) yield nothing.
    """
    offset = TLV_START
    while offset + 4 <= len(data):
        extension_type = int.from_bytes(data[offset:offset + 2], byteorder="little")
        length = int.from_bytes(data[offset + 2:offset + 4], byteorder="little")
        if extension_type == 0:
            break
        value = data[offset + 4:offset + 4 + length]
        if len(value) != length:
            raise EncodingError(f"Truncated extension {extension_type} at offset {offset}")
        yield extension_type, value
        offset += 4 + length


def decode_token_account(address: str, data: bytes) -> TokenAccountState:
    """
    Decode a Token-2022 token account, including the withheld-fee extension.

    Args:
        address: Account address the data was read from
        data: Raw account data

    Returns:
        TokenAccountState with balance and withheld amount
    """
    if len(data) < BASE_ACCOUNT_LENGTH:
        raise EncodingError(f"Token account data too short: {len(data)} bytes")

    withheld_amount = 0
    non_transferable = False
    for extension_type, value in iter_extensions(data):
        if extension_type == EXTENSION_TRANSFER_FEE_AMOUNT:
            withheld_amount = _read_u64(value, 0)
        elif extension_type == EXTENSION_NON_TRANSFERABLE_ACCOUNT:
            non_transferable = True

    return TokenAccountState(
        address=address,
        mint=str(Pubkey.from_bytes(data[0:32])),
        owner=str(Pubkey.from_bytes(data[32:64])),
        amount=_read_u64(data, 64),
        withheld_amount=withheld_amount,
        non_transferable=non_transferable
    )


def decode_mint(address: str, data: bytes) -> MintAccountState:
    """Decode a Token-2022 mint, including its transfer-fee configuration."""
    if len(data) < BASE_MINT_LENGTH:
        raise EncodingError(f"Mint data too short: {len(data)} bytes")

    transfer_fee = None
    withheld_amount = 0
    non_transferable = False
    if len(data) > BASE_ACCOUNT_LENGTH:
        for extension_type, value in iter_extensions(data):
            if extension_type == EXTENSION_TRANSFER_FEE_CONFIG:
                # config authority (32) | withdraw authority (32) | withheld (8)
                # | older fee (epoch 8, max 8, bps 2) | newer fee (epoch 8, max 8, bps 2)
                withdraw_authority = _read_nonzero_pubkey(value, 32)
                withheld_amount = _read_u64(value, 64)
                newer = 64 + 8 + 18
                transfer_fee = TransferFeeConfig(
                    maximum_fee=_read_u64(value, newer + 8),
                    transfer_fee_basis_points=int.from_bytes(value[newer + 16:newer + 18], byteorder="little"),
                    withdraw_authority=withdraw_authority
                )
            elif extension_type == EXTENSION_NON_TRANSFERABLE:
                non_transferable = True

    return MintAccountState(
        address=address,
        mint_authority=_read_coption_pubkey(data, 0),
        supply=_read_u64(data, 36),
        decimals=data[44],
        freeze_authority=_read_coption_pubkey(data, 46),
        transfer_fee=transfer_fee,
        withheld_amount=withheld_amount,
        non_transferable=non_transferable
    )
