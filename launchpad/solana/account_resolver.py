"""
Associated token account resolution.

Associated account addresses are program-derived from (owner, token program,
mint), so they can be computed locally without an RPC call.
"""

from typing import Optional, Union

from loguru import logger
from solders.pubkey import Pubkey
from spl.token import instructions as spl_token

from launchpad.solana.errors import EncodingError, PreconditionMissing
from launchpad.solana.token_program import TOKEN_2022_PROGRAM_ID
from launchpad.solana.transport import Transport


def to_pubkey(value: Union[str, Pubkey, None], field: str = "address") -> Pubkey:
    """
    Parse an address given as a Pubkey or a base58 string.

    Raises:
        PreconditionMissing: If the value is empty
        EncodingError: If the value is not a valid address
    """
    if isinstance(value, Pubkey):
        return value
    if value is None or not str(value).strip():
        raise PreconditionMissing(f"{field} is required")
    try:
        return Pubkey.from_string(str(value).strip())
    except ValueError:
        raise EncodingError(f"Invalid {field}: {value}")


def get_associated_token_address(
    mint: Pubkey,
    owner: Pubkey,
    token_program_id: Pubkey = TOKEN_2022_PROGRAM_ID
) -> Pubkey:
    """
    Derive the associated token account of ``owner`` for ``mint``.

    Raises:
        ValueError: If ``token_program_id`` is neither SPL Token nor Token-2022
    """
    return spl_token.get_associated_token_address(owner, mint, token_program_id=token_program_id)


class AccountResolver:
    """
    Computes associated account addresses and checks whether they exist.
    """

    def __init__(self, transport: Transport, token_program_id: Pubkey = TOKEN_2022_PROGRAM_ID):
        """
        Initialize the resolver.

        Args:
            transport: Ledger transport used for existence checks
            token_program_id: Token program the accounts belong to
        """
        self.transport = transport
        self.token_program_id = token_program_id

    def derive_associated_address(self, mint: Pubkey, owner: Pubkey) -> Pubkey:
        return get_associated_token_address(mint, owner, self.token_program_id)

    async def exists(self, address: Pubkey) -> bool:
        """
        Check whether an account exists on chain.

        Only a missing account maps to False; transport errors propagate.
        """
        info: Optional[bytes] = await self.transport.get_account_info(address)
        logger.debug(f"Account {address} {'exists' if info is not None else 'not found'}")
        return info is not None
