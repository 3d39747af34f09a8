import os
import sys
from typing import Awaitable, Callable, Dict, Optional, Sequence

import pytest
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT)

from launchpad.solana.account_resolver import get_associated_token_address
from launchpad.solana.errors import SubmissionRejected
from launchpad.solana.models import ConfirmationStatus, MintAccountState, TokenAccountState, TransferFeeConfig
from launchpad.solana.sequencer import LaunchpadSequencer
from launchpad.solana.token_program import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    CREATE_SOULBOUND_TOKEN_DISCRIMINATOR,
    CREATE_TAXED_TOKEN_DISCRIMINATOR,
    CreateSoulboundTokenArgs,
    CreateTaxedTokenArgs,
    HARVEST_WITHHELD_TOKENS_TO_MINT,
    MINT_TO_INSTRUCTION,
    TOKEN_2022_PROGRAM_ID,
    TRANSFER_CHECKED_WITH_FEE,
    TRANSFER_FEE_EXTENSION,
    WITHDRAW_WITHHELD_TOKENS_FROM_MINT,
    calculate_transfer_fee,
    decode_transfer_checked_with_fee,
)
from launchpad.solana.transport import KeypairWallet, Transport

PROGRAM_ID = Pubkey.from_string("9zZZdmpER8Pw9QJMwSyd8cvV8swbZWeqfJG3Gz2HhVGz")


class FakeLedger(Transport):
    """
    In-memory cluster that executes the instructions the launchpad sends.

    Transactions are applied atomically: a rejected instruction leaves every
    account untouched, as preflight simulation would.
    """

    def __init__(self, program_id: Pubkey = PROGRAM_ID):
        self.program_id = program_id
        self.mints: Dict[Pubkey, dict] = {}
        self.accounts: Dict[Pubkey, dict] = {}
        self.calls = []
        self.submitted = []
        self.unconfirmed = set()
        self.fail_next_with: Optional[Exception] = None
        # the next submitted transaction lands but fails on chain with this error
        self.fail_on_chain: Optional[str] = None
        self.failed: Dict[str, str] = {}
        self.on_confirm: Optional[Callable[[str], Awaitable[None]]] = None
        self._counter = 0

    # Transport contract

    async def get_account_info(self, address: Pubkey) -> Optional[bytes]:
        self.calls.append(("get_account_info", address))
        if self.fail_next_with is not None:
            error, self.fail_next_with = self.fail_next_with, None
            raise error
        if address in self.mints or address in self.accounts:
            return b"\x01"
        return None

    async def submit(self, instructions: Sequence[Instruction], signers: Sequence[Keypair]) -> str:
        self.calls.append(("submit", len(instructions)))
        signer_keys = {signer.pubkey() for signer in signers}
        mints = {address: dict(state) for address, state in self.mints.items()}
        accounts = {address: dict(state) for address, state in self.accounts.items()}
        for instruction in instructions:
            for meta in instruction.accounts:
                if meta.is_signer and meta.pubkey not in signer_keys:
                    raise SubmissionRejected(f"Missing signature for {meta.pubkey}")
            self._execute(instruction, mints, accounts)

        self._counter += 1
        signature = f"sig{self._counter}"
        if self.fail_on_chain is not None:
            self.failed[signature], self.fail_on_chain = self.fail_on_chain, None
        else:
            self.mints, self.accounts = mints, accounts
        self.submitted.append((signature, list(instructions)))
        return signature

    async def confirm(self, signature: str) -> ConfirmationStatus:
        self.calls.append(("confirm", signature))
        if self.on_confirm is not None:
            await self.on_confirm(signature)
        if signature in self.failed:
            return ConfirmationStatus(signature=signature, confirmed=False, error=self.failed[signature])
        return ConfirmationStatus(signature=signature, confirmed=signature not in self.unconfirmed)

    async def query_token_account(self, address: Pubkey) -> Optional[TokenAccountState]:
        self.calls.append(("query_token_account", address))
        account = self.accounts.get(address)
        if account is None:
            return None
        return TokenAccountState(
            address=str(address),
            mint=str(account["mint"]),
            owner=str(account["owner"]),
            amount=account["amount"],
            withheld_amount=account["withheld"]
        )

    async def query_mint(self, address: Pubkey) -> Optional[MintAccountState]:
        self.calls.append(("query_mint", address))
        mint = self.mints.get(address)
        if mint is None:
            return None
        transfer_fee = None
        if mint["kind"] == "taxed":
            transfer_fee = TransferFeeConfig(
                transfer_fee_basis_points=mint["fee_bps"],
                maximum_fee=mint["maximum_fee"],
                withdraw_authority=str(mint["withdraw_authority"])
            )
        return MintAccountState(
            address=str(address),
            decimals=mint["decimals"],
            supply=mint["supply"],
            mint_authority=str(mint["mint_authority"]),
            transfer_fee=transfer_fee,
            withheld_amount=mint["withheld"],
            non_transferable=mint["kind"] == "soulbound"
        )

    # Program simulation

    def _execute(self, instruction: Instruction, mints: dict, accounts: dict):
        keys = [meta.pubkey for meta in instruction.accounts]
        data = bytes(instruction.data)

        if instruction.program_id == self.program_id:
            self._create_mint(keys, data, mints)
        elif instruction.program_id == ASSOCIATED_TOKEN_PROGRAM_ID:
            payer, address, owner, mint = keys[:4]
            if address != get_associated_token_address(mint, owner):
                raise SubmissionRejected("Provided seeds do not result in a valid address")
            if address in accounts:
                raise SubmissionRejected(f"Account {address} already in use")
            if mint not in mints:
                raise SubmissionRejected(f"Mint {mint} does not exist")
            accounts[address] = {"mint": mint, "owner": owner, "amount": 0, "withheld": 0}
        elif instruction.program_id == TOKEN_2022_PROGRAM_ID:
            self._token_instruction(keys, data, mints, accounts)
        else:
            raise SubmissionRejected(f"Unknown program {instruction.program_id}")

    def _create_mint(self, keys, data, mints):
        if keys[1] in mints:
            raise SubmissionRejected(f"Mint {keys[1]} already in use")
        if data[:8] == CREATE_TAXED_TOKEN_DISCRIMINATOR:
            args = CreateTaxedTokenArgs.parse(data[8:])
            payer, mint, mint_authority, withdraw_authority, freeze_authority = keys[:5]
            mints[mint] = {
                "kind": "taxed",
                "decimals": args.decimals,
                "fee_bps": args.transfer_fee_basis_points,
                "maximum_fee": args.maximum_fee,
                "withdraw_authority": withdraw_authority,
                "mint_authority": mint_authority,
                "supply": 0,
                "withheld": 0,
            }
        elif data[:8] == CREATE_SOULBOUND_TOKEN_DISCRIMINATOR:
            args = CreateSoulboundTokenArgs.parse(data[8:])
            payer, mint, mint_authority, freeze_authority = keys[:4]
            mints[mint] = {
                "kind": "soulbound",
                "decimals": args.decimals,
                "mint_authority": mint_authority,
                "supply": 0,
                "withheld": 0,
            }
        else:
            raise SubmissionRejected("Fallback functions are not supported")

    def _token_instruction(self, keys, data, mints, accounts):
        if data[0] == MINT_TO_INSTRUCTION:
            mint, destination, authority = keys
            if mints[mint]["mint_authority"] != authority:
                raise SubmissionRejected("owner does not match")
            amount = int.from_bytes(data[1:9], "little")
            accounts[destination]["amount"] += amount
            mints[mint]["supply"] += amount
            return

        if data[0] != TRANSFER_FEE_EXTENSION:
            raise SubmissionRejected("invalid instruction data")

        if data[1] == TRANSFER_CHECKED_WITH_FEE:
            source, mint, destination, authority = keys
            amount, decimals, fee = decode_transfer_checked_with_fee(data)
            config = mints[mint]
            if config["kind"] == "soulbound":
                raise SubmissionRejected("Transfer is disabled for this mint")
            if decimals != config["decimals"]:
                raise SubmissionRejected("The provided decimals value different from the Mint decimals")
            if fee != calculate_transfer_fee(amount, config["fee_bps"], config["maximum_fee"]):
                raise SubmissionRejected("Calculated fee does not match expected fee")
            if accounts[source]["owner"] != authority:
                raise SubmissionRejected("owner does not match")
            if accounts[source]["amount"] < amount:
                raise SubmissionRejected("insufficient funds")
            accounts[source]["amount"] -= amount
            accounts[destination]["amount"] += amount - fee
            accounts[destination]["withheld"] += fee
        elif data[1] == HARVEST_WITHHELD_TOKENS_TO_MINT:
            mint = keys[0]
            for source in keys[1:]:
                if source in accounts and accounts[source]["mint"] == mint:
                    mints[mint]["withheld"] += accounts[source]["withheld"]
                    accounts[source]["withheld"] = 0
        elif data[1] == WITHDRAW_WITHHELD_TOKENS_FROM_MINT:
            mint, destination, authority = keys
            if mints[mint].get("withdraw_authority") != authority:
                raise SubmissionRejected("owner does not match")
            accounts[destination]["amount"] += mints[mint]["withheld"]
            mints[mint]["withheld"] = 0
        else:
            raise SubmissionRejected("invalid instruction data")

    def network_calls(self):
        return list(self.calls)


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def payer_keypair():
    return Keypair.from_seed(bytes(range(32)))


@pytest.fixture
def wallet(ledger, payer_keypair):
    return KeypairWallet(payer_keypair, ledger)


@pytest.fixture
def sequencer(ledger, wallet):
    return LaunchpadSequencer(ledger, wallet=wallet, program_id=PROGRAM_ID)


@pytest.fixture
def recipient():
    return Keypair.from_seed(bytes(range(32, 64))).pubkey()
