import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from launchpad.solana.account_resolver import get_associated_token_address
from launchpad.solana.errors import EncodingError
from launchpad.solana.token_program import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    CREATE_TAXED_TOKEN_DISCRIMINATOR,
    CreateTaxedTokenArgs,
    TOKEN_2022_PROGRAM_ID,
    U64_MAX,
    calculate_transfer_fee,
    create_associated_token_account_instruction,
    create_soulbound_token_instruction,
    create_taxed_token_instruction,
    decode_mint,
    decode_token_account,
    decode_transfer_checked_with_fee,
    decode_transfer_fee_header,
    encode_transfer_checked_with_fee,
    encode_withdraw_withheld_tokens_from_mint,
    mint_to_instruction,
    sighash,
    transfer_checked_with_fee_instruction,
)

MINT = Keypair.from_seed(bytes([1] * 32)).pubkey()
OWNER = Keypair.from_seed(bytes([2] * 32)).pubkey()
AUTHORITY = Keypair.from_seed(bytes([3] * 32)).pubkey()


def test_transfer_with_fee_layout():
    data = encode_transfer_checked_with_fee(100_000, 6, 1000)
    assert len(data) == 19
    assert data[:2] == bytes([26, 1])
    assert data[2:10] == (100_000).to_bytes(8, "little")
    assert data[10] == 6
    assert data[11:19] == (1000).to_bytes(8, "little")


def test_transfer_with_fee_header_recovers_selectors():
    data = encode_transfer_checked_with_fee(100_000, 6, 1000)
    assert decode_transfer_fee_header(data) == (26, 1)
    assert decode_transfer_checked_with_fee(data) == (100_000, 6, 1000)


def test_transfer_with_fee_accepts_u64_bounds():
    data = encode_transfer_checked_with_fee(U64_MAX, 255, 0)
    assert data[2:10] == b"\xff" * 8


@pytest.mark.parametrize("amount, decimals, fee", [
    (U64_MAX + 1, 6, 0),
    (-1, 6, 0),
    (100, 256, 0),
    (100, 6, U64_MAX + 1),
    (100, -1, 0),
    ("100", 6, 0),
    (True, 6, 0),
])
def test_transfer_with_fee_rejects_out_of_range(amount, decimals, fee):
    with pytest.raises(EncodingError):
        encode_transfer_checked_with_fee(amount, decimals, fee)


def test_header_decode_rejects_short_data():
    with pytest.raises(EncodingError):
        decode_transfer_fee_header(b"\x1a")


@pytest.mark.parametrize("amount, bps, maximum_fee, expected", [
    (100_000, 100, 1_000_000, 1000),
    (100_001, 100, 1_000_000, 1001),  # rounds up
    (1, 100, 1_000_000, 1),
    (100_000, 100, 500, 500),  # capped
    (100_000, 0, 1_000_000, 0),
    (0, 100, 1_000_000, 0),
    (12_345, 10_000, U64_MAX, 12_345),
    (U64_MAX, 10_000, U64_MAX, U64_MAX),
])
def test_calculate_transfer_fee(amount, bps, maximum_fee, expected):
    assert calculate_transfer_fee(amount, bps, maximum_fee) == expected


def test_calculate_transfer_fee_never_exceeds_amount():
    for amount in (0, 1, 7, 99, 10_000, 123_456_789):
        for bps in (0, 1, 50, 100, 2_500, 9_999, 10_000):
            for maximum_fee in (0, 1, 1000, U64_MAX):
                fee = calculate_transfer_fee(amount, bps, maximum_fee)
                raw = -(-amount * bps // 10_000)
                assert fee == min(maximum_fee, raw)
                assert fee <= amount


def test_calculate_transfer_fee_rejects_invalid_rate():
    with pytest.raises(EncodingError):
        calculate_transfer_fee(100, 10_001, 10)


def test_transfer_instruction_accounts():
    source, destination = Pubkey.new_unique(), Pubkey.new_unique()
    ix = transfer_checked_with_fee_instruction(source, MINT, destination, AUTHORITY, 100_000, 6, 1000)
    assert ix.program_id == TOKEN_2022_PROGRAM_ID
    assert [m.pubkey for m in ix.accounts] == [source, MINT, destination, AUTHORITY]
    assert [m.is_signer for m in ix.accounts] == [False, False, False, True]
    assert [m.is_writable for m in ix.accounts] == [True, False, True, False]


def test_mint_to_and_withdraw_payloads():
    ix = mint_to_instruction(MINT, OWNER, AUTHORITY, 1_000_000)
    assert ix.program_id == TOKEN_2022_PROGRAM_ID
    assert bytes(ix.data) == bytes([7]) + (1_000_000).to_bytes(8, "little")
    assert [(m.pubkey, m.is_signer) for m in ix.accounts] == [(MINT, False), (OWNER, False), (AUTHORITY, True)]
    with pytest.raises(EncodingError):
        mint_to_instruction(MINT, OWNER, AUTHORITY, U64_MAX + 1)
    assert encode_withdraw_withheld_tokens_from_mint() == bytes([26, 2])


def test_create_associated_account_instruction():
    payer = Pubkey.new_unique()
    ix = create_associated_token_account_instruction(payer, OWNER, MINT)
    assert ix.program_id == ASSOCIATED_TOKEN_PROGRAM_ID
    assert bytes(ix.data) == b""
    assert ix.accounts[0].pubkey == payer and ix.accounts[0].is_signer
    assert ix.accounts[1].pubkey == get_associated_token_address(MINT, OWNER)
    assert ix.accounts[2].pubkey == OWNER and ix.accounts[3].pubkey == MINT
    assert ix.accounts[5].pubkey == TOKEN_2022_PROGRAM_ID


def test_create_taxed_token_instruction():
    program_id = Pubkey.new_unique()
    ix = create_taxed_token_instruction(program_id, OWNER, MINT, OWNER, AUTHORITY, OWNER, 6, 100, 1_000_000)
    data = bytes(ix.data)
    assert data[:8] == CREATE_TAXED_TOKEN_DISCRIMINATOR == sighash("create_taxed_token")
    args = CreateTaxedTokenArgs.parse(data[8:])
    assert (args.decimals, args.transfer_fee_basis_points, args.maximum_fee) == (6, 100, 1_000_000)
    assert len(ix.accounts) == 8
    assert ix.accounts[1].pubkey == MINT and ix.accounts[1].is_signer
    assert ix.accounts[3].pubkey == AUTHORITY


def test_create_soulbound_token_instruction_has_no_fee_authority():
    program_id = Pubkey.new_unique()
    ix = create_soulbound_token_instruction(program_id, OWNER, MINT, OWNER, OWNER, 6)
    assert bytes(ix.data) == sighash("create_soulbound_token") + bytes([6])
    assert len(ix.accounts) == 7


def _token_account_data(amount: int, withheld: int = None) -> bytes:
    data = bytearray(165)
    data[0:32] = bytes(MINT)
    data[32:64] = bytes(OWNER)
    data[64:72] = amount.to_bytes(8, "little")
    data[108] = 1  # initialized
    if withheld is not None:
        data += bytes([2])  # account type: Account
        data += (2).to_bytes(2, "little") + (8).to_bytes(2, "little") + withheld.to_bytes(8, "little")
    return bytes(data)


def test_decode_token_account_with_withheld_fee():
    state = decode_token_account("addr", _token_account_data(99_000, withheld=1000))
    assert state.mint == str(MINT)
    assert state.owner == str(OWNER)
    assert state.amount == 99_000
    assert state.withheld_amount == 1000


def test_decode_token_account_without_extensions():
    state = decode_token_account("addr", _token_account_data(5))
    assert state.amount == 5
    assert state.withheld_amount == 0


def test_decode_token_account_rejects_short_data():
    with pytest.raises(EncodingError):
        decode_token_account("addr", b"\x00" * 100)


def test_decode_mint_transfer_fee_config():
    data = bytearray(165)
    data[0:4] = (1).to_bytes(4, "little")
    data[4:36] = bytes(OWNER)
    data[36:44] = (1_000_000).to_bytes(8, "little")
    data[44] = 6
    data[45] = 1
    data += bytes([1])  # account type: Mint
    value = bytearray(108)
    value[32:64] = bytes(AUTHORITY)
    value[64:72] = (1000).to_bytes(8, "little")
    value[98:106] = (1_000_000).to_bytes(8, "little")  # newer maximum fee
    value[106:108] = (100).to_bytes(2, "little")  # newer basis points
    data += (1).to_bytes(2, "little") + (108).to_bytes(2, "little") + value

    state = decode_mint("mint", bytes(data))
    assert state.decimals == 6
    assert state.supply == 1_000_000
    assert state.mint_authority == str(OWNER)
    assert state.freeze_authority is None
    assert state.withheld_amount == 1000
    assert state.transfer_fee.transfer_fee_basis_points == 100
    assert state.transfer_fee.maximum_fee == 1_000_000
    assert state.transfer_fee.withdraw_authority == str(AUTHORITY)
    assert not state.non_transferable
