"""
Client-side view of the launchpad workflow.
"""

from datetime import datetime
from typing import Dict, Iterable, Optional

from loguru import logger

from launchpad.solana.models import STAGE_ORDER, AssociatedAccount, MintInfo, WorkflowStage


class StateTracker:
    """
    Holds what this client believes exists: the active mint, its associated
    accounts keyed by owner, and the workflow stage.

    Only the ``record_*`` methods change state, and the sequencer calls them
    after a confirmed operation. Each call applies all of its writes at once.
    """

    def __init__(self):
        self.mint: Optional[MintInfo] = None
        self.accounts: Dict[str, AssociatedAccount] = {}
        self.stage = WorkflowStage.UNINITIALIZED
        self.last_inspected_at: Optional[datetime] = None

    def _advance(self, stage: WorkflowStage):
        if STAGE_ORDER.index(stage) > STAGE_ORDER.index(self.stage):
            logger.debug(f"Workflow stage {self.stage.value} -> {stage.value}")
            self.stage = stage

    def record_mint_created(self, mint: MintInfo):
        """Switch to a new mint, discarding accounts tracked for the previous one."""
        self.mint = mint
        self.accounts = {}
        self.stage = WorkflowStage.MINT_CREATED
        self.last_inspected_at = None

    def record_account_created(self, mint: str, owner: str, address: str, is_payer: bool = False):
        """
        Track the associated account of ``owner``.

        Raises:
            ValueError: If ``mint`` is not the active mint
        """
        if self.mint is None or self.mint.address != mint:
            raise ValueError(f"Account {address} belongs to {mint}, not the active mint")

        if owner not in self.accounts:
            self.accounts[owner] = AssociatedAccount(address=address, owner=owner, mint=mint)
        if is_payer:
            self._advance(WorkflowStage.ACCOUNT_READY)

    def record_balance(self, address: str, amount: int, withheld_amount: Optional[int] = None) -> bool:
        """
        Refresh the observed balance of a tracked account.

        Returns:
            True if the address belongs to a tracked account
        """
        now = datetime.now()
        self.last_inspected_at = now
        account = self.account_at(address)
        if account is None:
            return False
        account.balance = amount
        account.withheld_amount = withheld_amount
        account.observed_at = now
        return True

    def record_harvested(self, addresses: Iterable[str]):
        """Zero the withheld amount of tracked accounts swept into the mint."""
        for address in addresses:
            account = self.account_at(address)
            if account is not None:
                account.withheld_amount = 0

    def record_minted(self, address: str, amount: int):
        account = self.account_at(address)
        if account is not None and account.balance is not None:
            account.balance += amount
        self._advance(WorkflowStage.FUNDED)

    def record_transfer_attempted(self):
        self._advance(WorkflowStage.TRANSFER_ATTEMPTED)

    def account_for(self, owner: str) -> Optional[AssociatedAccount]:
        return self.accounts.get(owner)

    def account_at(self, address: str) -> Optional[AssociatedAccount]:
        for account in self.accounts.values():
            if account.address == address:
                return account
        return None
