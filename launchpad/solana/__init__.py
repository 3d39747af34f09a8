"""
Solana integration for the taxed token launchpad.

This package contains modules for driving the Token-2022 taxed and soulbound
token workflow: instruction encoding, associated account resolution,
operation building, client-side state tracking and sequencing.

Note: We start on devnet; the launchpad program id is configured per cluster.
"""

from launchpad.solana.models import (
    MintKind,
    MintConfig,
    MintInfo,
    AssociatedAccount,
    TokenAccountState,
    MintAccountState,
    PendingOperation,
    LogEntry,
    OperationResult,
    WorkflowStage,
)
from launchpad.solana.errors import (
    LaunchpadError,
    NotConnected,
    PreconditionMissing,
    EncodingError,
    SubmissionRejected,
    TransportFailure,
)
from launchpad.solana.transport import Transport, SigningAgent, RpcTransport, KeypairWallet
from launchpad.solana.account_resolver import AccountResolver, get_associated_token_address
from launchpad.solana.operation_builder import OperationBuilder
from launchpad.solana.state_tracker import StateTracker
from launchpad.solana.activity_log import ActivityLog
from launchpad.solana.sequencer import LaunchpadSequencer
