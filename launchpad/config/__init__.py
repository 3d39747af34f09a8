"""
Configuration package for the launchpad client.
Core configuration constants loaded from the environment.
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Network configuration
NETWORK = os.getenv("NETWORK", "devnet")
RPC_URLS = {
    "devnet": "https://api.devnet.solana.com",
    "testnet": "https://api.testnet.solana.com",
    "mainnet": "https://api.mainnet-beta.solana.com",
    "localnet": "http://127.0.0.1:8899",
}
RPC_URL = os.getenv("RPC_URL", RPC_URLS.get(NETWORK, RPC_URLS["devnet"]))

# On-chain launchpad program
LAUNCHPAD_PROGRAM_ID = os.getenv("LAUNCHPAD_PROGRAM_ID", "9zZZdmpER8Pw9QJMwSyd8cvV8swbZWeqfJG3Gz2HhVGz")

# Signing agent (base58 encoded 64-byte secret key)
WALLET_PRIVATE_KEY = os.getenv("WALLET_PRIVATE_KEY")

# Logging configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_HISTORY_LIMIT = int(os.getenv("LOG_HISTORY_LIMIT", "20"))  # entries kept in the activity feed

# Confirmation configuration
CONFIRMATION_TIMEOUT = int(os.getenv("CONFIRMATION_TIMEOUT", "30"))  # seconds
CONFIRMATION_COMMITMENT = os.getenv("CONFIRMATION_COMMITMENT", "confirmed")

# Token defaults
DEFAULT_DECIMALS = int(os.getenv("DEFAULT_DECIMALS", "6"))
DEFAULT_TRANSFER_FEE_BPS = int(os.getenv("DEFAULT_TRANSFER_FEE_BPS", "100"))  # 1%
DEFAULT_MAXIMUM_FEE = int(os.getenv("DEFAULT_MAXIMUM_FEE", "1000000"))
