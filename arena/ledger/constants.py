
import os
from pathlib import Path
from solders.pubkey import Pubkey

# Session key + tx journal
DEFAULT_DATA_DIR = Path.home() / ".arena"

PROGRAM_ID     = Pubkey.from_string(os.getenv("ARENA_PROGRAM_ID", "3PDo9AKeLhU6hcUC7gft3PKQuotH4624mcevqdSiyTPS"))
SYSTEM_PROGRAM = Pubkey.from_string("11111111111111111111111111111111")

ROLLUP_RPC_URL = "https://devnet.magicblock.app"
BASE_RPC_URL   = "https://api.devnet.solana.com"

ROLLUP = "rollup"
BASE_CHAIN = "base"

TRADING_PAIRS = {
    "SOL": 0,
    "BTC": 1,
    "ETH": 2,
    "AVAX": 3,
    "LINK": 4,
}
PAIR_SYMBOLS = {v: k for k, v in TRADING_PAIRS.items()}

SEED_USER_ACCOUNT = b"user-account"
SEED_POSITION     = b"position"
SEED_COMPETITION  = b"competition"
SEED_PARTICIPANT  = b"participant"

MAX_SEED_LEN = 32
MAX_SEEDS    = 16

LAMPORTS_PER_SOL = 1_000_000_000
QUOTE_DECIMALS   = 6
BASE_DECIMALS    = 9
PRICE_DECIMALS   = 6

SESSION_WALLET_KEY = "arena_session_wallet"
