"""
xbase Configuration
===================
Format constants shared by every component, plus the per-table options
a caller can override when opening or creating a table.

There are no config files or environment variables: constants live here,
everything else is a constructor argument.
"""

from dataclasses import dataclass
from typing import Optional

# ─── Table file layout ──────────────────────────────────────────────────────

HEADER_SIZE = 32            # Standard/extended header preamble
DESCRIPTOR_SIZE = 32        # Standard/extended field descriptor
FIELD_TERMINATOR = 0x0D     # Ends the descriptor table
FIELD_NAME_SIZE = 11        # 10 name bytes + NUL

LEGACY_HEADER_SIZE = 8      # dBASE II header preamble
LEGACY_DESCRIPTOR_SIZE = 16
LEGACY_SLOT_COUNT = 32      # dBASE II always reserves 32 descriptor slots
LEGACY_HEADER_LENGTH = LEGACY_HEADER_SIZE + LEGACY_SLOT_COUNT * LEGACY_DESCRIPTOR_SIZE + 1  # 521

# ─── Memo file layout ───────────────────────────────────────────────────────

DEFAULT_BLOCK_LENGTH = 512
MAX_BLOCK_LENGTH = 0xFFFF
MEMO_SENTINEL = b"\x1a\x1a"                 # dBASE III end of memo
DBT4_SIGNATURE = b"\xff\xff\x08\x00"        # dBASE IV block prefix

# ─── Field defaults ─────────────────────────────────────────────────────────

MAX_FIELD_NAME_LENGTH = 10
DEFAULT_MEMO_REF_LENGTH = 10   # ASCII reference width in dBASE III/IV


@dataclass
class TableOptions:
    """
    Per-table overrides.

    encoding / decimal_separator replace what the header's language byte
    would resolve to. memo_block_length is only used when a memo store is
    created.
    """
    encoding: Optional[str] = None
    decimal_separator: Optional[str] = None
    memo_block_length: int = DEFAULT_BLOCK_LENGTH

# Visual FoxPro tables reserve this many bytes after the descriptor
# terminator for the path of their database container (blank if free)
DBC_BACKLINK_SIZE = 263
