"""
Node Integration Layer.

Provides abstracted access to Cardano blockchain data and transaction submission.
Supports multiple backends (Blockfrost, Ogmios).
"""

from payroll.node.interface import (
    ChainTip,
    NetworkRejection,
    NetworkTransientError,
    NodeInterface,
    NodeRequestError,
    ProtocolParameters,
)
from payroll.node.blockfrost import BlockfrostAdapter
from payroll.node.ogmios import OgmiosAdapter

__all__ = [
    "NodeInterface",
    "ProtocolParameters",
    "ChainTip",
    "NetworkTransientError",
    "NetworkRejection",
    "NodeRequestError",
    "BlockfrostAdapter",
    "OgmiosAdapter",
]
