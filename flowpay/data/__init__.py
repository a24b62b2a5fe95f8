"""Data layer - gateway clients and storage."""

from flowpay.data.chain_client import ChainError, ChainGateway
from flowpay.data.payout_client import PayoutGateway
from flowpay.data.storage import init_db

__all__ = ["ChainGateway", "ChainError", "PayoutGateway", "init_db"]
