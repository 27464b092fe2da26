"""Async Python client for Credit Coop Secured Line contracts."""
from .errors import (
    ConfigurationError,
    CreditCoopError,
    InterfaceMismatchError,
    RemoteQueryError,
    SubmissionError,
    WriteRejectedError,
)
from .models import CreditPosition, Fees, OpenCounts, PositionLiquidity, PositionRates, Rates
from .protocols.secured_line import SecuredLine

__version__ = "0.2.0"

__all__ = [
    "ConfigurationError",
    "CreditCoopError",
    "CreditPosition",
    "Fees",
    "InterfaceMismatchError",
    "OpenCounts",
    "PositionLiquidity",
    "PositionRates",
    "Rates",
    "RemoteQueryError",
    "SecuredLine",
    "SubmissionError",
    "WriteRejectedError",
]
