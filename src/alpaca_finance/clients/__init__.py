"""REST session for the Alpaca API."""

from .alpaca import Alpaca, ApiResponse
