"""Account resource."""

import logging
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import BadData, InvalidCredentials
from ..utils.coercion import Float

if TYPE_CHECKING:
    from ..clients.alpaca import Alpaca

logger = logging.getLogger(__name__)

ACCOUNT_PATH = "v2/account"


class AccountStatus(str, Enum):
    """
    The status of the account.

    Most likely ACTIVE. ACCOUNT_UPDATED shows up while personal information
    is being changed from the dashboard, during which trading may be blocked
    until the change is approved.
    """
    ACCOUNT_UPDATED = "ACCOUNT_UPDATED"
    ACTIVE = "ACTIVE"
    APPROVAL_PENDING = "APPROVAL_PENDING"
    ONBOARDING = "ONBOARDING"
    REJECTED = "REJECTED"
    SUBMISSION_FAILED = "SUBMISSION_FAILED"
    SUBMITTED = "SUBMITTED"


class Account(BaseModel):
    """
    Account status, funds available for trading and withdrawal, and the
    flags that restrict what the account may do.

    An account may be blocked just for trades (is_trading_blocked) or for
    both trades and transfers (is_account_blocked). Accounts flagged under
    FINRA's pattern day trading rule have is_pattern_day_trader set.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    number: str = Field(alias="account_number")
    cash: Float
    equity: Float
    long_market_value: Float
    short_market_value: Float
    buying_power: Float
    is_account_blocked: bool = Field(alias="account_blocked")
    is_pattern_day_trader: bool = Field(alias="pattern_day_trader")
    is_trade_suspended: bool = Field(alias="trade_suspended_by_user")
    is_trading_blocked: bool = Field(alias="trading_blocked")
    is_transfers_blocked: bool = Field(alias="transfers_blocked")
    status: AccountStatus

    @classmethod
    async def get(cls, alpaca: "Alpaca") -> "Account":
        """Get the current account information."""
        response = await alpaca.call("GET", ACCOUNT_PATH)
        if not response.ok:
            logger.warning(f"Account request rejected with status {response.status}")
            raise InvalidCredentials()

        try:
            return cls.model_validate_json(response.body)
        except ValidationError as e:
            logger.error(f"Failed to decode account from {response.url}: {e}")
            raise BadData(f"Alpaca returned invalid account data - {e}") from e
