"""Account and order resources."""

from .account import Account, AccountStatus
from .order import Order, OrderBuilder, OrderSide, OrderStatus, OrderType, OrderUpdater, TimeInForce
