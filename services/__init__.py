"""
Trading Simulator - Services Package
"""

from .trade_controller import TradeLifecycleController
from .exit_monitor import ExitMonitor
from .account_service import AccountService

__all__ = ['TradeLifecycleController', 'ExitMonitor', 'AccountService']
