"""
Safe CoW swap package.

Wraps native currency, approves the CoW Protocol vault relayer and trades
through CoW Protocol from a Safe smart-contract wallet.
"""

from .config import WorkflowConfig
from .exceptions import SwapError
from .models import WorkflowResult
from .workflow import SwapWorkflow, WorkflowMode, run_swap

__all__ = ["WorkflowConfig", "SwapWorkflow", "WorkflowMode", "WorkflowResult", "SwapError", "run_swap"]
__version__ = "0.1.0"
