"""Job market — the registry of posted jobs and their lifecycle rules.

The registry owns job records; the state machine and deadline monitor
are pure policy consulted by the escrow engine before it commits.
"""

from jobescrow.market.registry import JobRegistry
from jobescrow.market.state_machine import JobStateMachine

__all__ = ["JobRegistry", "JobStateMachine"]
