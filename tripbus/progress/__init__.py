# Execution Progress
# Boundary for the agent-execution subsystem to report progress

from tripbus.progress.publisher import ProgressPublisher

__all__ = ["ProgressPublisher"]
