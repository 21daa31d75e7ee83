"""Terminal UI components for flow run visualization."""

from nodeflow.cli_ui.live_monitor import LiveExecutionMonitor
from nodeflow.cli_ui.status_table import StatusTableRenderer

__all__ = ["LiveExecutionMonitor", "StatusTableRenderer"]
