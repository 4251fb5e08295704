"""chatflow-relay: webhook relay and realtime session routing for chat widgets."""

__version__ = "0.1.0"
