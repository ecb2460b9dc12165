"""Job records, their lifecycle and derived completion metrics."""
