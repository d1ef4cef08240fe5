"""
Live Desk - polling client for a simulated trading engine.

Architecture:
- datafeed/: REST client, response decoding, per-feed polling timers
- engine/: Reconciliation, derived book metrics, subscription and order state
- desk.py: Wires feeds to reconcilers and publishes immutable view models
- ui/: Book ladder + trades + orders (Textual TUI)
"""

__version__ = "0.1.0"
