"""HighLevel connector, authentication and sync engine.

Keep imports in this module lightweight: importing `ghl_dashboard.connectors.<submodule>`
executes this `__init__` first.
"""
