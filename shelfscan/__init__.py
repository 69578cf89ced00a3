"""shelfscan - tiered product extraction for script-rendered grocery storefronts."""

__version__ = "1.0.0"
