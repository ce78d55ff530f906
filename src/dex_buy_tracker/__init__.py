"""DEX Buy Tracker - Real-time buy alerts for DEX pools on EVM chains."""

__version__ = "0.1.0"
