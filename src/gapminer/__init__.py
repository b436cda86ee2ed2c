"""GapMiner API key issuance, validation and usage metering."""

__version__ = "0.1.0"
