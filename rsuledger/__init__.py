"""rsuledger: RSU grant tracking, vesting, sale tax and portfolio timelines."""

__version__ = "0.1.0"
