"""
mint-activity-sim: synthetic mint/melt/swap traffic for a Cashu mint.

Drives cdk-cli and Polar LND nodes through randomized, balance-gated
cycles. See SimController for the control-plane entry points.
"""

__version__ = "0.1.0"
