"""
Balance Oracle: reads the spendable wallet balance from cdk-cli.

A failed or unparsable balance query reads as 0. A spurious zero steers
the scheduler toward mint cycles, which replenish the wallet, instead of
halting the simulation.
"""

import logging
from typing import Dict, Iterable

from .clients import MintClient
from .parsing import extract_balance, parse_mint_balances

logger = logging.getLogger("mint-sim.oracle")


class BalanceOracle:
    """Stateless reader of the cdk-cli wallet balance."""

    def __init__(self, mint_client: MintClient):
        self.mint_client = mint_client

    def get_balance(self) -> int:
        """Current balance, or 0 if it cannot be determined. Never raises."""
        try:
            result = self.mint_client.balance()
        except Exception as e:
            logger.warning(f"Balance query failed: {e}")
            return 0
        if not result.ok:
            # Error text can carry digits (ports, codes) that are not a balance
            logger.warning(f"Balance query failed: {result.output.strip()}")
            return 0
        return extract_balance(result.output)

    def mint_balances(self, mint_urls: Iterable[str]) -> Dict[str, str]:
        """Per-mint "<amount> <unit>" strings; unknown mints read "0"."""
        mint_urls = list(mint_urls)
        try:
            result = self.mint_client.balance()
        except Exception as e:
            logger.warning(f"Balance query failed: {e}")
            return {url: "0" for url in mint_urls}
        if not result.ok:
            return {url: "0" for url in mint_urls}
        return parse_mint_balances(result.output, mint_urls)
