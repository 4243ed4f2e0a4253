"""Node Selector: which Polar node plays a role in a given cycle."""

import random
from typing import Optional

from .config import NodeRoles


class NodeSelector:
    """
    Picks between a role's primary node and the shared backup node.

    Each pick is an independent fair coin flip; there is no memory of
    previous picks.
    """

    def __init__(self, roles: NodeRoles, rng: Optional[random.Random] = None):
        self.roles = roles
        self.rng = rng or random.Random()

    def pick_funding_node(self) -> str:
        """Node that pays mint invoices (funds the wallet)."""
        return self.rng.choice((self.roles.funding, self.roles.backup))

    def pick_invoice_node(self) -> str:
        """Node that creates invoices for the mint to pay (melt target)."""
        return self.rng.choice((self.roles.invoice, self.roles.backup))
