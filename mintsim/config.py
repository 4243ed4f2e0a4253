"""
Configuration for the mint activity simulator.

A SimConfig is immutable for the lifetime of one engine run. It can be
built from the process environment (the simulator's historical surface)
or from the control-plane parameter form.
"""

import os
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional, Tuple


DEFAULT_CDK_CLI = os.path.join(
    os.path.expanduser("~"), "Sites/cdk/target/release/cdk-cli"
)

# Maps control-plane form keys -> SimConfig field names
PARAM_FIELDS: Dict[str, str] = {
    "mintUrl": "mint_url",
    "unit": "unit",
    "minAmount": "min_amount",
    "maxAmount": "max_amount",
    "minDelay": "min_delay",
    "maxDelay": "max_delay",
    "minBalance": "min_balance_for_spend",
    "fundingNode": "funding_node",
    "invoiceNode": "invoice_node",
    "backupNode": "backup_node",
}

ENV_FIELDS: Dict[str, str] = {
    "MINT_URL": "mint_url",
    "UNIT": "unit",
    "MIN_AMOUNT": "min_amount",
    "MAX_AMOUNT": "max_amount",
    "MIN_DELAY": "min_delay",
    "MAX_DELAY": "max_delay",
    "MIN_BALANCE_FOR_SPEND": "min_balance_for_spend",
    "FUNDING_NODE": "funding_node",
    "INVOICE_NODE": "invoice_node",
    "BACKUP_NODE": "backup_node",
    "CDK_CLI": "cdk_cli",
}

INT_FIELDS = {
    "min_amount", "max_amount", "min_delay", "max_delay",
    "min_balance_for_spend",
}


class ConfigError(ValueError):
    """Raised when simulator parameters are malformed."""


@dataclass(frozen=True)
class NodeRoles:
    """External payment nodes and the role each plays in a cycle."""
    funding: str
    invoice: str
    backup: str


@dataclass(frozen=True)
class SimConfig:
    mint_url: str = "http://localhost:5551"
    unit: str = "sat"

    # Amounts (inclusive)
    min_amount: int = 10
    max_amount: int = 500

    # Seconds between cycles (inclusive)
    min_delay: int = 5
    max_delay: int = 30

    # Melt/swap are not attempted below this balance
    min_balance_for_spend: int = 20

    # Polar containers (docker exec targets)
    funding_node: str = "polar-n4-bob"      # pays invoices TO the mint
    invoice_node: str = "polar-n4-frank"    # receives payments FROM the mint
    backup_node: str = "polar-n4-dave"      # alternate node for variety

    # Nodes running plain lnd; every other node is litd
    lnd_nodes: Tuple[str, ...] = ("polar-n4-frank",)

    cdk_cli: str = DEFAULT_CDK_CLI

    invoice_poll_attempts: int = 30
    invoice_poll_interval: float = 1.0
    command_timeout: float = 120.0
    summary_every: int = 20

    @property
    def node_roles(self) -> NodeRoles:
        return NodeRoles(self.funding_node, self.invoice_node, self.backup_node)

    def validate(self) -> Optional[str]:
        """Return an error message for an invalid config, or None."""
        if not self.mint_url:
            return "mint_url must not be empty"
        if not self.unit:
            return "unit must not be empty"
        if self.min_amount < 1:
            return f"min_amount ({self.min_amount}) must be positive"
        if self.min_amount > self.max_amount:
            return (f"min_amount ({self.min_amount}) must be <= "
                    f"max_amount ({self.max_amount})")
        if self.min_delay < 0:
            return f"min_delay ({self.min_delay}) must not be negative"
        if self.min_delay > self.max_delay:
            return (f"min_delay ({self.min_delay}) must be <= "
                    f"max_delay ({self.max_delay})")
        if self.min_balance_for_spend < 0:
            return "min_balance_for_spend must not be negative"
        for name in ("funding_node", "invoice_node", "backup_node", "cdk_cli"):
            if not getattr(self, name):
                return f"{name} must not be empty"
        if self.invoice_poll_attempts < 1:
            return "invoice_poll_attempts must be at least 1"
        if self.invoice_poll_interval < 0:
            return "invoice_poll_interval must not be negative"
        if self.summary_every < 1:
            return "summary_every must be at least 1"
        return None

    def with_fixed_amount(self, amount: int) -> "SimConfig":
        """Copy of this config whose amount range is exactly `amount`."""
        return replace(self, min_amount=amount, max_amount=amount)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SimConfig":
        """Build a config from MINT_URL, MIN_AMOUNT, ... environment variables."""
        environ = os.environ if environ is None else environ
        values = {
            fname: environ[key]
            for key, fname in ENV_FIELDS.items()
            if environ.get(key)
        }
        if environ.get("LND_NODES"):
            values["lnd_nodes"] = tuple(
                n.strip() for n in environ["LND_NODES"].split(",") if n.strip()
            )
        return cls._build(values, source="environment")

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "SimConfig":
        """Build a config from the control-plane form (mintUrl, minAmount, ...)."""
        if not isinstance(params, Mapping):
            raise ConfigError("parameters must be an object")
        values = {
            fname: params[key]
            for key, fname in PARAM_FIELDS.items()
            if params.get(key) not in (None, "")
        }
        return cls._build(values, source="parameters")

    @classmethod
    def _build(cls, values: Dict[str, Any], source: str) -> "SimConfig":
        for name in INT_FIELDS & set(values):
            raw = values[name]
            if isinstance(raw, bool):
                raise ConfigError(f"{name}: expected an integer, got {raw!r}")
            try:
                values[name] = int(raw)
            except (TypeError, ValueError):
                raise ConfigError(
                    f"{name}: expected an integer, got {raw!r}"
                ) from None
        for name in set(values) - INT_FIELDS - {"lnd_nodes"}:
            values[name] = str(values[name])

        config = cls(**values)
        error = config.validate()
        if error:
            raise ConfigError(f"Invalid {source}: {error}")
        return config
