"""
Operation Cycle State Machine.

One cycle is one attempt at a mint, melt or swap:

- mint: a Polar node pays a cdk-cli mint quote (see invoice_protocol).
- melt: a Polar node creates an invoice and cdk-cli pays it with ecash.
- swap: cdk-cli sends a token and immediately receives it back.

Melt and swap need a spendable balance; below min_balance_for_spend they
redirect to a mint cycle, which is not a failure and does not touch the
melt/swap counters. Every failure is logged with the tool output,
increments fail_count and ends the cycle. Nothing raises out of
run_cycle().
"""

import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .clients import MintClient, NodeFactory
from .config import SimConfig
from .invoice_protocol import HandshakeState, InvoiceCoordinator
from .nodes import NodeSelector
from .oracle import BalanceOracle
from .parsing import abbreviate, extract_node_invoice, extract_token
from .session import SessionState

logger = logging.getLogger("mint-sim.cycles")

# Melts need amount + fee reserve (~5%), so they stay well below balance
MELT_BALANCE_DIVISOR = 4
MAX_MELT_AMOUNT = 200
SWAP_BALANCE_DIVISOR = 2


class CycleKind(str, Enum):
    MINT = "mint"
    MELT = "melt"
    SWAP = "swap"


class CycleOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    REDIRECTED = "redirected"


@dataclass
class CycleRecord:
    """Ephemeral record of one cycle; returned to the caller, never stored."""
    kind: CycleKind
    amount: Optional[int] = None
    nodes: List[str] = field(default_factory=list)
    outcome: Optional[CycleOutcome] = None
    balance: Optional[int] = None
    handshake: Optional[HandshakeState] = None
    redirect: Optional["CycleRecord"] = None

    @property
    def ok(self) -> bool:
        if self.outcome == CycleOutcome.REDIRECTED:
            return self.redirect is not None and self.redirect.ok
        return self.outcome == CycleOutcome.SUCCESS


def melt_amount_bounds(balance: int, config: SimConfig) -> Tuple[int, int]:
    """(low, high) for a melt; high < low means the balance is too low."""
    high = min(balance // MELT_BALANCE_DIVISOR, MAX_MELT_AMOUNT, config.max_amount)
    return config.min_amount, high


def swap_amount_bounds(balance: int, config: SimConfig) -> Tuple[int, int]:
    """(low, high) for a swap; high is clamped up to the minimum amount."""
    high = min(balance // SWAP_BALANCE_DIVISOR, config.max_amount)
    return config.min_amount, max(high, config.min_amount)


class CycleEngine:
    """Runs single mint/melt/swap cycles against cdk-cli and the Polar nodes."""

    def __init__(
        self,
        config: SimConfig,
        session: SessionState,
        mint_client: MintClient,
        oracle: BalanceOracle,
        selector: NodeSelector,
        coordinator: InvoiceCoordinator,
        node_factory: NodeFactory,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.session = session
        self.mint_client = mint_client
        self.oracle = oracle
        self.selector = selector
        self.coordinator = coordinator
        self.node_factory = node_factory
        self.rng = rng or random.Random()

    @property
    def unit(self) -> str:
        return self.config.unit

    def run_cycle(self, kind) -> CycleRecord:
        kind = CycleKind(kind)
        handler = {
            CycleKind.MINT: self.mint_cycle,
            CycleKind.MELT: self.melt_cycle,
            CycleKind.SWAP: self.swap_cycle,
        }[kind]
        try:
            return handler()
        except Exception:
            logger.exception(f"Unexpected error during {kind.value} cycle")
            self.session.record_failure()
            return CycleRecord(kind, outcome=CycleOutcome.FAILED)

    def _fail(self, record: CycleRecord, message: str) -> CycleRecord:
        logger.error(message)
        self.session.record_failure()
        record.outcome = CycleOutcome.FAILED
        return record

    def _succeed(self, record: CycleRecord, tag: str) -> CycleRecord:
        record.balance = self.oracle.get_balance()
        logger.info(
            f"[{tag}] {record.kind.value.capitalize()} cycle complete! "
            f"Balance: {record.balance} {self.unit}"
        )
        self.session.record_success(record.kind)
        record.outcome = CycleOutcome.SUCCESS
        return record

    def _redirect(self, kind: CycleKind, reason: str) -> CycleRecord:
        logger.info(f"[{kind.name}] {reason}, forcing mint cycle instead")
        minted = self.mint_cycle()
        return CycleRecord(
            kind, amount=minted.amount, nodes=list(minted.nodes),
            outcome=CycleOutcome.REDIRECTED, balance=minted.balance,
            redirect=minted,
        )

    # =========================================================================
    # MINT
    # =========================================================================

    def mint_cycle(self) -> CycleRecord:
        amount = self.rng.randint(self.config.min_amount, self.config.max_amount)
        node = self.selector.pick_funding_node()
        record = CycleRecord(CycleKind.MINT, amount=amount, nodes=[node])

        logger.info(f"[MINT] Starting mint cycle: {amount} {self.unit} via {node}")

        result = self.coordinator.run(amount, node)
        record.handshake = result.state
        if not result.ok:
            # The coordinator already logged the diagnostic output
            self.session.record_failure()
            record.outcome = CycleOutcome.FAILED
            return record

        return self._succeed(record, "MINT")

    # =========================================================================
    # MELT
    # =========================================================================

    def melt_cycle(self) -> CycleRecord:
        # Reconcile pending proofs first; the result does not matter
        self.mint_client.check_pending()

        balance = self.oracle.get_balance()
        if balance < self.config.min_balance_for_spend:
            return self._redirect(
                CycleKind.MELT, f"Balance too low ({balance} {self.unit})"
            )

        low, high = melt_amount_bounds(balance, self.config)
        if high < low:
            return self._redirect(CycleKind.MELT, "Balance too low for safe melt")

        amount = self.rng.randint(low, high)
        node = self.selector.pick_invoice_node()
        record = CycleRecord(CycleKind.MELT, amount=amount, nodes=[node])

        logger.info(f"[MELT] Starting melt cycle: {amount} {self.unit} to {node}")

        added = self.node_factory(node).add_invoice(amount)
        if not added.ok:
            return self._fail(record, f"Failed to create invoice on {node}: {added.output}")

        payment_request = extract_node_invoice(added.output)
        if not payment_request:
            return self._fail(
                record,
                f"Could not parse payment_request from addinvoice output: {added.output}",
            )

        logger.info(f"[MELT] Created invoice on {node}: {abbreviate(payment_request)}")

        melted = self.mint_client.melt(payment_request)
        if not melted.ok:
            return self._fail(record, f"Failed to melt: {melted.output}")

        logger.info(f"[MELT] Melt output: {melted.output.strip()}")
        return self._succeed(record, "MELT")

    # =========================================================================
    # SWAP
    # =========================================================================

    def swap_cycle(self) -> CycleRecord:
        balance = self.oracle.get_balance()
        if balance < self.config.min_balance_for_spend:
            return self._redirect(
                CycleKind.SWAP, f"Balance too low ({balance} {self.unit})"
            )

        low, high = swap_amount_bounds(balance, self.config)
        amount = self.rng.randint(low, high)
        record = CycleRecord(CycleKind.SWAP, amount=amount)

        logger.info(f"[SWAP] Starting swap cycle: {amount} {self.unit}")

        sent = self.mint_client.send(amount)
        if not sent.ok:
            return self._fail(record, f"Failed to send: {sent.output}")

        token = extract_token(sent.output)
        if not token:
            return self._fail(record, f"Could not parse token from send output: {sent.output}")

        logger.info(f"[SWAP] Created token: {abbreviate(token)}")

        received = self.mint_client.receive(token)
        if not received.ok:
            return self._fail(record, f"Failed to receive: {received.output}")

        logger.info(f"[SWAP] Receive output: {received.output.strip()}")
        return self._succeed(record, "SWAP")
