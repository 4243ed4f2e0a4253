"""
Invoice Coordination Protocol for mint cycles.

`cdk-cli mint` requests a quote, prints its Lightning invoice and then
blocks until the invoice is paid. It offers no structured signal before
payment; the invoice text is the only observable intermediate event.
The handshake is therefore:

    STARTED          spawn `cdk-cli mint` in the background
    AWAITING_INVOICE poll its output once per interval for an invoice
    INVOICE_PAID     have a Polar node pay the invoice (forced)
    COMPLETED        wait for `cdk-cli mint` to exit and keep its output

Terminal failures are TIMED_OUT (no invoice within the poll ceiling) and
PAYMENT_FAILED (the node could not pay). On both, the background process
is terminated before returning.

The final wait has no timeout: once payment has landed cdk-cli is trusted
to finish, and its exit code does not change the COMPLETED outcome.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .clients import MintClient, NodeFactory
from .parsing import abbreviate, extract_mint_invoice

logger = logging.getLogger("mint-sim.mint")

DEFAULT_POLL_ATTEMPTS = 30
DEFAULT_POLL_INTERVAL = 1.0


class HandshakeState(Enum):
    STARTED = "started"
    AWAITING_INVOICE = "awaiting_invoice"
    INVOICE_PAID = "invoice_paid"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    PAYMENT_FAILED = "payment_failed"


@dataclass
class HandshakeResult:
    state: HandshakeState
    invoice: Optional[str] = None
    output: str = ""
    payment_output: str = ""

    @property
    def ok(self) -> bool:
        return self.state == HandshakeState.COMPLETED


class InvoiceCoordinator:
    """Drives one mint handshake between cdk-cli and a paying node."""

    def __init__(
        self,
        mint_client: MintClient,
        node_factory: NodeFactory,
        poll_attempts: int = DEFAULT_POLL_ATTEMPTS,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep_fn: Callable[[float], None] = time.sleep,
    ):
        self.mint_client = mint_client
        self.node_factory = node_factory
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self.sleep_fn = sleep_fn
        self.state: Optional[HandshakeState] = None

    def _transition(self, state: HandshakeState) -> None:
        logger.debug(f"Handshake {self.state.value if self.state else 'none'} -> {state.value}")
        self.state = state

    def await_invoice(self, background) -> Optional[str]:
        """
        Poll the background output for an invoice.

        Checks at most poll_attempts times, sleeping poll_interval after
        each miss, so a silent process gives up after
        poll_attempts * poll_interval seconds.
        """
        for _ in range(self.poll_attempts):
            invoice = extract_mint_invoice(background.output())
            if invoice:
                return invoice
            self.sleep_fn(self.poll_interval)
        return None

    def run(self, amount: int, payer: str) -> HandshakeResult:
        self.state = None
        self._transition(HandshakeState.STARTED)
        try:
            background = self.mint_client.start_mint(amount)
        except OSError as e:
            # No invoice can ever appear
            logger.error(f"Could not start cdk-cli mint: {e}")
            self._transition(HandshakeState.TIMED_OUT)
            return HandshakeResult(self.state, output=str(e))

        self._transition(HandshakeState.AWAITING_INVOICE)
        invoice = self.await_invoice(background)
        if not invoice:
            background.terminate()
            output = background.output()
            logger.error(
                f"Timed out waiting for invoice from cdk-cli mint. Output: {output}"
            )
            self._transition(HandshakeState.TIMED_OUT)
            return HandshakeResult(self.state, output=output)

        logger.info(f"[MINT] Got invoice: {abbreviate(invoice)}")

        node = self.node_factory(payer)
        payment = node.pay_invoice(invoice)
        if not payment.ok:
            logger.error(f"Failed to pay invoice from {payer}: {payment.output}")
            background.terminate()
            self._transition(HandshakeState.PAYMENT_FAILED)
            return HandshakeResult(
                self.state, invoice=invoice,
                output=background.output(), payment_output=payment.output,
            )

        self._transition(HandshakeState.INVOICE_PAID)
        logger.info(f"[MINT] Invoice paid by {payer}")

        background.wait()
        output = background.output()
        logger.info(f"[MINT] cdk-cli mint output: {output.strip()}")
        self._transition(HandshakeState.COMPLETED)
        return HandshakeResult(
            self.state, invoice=invoice, output=output,
            payment_output=payment.output,
        )
