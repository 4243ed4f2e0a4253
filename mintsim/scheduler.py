"""
Scheduler Loop: drives cycles one at a time until asked to stop.

    IDLE -> RUNNING -> (choose kind -> run cycle -> delay)* -> SHUTTING_DOWN -> STOPPED

Cycle kinds are drawn 40% mint / 30% melt / 30% swap. Cancellation is a
threading.Event checked only between cycles; a cycle in flight always
reaches its own terminal state.
The inter-cycle delay waits on the same event and ends early on stop.
"""

import logging
import random
import threading
from enum import Enum
from typing import Optional

from .config import SimConfig
from .cycles import CycleEngine, CycleKind
from .oracle import BalanceOracle
from .session import SessionState

logger = logging.getLogger("mint-sim")

# Upper bounds of each kind's slice of [0, 100)
MINT_THRESHOLD = 40
MELT_THRESHOLD = 70


class SchedulerState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


def choose_kind(roll: int) -> CycleKind:
    """Map a roll in [0, 100) onto a cycle kind."""
    if not 0 <= roll < 100:
        raise ValueError(f"roll must be in [0, 100), got {roll}")
    if roll < MINT_THRESHOLD:
        return CycleKind.MINT
    if roll < MELT_THRESHOLD:
        return CycleKind.MELT
    return CycleKind.SWAP


class Scheduler:
    """Sole owner and mutator of the session state while running."""

    def __init__(
        self,
        engine: CycleEngine,
        session: SessionState,
        oracle: BalanceOracle,
        config: SimConfig,
        rng: Optional[random.Random] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self.engine = engine
        self.session = session
        self.oracle = oracle
        self.config = config
        self.rng = rng or random.Random()
        self.stop_event = stop_event or threading.Event()
        self.state = SchedulerState.IDLE

    def request_stop(self) -> None:
        self.stop_event.set()

    @property
    def stopping(self) -> bool:
        return self.stop_event.is_set()

    def draw_kind(self) -> CycleKind:
        return choose_kind(self.rng.randrange(100))

    def random_delay(self) -> int:
        delay = self.rng.randint(self.config.min_delay, self.config.max_delay)
        logger.info(f"Sleeping {delay}s before next operation...")
        self.stop_event.wait(delay)
        return delay

    def print_summary(self) -> None:
        balance = self.oracle.get_balance()
        for line in self.session.summary_lines(balance, self.config.unit):
            logger.info(line)

    def _log_banner(self) -> None:
        cfg = self.config
        logger.info("==========================================")
        logger.info("  Cashu Mint Activity Simulator Starting")
        logger.info("==========================================")
        logger.info(f"Mint URL:      {cfg.mint_url}")
        logger.info(f"Unit:          {cfg.unit}")
        logger.info(f"Funding node:  {cfg.funding_node}")
        logger.info(f"Invoice node:  {cfg.invoice_node}")
        logger.info(f"Backup node:   {cfg.backup_node}")
        logger.info(f"Amount range:  {cfg.min_amount}-{cfg.max_amount} {cfg.unit}")
        logger.info(f"Delay range:   {cfg.min_delay}-{cfg.max_delay}s")
        logger.info("==========================================")

    def bootstrap(self) -> bool:
        """Run one unconditional mint if the wallet starts below the spend floor."""
        balance = self.oracle.get_balance()
        logger.info(f"Starting balance: {balance} {self.config.unit}")
        if balance >= self.config.min_balance_for_spend:
            return False
        logger.info("Low starting balance, performing initial mint...")
        self.session.record_attempt()
        self.engine.run_cycle(CycleKind.MINT)
        return True

    def run_once(self) -> None:
        """One loop iteration: attempt, cycle, delay, periodic summary."""
        kind = self.draw_kind()
        self.session.record_attempt()
        try:
            self.engine.run_cycle(kind)
        except Exception as e:
            logger.error(f"Cycle error: {e}")
            self.session.record_failure()

        self.random_delay()

        if self.session.attempts % self.config.summary_every == 0:
            self.print_summary()

    def run(self) -> SessionState:
        self.state = SchedulerState.RUNNING
        self._log_banner()
        try:
            if not self.stopping:
                self.bootstrap()
            while not self.stopping:
                self.run_once()
        finally:
            self.state = SchedulerState.SHUTTING_DOWN
            logger.info("Caught shutdown signal, stopping...")
            self.print_summary()
            self.state = SchedulerState.STOPPED
        return self.session
