"""
Control-plane facade over the simulator.

SimController is what an HTTP/SSE front end talks to: start a scheduler
run in a background thread, stop it, report status, run one manual cycle
and read per-mint balances. Log lines reach observers through
`controller.events`.
"""

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional

from .clients import CommandRunner, MintClient, payment_node_factory
from .config import ConfigError, SimConfig
from .cycles import CycleEngine, CycleKind
from .events import EventStream
from .invoice_protocol import InvoiceCoordinator
from .nodes import NodeSelector
from .oracle import BalanceOracle
from .scheduler import Scheduler
from .session import SessionState

logger = logging.getLogger("mint-sim.controller")


class ControllerError(RuntimeError):
    """Operation not allowed in the controller's current state."""


@dataclass
class Simulation:
    """The object graph for one engine run."""
    config: SimConfig
    session: SessionState
    oracle: BalanceOracle
    engine: CycleEngine
    scheduler: Scheduler


def build_simulation(
    config: SimConfig,
    runner: Optional[CommandRunner] = None,
    rng: Optional[random.Random] = None,
    sleep_fn: Callable[[float], None] = time.sleep,
    stop_event: Optional[threading.Event] = None,
) -> Simulation:
    """Wire up cdk-cli, the Polar nodes and the cycle engine for `config`."""
    runner = runner or CommandRunner(timeout=config.command_timeout)
    rng = rng or random.Random()
    session = SessionState()

    mint_client = MintClient(config.cdk_cli, config.mint_url, runner)
    node_factory = payment_node_factory(runner, config.lnd_nodes)
    oracle = BalanceOracle(mint_client)
    coordinator = InvoiceCoordinator(
        mint_client,
        node_factory,
        poll_attempts=config.invoice_poll_attempts,
        poll_interval=config.invoice_poll_interval,
        sleep_fn=sleep_fn,
    )
    engine = CycleEngine(
        config, session, mint_client, oracle,
        NodeSelector(config.node_roles, rng), coordinator, node_factory, rng,
    )
    scheduler = Scheduler(engine, session, oracle, config, rng, stop_event)
    return Simulation(config, session, oracle, engine, scheduler)


class SimController:
    """Start/stop/status over a single scheduler run."""

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        events: Optional[EventStream] = None,
        rng_factory: Callable[[], random.Random] = random.Random,
        sleep_fn: Callable[[float], None] = time.sleep,
    ):
        self.runner = runner
        self.events = events or EventStream()
        self.events.attach()
        self.rng_factory = rng_factory
        self.sleep_fn = sleep_fn
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._simulation: Optional[Simulation] = None

    def _check_config(self, config: SimConfig) -> None:
        error = config.validate()
        if error:
            raise ConfigError(error)

    def _build(self, config: SimConfig) -> Simulation:
        return build_simulation(
            config, runner=self.runner, rng=self.rng_factory(),
            sleep_fn=self.sleep_fn,
        )

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def status(self) -> Dict[str, Any]:
        status: Dict[str, Any] = {"running": self.is_running()}
        if self._simulation is not None:
            status["session"] = self._simulation.session.to_dict()
        return status

    def start(self, config: SimConfig) -> None:
        """Begin a scheduler run; rejected if one is already active."""
        self._check_config(config)
        with self._lock:
            if self.is_running():
                raise ControllerError("Already running")

            simulation = self._build(config)
            self.events.broadcast(
                f"--- Starting simulator: {config.mint_url}  unit={config.unit} ---"
            )
            thread = threading.Thread(
                target=self._run, args=(simulation,), name="mint-sim", daemon=True
            )
            self._simulation = simulation
            self._thread = thread
            thread.start()

    def _run(self, simulation: Simulation) -> None:
        try:
            simulation.scheduler.run()
        except Exception as e:
            logger.error(f"Simulator crashed: {e}")
        finally:
            self.events.broadcast("--- Simulator exited ---")

    def stop(self) -> None:
        """Request cancellation; the current cycle finishes first."""
        with self._lock:
            if not self.is_running():
                raise ControllerError("Not running")
            self.events.broadcast("--- Stopping after the current cycle... ---")
            self._simulation.scheduler.request_stop()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the loop thread; True once it has exited."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def run_manual_cycle(
        self, kind, config: SimConfig, amount: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Run exactly one cycle outside the loop, on its own session.

        A given amount pins the amount range to that value; otherwise the
        amount is drawn from the configured range.
        """
        try:
            kind = CycleKind(kind)
        except ValueError:
            raise ConfigError(f"Unknown operation: {kind!r}") from None
        if amount is not None:
            if isinstance(amount, bool) or not isinstance(amount, int) or amount < 1:
                raise ConfigError(f"amount must be a positive integer, got {amount!r}")
            config = config.with_fixed_amount(amount)
        self._check_config(config)

        simulation = self._build(config)
        self.events.broadcast(
            f"--- Manual {kind.value}: {amount if amount is not None else 'random'} "
            f"{config.unit} on {config.mint_url} ---"
        )
        record = simulation.engine.run_cycle(kind)
        self.events.broadcast(
            f"--- Manual {kind.value} finished ({'ok' if record.ok else 'failed'}) ---"
        )
        return {
            "ok": record.ok,
            "kind": kind.value,
            "outcome": record.outcome.value if record.outcome else None,
            "amount": record.amount,
            "session": simulation.session.to_dict(),
        }

    def balances(self, config: SimConfig, mint_urls: Optional[Iterable[str]] = None) -> Dict[str, str]:
        """Per-mint balances as "<amount> <unit>" strings."""
        urls = list(mint_urls) if mint_urls else [config.mint_url]
        return self._build(config).oracle.mint_balances(urls)
