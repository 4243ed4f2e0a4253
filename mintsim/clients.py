"""
Wrappers around the external programs the simulator drives.

- MintClient: the cdk-cli wallet, run locally.
- PaymentNode: an LND/litd node inside a Polar container, reached with
  `docker exec <container> lncli ...`.

Every short-lived call returns a CommandResult instead of raising, so a
failing dependency only ever fails the current cycle. `cdk-cli mint` is
the one long-running call: it prints an invoice, then blocks until the
invoice is paid, so it is spawned as a BackgroundCommand whose output can
be read while it is still running.
"""

import logging
import os
import re
import subprocess
import threading
from dataclasses import dataclass
from typing import Callable, IO, List, Optional, Sequence

logger = logging.getLogger("mint-sim.clients")

TERMINATE_GRACE_SECONDS = 5.0
READ_CHUNK_SIZE = 4096

LITD_ARGS = [
    "--tlscertpath", "/home/litd/.lnd/tls.cert",
    "--macaroonpath", "/home/litd/.lnd/data/chain/bitcoin/regtest/admin.macaroon",
    "--network", "regtest",
]
LND_ARGS = [
    "--tlscertpath", "/home/lnd/.lnd/tls.cert",
    "--macaroonpath", "/home/lnd/.lnd/data/chain/bitcoin/regtest/admin.macaroon",
    "--network", "regtest",
]

# lncli reports RPC errors as "[lncli] rpc error: ..." and failed payments
# as "Payment status: FAILED", sometimes with exit code 0
LNCLI_ERROR_RE = re.compile(r"\[lncli\]|Payment status:\s*FAILED")


@dataclass
class CommandResult:
    """Outcome of a short-lived external call (stdout then stderr, like 2>&1)."""
    ok: bool
    output: str
    returncode: Optional[int] = None


class OutputBuffer:
    """
    Accumulates a process's raw output; safe to read while it is being written.

    Bytes are decoded on read, so a chunk boundary inside a multi-byte
    character or an invalid byte never loses the text around it.
    """

    def __init__(self):
        self._chunks: List[bytes] = []
        self._lock = threading.Lock()

    def append(self, chunk: bytes) -> None:
        with self._lock:
            self._chunks.append(chunk)

    def getvalue(self) -> str:
        with self._lock:
            data = b"".join(self._chunks)
        return data.decode("utf-8", errors="replace")


class BackgroundCommand:
    """A spawned process whose merged stdout/stderr drains into an OutputBuffer."""

    def __init__(self, proc: subprocess.Popen):
        self._proc = proc
        self._buffer = OutputBuffer()
        self._reader = threading.Thread(
            target=self._drain, args=(proc.stdout,), daemon=True
        )
        self._reader.start()

    def _drain(self, stream: Optional[IO[bytes]]) -> None:
        # os.read returns whatever is available, so output without a
        # trailing newline is visible as soon as the child writes it
        if stream is None:
            return
        try:
            fd = stream.fileno()
            while True:
                chunk = os.read(fd, READ_CHUNK_SIZE)
                if not chunk:
                    break
                self._buffer.append(chunk)
        except OSError as e:
            logger.warning(f"Output reader for pid {self._proc.pid} stopped: {e}")
        finally:
            stream.close()

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.poll()

    def output(self) -> str:
        return self._buffer.getvalue()

    def is_running(self) -> bool:
        return self._proc.poll() is None

    def wait(self) -> Optional[int]:
        """Block until the process exits. No timeout."""
        code = self._proc.wait()
        self._reader.join()
        return code

    def terminate(self, grace: float = TERMINATE_GRACE_SECONDS) -> None:
        """SIGTERM, then SIGKILL if the process ignores it."""
        if self._proc.poll() is None:
            self._proc.terminate()
            try:
                self._proc.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                self._proc.kill()
                self._proc.wait()
        self._reader.join(timeout=grace)


class CommandRunner:
    """
    Runs external programs with execvp-style args (no shell).

    Children get their own session, so a terminal Ctrl-C reaches only the
    simulator and never a payment or mint already in flight.
    """

    def __init__(self, timeout: Optional[float] = 120.0):
        self.timeout = timeout

    def run(self, argv: Sequence[str], timeout: Optional[float] = None) -> CommandResult:
        timeout = self.timeout if timeout is None else timeout
        logger.debug(f"exec: {' '.join(argv)}")
        try:
            result = subprocess.run(
                list(argv), capture_output=True, text=True, errors="replace",
                timeout=timeout, start_new_session=True,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(False, f"timed out after {timeout}s: {argv[0]}")
        except OSError as e:
            return CommandResult(False, str(e))

        output = (result.stdout or "") + (result.stderr or "")
        return CommandResult(result.returncode == 0, output, result.returncode)

    def spawn(self, argv: Sequence[str]) -> BackgroundCommand:
        proc = subprocess.Popen(
            list(argv),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            bufsize=0,
            start_new_session=True,
        )
        return BackgroundCommand(proc)


class MintClient:
    """cdk-cli wallet bound to one mint."""

    def __init__(self, cdk_cli: str, mint_url: str, runner: CommandRunner):
        self.cdk_cli = cdk_cli
        self.mint_url = mint_url
        self.runner = runner

    def _run(self, *args: str) -> CommandResult:
        return self.runner.run([self.cdk_cli, *args])

    def balance(self) -> CommandResult:
        return self._run("balance")

    def check_pending(self) -> CommandResult:
        return self._run("check-pending")

    def start_mint(self, amount: int) -> BackgroundCommand:
        """Start `cdk-cli mint`, which blocks until its invoice is paid."""
        return self.runner.spawn([self.cdk_cli, "mint", self.mint_url, str(amount)])

    def melt(self, invoice: str) -> CommandResult:
        return self._run("melt", "--mint-url", self.mint_url, "--invoice", invoice)

    def send(self, amount: int) -> CommandResult:
        return self._run("send", "-a", str(amount), "--mint-url", self.mint_url)

    def receive(self, token: str) -> CommandResult:
        return self._run("receive", token)


class PaymentNode:
    """LND or litd node in a Polar container."""

    def __init__(self, container: str, runner: CommandRunner, plain_lnd: bool = False):
        self.container = container
        self.runner = runner
        self.plain_lnd = plain_lnd

    def __repr__(self) -> str:
        return f"PaymentNode({self.container!r})"

    @property
    def lncli_args(self) -> List[str]:
        return list(LND_ARGS if self.plain_lnd else LITD_ARGS)

    def _lncli(self, *args: str) -> CommandResult:
        cmd = ["docker", "exec", self.container, "lncli", *self.lncli_args, *args]
        return self.runner.run(cmd)

    def add_invoice(self, amount: int) -> CommandResult:
        return self._lncli("addinvoice", "--amt", str(amount))

    def pay_invoice(self, invoice: str) -> CommandResult:
        """Pay without the interactive confirmation prompt."""
        result = self._lncli("payinvoice", "--force", invoice)
        if result.ok and LNCLI_ERROR_RE.search(result.output):
            return CommandResult(False, result.output, result.returncode)
        return result


NodeFactory = Callable[[str], PaymentNode]


def payment_node_factory(runner: CommandRunner, lnd_nodes: Sequence[str]) -> NodeFactory:
    """Build PaymentNode instances for container names."""
    plain = set(lnd_nodes)

    def _make(container: str) -> PaymentNode:
        return PaymentNode(container, runner, plain_lnd=container in plain)

    return _make
