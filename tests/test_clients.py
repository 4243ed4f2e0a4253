"""
Tests for the cdk-cli / lncli wrappers.

Covers:
- CommandRunner: exit codes, merged output, timeouts and missing binaries
- BackgroundCommand: raw output readable while running (partial lines,
  invalid bytes), wait, terminate, own session
- MintClient / PaymentNode argv construction
- lncli payment failure detection

Run with: pytest tests/test_clients.py -v
"""

import os
import subprocess
import sys
import time
from unittest.mock import Mock, patch

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from mintsim.clients import (
    LITD_ARGS,
    LND_ARGS,
    CommandRunner,
    MintClient,
    OutputBuffer,
    PaymentNode,
    payment_node_factory,
)

from fakes import FakeRunner, MINT_URL, ok


def wait_for_output(background, needle, timeout=5.0):
    deadline = time.time() + timeout
    while needle not in background.output() and time.time() < deadline:
        time.sleep(0.02)
    return needle in background.output()


class TestOutputBuffer:

    def test_split_multibyte_character(self):
        buffer = OutputBuffer()
        data = "Mint quote: ₿ lnbcrt1abc".encode()
        cut = data.index(b"\xe2") + 1
        buffer.append(data[:cut])
        buffer.append(data[cut:])
        assert buffer.getvalue() == "Mint quote: ₿ lnbcrt1abc"

    def test_invalid_bytes_replaced(self):
        buffer = OutputBuffer()
        buffer.append(b"bad \xff\n")
        buffer.append(b"lnbcrt1abc\n")
        assert buffer.getvalue() == "bad \ufffd\nlnbcrt1abc\n"


class TestCommandRunner:

    def test_success_merges_output(self):
        completed = subprocess.CompletedProcess(["x"], 0, stdout="out\n", stderr="warn\n")
        with patch("mintsim.clients.subprocess.run", return_value=completed) as run:
            result = CommandRunner(timeout=5).run(["cdk-cli", "balance"])
        assert result.ok
        assert result.output == "out\nwarn\n"
        assert result.returncode == 0
        run.assert_called_once_with(
            ["cdk-cli", "balance"], capture_output=True, text=True, errors="replace",
            timeout=5, start_new_session=True,
        )

    def test_nonzero_exit_fails(self):
        completed = subprocess.CompletedProcess(["x"], 2, stdout="", stderr="boom")
        with patch("mintsim.clients.subprocess.run", return_value=completed):
            result = CommandRunner().run(["cdk-cli", "send"])
        assert not result.ok
        assert result.returncode == 2
        assert "boom" in result.output

    def test_timeout_is_failure(self):
        with patch("mintsim.clients.subprocess.run",
                   side_effect=subprocess.TimeoutExpired("cdk-cli", 5)):
            result = CommandRunner(timeout=5).run(["cdk-cli", "melt"])
        assert not result.ok
        assert "timed out" in result.output

    def test_missing_binary_is_failure(self):
        with patch("mintsim.clients.subprocess.run",
                   side_effect=FileNotFoundError("No such file: cdk-cli")):
            result = CommandRunner().run(["cdk-cli", "balance"])
        assert not result.ok
        assert "No such file" in result.output


class TestBackgroundCommand:

    def test_output_visible_before_exit(self):
        script = "import time; print('Please pay: lnbcrt1abc', flush=True); time.sleep(0.5)"
        background = CommandRunner().spawn([sys.executable, "-c", script])
        deadline = time.time() + 5
        while "lnbcrt1abc" not in background.output() and time.time() < deadline:
            time.sleep(0.02)
        assert "lnbcrt1abc" in background.output()
        assert background.wait() == 0
        assert not background.is_running()

    def test_terminate_stops_blocked_process(self):
        background = CommandRunner().spawn(
            [sys.executable, "-c", "import time; time.sleep(30)"]
        )
        assert background.is_running()
        background.terminate(grace=2)
        assert not background.is_running()
        assert background.returncode is not None

    def test_output_without_newline_visible(self):
        script = (
            "import sys, time; sys.stdout.write('Please pay: lnbcrt1abc'); "
            "sys.stdout.flush(); time.sleep(5)"
        )
        background = CommandRunner().spawn([sys.executable, "-c", script])
        try:
            assert wait_for_output(background, "lnbcrt1abc")
            assert background.is_running()
        finally:
            background.terminate(grace=2)

    def test_invalid_bytes_do_not_stop_reader(self):
        script = (
            "import sys, time; out = sys.stdout.buffer; "
            "out.write(b'quote \\xff\\xfe\\n'); out.flush(); time.sleep(0.1); "
            "out.write(b'Please pay: lnbcrt1abc\\n'); out.flush(); time.sleep(5)"
        )
        background = CommandRunner().spawn([sys.executable, "-c", script])
        try:
            assert wait_for_output(background, "lnbcrt1abc")
            assert "quote \ufffd\ufffd" in background.output()
        finally:
            background.terminate(grace=2)

    def test_large_output_fully_drained(self):
        script = "import sys; sys.stdout.write('x' * 200000 + 'lnbcrt1end')"
        background = CommandRunner().spawn([sys.executable, "-c", script])
        assert background.wait() == 0
        assert background.output().endswith("lnbcrt1end")

    def test_child_runs_in_own_session(self):
        script = "import os; print(os.getsid(0) == os.getpid())"
        background = CommandRunner().spawn([sys.executable, "-c", script])
        background.wait()
        assert background.output().strip() == "True"

    def test_stderr_is_merged(self):
        script = "import sys; sys.stderr.write('error: quote failed\\n')"
        background = CommandRunner().spawn([sys.executable, "-c", script])
        background.wait()
        assert "quote failed" in background.output()


class TestMintClient:

    @pytest.fixture
    def runner(self):
        return FakeRunner().on("", ok("done"))

    @pytest.fixture
    def client(self, runner):
        return MintClient("cdk-cli", MINT_URL, runner)

    def test_balance(self, client, runner):
        client.balance()
        assert runner.calls[-1] == ["cdk-cli", "balance"]

    def test_check_pending(self, client, runner):
        client.check_pending()
        assert runner.calls[-1] == ["cdk-cli", "check-pending"]

    def test_melt(self, client, runner):
        client.melt("lnbcrt1x")
        assert runner.calls[-1] == [
            "cdk-cli", "melt", "--mint-url", MINT_URL, "--invoice", "lnbcrt1x"
        ]

    def test_send(self, client, runner):
        client.send(42)
        assert runner.calls[-1] == ["cdk-cli", "send", "-a", "42", "--mint-url", MINT_URL]

    def test_receive(self, client, runner):
        client.receive("cashuBabc")
        assert runner.calls[-1] == ["cdk-cli", "receive", "cashuBabc"]

    def test_start_mint_spawns(self, client, runner):
        client.start_mint(100)
        assert runner.spawned == [["cdk-cli", "mint", MINT_URL, "100"]]


class TestPaymentNode:

    def test_litd_is_default(self):
        runner = FakeRunner().on("", ok())
        PaymentNode("polar-n4-bob", runner).add_invoice(250)
        assert runner.calls[-1] == (
            ["docker", "exec", "polar-n4-bob", "lncli"] + LITD_ARGS
            + ["addinvoice", "--amt", "250"]
        )

    def test_factory_marks_plain_lnd_nodes(self):
        runner = FakeRunner().on("", ok())
        make = payment_node_factory(runner, ["polar-n4-frank"])
        assert make("polar-n4-frank").lncli_args == LND_ARGS
        assert make("polar-n4-dave").lncli_args == LITD_ARGS

    def test_pay_invoice_forces(self):
        runner = FakeRunner().on("", ok('{"status": "SUCCEEDED"}'))
        result = PaymentNode("polar-n4-bob", runner).pay_invoice("lnbcrt1x")
        assert result.ok
        assert runner.calls[-1][-3:] == ["payinvoice", "--force", "lnbcrt1x"]

    def test_lncli_error_text_fails_payment(self):
        runner = FakeRunner().on("", ok("[lncli] rpc error: code = Unknown desc = invoice expired"))
        assert not PaymentNode("polar-n4-bob", runner).pay_invoice("lnbcrt1x").ok

    def test_failed_status_fails_payment(self):
        runner = FakeRunner().on("", ok("Payment status: FAILED, reason: FAILURE_REASON_NO_ROUTE"))
        assert not PaymentNode("polar-n4-bob", runner).pay_invoice("lnbcrt1x").ok

    def test_nonzero_exit_fails_payment(self):
        runner = Mock()
        runner.run.return_value = Mock(ok=False, output="docker: no such container", returncode=1)
        assert not PaymentNode("polar-n4-zed", runner).pay_invoice("lnbcrt1x").ok
