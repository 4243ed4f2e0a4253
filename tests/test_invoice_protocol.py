"""
Tests for the mint invoice handshake.

Covers:
- Happy path: invoice found, paid, cdk-cli joined
- Bounded polling: TIMED_OUT after exactly poll_attempts sleeps
- PAYMENT_FAILED terminates the background mint
- Completion is independent of cdk-cli's exit code

Run with: pytest tests/test_invoice_protocol.py -v
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from mintsim.clients import MintClient, payment_node_factory
from mintsim.invoice_protocol import HandshakeState, InvoiceCoordinator

from fakes import (
    MINT_DONE_OUTPUT,
    MINT_INVOICE,
    MINT_URL,
    FakeBackground,
    FakeRunner,
    fail,
    ok,
    successful_mint,
)


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def coordinator(runner, sleeps):
    return InvoiceCoordinator(
        MintClient("cdk-cli", MINT_URL, runner),
        payment_node_factory(runner, []),
        poll_attempts=30,
        poll_interval=1.0,
        sleep_fn=sleeps.append,
    )


class TestHappyPath:

    def test_completes_after_payment(self, coordinator, runner, sleeps):
        runner.on("payinvoice", ok('{"status": "SUCCEEDED"}'))
        background = successful_mint(runner)

        result = coordinator.run(100, "polar-n4-bob")

        assert result.state == HandshakeState.COMPLETED
        assert result.ok
        assert result.invoice == MINT_INVOICE
        assert result.output == MINT_DONE_OUTPUT
        assert background.waited
        assert not background.terminated
        # Invoice appeared on the second poll: one sleep
        assert sleeps == [1.0]

    def test_pays_with_chosen_node(self, coordinator, runner):
        runner.on("payinvoice", ok())
        successful_mint(runner)

        coordinator.run(55, "polar-n4-dave")

        pay = runner.calls_with("payinvoice")[0]
        assert pay[:3] == ["docker", "exec", "polar-n4-dave"]
        assert pay[-2:] == ["--force", MINT_INVOICE]
        assert runner.spawned[0][-1] == "55"

    def test_exit_code_does_not_change_outcome(self, coordinator, runner):
        runner.on("payinvoice", ok())
        background = successful_mint(runner)
        background.wait = lambda: setattr(background, "waited", True) or 1

        assert coordinator.run(10, "polar-n4-bob").state == HandshakeState.COMPLETED


class TestTimeout:

    def test_times_out_without_invoice(self, coordinator, runner, sleeps):
        background = runner.queue_mint(FakeBackground(["Requesting quote...\n"]))

        result = coordinator.run(100, "polar-n4-bob")

        assert result.state == HandshakeState.TIMED_OUT
        assert not result.ok
        assert background.terminated
        assert not background.waited
        assert runner.calls_with("payinvoice") == []

    def test_bounded_by_poll_ceiling(self, coordinator, runner, sleeps):
        runner.queue_mint(FakeBackground([""]))
        coordinator.run(100, "polar-n4-bob")
        assert len(sleeps) == 30
        assert sum(sleeps) == 30 * 1.0

    def test_spawn_error_is_timeout(self, runner, sleeps):
        def broken_spawn(argv):
            raise FileNotFoundError("cdk-cli")
        runner.spawn = broken_spawn
        coordinator = InvoiceCoordinator(
            MintClient("cdk-cli", MINT_URL, runner),
            payment_node_factory(runner, []),
            sleep_fn=sleeps.append,
        )
        assert coordinator.run(10, "polar-n4-bob").state == HandshakeState.TIMED_OUT


class TestPaymentFailure:

    def test_payment_failure_terminates_mint(self, coordinator, runner):
        runner.on("payinvoice", fail("[lncli] unable to find a path to destination"))
        background = successful_mint(runner)

        result = coordinator.run(100, "polar-n4-bob")

        assert result.state == HandshakeState.PAYMENT_FAILED
        assert result.invoice == MINT_INVOICE
        assert "unable to find a path" in result.payment_output
        assert background.terminated
        assert not background.waited


class TestAwaitInvoice:

    def test_first_invoice_wins(self, coordinator):
        background = FakeBackground(["Please pay: lnbcrt1first\nlnbcrt1second\n"])
        assert coordinator.await_invoice(background) == "lnbcrt1first"
