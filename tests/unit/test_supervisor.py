from __future__ import annotations

from typing import List

import pytest

from claimledger.domain.errors import TransferFailedError
from claimledger.engine.supervisor import TransferSupervisor
from tests.fakes import WALLET, FakeLedger


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _supervisor(ledger: FakeLedger, sleep: RecordingSleep, attempts: int = 3) -> TransferSupervisor:
    return TransferSupervisor(
        ledger,
        max_attempts=attempts,
        backoff_base=1.0,
        backoff_max=5.0,
        confirm_timeout=0.05,
        sleep=sleep,
    )


@pytest.mark.asyncio
async def test_immediate_confirmation() -> None:
    ledger = FakeLedger(["confirm"])
    sleep = RecordingSleep()
    seen: List[str] = []

    async def on_submitted(tx_id: str) -> None:
        seen.append(tx_id)

    tx_id = await _supervisor(ledger, sleep).transfer(WALLET, 10, on_submitted=on_submitted)

    assert tx_id == "transfer-1"
    assert seen == ["transfer-1"]
    assert ledger.submissions == [(WALLET, 10, "blockhash-1")]
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_rejected_submissions_retry_with_fresh_token_and_backoff() -> None:
    ledger = FakeLedger(["reject", "reject", "confirm"])
    sleep = RecordingSleep()

    tx_id = await _supervisor(ledger, sleep).transfer(WALLET, 10)

    assert tx_id == "transfer-1"
    assert ledger.submissions == [(WALLET, 10, "blockhash-3")]
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_timeout_then_poll_finds_confirmation() -> None:
    ledger = FakeLedger(["late"])
    sleep = RecordingSleep()

    tx_id = await _supervisor(ledger, sleep).transfer(WALLET, 10)

    assert tx_id == "transfer-1"
    assert len(ledger.submissions) == 1


@pytest.mark.asyncio
async def test_earlier_submission_landing_during_backoff_ends_loop() -> None:
    ledger = FakeLedger(["lands_later", "confirm"])
    sleep = RecordingSleep()

    tx_id = await _supervisor(ledger, sleep).transfer(WALLET, 10)

    assert tx_id == "transfer-1"
    assert len(ledger.submissions) == 1


@pytest.mark.asyncio
async def test_failed_transfers_are_resubmitted() -> None:
    ledger = FakeLedger(["fail", "confirm"])
    sleep = RecordingSleep()

    tx_id = await _supervisor(ledger, sleep).transfer(WALLET, 10)

    assert tx_id == "transfer-2"
    assert [s[2] for s in ledger.submissions] == ["blockhash-1", "blockhash-2"]


@pytest.mark.asyncio
async def test_exhausted_retries_raise_terminal_error() -> None:
    ledger = FakeLedger(["fail", "reject", "fail"])
    sleep = RecordingSleep()

    with pytest.raises(TransferFailedError) as excinfo:
        await _supervisor(ledger, sleep).transfer(WALLET, 10)

    assert excinfo.value.context["attempts"] == 3
    assert excinfo.value.context["submitted"] == ["transfer-1", "transfer-2"]
    assert excinfo.value.context["unresolved"] == []
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_pending_submissions_are_reported_unresolved() -> None:
    ledger = FakeLedger(["hang", "hang"])
    sleep = RecordingSleep()

    with pytest.raises(TransferFailedError) as excinfo:
        await _supervisor(ledger, sleep, attempts=2).transfer(WALLET, 10)

    assert excinfo.value.context["unresolved"] == ["transfer-1", "transfer-2"]


@pytest.mark.asyncio
async def test_backoff_is_capped() -> None:
    ledger = FakeLedger(["reject"] * 5)
    sleep = RecordingSleep()

    with pytest.raises(TransferFailedError):
        await _supervisor(ledger, sleep, attempts=5).transfer(WALLET, 10)

    assert sleep.delays == [1.0, 2.0, 4.0, 5.0]
