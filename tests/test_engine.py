#!/usr/bin/env python3
"""
SolverEngine tests, including the full two-chain swap scenario and
stuck-swap visibility.
"""

import sys
import os
import asyncio
import unittest

import httpx

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fakes import (
    make_clients, make_config, make_secret, swap_id, user_lock,
    USER_EVM, USER_AZTEC, USER_TIMELOCK,
)
from server import create_app
from solver.core import SwapDirection, CHAIN_AZTEC, CHAIN_BASE
from solver.swap.engine import (
    SolverEngine, STATUS_ACCEPTED, STATUS_ALREADY_TRACKING, format_amount,
)


async def wait_until(predicate, timeout=2.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.005)
    await asyncio.wait_for(poll(), timeout)


class EngineTestCase(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.clients = make_clients()
        self.aztec = self.clients[CHAIN_AZTEC]
        self.base = self.clients[CHAIN_BASE]
        self.engine = SolverEngine(make_config(), self.clients)


class TestNotifyLock(EngineTestCase):

    async def test_accepted_then_already_tracking(self):
        _, high, low = make_secret()
        args = (swap_id(1), SwapDirection.AZTEC_TO_BASE, 100, high, low, USER_EVM, USER_TIMELOCK)
        status, record = self.engine.notify_lock(*args)
        self.assertEqual(status, STATUS_ACCEPTED)
        status, again = self.engine.notify_lock(*args)
        self.assertEqual(status, STATUS_ALREADY_TRACKING)
        self.assertIs(again, record)
        self.assertEqual(len(self.engine.registry), 1)
        self.assertEqual(self.engine.schedulers[CHAIN_BASE].queued, 1)

    async def test_notify_fills_missing_address(self):
        _, high, low = make_secret()
        self.aztec.add_user_htlc(swap_id(1), amount=100)
        scheduler = self.engine.schedulers[CHAIN_BASE]
        scheduler.start()

        self.engine.notify_lock(swap_id(1), SwapDirection.AZTEC_TO_BASE, 100, high, low)
        await scheduler.join()
        self.assertTrue(scheduler.is_parked(swap_id(1)))

        status, record = self.engine.notify_lock(
            swap_id(1), SwapDirection.AZTEC_TO_BASE, 100, high, low,
            user_address=USER_EVM, timelock=USER_TIMELOCK,
        )
        self.assertEqual(status, STATUS_ALREADY_TRACKING)
        await scheduler.join()
        await scheduler.stop()
        self.assertTrue(record.solver_locked)
        self.assertEqual(record.counterparty_address, USER_EVM)

    async def test_notified_timelock_not_trusted(self):
        _, high, low = make_secret()
        scheduler = self.engine.schedulers[CHAIN_BASE]
        scheduler.start()

        # Inflated timelock against the on-chain lock
        self.aztec.add_user_htlc(swap_id(1), amount=100, timelock=USER_TIMELOCK)
        self.engine.notify_lock(swap_id(1), SwapDirection.AZTEC_TO_BASE, 100, high, low,
                                USER_EVM, USER_TIMELOCK + 86400)
        # No user lock on the source chain at all
        self.engine.notify_lock(swap_id(2), SwapDirection.AZTEC_TO_BASE, 100, high, low,
                                USER_EVM, USER_TIMELOCK)
        await scheduler.join()
        await scheduler.stop()

        self.assertEqual(self.base.lock_requests, [])
        self.assertFalse(self.engine.registry.get(swap_id(1)).solver_locked)
        self.assertFalse(self.engine.registry.get(swap_id(2)).solver_locked)


class TestLifecycle(EngineTestCase):

    async def test_report_balances(self):
        self.base.balance = 0
        self.aztec.balance = 12_500_000
        with self.assertLogs("solver.swap.engine", level="INFO") as logs:
            balances = await self.engine.report_balances()
        self.assertEqual(balances, {CHAIN_AZTEC: 12_500_000, CHAIN_BASE: 0})
        self.assertTrue(any("zero" in line for line in logs.output))

    async def test_start_stop(self):
        await self.engine.start()
        self.assertTrue(self.engine.running)
        await self.engine.stop()
        self.assertFalse(self.engine.running)
        self.assertTrue(self.aztec.closed and self.base.closed)

    async def test_status_summary(self):
        _, high, low = make_secret()
        self.engine.notify_lock(swap_id(1), SwapDirection.BASE_TO_AZTEC, 100, high, low, USER_AZTEC)
        status = self.engine.status_summary()
        self.assertEqual(status["awaitingLock"], 1)
        self.assertEqual(status["aztecQueue"], 1)
        self.assertEqual(status["baseQueue"], 0)

    def test_format_amount(self):
        self.assertEqual(format_amount(10_000_000), "10.000000")
        self.assertEqual(format_amount(1), "0.000001")


class TestEndToEnd(EngineTestCase):

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.http = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=create_app(engine=self.engine)),
            base_url="http://solver",
        )

    async def asyncTearDown(self):
        await self.http.aclose()
        if self.engine.running:
            await self.engine.stop()

    async def test_aztec_to_base_swap(self):
        """User locks 10.00 on Aztec; solver locks 10.00 on Base; both sides redeem."""
        secret, high, low = make_secret()
        sid = swap_id(0xabc)
        self.aztec.emit(user_lock(CHAIN_AZTEC, 0xabc, high, low,
                                  amount=10_000_000, dst_address=USER_EVM))

        await self.engine.start()
        await wait_until(lambda: sid in self.engine.registry and
                         self.engine.registry.get(sid).solver_locked)

        request = self.base.lock_requests[0]
        self.assertEqual(request.amount, 10_000_000)
        self.assertEqual(request.receiver, USER_EVM)
        self.assertLess(request.timelock, USER_TIMELOCK)

        swaps = (await self.http.get("/swaps")).json()["swaps"]
        self.assertEqual([s["swapId"] for s in swaps], [sid])
        self.assertTrue(swaps[0]["solverLocked"])

        self.base.user_redeems(sid, secret)
        await wait_until(lambda: sid not in self.engine.registry)

        self.assertEqual(self.aztec.redeems, [(sid, secret)])
        self.assertEqual((await self.http.get("/swaps")).json(), {"swaps": []})

    async def test_base_to_aztec_swap_with_reward(self):
        secret, high, low = make_secret()
        sid = swap_id(77)
        self.base.emit(user_lock(CHAIN_BASE, 77, high, low, amount=101, dst_address=USER_AZTEC))

        await self.engine.start()
        await wait_until(lambda: bool(self.aztec.lock_requests))
        self.assertEqual(self.aztec.lock_requests[0].amount, 112)

        self.aztec.user_redeems(sid, secret)
        await wait_until(lambda: sid not in self.engine.registry)
        self.assertEqual(self.base.redeems, [(sid, secret)])

    async def test_stuck_swap_visible(self):
        """Below-threshold balance leaves the swap in CREATED, visible via the API."""
        self.base.balance = 1
        _, high, low = make_secret()
        self.aztec.add_user_htlc(swap_id(4660))
        response = await self.http.post("/notify-lock", json={
            "swapId": "4660", "direction": "aztec_to_base", "amount": "10000000",
            "hashlockHigh": str(high), "hashlockLow": str(low),
            "userAddress": USER_EVM, "timelock": USER_TIMELOCK,
        })
        self.assertEqual(response.json()["status"], STATUS_ACCEPTED)

        scheduler = self.engine.schedulers[CHAIN_BASE]
        scheduler.start()
        await scheduler.join()
        await scheduler.stop()

        detail = (await self.http.get(f"/swap/{swap_id(4660)}")).json()
        self.assertFalse(detail["solverLocked"])
        self.assertEqual(detail["state"], "created")
        self.assertEqual(self.base.lock_requests, [])


if __name__ == "__main__":
    unittest.main(verbosity=2)
