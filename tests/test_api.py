#!/usr/bin/env python3
"""
Control API tests via FastAPI's TestClient.

The app gets an engine with in-memory chain clients; startup events are not
run, so no watchers or workers are started.
"""

import sys
import os
import unittest

from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fakes import make_clients, make_config, make_secret, swap_id, USER_EVM, USER_AZTEC
from server import create_app
from solver.core import ChainError, CHAIN_AZTEC, CHAIN_BASE
from solver.swap.engine import SolverEngine


class APITestCase(unittest.TestCase):

    def setUp(self):
        self.clients = make_clients()
        self.config = make_config()
        self.engine = SolverEngine(self.config, self.clients)
        self.client = TestClient(create_app(engine=self.engine))
        self.secret, self.high, self.low = make_secret()

    def notify(self, **overrides):
        body = {
            "swapId": "1000",
            "direction": "aztec_to_base",
            "amount": "10000000",
            "hashlockHigh": str(self.high),
            "hashlockLow": str(self.low),
            "userAddress": USER_EVM,
        }
        body.update(overrides)
        return self.client.post("/notify-lock", json=body)


class TestReadEndpoints(APITestCase):

    def test_health(self):
        self.assertEqual(self.client.get("/health").json(), {"status": "ok", "pendingSwaps": 0})
        self.notify()
        self.assertEqual(self.client.get("/health").json()["pendingSwaps"], 1)

    def test_info(self):
        self.clients[CHAIN_BASE].balance = 5_000_000
        self.clients[CHAIN_AZTEC].balance = 7_000_000
        data = self.client.get("/info").json()
        self.assertEqual(data["evmBalance"], "5000000")
        self.assertEqual(data["aztecBalance"], "7000000")
        self.assertEqual(data["solverEvmAddress"], self.clients[CHAIN_BASE].solver_address)
        self.assertEqual(data["solverAztecAddress"], self.clients[CHAIN_AZTEC].solver_address)
        self.assertEqual(data["baseTrainAddress"], self.config.evm.train_address)
        self.assertEqual(data["aztecTokenAddress"], self.config.aztec.token_address)

    def test_info_chain_down(self):
        async def broken():
            raise ChainError("rpc down")
        self.clients[CHAIN_BASE].get_balance = broken
        response = self.client.get("/info")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "rpc down"})

    def test_swaps_listing(self):
        self.notify(swapId="1")
        self.notify(swapId="2", direction="base_to_aztec", userAddress=USER_AZTEC)
        swaps = self.client.get("/swaps").json()["swaps"]
        self.assertEqual([s["swapId"] for s in swaps], [swap_id(1), swap_id(2)])
        self.assertEqual(set(swaps[0]), {
            "swapId", "direction", "amount", "solverLocked",
            "userRedeemed", "solverRedeemed", "createdAt",
        })
        self.assertEqual(swaps[0]["amount"], "10000000")

    def test_swap_detail(self):
        self.notify()
        data = self.client.get(f"/swap/{swap_id(1000)}").json()
        self.assertEqual(data["swapId"], swap_id(1000))
        self.assertTrue(data["hashlock"].startswith("0x"))
        self.assertFalse(data["solverLocked"])

        # Decimal form resolves to the same swap
        self.assertEqual(self.client.get("/swap/1000").json()["swapId"], swap_id(1000))

    def test_swap_not_found(self):
        for path in (f"/swap/{swap_id(5)}", "/swap/not-an-id"):
            response = self.client.get(path)
            self.assertEqual(response.status_code, 404)
            self.assertEqual(response.json(), {"error": "Swap not found"})

    def test_unknown_route(self):
        response = self.client.get("/nope")
        self.assertEqual(response.status_code, 404)
        self.assertIn("error", response.json())


class TestQuote(APITestCase):

    def test_one_to_one(self):
        data = self.client.post("/quote", json={"direction": "aztec_to_base",
                                                "amount": "10000000"}).json()
        self.assertEqual(data["inputAmount"], "10000000")
        self.assertEqual(data["outputAmount"], "10000000")
        self.assertEqual(data["direction"], "aztec_to_base")
        self.assertEqual(data["timelockSeconds"], self.config.timelock_buffer)
        self.assertEqual(data["solverEvmAddress"], self.clients[CHAIN_BASE].solver_address)

    def test_bad_direction(self):
        response = self.client.post("/quote", json={"direction": "sideways", "amount": "1"})
        self.assertEqual(response.status_code, 400)
        self.assertIn("error", response.json())


class TestNotifyLock(APITestCase):

    def test_accepted_then_already_tracking(self):
        first = self.notify()
        self.assertEqual(first.json(), {"status": "accepted", "swapId": swap_id(1000)})
        second = self.notify()
        self.assertEqual(second.json(), {"status": "already_tracking", "swapId": swap_id(1000)})
        self.assertEqual(len(self.engine.registry), 1)
        self.assertEqual(self.engine.schedulers[CHAIN_BASE].queued, 1)

    def test_decimal_and_hex_ids_match(self):
        self.notify(swapId="255")
        response = self.notify(swapId="0xff")
        self.assertEqual(response.json()["status"], "already_tracking")
        self.assertEqual(response.json()["swapId"], "0x" + "0" * 62 + "ff")

    def test_record_fields(self):
        self.notify(timelock=1_700_007_200)
        record = self.engine.registry.get(swap_id(1000))
        self.assertEqual((record.hashlock_high, record.hashlock_low), (self.high, self.low))
        self.assertEqual(record.counterparty_address, USER_EVM)
        self.assertEqual(record.user_timelock, 1_700_007_200)

    def test_invalid_fields(self):
        for overrides in ({"amount": "-5"}, {"swapId": "xyz"},
                          {"hashlockHigh": str(1 << 128)}, {"direction": "nowhere"}):
            response = self.notify(**overrides)
            self.assertEqual(response.status_code, 400, overrides)
            self.assertIn("error", response.json())
        self.assertEqual(len(self.engine.registry), 0)

    def test_address_must_fit_direction(self):
        for overrides in ({"userAddress": USER_AZTEC},
                          {"direction": "base_to_aztec", "userAddress": USER_EVM},
                          {"userAddress": "0x1234"}):
            response = self.notify(**overrides)
            self.assertEqual(response.status_code, 400, overrides)
            self.assertIn("userAddress", response.json()["error"])
        self.assertEqual(len(self.engine.registry), 0)

        self.assertEqual(self.notify().status_code, 200)
        response = self.notify(swapId="2", direction="base_to_aztec", userAddress=USER_AZTEC)
        self.assertEqual(response.json()["status"], "accepted")

    def test_malformed_json(self):
        response = self.client.post("/notify-lock", content="{not json",
                                    headers={"Content-Type": "application/json"})
        self.assertEqual(response.status_code, 500)
        self.assertIn("JSON", response.json()["error"])

    def test_cors(self):
        response = self.client.options("/notify-lock", headers={
            "Origin": "http://example.com",
            "Access-Control-Request-Method": "POST",
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["access-control-allow-origin"], "*")


if __name__ == "__main__":
    unittest.main(verbosity=2)
