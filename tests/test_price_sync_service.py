import asyncio
import time
import unittest
from decimal import Decimal
from unittest.mock import patch

from fakes import FakeCoinCapClient, make_session_factory, prices_for, seed_asset

from sqlalchemy.exc import OperationalError

from services.coincap.errors import AuthError, FetchTimeout, ServerError
from services import ledger_service
from services.price_sync_service import PriceSynchronizer


def _synchronizer(client, factory, max_concurrent_fetches=3, interval=60.0):
    return PriceSynchronizer(
        client,
        factory,
        refresh_interval_sec=interval,
        max_concurrent_fetches=max_concurrent_fetches,
    )


class TestPriceSyncCycle(unittest.TestCase):
    def setUp(self):
        self.factory = make_session_factory()

    def test_scenario_one_success_one_timeout(self):
        seed_asset(self.factory, 1, "BTC", "bitcoin", quantity="1", price="0")
        seed_asset(self.factory, 1, "ETH", "ethereum", quantity="2", price="0")
        client = FakeCoinCapClient(prices={
            "bitcoin": "40000.00",
            "ethereum": FetchTimeout("Timed out calling /assets/ethereum"),
        })

        with self.assertLogs("services.price_sync_service", level="INFO") as logs:
            result = asyncio.run(_synchronizer(client, self.factory).run_cycle())

        self.assertEqual(prices_for(self.factory, "bitcoin"), [Decimal("40000.00")])
        self.assertEqual(prices_for(self.factory, "ethereum"), [Decimal("0")])
        self.assertEqual(list(result.updated), ["bitcoin"])
        self.assertEqual(list(result.failed), ["ethereum"])
        self.assertTrue(any(
            "Updated asset prices for 1 distinct assets (1 fetch failures, 0 write failures)" in line
            for line in logs.output
        ))
        self.assertTrue(any("ethereum" in line and "WARNING" in line for line in logs.output))

    def test_empty_ledger_makes_no_http_calls(self):
        client = FakeCoinCapClient(prices={"bitcoin": "1"})

        result = asyncio.run(_synchronizer(client, self.factory).run_cycle())

        self.assertEqual(client.calls, [])
        self.assertTrue(result.skipped)
        self.assertEqual(result.updated, {})

    def test_same_asset_in_many_wallets_is_fetched_once(self):
        seed_asset(self.factory, 1, "BTC", "bitcoin", quantity="1")
        seed_asset(self.factory, 2, "BTC", "bitcoin", quantity="0.5")
        seed_asset(self.factory, 3, "BTC", "bitcoin", quantity="3")
        client = FakeCoinCapClient(prices={"bitcoin": "41000.5"})

        asyncio.run(_synchronizer(client, self.factory).run_cycle())

        self.assertEqual(client.calls, ["bitcoin"])
        self.assertEqual(prices_for(self.factory, "bitcoin"), [Decimal("41000.5")] * 3)

    def test_in_flight_fetches_never_exceed_bound(self):
        names = [f"coin-{i}" for i in range(10)]
        for i, name in enumerate(names):
            seed_asset(self.factory, 1, f"C{i}", name)
        client = FakeCoinCapClient(prices={name: "1.5" for name in names}, delay=0.02)

        result = asyncio.run(_synchronizer(client, self.factory, max_concurrent_fetches=3).run_cycle())

        self.assertEqual(client.max_in_flight, 3)
        self.assertEqual(len(result.updated), 10)

    def test_default_bound_is_three(self):
        sync = PriceSynchronizer(FakeCoinCapClient(), self.factory, refresh_interval_sec=1)
        self.assertEqual(sync.max_concurrent_fetches, 3)

    def test_one_failure_does_not_block_the_others(self):
        names = ["bitcoin", "ethereum", "solana", "cardano"]
        for i, name in enumerate(names):
            seed_asset(self.factory, 1, name[:3].upper(), name, price="7")
        client = FakeCoinCapClient(prices={
            "bitcoin": "40000",
            "ethereum": ServerError(502, "bad gateway"),
            "solana": "150.25",
            "cardano": "0.45",
        })

        result = asyncio.run(_synchronizer(client, self.factory).run_cycle())

        self.assertEqual(sorted(result.updated), ["bitcoin", "cardano", "solana"])
        self.assertEqual(prices_for(self.factory, "ethereum"), [Decimal("7")])
        self.assertEqual(prices_for(self.factory, "solana"), [Decimal("150.25")])

    def test_unexpected_exception_is_isolated(self):
        seed_asset(self.factory, 1, "BTC", "bitcoin")
        seed_asset(self.factory, 1, "ETH", "ethereum")
        client = FakeCoinCapClient(prices={"bitcoin": RuntimeError("bug"), "ethereum": "2500"})

        result = asyncio.run(_synchronizer(client, self.factory).run_cycle())

        self.assertIn("bitcoin", result.failed)
        self.assertEqual(prices_for(self.factory, "ethereum"), [Decimal("2500")])

    def test_write_failure_is_isolated(self):
        seed_asset(self.factory, 1, "BTC", "bitcoin", price="1")
        seed_asset(self.factory, 1, "ETH", "ethereum", price="1")
        client = FakeCoinCapClient(prices={"bitcoin": "40000", "ethereum": "2500"})
        real_update = ledger_service.update_price_by_name

        def flaky_update(db, name, price):
            if name == "ethereum":
                raise OperationalError("UPDATE assets", {}, Exception("database is locked"))
            return real_update(db, name, price)

        with patch("services.price_sync_service.update_price_by_name", side_effect=flaky_update):
            result = asyncio.run(_synchronizer(client, self.factory).run_cycle())

        self.assertEqual(list(result.updated), ["bitcoin"])
        self.assertIn("ethereum", result.write_failed)
        self.assertEqual(prices_for(self.factory, "bitcoin"), [Decimal("40000")])
        self.assertEqual(prices_for(self.factory, "ethereum"), [Decimal("1")])

    def test_names_are_lower_cased_for_fetch_but_written_as_stored(self):
        seed_asset(self.factory, 1, "BTC", "Bitcoin")
        client = FakeCoinCapClient(prices={"bitcoin": "40000"})

        asyncio.run(_synchronizer(client, self.factory).run_cycle())

        self.assertEqual(client.calls, ["bitcoin"])
        self.assertEqual(prices_for(self.factory, "Bitcoin"), [Decimal("40000")])

    def test_auth_failures_are_counted_and_logged(self):
        seed_asset(self.factory, 1, "BTC", "bitcoin")
        client = FakeCoinCapClient(prices={"bitcoin": AuthError(403, "bad key")})

        with self.assertLogs("services.price_sync_service", level="ERROR") as logs:
            result = asyncio.run(_synchronizer(client, self.factory).run_cycle())

        self.assertEqual(result.auth_failures, 1)
        self.assertIn("COINCAP_API_KEY", logs.output[0])

    def test_exact_provider_digits_survive_write_back(self):
        seed_asset(self.factory, 1, "SHIB", "shiba-inu")
        price_text = "0.000012345678901234567890123"
        client = FakeCoinCapClient(prices={"shiba-inu": price_text})

        asyncio.run(_synchronizer(client, self.factory).run_cycle())

        stored = prices_for(self.factory, "shiba-inu")
        self.assertEqual(stored, [Decimal(price_text)])
        self.assertEqual(str(stored[0]), price_text)

    def test_slow_writes_do_not_block_the_event_loop(self):
        names = ["bitcoin", "ethereum", "solana", "cardano", "polkadot"]
        for name in names:
            seed_asset(self.factory, 1, name[:3].upper(), name)
        client = FakeCoinCapClient(prices={name: "1" for name in names})

        def slow_update(db, name, price):
            time.sleep(0.2)
            return 1

        async def run():
            gaps = []
            done = asyncio.Event()

            async def heartbeat():
                last = time.perf_counter()
                while not done.is_set():
                    await asyncio.sleep(0.01)
                    now = time.perf_counter()
                    gaps.append(now - last)
                    last = now

            beat = asyncio.create_task(heartbeat())
            result = await _synchronizer(client, self.factory).run_cycle()
            done.set()
            await beat
            return result, gaps

        with patch("services.price_sync_service.update_price_by_name", side_effect=slow_update):
            result, gaps = asyncio.run(run())

        self.assertEqual(len(result.updated), 5)
        self.assertLess(max(gaps), 0.1)

    def test_cycles_do_not_overlap(self):
        seed_asset(self.factory, 1, "BTC", "bitcoin")
        client = FakeCoinCapClient(prices={"bitcoin": "1"}, delay=0.05)

        async def run():
            sync = _synchronizer(client, self.factory)
            await asyncio.gather(sync.run_cycle(), sync.run_cycle())
            return sync

        sync = asyncio.run(run())
        self.assertEqual(client.max_in_flight, 1)
        self.assertEqual(sync.cycles_completed, 2)


class TestPriceSyncLoop(unittest.TestCase):
    def setUp(self):
        self.factory = make_session_factory()

    def _run_until(self, sync, predicate, timeout=2.0):
        async def run():
            sync.start()
            deadline = asyncio.get_running_loop().time() + timeout
            while not predicate() and asyncio.get_running_loop().time() < deadline:
                await asyncio.sleep(0.01)
            await sync.stop()

        asyncio.run(run())

    def test_auth_error_does_not_stop_the_loop(self):
        seed_asset(self.factory, 1, "BTC", "bitcoin", price="0")
        client = FakeCoinCapClient(prices={"bitcoin": [AuthError(403, "bad key"), "40000.00"]})
        sync = _synchronizer(client, self.factory, interval=0.01)

        self._run_until(sync, lambda: sync.cycles_completed >= 2)

        self.assertGreaterEqual(sync.cycles_completed, 2)
        self.assertEqual(prices_for(self.factory, "bitcoin"), [Decimal("40000.00")])

    def test_ledger_failure_is_logged_and_next_cycle_runs(self):
        seed_asset(self.factory, 1, "BTC", "bitcoin")
        client = FakeCoinCapClient(prices={"bitcoin": "5"})
        sync = _synchronizer(client, self.factory, interval=0.01)
        real_find = ledger_service.find_distinct_held_asset_names
        calls = {"n": 0}

        def flaky_find(db):
            calls["n"] += 1
            if calls["n"] == 1:
                raise OperationalError("SELECT", {}, Exception("connection lost"))
            return real_find(db)

        with patch("services.price_sync_service.find_distinct_held_asset_names", side_effect=flaky_find):
            with self.assertLogs("services.price_sync_service", level="ERROR"):
                self._run_until(sync, lambda: bool(client.calls))

        self.assertEqual(prices_for(self.factory, "bitcoin"), [Decimal("5")])

    def test_stop_ends_the_loop_between_cycles(self):
        client = FakeCoinCapClient()
        sync = _synchronizer(client, self.factory, interval=30.0)

        async def run():
            sync.start()
            await asyncio.sleep(0.05)
            await asyncio.wait_for(sync.stop(), timeout=1.0)

        asyncio.run(run())
        self.assertEqual(sync.cycles_completed, 1)


if __name__ == "__main__":
    unittest.main()
