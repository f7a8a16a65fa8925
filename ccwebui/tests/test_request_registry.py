import threading
import unittest

from ccwebui.request_registry import RequestRegistry


class _Handle:
    def __init__(self) -> None:
        self.cancel_count = 0

    def cancel(self) -> None:
        self.cancel_count += 1


class RequestRegistryTests(unittest.TestCase):
    def test_abort_cancels_only_the_named_request(self) -> None:
        registry = RequestRegistry()
        h1, h2 = _Handle(), _Handle()
        registry.register("req-1", h1)
        registry.register("req-2", h2)

        self.assertTrue(registry.abort("req-1"))

        self.assertEqual(h1.cancel_count, 1)
        self.assertEqual(h2.cancel_count, 0)
        self.assertFalse(registry.has("req-1"))
        self.assertTrue(registry.has("req-2"))

    def test_abort_after_complete_is_a_miss(self) -> None:
        registry = RequestRegistry()
        handle = _Handle()
        registry.register("r1", handle)

        self.assertTrue(registry.complete("r1"))
        self.assertFalse(registry.abort("r1"))
        self.assertFalse(registry.complete("r1"))
        self.assertEqual(handle.cancel_count, 0)

    def test_unknown_abort_returns_false(self) -> None:
        self.assertFalse(RequestRegistry().abort("missing"))

    def test_complete_does_not_remove_newer_registration(self) -> None:
        registry = RequestRegistry()
        old, new = _Handle(), _Handle()
        registry.register("r1", old)
        registry.register("r1", new)

        self.assertFalse(registry.complete("r1", old))
        self.assertTrue(registry.has("r1"))
        self.assertTrue(registry.complete("r1", new))
        self.assertEqual(len(registry), 0)

    def test_concurrent_abort_and_complete_remove_once(self) -> None:
        for _ in range(50):
            registry = RequestRegistry()
            handle = _Handle()
            registry.register("r1", handle)
            results: list[bool] = []
            barrier = threading.Barrier(2)

            def _abort() -> None:
                barrier.wait()
                results.append(registry.abort("r1"))

            def _complete() -> None:
                barrier.wait()
                results.append(registry.complete("r1", handle))

            threads = [threading.Thread(target=_abort), threading.Thread(target=_complete)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

            self.assertEqual(sorted(results), [False, True])
            self.assertEqual(len(registry), 0)

    def test_request_ids_snapshot(self) -> None:
        registry = RequestRegistry()
        registry.register("a", _Handle())
        registry.register("b", _Handle())
        self.assertEqual(sorted(registry.request_ids()), ["a", "b"])


if __name__ == "__main__":
    unittest.main()
