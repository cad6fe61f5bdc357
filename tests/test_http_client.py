"""Tests for GET with retry/backoff."""

import unittest

import httpx

from papertrade.http_client import http_get


class TestHttpGet(unittest.IsolatedAsyncioTestCase):
    def make_client(self, responses):
        calls = []

        def handler(request):
            calls.append(request)
            result = responses[min(len(calls), len(responses)) - 1]
            if isinstance(result, Exception):
                raise result
            return result

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        self.addAsyncCleanup(client.aclose)
        return client, calls

    async def test_retries_server_errors(self):
        client, calls = self.make_client([httpx.Response(503), httpx.Response(200, json={"ok": True})])

        response = await http_get("https://example.test/x", client=client, backoff_factor=0)

        self.assertEqual(response.json(), {"ok": True})
        self.assertEqual(len(calls), 2)

    async def test_honours_retry_after(self):
        client, calls = self.make_client(
            [httpx.Response(429, headers={"Retry-After": "0"}), httpx.Response(200)]
        )

        response = await http_get("https://example.test/x", client=client)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(calls), 2)

    async def test_client_error_not_retried(self):
        client, calls = self.make_client([httpx.Response(404)])

        with self.assertRaises(httpx.HTTPStatusError):
            await http_get("https://example.test/x", client=client, backoff_factor=0)
        self.assertEqual(len(calls), 1)

    async def test_persistent_server_error_raises(self):
        client, calls = self.make_client([httpx.Response(500)])

        with self.assertRaises(httpx.HTTPStatusError):
            await http_get("https://example.test/x", client=client, retries=3, backoff_factor=0)
        self.assertEqual(len(calls), 3)

    async def test_connect_error_retried_then_raised(self):
        client, calls = self.make_client([httpx.ConnectError("refused")])

        with self.assertRaises(httpx.ConnectError):
            await http_get("https://example.test/x", client=client, retries=2, backoff_factor=0)
        self.assertEqual(len(calls), 2)


if __name__ == "__main__":
    unittest.main()
