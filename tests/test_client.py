import json
import os
import tempfile
import unittest

import httpx

from tetris_arcade.client import account
from tetris_arcade.client.api_client import CONNECTION_ERROR, TetrisApiClient
from tetris_arcade.client.local_store import KEYS_KEY, LocalStore
from tetris_arcade.policies.key_bindings import DEFAULT_KEY_MAP


class TetrisApiClientTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.requests = []

    def client(self, handler, token=None):
        def record(request):
            self.requests.append(request)
            return handler(request)
        return TetrisApiClient("http://test/api", token=token, transport=httpx.MockTransport(record))

    async def test_login_keeps_token(self):
        api = self.client(lambda r: httpx.Response(200, json={"token": "abc", "username": "ana"}))
        result = await api.login("ana", "pw")

        self.assertEqual(result["username"], "ana")
        self.assertEqual(api.token, "abc")
        self.assertEqual(self.requests[0].url.path, "/api/auth/login")
        self.assertEqual(json.loads(self.requests[0].content), {"username": "ana", "password": "pw"})

    async def test_bearer_token_attached(self):
        api = self.client(lambda r: httpx.Response(201, json={"success": True}), token="tok")
        await api.submit_stats({"score": 1})

        request = self.requests[0]
        self.assertEqual(request.method, "POST")
        self.assertEqual(request.url.path, "/api/stats")
        self.assertEqual(request.headers["Authorization"], "Bearer tok")

    async def test_no_token_no_header(self):
        api = self.client(lambda r: httpx.Response(200, json={"success": True, "data": []}))
        await api.leaderboard()
        self.assertNotIn("Authorization", self.requests[0].headers)

    async def test_error_body_passed_through(self):
        api = self.client(lambda r: httpx.Response(401, json={"success": False, "error": "Invalid token"}))
        result = await api.profile()
        self.assertEqual(result, {"success": False, "error": "Invalid token"})

    async def test_connection_failure_becomes_error_dict(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        with self.assertLogs("tetris_arcade.client.api_client", level="ERROR") as logs:
            result = await self.client(refuse).reset_history()
        self.assertEqual(result, {"success": False, "error": CONNECTION_ERROR})
        self.assertIn("DELETE /analytics/reset failed: refused", logs.output[0])

    async def test_non_json_body_becomes_error_dict(self):
        api = self.client(lambda r: httpx.Response(502, text="<html>bad gateway</html>"))
        result = await api.update_settings(DEFAULT_KEY_MAP)
        self.assertFalse(result["success"])


class LocalStoreTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "state.json")
        self.store = LocalStore(self.path)

    def tearDown(self):
        self.tmp.cleanup()

    def test_empty_store(self):
        self.assertEqual(self.store.session(), (None, None))
        self.assertEqual(self.store.key_map(), DEFAULT_KEY_MAP)

    def test_session_round_trip(self):
        self.store.save_session("tok", "ana")
        self.assertEqual(LocalStore(self.path).session(), ("tok", "ana"))

    def test_key_map_saved_alongside_session(self):
        self.store.save_session("tok", "ana")
        self.store.save_key_map({**DEFAULT_KEY_MAP, "rotate": "ArrowUp"})
        self.assertEqual(self.store.key_map()["rotate"], "ArrowUp")
        self.assertEqual(self.store.session(), ("tok", "ana"))

    def test_invalid_key_map_falls_back(self):
        with open(self.path, "w") as f:
            json.dump({KEYS_KEY: {"left": "KeyD"}}, f)
        self.assertEqual(self.store.key_map(), DEFAULT_KEY_MAP)

    def test_corrupt_file_ignored(self):
        with open(self.path, "w") as f:
            f.write("{not json")
        with self.assertLogs("tetris_arcade.client.local_store", level="WARNING") as logs:
            self.assertEqual(self.store.session(), (None, None))
        self.assertIn(self.path, logs.output[0])

    def test_clear(self):
        self.store.save_session("tok", "ana")
        self.store.clear()
        self.assertFalse(os.path.exists(self.path))
        self.assertEqual(self.store.session(), (None, None))

class AccountCommandsTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.store = LocalStore(os.path.join(self.tmp.name, "state.json"))
        self.requests = []

    def tearDown(self):
        self.tmp.cleanup()

    def client(self, handler, token=None):
        def record(request):
            self.requests.append(request)
            return handler(request)
        return TetrisApiClient("http://test/api", token=token, transport=httpx.MockTransport(record))

    async def test_leaderboard_lines(self):
        api = self.client(lambda r: httpx.Response(200, json={"success": True, "data": [
            {"username": "ana", "score": 1200},
            {"username": "bob", "score": 700},
        ]}))
        self.assertEqual(await account.leaderboard_lines(api), ["#1 ana: 1,200", "#2 bob: 700"])
        self.assertEqual(self.requests[0].url.path, "/api/leaderboard")

    async def test_leaderboard_unreachable(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        self.assertEqual(await account.leaderboard_lines(self.client(refuse)), [CONNECTION_ERROR])

    async def test_reset_history(self):
        api = self.client(lambda r: httpx.Response(200, json={"success": True, "deleted": 3}), token="tok")
        self.assertEqual(await account.reset_history(api), "Deleted 3 games")
        self.assertEqual(self.requests[0].method, "DELETE")
        self.assertEqual(self.requests[0].url.path, "/api/analytics/reset")

    async def test_reset_history_needs_login(self):
        api = self.client(lambda r: httpx.Response(500))
        self.assertEqual(await account.reset_history(api), "Log in to reset your history")
        self.assertEqual(self.requests, [])

    async def test_sync_pulls_account_key_map(self):
        remote = {**DEFAULT_KEY_MAP, "rotate": "ArrowUp"}
        api = self.client(lambda r: httpx.Response(200, json={
            "success": True, "data": {"username": "ana", "keyMap": remote}
        }), token="tok")

        self.assertEqual(await account.sync_key_map(api, self.store), remote)
        self.assertEqual(self.store.key_map(), remote)
        self.assertEqual(self.requests[0].url.path, "/api/user/profile")

    async def test_sync_keeps_local_map_when_account_has_none_or_bad(self):
        local = {**DEFAULT_KEY_MAP, "hold": "ShiftLeft"}
        self.store.save_key_map(local)

        api = self.client(lambda r: httpx.Response(200, json={"success": True, "data": {"keyMap": None}}), token="tok")
        self.assertEqual(await account.sync_key_map(api, self.store), local)

        bad = {**DEFAULT_KEY_MAP, "rotate": "KeyA"}
        api = self.client(lambda r: httpx.Response(200, json={"success": True, "data": {"keyMap": bad}}), token="tok")
        self.assertEqual(await account.sync_key_map(api, self.store), local)

    async def test_sync_skipped_without_token(self):
        api = self.client(lambda r: httpx.Response(500))
        self.assertEqual(await account.sync_key_map(api, self.store), DEFAULT_KEY_MAP)
        self.assertEqual(self.requests, [])

    async def test_rebind_saves_locally_and_to_account(self):
        api = self.client(lambda r: httpx.Response(200, json={"success": True}), token="tok")
        self.assertIsNone(await account.rebind_keys(api, self.store, ["rotate=ArrowUp"]))

        expected = {**DEFAULT_KEY_MAP, "rotate": "ArrowUp"}
        self.assertEqual(self.store.key_map(), expected)
        self.assertEqual(self.requests[0].method, "PUT")
        self.assertEqual(json.loads(self.requests[0].content), {"keyMap": expected})

    async def test_rebind_rejects_conflict_and_bad_syntax(self):
        api = self.client(lambda r: httpx.Response(200, json={"success": True}), token="tok")

        error = await account.rebind_keys(api, self.store, ["rotate=KeyA"])
        self.assertIn("KeyA", error)
        self.assertIn("ACTION=CODE", await account.rebind_keys(api, self.store, ["rotate"]))
        self.assertEqual(self.store.key_map(), DEFAULT_KEY_MAP)
        self.assertEqual(self.requests, [])

    async def test_rebind_offline_reports_account_failure(self):
        api = self.client(lambda r: httpx.Response(401, json={"success": False, "error": "Invalid token"}), token="old")
        error = await account.rebind_keys(api, self.store, ["hold=KeyX"])
        self.assertIn("Invalid token", error)
        self.assertEqual(self.store.key_map()["hold"], "KeyX")



if __name__ == "__main__":
    unittest.main()
