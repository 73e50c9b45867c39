import contextlib
import io
import json
import os
import tempfile
import threading
import unittest
import zipfile
from unittest import mock

import requests

import plugin_maker


class BotTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = plugin_maker.load_engine([plugin_maker.DEFAULT_RULES_PATH])
        self.tmpdir = tempfile.TemporaryDirectory()

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def _run(self, body: str) -> int:
        stdout = io.StringIO()
        with contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(io.StringIO()):
            code = plugin_maker.run_bot(body, self.tmpdir.name, engine=self.engine)
        self.stdout = stdout.getvalue()
        return code

    def _plugin(self) -> str:
        with open(os.path.join(self.tmpdir.name, "plugin.c"), "r", encoding="utf-8") as f:
            return f.read()

    def test_parse_requests(self) -> None:
        request = plugin_maker.parse_plugin_request(
            "Type: Button To Touch\r\n\r\nX: 160\r\nY: 120\r\nParams: `engine:keyboard,code:65`"
        )
        self.assertEqual(request.kind, "button_to_touch")
        self.assertEqual(request.fields, {"x": "160", "y": "120", "params": "engine:keyboard,code:65"})

        request = plugin_maker.parse_plugin_request("Type: Window Size\n\nWidth: 800\nHeight: 480")
        self.assertEqual(request.kind, "window_size")
        self.assertEqual(request.fields, {"width": "800", "height": "480"})

        request = plugin_maker.parse_plugin_request("Type: Log File\n\nC:\\vvctre.log")
        self.assertEqual(request.fields, {"path": "C:\\vvctre.log"})

        self.assertIsNone(plugin_maker.parse_plugin_request("Thanks for the emulator!"))
        self.assertIsNone(plugin_maker.parse_plugin_request("Type: Window Size\nWidth: 1\nHeight: 1"))

    def test_custom_default_settings_request(self) -> None:
        code = self._run("Type: Custom Default Settings\r\n\r\ngeneral.cpu_jit disable\r\nlle.fs enable")
        self.assertEqual(code, 0)
        self.assertEqual(self.stdout.strip(), "custom-default-settings")
        plugin = self._plugin()
        self.assertIn("vvctre_settings_set_use_cpu_jit(false);", plugin)
        self.assertIn('vvctre_settings_set_use_lle_module("FS", true);', plugin)

    def test_window_position_request(self) -> None:
        self.assertEqual(self._run("Type: Window Position\n\nX: 10\nY: 20"), 0)
        self.assertIn("vvctre_set_os_window_position(g_plugin_manager, 10, 20);", self._plugin())

    def test_settings_request_without_matches_exits_1(self) -> None:
        self.assertEqual(self._run("Type: Custom Default Settings\n\nmake it faster please"), 1)
        self.assertFalse(os.path.exists(os.path.join(self.tmpdir.name, "plugin.c")))

    def test_unrecognised_body_exits_1(self) -> None:
        self.assertEqual(self._run("Nice emulator"), 1)
        self.assertFalse(os.path.exists(os.path.join(self.tmpdir.name, "plugin.c")))


class BundleTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = plugin_maker.load_engine([plugin_maker.DEFAULT_RULES_PATH])

    def test_settings_bundle_keeps_useful_lines(self) -> None:
        files = plugin_maker.make_bundle(
            "custom_default_settings",
            {"lines": "hello\nstart.region Europe\nlle.fs enable"},
            engine=self.engine,
            license_text="GPLv2",
        )
        self.assertEqual(sorted(files), ["common_types.h", "license.txt", "plugin.c"])
        self.assertIn('#include "common_types.h"', files["plugin.c"])
        self.assertIn("vvctre_settings_set_region_value(2);", files["plugin.c"])
        self.assertNotIn("License:", files["plugin.c"])
        self.assertEqual(files["license.txt"], "GPLv2")

    def test_settings_bundle_without_valid_lines(self) -> None:
        with self.assertRaises(plugin_maker.NoMatchesError) as ctx:
            plugin_maker.make_bundle("custom_default_settings", {"lines": "\n\nnope"}, engine=self.engine)
        self.assertEqual(str(ctx.exception), plugin_maker.FORM_NO_LINES_MESSAGE)

    def test_fixed_plugin_bundle_has_no_header(self) -> None:
        files = plugin_maker.make_bundle("window_size", {"width": 640, "height": 480})
        self.assertEqual(sorted(files), ["plugin.c"])

    def test_zip_contents(self) -> None:
        files = plugin_maker.make_bundle("log_file", {"path": "log.txt"}, license_text="MIT")
        data = plugin_maker.bundle_to_zip(files)
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            self.assertEqual(sorted(archive.namelist()), ["license.txt", "plugin.c"])
            self.assertEqual(archive.read("plugin.c").decode("utf-8"), files["plugin.c"])
        self.assertEqual(data, plugin_maker.bundle_to_zip(files))


class HandlePluginRequestTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = plugin_maker.load_engine([plugin_maker.DEFAULT_RULES_PATH])

    def _post(self, path: str, body: str, **kwargs) -> plugin_maker.PluginResponse:
        return plugin_maker.handle_plugin_request(path, body, engine=self.engine, **kwargs)

    def test_custom_default_settings(self) -> None:
        response = self._post("/customdefaultsettings", "graphics.vsync enable")
        self.assertEqual(response.status, 200)
        self.assertEqual(response.content_type, "text/x-c")
        self.assertIn("vvctre_settings_set_enable_vsync(true);", response.body)

    def test_no_matches(self) -> None:
        response = self._post("/customdefaultsettings", "graphics.vsync maybe")
        self.assertEqual((response.status, response.body, response.content_type), (400, "No matches", "text/plain"))

    def test_json_routes(self) -> None:
        response = self._post("/buttontotouch", json.dumps({"params": "engine:sdl", "x": 160, "y": 120}))
        self.assertEqual(response.status, 200)
        self.assertIn("AfterSwapWindow", response.body)

        response = self._post("/windowposition", '{"x": 5, "y": 6}')
        self.assertIn("vvctre_set_os_window_position(g_plugin_manager, 5, 6);", response.body)

        response = self._post("/windowsize", '{"width": 1280, "height": 720}')
        self.assertIn("vvctre_set_os_window_size(g_plugin_manager, 1280, 720);", response.body)

    def test_log_file_route(self) -> None:
        response = self._post("/logfile", "/tmp/vvctre.log", license_text="MIT")
        self.assertEqual(response.status, 200)
        self.assertIn('fopen("/tmp/vvctre.log", "w")', response.body)
        self.assertTrue(response.body.endswith("License:\n\nMIT\n*/\n"))

    def test_malformed_json(self) -> None:
        self.assertEqual(self._post("/windowsize", "{width: 1}").status, 400)
        self.assertEqual(self._post("/windowsize", "[1, 2]").status, 400)
        self.assertEqual(self._post("/windowsize", '{"width": 1}').status, 400)
        self.assertEqual(self._post("/buttontotouch", '{"params": 1, "x": 1, "y": 1}').status, 400)
        self.assertEqual(self._post("/windowposition", '{"x": 1.5, "y": 2}').status, 400)

    def test_newline_in_log_path_is_escaped(self) -> None:
        response = self._post("/logfile", "C:/logs/a\nb.log")
        self.assertEqual(response.status, 200)
        self.assertIn('fopen("C:/logs/a\\nb.log", "w")', response.body)

    def test_unknown_path(self) -> None:
        self.assertEqual(self._post("/", "").status, 400)
        self.assertEqual(self._post("/plugin", "lle.fs enable").status, 400)


class PluginServerTests(unittest.TestCase):
    def setUp(self) -> None:
        engine = plugin_maker.load_engine([plugin_maker.DEFAULT_RULES_PATH])
        self.server = plugin_maker.make_server("127.0.0.1", 0, engine=engine)
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self.thread.start()
        self.base_url = f"http://127.0.0.1:{self.server.server_address[1]}"

    def tearDown(self) -> None:
        self.server.shutdown()
        self.server.server_close()
        self.thread.join(timeout=5)

    def test_post_returns_plugin_with_cors_headers(self) -> None:
        response = requests.post(f"{self.base_url}/windowsize", json={"width": 400, "height": 480}, timeout=10)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["Content-Type"], "text/x-c")
        self.assertEqual(response.headers["Access-Control-Allow-Origin"], "*")
        self.assertEqual(response.headers["Access-Control-Allow-Methods"], "POST")
        self.assertEqual(response.headers["Access-Control-Allow-Headers"], "*")
        self.assertIn("vvctre_set_os_window_size(g_plugin_manager, 400, 480);", response.text)

    def test_other_methods_are_rejected(self) -> None:
        response = requests.get(f"{self.base_url}/windowsize", timeout=10)
        self.assertEqual(response.status_code, 405)
        self.assertEqual(response.headers["Access-Control-Allow-Origin"], "*")
        response = requests.options(f"{self.base_url}/windowsize", timeout=10)
        self.assertEqual(response.status_code, 405)

    def test_no_matches_over_http(self) -> None:
        response = requests.post(f"{self.base_url}/customdefaultsettings", data=b"nothing", timeout=10)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.text, "No matches")


class IssueCleanerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = plugin_maker.load_engine([plugin_maker.DEFAULT_RULES_PATH])
        self.client = mock.Mock(spec=plugin_maker.GitHubIssueClient)

    def test_issue_without_useful_lines_is_closed(self) -> None:
        result = plugin_maker.clean_issue(self.client, 7, "please\r\nhelp", engine=self.engine)
        self.assertTrue(result.closed)
        self.client.create_comment.assert_called_once_with(7, f"Read {plugin_maker.HELP_URL}")
        self.client.update_issue.assert_called_once_with(7, state="closed", labels=["Invalid"])
        self.client.lock_issue.assert_called_once_with(7)

    def test_useless_lines_are_removed_and_listed(self) -> None:
        body = "general.cpu_jit disable\r\nthanks!\r\nlle.fs enable\r\nbye"
        result = plugin_maker.clean_issue(self.client, 3, body, engine=self.engine)
        self.assertFalse(result.closed)
        self.assertEqual(result.removed, ["thanks!", "bye"])
        self.client.update_issue.assert_called_once_with(3, body="general.cpu_jit disable\nlle.fs enable")
        comment = self.client.create_comment.call_args[0][1]
        self.assertTrue(comment.startswith("Useless lines removed:\n```\nthanks!\nbye\n```"))
        self.assertIn(plugin_maker.HELP_URL, comment)
        self.client.lock_issue.assert_not_called()

    def test_clean_issue_only_rewrites_body(self) -> None:
        plugin_maker.clean_issue(self.client, 4, "lle.fs enable", engine=self.engine)
        self.client.update_issue.assert_called_once_with(4, body="lle.fs enable")
        self.client.create_comment.assert_not_called()


class GitHubIssueClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = mock.Mock()
        self.session.headers = {}
        response = mock.Mock()
        response.content = b'{"id": 1}'
        response.json.return_value = {"id": 1}
        self.session.request.return_value = response
        self.client = plugin_maker.GitHubIssueClient("owner/repo", "secret", session=self.session)

    def test_requests_target_issue_endpoints(self) -> None:
        self.client.create_comment(5, "hi")
        self.session.request.assert_called_with(
            "POST", "https://api.github.com/repos/owner/repo/issues/5/comments", json={"body": "hi"}, timeout=30
        )
        self.client.update_issue(5, state="closed")
        self.session.request.assert_called_with(
            "PATCH", "https://api.github.com/repos/owner/repo/issues/5", json={"state": "closed"}, timeout=30
        )
        self.client.lock_issue(5)
        self.session.request.assert_called_with(
            "PUT", "https://api.github.com/repos/owner/repo/issues/5/lock", json=None, timeout=30
        )
        self.assertEqual(self.session.headers["Authorization"], "Bearer secret")

    def test_http_errors_propagate(self) -> None:
        self.session.request.return_value.raise_for_status.side_effect = requests.HTTPError("403")
        with self.assertRaises(requests.HTTPError):
            self.client.lock_issue(1)


if __name__ == "__main__":
    unittest.main()
