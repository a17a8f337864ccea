import io
import json
import logging
import os
import tempfile
import unittest

from votifier.app import Votifier, TESTER_SERVICE
from votifier.client.tester import connect_host
from votifier.common.config import Config
from votifier.common.crypto import save_keypair, key_to_string
from votifier.common.log import configure_logging, is_level
from votifier.common.messages import VoteReceivedEvent, MalformedInputExceptionEvent, ServerStoppedEvent
from votifier.server.console import handle, run_console
from support import Recorder, key_pair


class AppTestCase(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "config.json")
        with open(self.path, "w") as f:
            json.dump({"host": "127.0.0.1", "port": 0, "timeout": 2}, f)
        save_keypair(key_pair(), os.path.join(self.tmp.name, "public.pem"),
                     os.path.join(self.tmp.name, "private.pem"))
        self.votifier = Votifier(self.path, log_level="WARNING")
        self.events = Recorder()
        self.votifier.bus.subscribe(self.events)

    def tearDown(self):
        if self.votifier.server.running:
            self.votifier.stop()
        self.tmp.cleanup()


class TestVotifierOperations(AppTestCase):

    def test_load_start_vote_stop(self):
        self.assertTrue(self.votifier.load_config().ok)
        started = self.votifier.start()
        self.assertTrue(started.ok)
        result = self.votifier.send_test_vote("alice")
        self.assertTrue(result.ok, result.error)
        [event] = self.events.wait_for(VoteReceivedEvent)
        self.assertEqual(event.vote.service_name, TESTER_SERVICE)
        self.assertEqual(event.vote.user_name, "alice")
        self.assertEqual(event.vote.address, "127.0.0.1")
        self.assertTrue(self.votifier.stop().ok)

    def test_errors_are_reported_by_kind(self):
        self.assertEqual(self.votifier.start().error, "ServerStateError")   # nothing loaded yet
        self.votifier.load_config()
        self.assertEqual(self.votifier.stop().error, "ServerStateError")
        self.assertEqual(self.votifier.display_key("both").error, "UnknownKeyKind")
        self.assertEqual(self.votifier.generate_and_save_keypair(100).error, "InvalidKeySize")
        self.assertEqual(self.votifier.send_test_vote("bob").error, "IOFailure")   # server not running

    def test_missing_key_file_on_load(self):
        os.remove(os.path.join(self.tmp.name, "private.pem"))
        result = self.votifier.load_config()
        self.assertFalse(result.ok)
        self.assertEqual(result.error, "PrivateKeyFileNotFound")

    def test_unknown_log_level_on_load(self):
        with open(self.path, "w") as f:
            json.dump({"host": "127.0.0.1", "port": 0, "log_level": "verbose"}, f)
        self.assertEqual(Votifier(self.path).load_config().error, "InvalidConfig")
        with open(self.path, "w") as f:
            json.dump({"host": "127.0.0.1", "port": 0, "log_level": "error"}, f)
        self.assertTrue(Votifier(self.path, log_level="WARNING").load_config().ok)
        self.assertEqual(Votifier(self.path, log_level="loud").load_config().error, "InvalidConfig")

    def test_test_vote_on_wildcard_host(self):
        with open(self.path, "w") as f:
            json.dump({"host": "0.0.0.0", "port": 0, "timeout": 2}, f)
        self.assertTrue(self.votifier.load_config().ok)
        self.assertTrue(self.votifier.start().ok)
        result = self.votifier.send_test_vote("carol")
        self.assertTrue(result.ok, result.error)
        [event] = self.events.wait_for(VoteReceivedEvent)
        self.assertEqual(event.vote.address, "127.0.0.1")
        self.assertEqual(result.value.address, "127.0.0.1")

    def test_display_key(self):
        self.votifier.load_config()
        self.assertEqual(self.votifier.display_key("pub").value, key_to_string(key_pair().public_key))
        self.assertEqual(self.votifier.display_key("private").value, key_to_string(key_pair().private_key))

    def test_generate_keypair_applies_after_restart(self):
        self.votifier.load_config()
        self.votifier.start()
        result = self.votifier.generate_and_save_keypair(1024)
        self.assertTrue(result.ok, result.error)
        self.assertNotEqual(result.value, key_to_string(key_pair().public_key))
        self.assertEqual(self.votifier.display_key("pub").value, result.value)

        self.assertTrue(self.votifier.restart().ok)
        self.assertEqual(self.votifier.display_key("pub").value, result.value)
        self.assertTrue(self.votifier.send_test_vote("carol").ok)
        [event] = self.events.wait_for(VoteReceivedEvent)
        self.assertEqual(event.vote.user_name, "carol")

    def test_test_query(self):
        self.votifier.load_config()
        self.votifier.start()
        result = self.votifier.send_test_query(["VOTE", "svc", "dave", "addr"])
        self.assertEqual(result.value, "VOTE\nsvc\ndave\naddr")
        [event] = self.events.wait_for(MalformedInputExceptionEvent)
        self.assertEqual(self.events.of(VoteReceivedEvent), [])


class TestHelpers(unittest.TestCase):

    def test_connect_host(self):
        for host in ("", "0.0.0.0", "::"):
            self.assertEqual(connect_host(Config(host=host)), "127.0.0.1")
        self.assertEqual(connect_host(Config(host="10.1.2.3")), "10.1.2.3")

    def test_is_level(self):
        for name in ("debug", "INFO", "Warning"):
            self.assertTrue(is_level(name), name)
        for name in ("verbose", "", None, 20):
            self.assertFalse(is_level(name), name)

    def test_configure_logging_keeps_one_handler(self):
        root = logging.getLogger("votifier")
        configure_logging("debug")
        configure_logging("WARNING")
        self.assertEqual(len(root.handlers), 1)
        self.assertEqual(root.level, logging.WARNING)


class TestConsole(AppTestCase):

    def setUp(self):
        super().setUp()
        self.votifier.load_config()
        self.votifier.start()
        self.out = io.StringIO()

    def test_showkey_and_help(self):
        self.assertTrue(handle(self.votifier, ["showkey", "pub"], self.out))
        self.assertTrue(handle(self.votifier, ["showkey"], self.out))
        self.assertTrue(handle(self.votifier, ["help"], self.out))
        lines = self.out.getvalue().splitlines()
        self.assertEqual(lines[0], key_to_string(key_pair().public_key))
        self.assertIn("Unknown command", lines[1])
        self.assertIn("genkeypair", self.out.getvalue())

    def test_genkeypair_validates_size(self):
        handle(self.votifier, ["genkeypair", "abc"], self.out)
        handle(self.votifier, ["genkeypair", "100"], self.out)
        text = self.out.getvalue()
        self.assertIn("must be a number", text)
        self.assertIn("between 512 and 16384", text)

    def test_testquery_from_script(self):
        script = io.StringIO('testquery VOTE svc "erin smith" addr ts\nstop\ninfo\n')
        run_console(self.votifier, script, self.out)
        self.assertFalse(self.votifier.server.running)
        [event] = self.events.of(VoteReceivedEvent)
        self.assertEqual(event.vote.user_name, "erin smith")
        self.assertEqual(len(self.events.of(ServerStoppedEvent)), 1)
        self.assertNotIn("Listening on", self.out.getvalue())

    def test_eof_stops_server(self):
        run_console(self.votifier, io.StringIO("info\n"), self.out)
        self.assertIn("Listening on 127.0.0.1:", self.out.getvalue())
        self.assertFalse(self.votifier.server.running)


if __name__ == "__main__":
    unittest.main()
