#!/usr/bin/env python3
"""
Unit tests for configuration loading.
"""

import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from bridge.config import Config, load_config


class TestConfig(unittest.TestCase):
    """Test cases for Config."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)
        # Keep BRIDGE_* variables from the developer's shell out of the tests
        self.env = patch.dict(os.environ, {
            k: v for k, v in os.environ.items() if not k.startswith('BRIDGE_')
        }, clear=True)
        self.env.start()

    def tearDown(self):
        self.env.stop()
        self.tmp.cleanup()

    def test_defaults(self):
        config = Config()
        self.assertEqual(config.port, 12345)
        self.assertEqual(config.chunk_size, 80 * 1024)
        self.assertEqual(config.dest_dir, Path('./received'))
        self.assertFalse(config.overwrite)
        self.assertTrue(config.keep_partial)

    def test_invalid_values(self):
        with self.assertRaises(ValueError):
            Config(port=70000)
        with self.assertRaises(ValueError):
            Config(chunk_size=0)

    def test_from_env(self):
        with patch.dict(os.environ, {
            'BRIDGE_PORT': '9000',
            'BRIDGE_DEST_DIR': '/tmp/inbox',
            'BRIDGE_OVERWRITE': 'yes',
            'BRIDGE_CONNECT_TIMEOUT': '2.5',
        }):
            config = Config.from_env()

        self.assertEqual(config.port, 9000)
        self.assertEqual(config.dest_dir, Path('/tmp/inbox'))
        self.assertTrue(config.overwrite)
        self.assertEqual(config.connect_timeout, 2.5)

    def test_file_round_trip(self):
        path = self.dir / 'config.json'
        Config(port=4000, keep_partial=False, log_level='DEBUG').save(path)

        config = Config.from_file(path)

        self.assertEqual(config.port, 4000)
        self.assertFalse(config.keep_partial)
        self.assertEqual(config.log_level, 'DEBUG')

    def test_missing_file_gives_defaults(self):
        self.assertEqual(Config.from_file(self.dir / 'nope.json'), Config())

    def test_unknown_keys_rejected(self):
        path = self.dir / 'config.json'
        path.write_text(json.dumps({'port': 1, 'bootstrap_nodes': []}))

        with self.assertRaises(ValueError):
            Config.from_file(path)

    def test_env_overrides_file(self):
        path = self.dir / 'config.json'
        path.write_text(json.dumps({'port': 4000, 'chunk_size': 1024}))

        with patch.dict(os.environ, {'BRIDGE_PORT': '5000'}):
            config = load_config(path)

        self.assertEqual(config.port, 5000)
        self.assertEqual(config.chunk_size, 1024)

    def test_to_dict_is_json(self):
        data = json.loads(json.dumps(Config().to_dict()))
        self.assertEqual(data['dest_dir'], 'received')


if __name__ == '__main__':
    unittest.main()
