import os
import tempfile
import unittest
from pathlib import Path

from wiki.config import Config

CONFIG_YAML = """
debug: true
http:
  host: 127.0.0.1
  port: 9090
  session_secret: session
database:
  queue: pages.queue
  url: sqlite://pages.db
  max_pool_size: 5
  sql_queries: queries.yaml
eventbus:
  request_timeout: 2.5
auth:
  enabled: true
  jwt_secret: jwt
  users:
    - username: alice
      password: wonderland
      roles: [writer]
  roles:
    writer: [update]
backup:
  token: t0k3n
"""


class TestConfig(unittest.TestCase):
    def test_defaults(self):
        config = Config()
        self.assertEqual(config.http.port, 8080)
        self.assertEqual(config.database.queue, "wikidb.queue")
        self.assertEqual(config.database.url, "sqlite://db/wiki.db")
        self.assertEqual(config.database.driver, "sqlite3")
        self.assertEqual(config.database.max_pool_size, 30)
        self.assertFalse(config.auth.enabled)
        self.assertEqual(
            [user.username for user in config.auth.users], ["root", "foo", "bar", "baz"]
        )

    def test_read(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "config.yaml")
            with open(path, "w", encoding="utf-8") as file:
                file.write(CONFIG_YAML)
            config = Config.read(path)

        self.assertTrue(config.debug)
        self.assertEqual(config.http.host, "127.0.0.1")
        self.assertEqual(config.http.port, 9090)
        self.assertEqual(config.database.queue, "pages.queue")
        self.assertEqual(config.database.max_pool_size, 5)
        self.assertEqual(config.database.sql_queries, Path("queries.yaml"))
        self.assertEqual(config.eventbus.request_timeout, 2.5)
        self.assertTrue(config.auth.enabled)
        self.assertEqual(config.auth.jwt_secret, "jwt")
        self.assertEqual(config.auth.users[0].username, "alice")
        self.assertEqual(config.auth.users[0].roles, ["writer"])
        self.assertEqual(config.auth.roles, {"writer": ["update"]})
        self.assertEqual(config.backup.token, "t0k3n")

    def test_empty(self):
        config = Config.from_dict({})
        self.assertEqual(config.http.port, 8080)
        self.assertFalse(config.auth.enabled)

    def test_environment(self):
        config = Config().apply_environment(
            {
                "WIKI_HTTP_PORT": "8888",
                "WIKI_DB_QUEUE": "other.queue",
                "WIKI_DB_URL": "sqlite://other.db",
                "WIKI_DB_MAX_POOL_SIZE": "3",
                "HOME": "/root",
            }
        )
        self.assertEqual(config.http.port, 8888)
        self.assertEqual(config.database.queue, "other.queue")
        self.assertEqual(config.database.url, "sqlite://other.db")
        self.assertEqual(config.database.driver, "sqlite3")
        self.assertEqual(config.database.max_pool_size, 3)
