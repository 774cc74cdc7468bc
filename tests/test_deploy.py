import os
import socket
import tempfile

import httpx

from wiki.deploy import Deployment
from wiki.errors import DeploymentError
from tests.base import TestCase


class TestDeployment(TestCase):
    async def test_deploy_and_undeploy(self):
        deployment = Deployment(self.get_config(), serve=False)
        await deployment.deploy()
        self.assertEqual([unit.name for unit in deployment.deployed], ["database", "http"])
        self.assertTrue(deployment.bus.has_consumers(deployment.config.database.queue))
        self.assertIsNone(deployment.database.auth_store)

        await deployment.undeploy()
        self.assertEqual(deployment.deployed, [])
        self.assertIsNone(deployment.database.pool)
        self.assertFalse(deployment.bus.has_consumers(deployment.config.database.queue))

    async def test_auth_store(self):
        deployment = await self.deploy(self.get_auth_config())
        self.assertIs(deployment.http.auth_store, deployment.database.auth_store)
        self.assertIsNotNone(deployment.database.auth_store)

    async def test_bad_driver(self):
        config = self.get_config()
        config.database.driver = "postgresql"
        deployment = Deployment(config, serve=False)
        with self.assertRaises(DeploymentError) as cm:
            await deployment.deploy()
        self.assertEqual(cm.exception.unit, "database")
        self.assertIsNone(deployment.http)
        self.assertEqual(deployment.deployed, [])

    async def test_bad_url(self):
        config = self.get_config()
        config.database.url = "mysql://localhost/wiki"
        with self.assertRaises(DeploymentError):
            await Deployment(config, serve=False).deploy()

    async def test_bad_schema(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "queries.yaml")
            with open(path, "w", encoding="utf-8") as file:
                file.write("create_pages_table: CREATE TABLE broken (\n")
            config = self.get_config()
            config.database.sql_queries = path
            deployment = Deployment(config, serve=False)
            with self.assertRaises(DeploymentError):
                await deployment.deploy()
        self.assertIsNone(deployment.database.pool)
        self.assertEqual(deployment.deployed, [])

    async def test_http_failure_stops_database(self):
        busy = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.addCleanup(busy.close)
        busy.bind(("127.0.0.1", 0))
        busy.listen()

        config = self.get_config()
        config.http.host = "127.0.0.1"
        config.http.port = busy.getsockname()[1]
        deployment = Deployment(config)
        with self.assertRaises(DeploymentError) as cm:
            await deployment.deploy()
        self.assertEqual(cm.exception.unit, "http")
        self.assertEqual(deployment.deployed, [])
        self.assertIsNone(deployment.database.pool)


class TestServer(TestCase):
    async def test_serve(self):
        config = self.get_config()
        config.http.host = "127.0.0.1"
        with socket.socket() as probe:
            probe.bind(("127.0.0.1", 0))
            config.http.port = probe.getsockname()[1]

        deployment = Deployment(config)
        await deployment.deploy()
        self.addAsyncCleanup(deployment.undeploy)

        async with httpx.AsyncClient(
            base_url=f"http://127.0.0.1:{config.http.port}", trust_env=False
        ) as client:
            response = await client.get("/api/pages")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"success": True, "pages": []})
