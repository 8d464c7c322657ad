import sys
import threading
import unittest
from pathlib import Path
from unittest import mock

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT / "src") not in sys.path:
    sys.path.insert(0, str(REPO_ROOT / "src"))

from dbtable.adapter import AsyncAdapter, ThreadedAdapter, as_adapter, connect  # noqa: E402
from dbtable.config import ConnectionSettings  # noqa: E402
from dbtable.dialects import MYSQL, POSTGRES  # noqa: E402
from dbtable.errors import ConfigurationError  # noqa: E402
from dbtable.models import QueryResult  # noqa: E402


class BlockingTransport:
    dialect = MYSQL

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []
        self.threads = []
        self.closed = 0

    def execute(self, sql, params=None):
        self.calls.append((sql, params))
        self.threads.append(threading.current_thread())
        if self.error is not None:
            raise self.error
        return self.result

    def close(self):
        self.closed += 1


class AwaitableTransport:
    def __init__(self, result=None):
        self.result = result
        self.calls = []
        self.closed = 0

    async def execute(self, sql, params=None):
        self.calls.append((sql, params))
        return self.result

    async def close(self):
        self.closed += 1


class TestAsAdapter(unittest.TestCase):
    def test_adapter_passes_through(self):
        adapter = ThreadedAdapter(BlockingTransport(), MYSQL)
        self.assertIs(as_adapter(adapter), adapter)
        self.assertIs(as_adapter(adapter, "postgres"), adapter)

    def test_blocking_transport_gets_threaded_adapter(self):
        adapter = as_adapter(BlockingTransport())
        self.assertIsInstance(adapter, ThreadedAdapter)
        self.assertIs(adapter.dialect, MYSQL)

    def test_explicit_dialect_wins(self):
        adapter = as_adapter(BlockingTransport(), "postgres")
        self.assertIs(adapter.dialect, POSTGRES)

    def test_coroutine_transport_gets_async_adapter(self):
        adapter = as_adapter(AwaitableTransport(), dialect="pg")
        self.assertIsInstance(adapter, AsyncAdapter)
        self.assertIs(adapter.dialect, POSTGRES)

    def test_configuration_errors(self):
        with self.assertRaisesRegex(ConfigurationError, "transport is required"):
            as_adapter(None)
        with self.assertRaisesRegex(ConfigurationError, "no execute"):
            as_adapter(object(), "mysql")
        with self.assertRaisesRegex(ConfigurationError, "No dialect"):
            as_adapter(AwaitableTransport())
        with self.assertRaisesRegex(ConfigurationError, "Unsupported dialect"):
            as_adapter(AwaitableTransport(), "sqlite")

    def test_dialect_helpers(self):
        mysql = as_adapter(BlockingTransport())
        pg = as_adapter(AwaitableTransport(), "postgres")
        self.assertEqual(mysql.escape_identifier("col"), "`col`")
        self.assertEqual(pg.escape_identifier("col"), '"col"')
        self.assertEqual([mysql.parameter_placeholder(i) for i in (1, 2, 3)], ["?", "?", "?"])
        self.assertEqual([pg.parameter_placeholder(i) for i in (1, 2, 3)], ["$1", "$2", "$3"])


class TestQuery(unittest.IsolatedAsyncioTestCase):
    async def test_threaded_query_runs_off_the_loop_thread(self):
        transport = BlockingTransport(result=QueryResult(rows=[{"id": 1}], rowcount=1))
        adapter = as_adapter(transport)

        result = await adapter.query("SELECT * FROM `t` WHERE `id` = ?", (1,))

        self.assertEqual(result.rows, [{"id": 1}])
        self.assertEqual(transport.calls, [("SELECT * FROM `t` WHERE `id` = ?", [1])])
        self.assertIsNot(transport.threads[0], threading.current_thread())

    async def test_query_without_params(self):
        transport = BlockingTransport(result=None)
        result = await as_adapter(transport).query("SELECT 1")
        self.assertEqual(transport.calls, [("SELECT 1", None)])
        self.assertIsInstance(result, QueryResult)
        self.assertEqual(result.rows, [])

    async def test_async_query_normalizes_plain_rows(self):
        transport = AwaitableTransport(result=[{"id": 1}, {"id": 2}])
        adapter = as_adapter(transport, "postgres")
        result = await adapter.query("SELECT * FROM \"t\" WHERE \"a\" = $1", ["x"])
        self.assertIsInstance(result, QueryResult)
        self.assertEqual(result.rows, [{"id": 1}, {"id": 2}])
        self.assertEqual(transport.calls, [("SELECT * FROM \"t\" WHERE \"a\" = $1", ["x"])])

    async def test_transport_errors_propagate_unmodified(self):
        error = ConnectionResetError("lost")
        transport = BlockingTransport(error=error)
        with self.assertRaises(ConnectionResetError) as ctx:
            await as_adapter(transport).query("SELECT 1", [])
        self.assertIs(ctx.exception, error)
        self.assertEqual(len(transport.calls), 1)

    async def test_close(self):
        blocking = BlockingTransport()
        await as_adapter(blocking).close()
        self.assertEqual(blocking.closed, 1)

        awaitable = AwaitableTransport()
        await as_adapter(awaitable, "mysql").close()
        self.assertEqual(awaitable.closed, 1)


class TestConnect(unittest.TestCase):
    def test_postgres_settings_use_cached_pool_transport(self):
        settings = ConnectionSettings(dialect="postgresql", database="app", user="svc", host="db", port=5432, maxconn=5, options={"sslmode": "require"})
        with mock.patch("dbtable.adapter.PostgresTransport.get", return_value=BlockingTransport()) as get:
            adapter = connect(settings)
        get.assert_called_once_with(
            database="app", user="svc", password=None, host="db", port=5432,
            minconn=1, maxconn=5, sslmode="require",
        )
        self.assertIsInstance(adapter, ThreadedAdapter)
        self.assertIs(adapter.dialect, POSTGRES)

    def test_mysql_settings_and_overrides(self):
        settings = ConnectionSettings(dialect="mysql", database="shop", user="app")
        with mock.patch("dbtable.adapter.MySQLTransport", return_value=BlockingTransport()) as transport_cls:
            adapter = connect(settings, host="db2", password="pw")
        transport_cls.assert_called_once_with(database="shop", user="app", password="pw", host="db2", port=None)
        self.assertIs(adapter.dialect, MYSQL)

    def test_settings_default_to_environment(self):
        env = {"DB_ENGINE": "mysql", "DB_NAME": "shop", "DB_USER": "app"}
        with mock.patch.dict("os.environ", env, clear=True), \
                mock.patch("dbtable.adapter.MySQLTransport", return_value=BlockingTransport()) as transport_cls:
            connect()
        transport_cls.assert_called_once_with(database="shop", user="app", password=None, host=None, port=None)


if __name__ == "__main__":
    unittest.main()
