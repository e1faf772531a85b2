from unittest.mock import MagicMock, patch

import pytest

from registry_worker.database import connection
from registry_worker.database.connection import (
    close_pools,
    configured_environments,
    get_connection,
    init_pools,
)


def _make_settings() -> MagicMock:
    settings = MagicMock(worker_environments=["prod", "dev"], db_pool_max_size=4)
    settings.dsn_for.side_effect = lambda env: f"dbname={env}"
    return settings


class TestPools:
    def teardown_method(self) -> None:
        connection._pools.clear()

    @patch("registry_worker.database.connection.ConnectionPool")
    def test_one_pool_per_environment(self, mock_pool: MagicMock) -> None:
        init_pools(_make_settings())

        assert configured_environments() == ["prod", "dev"]
        names = [call.kwargs["name"] for call in mock_pool.call_args_list]
        assert names == ["registry-prod", "registry-dev"]
        assert mock_pool.call_args_list[0].args[0] == "dbname=prod"
        assert mock_pool.call_args_list[0].kwargs["max_size"] == 4

    @patch("registry_worker.database.connection.ConnectionPool")
    def test_init_is_idempotent(self, mock_pool: MagicMock) -> None:
        init_pools(_make_settings())
        init_pools(_make_settings())
        assert mock_pool.call_count == 2

    @patch("registry_worker.database.connection.ConnectionPool")
    def test_close_twice(self, mock_pool: MagicMock) -> None:
        init_pools(_make_settings())

        close_pools()
        close_pools()

        assert configured_environments() == []
        assert mock_pool.return_value.close.call_count == 2

    def test_unknown_environment(self) -> None:
        with pytest.raises(RuntimeError, match="not initialized"):
            with get_connection("staging"):
                pass
