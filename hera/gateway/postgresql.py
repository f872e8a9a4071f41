import json
import asyncio
import logging
import psycopg2
from typing import Any, Callable, Optional

from hera.config import PostgresConfig
from hera.errors import GatewayError
from hera.gateway.base import GatewayRequest, GatewayResponse, TransactionGateway

logger = logging.getLogger(__name__)

CRUD_FUNCTION = 'hera_txn_crud_v1'


class PostgreSQLGateway(TransactionGateway):
    """Calls the transaction CRUD database function through psycopg2."""

    def __init__(self, config: PostgresConfig, function_name: str = CRUD_FUNCTION,
                 connection_resolver: Optional[Callable] = None,
                 connection_closer: Optional[Callable] = None):
        self._config = config
        self._function_name = function_name

        if connection_resolver is None:
            self._connection_resolver = psycopg2.connect
        else:
            self._connection_resolver = connection_resolver

        self._connection_closer = connection_closer

    def _connect(self):
        return self._connection_resolver(
            host=self._config.host,
            port=self._config.port,
            user=self._config.user,
            password=self._config.password,
            database=self._config.database
        )

    def _close(self, connection, cursor):
        if self._connection_closer:
            self._connection_closer(connection)
            return
        if cursor is not None:
            cursor.close()
        if connection is not None:
            connection.close()

    def _build_query(self) -> str:
        return (
            f"SELECT {self._function_name}("
            "p_action => %s, p_actor_user_id => %s, p_organization_id => %s, "
            "p_transaction => %s::jsonb, p_lines => %s::jsonb, p_options => %s::jsonb"
            ") AS result"
        )

    def _build_values(self, request: GatewayRequest):
        params = request.as_rpc_params()
        return (
            params['p_action'],
            params['p_actor_user_id'],
            params['p_organization_id'],
            json.dumps(params['p_transaction'], default=str) if params['p_transaction'] is not None else None,
            json.dumps(params['p_lines'], default=str),
            json.dumps(params['p_options'], default=str),
        )

    @staticmethod
    def _parse_result(raw: Any) -> GatewayResponse:
        # jsonb is decoded by psycopg2, plain json/text is not
        if isinstance(raw, (str, bytes)):
            try:
                raw = json.loads(raw)
            except ValueError as e:
                raise GatewayError(f"Gateway returned invalid JSON: {e}") from e
        return GatewayResponse.from_dict(raw)

    def _execute_sync(self, request: GatewayRequest) -> GatewayResponse:
        connection = None
        cursor = None
        try:
            connection = self._connect()
            cursor = connection.cursor()
            cursor.execute(self._build_query(), self._build_values(request))
            row = cursor.fetchone()
            connection.commit()
        except psycopg2.Error as e:
            if connection is not None:
                connection.rollback()
            logger.error("%s %s failed: %s", self._function_name, request.action, e)
            return GatewayResponse(success=False, error=str(e).strip())
        finally:
            self._close(connection, cursor)

        if not row:
            raise GatewayError(f"{self._function_name} returned no rows")
        return self._parse_result(row[0])

    async def execute(self, request: GatewayRequest) -> GatewayResponse:
        # psycopg2 blocks, keep it off the event loop
        return await asyncio.to_thread(self._execute_sync, request)
