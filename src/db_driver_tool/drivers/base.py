"""
驱动契约与共享行为

DatabaseDriver 描述所有后端驱动必须具备的方法集合（结构化协议，不要求继承）；
BaseDriver 提供可选的共享实现：连接状态、未连接校验、默认的 ping / cancel_query /
update_row、连接测试、多语句执行和上下文管理器。
"""

import functools
import time
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    TypeVar,
    runtime_checkable,
)

from ..core.exceptions import NOT_CONNECTED_MESSAGE, NotConnectedError, error_message
from ..core.requests import (
    AddColumnRequest,
    AddForeignKeyRequest,
    CreateIndexRequest,
    CreateTableRequest,
    CreateTriggerRequest,
    CreateUserRequest,
    CreateViewRequest,
    DataTypeInfo,
    DeleteRowRequest,
    DropColumnRequest,
    DropForeignKeyRequest,
    DropIndexRequest,
    DropTableRequest,
    DropTriggerRequest,
    DropUserRequest,
    DropViewRequest,
    InsertRowRequest,
    ModifyColumnRequest,
    RenameColumnRequest,
    RenameTableRequest,
    RenameViewRequest,
    SchemaOperationResult,
    UpdateRowRequest,
)
from ..core.sql_splitter import split_sql_statements
from ..core.types import (
    Column,
    ConnectionConfig,
    DatabaseInfo,
    DatabaseType,
    DatabaseUser,
    DataOptions,
    DataResult,
    ForeignKey,
    Index,
    MultiQueryResult,
    QueryResult,
    Routine,
    TableInfo,
    TestConnectionResult,
    Trigger,
    UserPrivilege,
)
from ..utils.logging_utils import get_logger

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., SchemaOperationResult])

UPDATE_ROW_UNSUPPORTED = "updateRow is not supported for this database type"


@runtime_checkable
class DatabaseDriver(Protocol):
    """
    后端驱动契约

    每个后端独立实现以下全部方法。后端不具备的能力（例如文档库的外键）
    必须通过返回值中的 error 描述拒绝，而不是缺少方法或抛出类型错误。
    """

    db_type: DatabaseType

    @property
    def is_connected(self) -> bool: ...

    def connect(self, config: ConnectionConfig) -> None: ...

    def disconnect(self) -> None: ...

    def test_connection(self, config: ConnectionConfig) -> TestConnectionResult: ...

    def ping(self) -> bool: ...

    def cancel_query(self) -> bool: ...

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult: ...

    def execute_many(self, sql: str) -> MultiQueryResult: ...

    def get_databases(self) -> List[DatabaseInfo]: ...

    def get_tables(self, database: Optional[str] = None) -> List[TableInfo]: ...

    def get_columns(self, table: str, database: Optional[str] = None) -> List[Column]: ...

    def get_indexes(self, table: str, database: Optional[str] = None) -> List[Index]: ...

    def get_foreign_keys(self, table: str, database: Optional[str] = None) -> List[ForeignKey]: ...

    def get_table_ddl(self, table: str, database: Optional[str] = None) -> str: ...

    def get_table_data(
        self, table: str, options: Optional[DataOptions] = None, database: Optional[str] = None
    ) -> DataResult: ...

    def get_data_types(self) -> List[DataTypeInfo]: ...

    def get_primary_key_columns(self, table: str, database: Optional[str] = None) -> List[str]: ...

    def add_column(self, request: AddColumnRequest) -> SchemaOperationResult: ...

    def modify_column(self, request: ModifyColumnRequest) -> SchemaOperationResult: ...

    def drop_column(self, request: DropColumnRequest) -> SchemaOperationResult: ...

    def rename_column(self, request: RenameColumnRequest) -> SchemaOperationResult: ...

    def create_index(self, request: CreateIndexRequest) -> SchemaOperationResult: ...

    def drop_index(self, request: DropIndexRequest) -> SchemaOperationResult: ...

    def add_foreign_key(self, request: AddForeignKeyRequest) -> SchemaOperationResult: ...

    def drop_foreign_key(self, request: DropForeignKeyRequest) -> SchemaOperationResult: ...

    def create_table(self, request: CreateTableRequest) -> SchemaOperationResult: ...

    def drop_table(self, request: DropTableRequest) -> SchemaOperationResult: ...

    def rename_table(self, request: RenameTableRequest) -> SchemaOperationResult: ...

    def insert_row(self, request: InsertRowRequest) -> SchemaOperationResult: ...

    def delete_row(self, request: DeleteRowRequest) -> SchemaOperationResult: ...

    def update_row(self, request: UpdateRowRequest) -> SchemaOperationResult: ...

    def create_view(self, request: CreateViewRequest) -> SchemaOperationResult: ...

    def drop_view(self, request: DropViewRequest) -> SchemaOperationResult: ...

    def rename_view(self, request: RenameViewRequest) -> SchemaOperationResult: ...

    def get_view_ddl(self, view: str, database: Optional[str] = None) -> str: ...

    def get_routines(self, database: Optional[str] = None) -> List[Routine]: ...

    def get_routine_definition(
        self, name: str, routine_type: str, database: Optional[str] = None
    ) -> str: ...

    def get_users(self) -> List[DatabaseUser]: ...

    def get_user_privileges(self, username: str, host: Optional[str] = None) -> List[UserPrivilege]: ...

    def create_user(self, request: CreateUserRequest) -> SchemaOperationResult: ...

    def drop_user(self, request: DropUserRequest) -> SchemaOperationResult: ...

    def get_triggers(self, database: Optional[str] = None, table: Optional[str] = None) -> List[Trigger]: ...

    def get_trigger_definition(
        self, name: str, table: Optional[str] = None, database: Optional[str] = None
    ) -> str: ...

    def create_trigger(self, request: CreateTriggerRequest) -> SchemaOperationResult: ...

    def drop_trigger(self, request: DropTriggerRequest) -> SchemaOperationResult: ...


def elapsed_ms(start: float) -> float:
    """返回自 start（time.perf_counter()）以来经过的毫秒数"""
    return round((time.perf_counter() - start) * 1000, 3)


def failed(error: Any, sql: Optional[str] = None) -> SchemaOperationResult:
    """由异常或消息构建失败的变更结果"""
    return SchemaOperationResult(success=False, sql=sql, error=error_message(error))


def schema_operation(func: F) -> F:
    """
    变更操作装饰器

    未连接时直接返回失败结果；操作内部未处理的异常记录日志后转换为失败结果，
    保证变更方法不向调用方抛出预期内的错误。
    """

    @functools.wraps(func)
    def wrapper(self: "BaseDriver", *args: Any, **kwargs: Any) -> SchemaOperationResult:
        if not self.is_connected:
            return SchemaOperationResult(success=False, error=NOT_CONNECTED_MESSAGE)
        try:
            return func(self, *args, **kwargs)
        except Exception as e:
            logger.error(f"{self.db_type.value} {func.__name__} 失败: {error_message(e)}")
            return failed(e)

    return wrapper  # type: ignore[return-value]


class BaseDriver:
    """
    驱动共享行为

    子类负责 connect / disconnect / execute 及各项元数据与变更操作；
    服务端版本与附加信息通过 _server_details() 提供给 test_connection。

    Attributes:
        db_type (DatabaseType): 后端类型标签
        config (ConnectionConfig | None): 最近一次 connect 使用的配置
    """

    db_type: DatabaseType

    def __init__(self) -> None:
        self.config: Optional[ConnectionConfig] = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def ensure_connected(self, operation: Optional[str] = None) -> None:
        """
        校验连接状态

        Raises:
            NotConnectedError: 尚未连接
        """
        if not self._connected:
            raise NotConnectedError(database_type=self.db_type.value, operation=operation)

    def connect(self, config: ConnectionConfig) -> None:
        raise NotImplementedError

    def disconnect(self) -> None:
        raise NotImplementedError

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        raise NotImplementedError

    def ping(self) -> bool:
        return False

    def cancel_query(self) -> bool:
        return False

    def update_row(self, request: UpdateRowRequest) -> SchemaOperationResult:
        return SchemaOperationResult(success=False, error=UPDATE_ROW_UNSUPPORTED)

    def _server_details(self) -> Tuple[Optional[str], Dict[str, str]]:
        """返回 (服务端版本, 附加信息)，由子类按需覆盖"""
        return None, {}

    def test_connection(self, config: ConnectionConfig) -> TestConnectionResult:
        """
        测试连接

        建立一次性连接、采集服务端信息并测量延迟，无论成功与否都会断开连接。
        服务端信息采集失败不影响测试结果。

        Returns:
            TestConnectionResult: latency 单位为毫秒

        Example:
            >>> driver = create_driver("sqlite")
            >>> driver.test_connection(ConnectionConfig.from_dict(
            ...     {"type": "sqlite", "database": ":memory:"})).success
            True
        """
        start = time.perf_counter()
        try:
            self.connect(config)
            latency = elapsed_ms(start)
            try:
                version, info = self._server_details()
            except Exception as e:
                logger.warning(f"采集 {self.db_type.value} 服务端信息失败: {e}")
                version, info = None, {}
            self.disconnect()
            return TestConnectionResult(
                success=True,
                latency=latency,
                server_version=version,
                server_info={k: str(v) for k, v in info.items() if v is not None},
            )
        except Exception as e:
            try:
                self.disconnect()
            except Exception as cleanup_error:
                logger.warning(f"连接测试后断开失败: {cleanup_error}")
            logger.error(f"{self.db_type.value} 连接测试失败: {error_message(e)}")
            return TestConnectionResult(success=False, error=error_message(e))

    def execute_many(self, sql: str) -> MultiQueryResult:
        """
        执行多条以分号分隔的语句

        使用共享拆分器拆分后逐条执行，遇到第一条错误即停止，
        该错误结果保留在返回列表末尾。

        Example:
            >>> result = driver.execute_many("CREATE TABLE t (id INTEGER); SELECT * FROM t")
            >>> len(result.results)
            2
        """
        start = time.perf_counter()
        results: List[QueryResult] = []
        for statement in split_sql_statements(sql):
            result = self.execute(statement)
            results.append(result)
            if result.error:
                logger.warning(f"多语句执行在第 {len(results)} 条语句处停止: {result.error}")
                break
        return MultiQueryResult(results=results, total_execution_time=elapsed_ms(start))

    def __enter__(self) -> "BaseDriver":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()

    def __repr__(self) -> str:
        status = "已连接" if self._connected else "未连接"
        return f"<{self.__class__.__name__} type={self.db_type.value}, status={status}>"
