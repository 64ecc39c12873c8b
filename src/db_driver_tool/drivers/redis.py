"""
Redis 驱动

键即“表”：不含通配符的表名对应单个键，``prefix:*`` 形式的表名对应一组键。
列固定为 key / type / ttl / value 四列。命令按 redis-cli 的写法分词后原样发送，
结果按返回值形状格式化（见 core.key_value）。

redis-py 使用连接池，SELECT 只会作用于池中的某一个连接，因此切换数据库时
以新的库编号重建客户端。
"""

import dataclasses
import json
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from redis import Redis
from redis.exceptions import RedisError

from ..core.exceptions import NOT_CONNECTED_MESSAGE, ConnectionError, error_message
from ..core.filters import non_negative_int
from ..core.key_value import (
    SCAN_BATCH_SIZE,
    SCAN_MAX_KEYS,
    VALUE_PREVIEW_SIZE,
    format_command_result,
    format_uptime,
    group_keys,
    keyspace_databases,
    mask_acl_password,
    normalize_ttl,
    parse_database_number,
    render_value,
    tokenize_command,
)
from ..core.requests import (
    REDIS_DATA_TYPES,
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
from ..core.tls import TLSOptions, connect_with_tls_fallback, pem_path
from ..core.types import (
    DEFAULT_PORTS,
    Column,
    ConnectionConfig,
    DatabaseInfo,
    DatabaseType,
    DatabaseUser,
    DataOptions,
    DataResult,
    ForeignKey,
    Index,
    QueryResult,
    Routine,
    SortDirection,
    TableInfo,
    Trigger,
    UserPrivilege,
)
from ..utils.logging_utils import get_logger
from .base import BaseDriver, elapsed_ms, failed, schema_operation

logger = get_logger(__name__)

COLUMNS_UNSUPPORTED = "Redis does not support column operations"
INDEXES_UNSUPPORTED = "Redis does not support index operations"
FOREIGN_KEYS_UNSUPPORTED = "Redis does not support foreign key operations"
TABLES_UNSUPPORTED = "Redis does not support table operations. Use SET, HSET, LPUSH, etc."
VIEWS_UNSUPPORTED = "Redis does not support views"
TRIGGERS_UNSUPPORTED = "Redis does not support triggers"

DEFAULT_DATA_LIMIT = 50
CONNECT_TIMEOUT_SECONDS = 10

KEY_COLUMN = "key"
VALUE_COLUMN = "value"

KEY_COLUMNS = [
    Column(name="key", type="string", nullable=False, primary_key=True, unique=True),
    Column(name="type", type="string", nullable=False),
    Column(name="ttl", type="integer"),
    Column(name="value", type="string"),
]


def redis_tls_options(tls: Optional[TLSOptions]) -> Dict[str, Any]:
    """
    将 TLSOptions 转换为 redis-py 的 ssl_* 参数

    Example:
        >>> redis_tls_options(None)
        {}
    """
    if tls is None:
        return {}
    options: Dict[str, Any] = {
        "ssl": True,
        "ssl_cert_reqs": "required" if tls.verify else "none",
        "ssl_check_hostname": tls.check_hostname,
    }
    if tls.ca:
        options["ssl_ca_certs"] = pem_path(tls.ca)
    if tls.cert:
        options["ssl_certfile"] = pem_path(tls.cert)
    if tls.key:
        options["ssl_keyfile"] = pem_path(tls.key)
    return options


def _display_arg(value: Any) -> str:
    """含空白的参数加双引号，使回显的命令可以再次分词执行"""
    text = "" if value is None else str(value)
    if not text or any(char.isspace() for char in text):
        return '"' + text.replace('"', '\\"') + '"'
    return text


class RedisDriver(BaseDriver):
    """
    Redis 驱动

    Attributes:
        current_database (int): 当前库编号（0-15）
    """

    db_type = DatabaseType.REDIS

    def __init__(self) -> None:
        super().__init__()
        self.client: Optional[Redis] = None
        self.current_database = 0
        self._tls: Optional[TLSOptions] = None

    # ==================== 连接 ====================

    def _create_client(
        self, config: ConnectionConfig, tls: Optional[TLSOptions], db: int
    ) -> Redis:
        return Redis(
            host=config.host or "localhost",
            port=config.port or DEFAULT_PORTS[self.db_type],
            db=db,
            username=config.username or None,
            password=config.password or None,
            socket_connect_timeout=CONNECT_TIMEOUT_SECONDS,
            decode_responses=True,
            **redis_tls_options(tls),
        )

    def connect(self, config: ConnectionConfig) -> None:
        """
        建立连接并以 PING 确认服务端可达

        Raises:
            ConnectionError: 连接、认证或 TLS 握手失败
        """
        if self._connected:
            logger.warning("数据库连接已存在，无需重复连接")
            return

        db = parse_database_number(config.database)

        def attempt(tls: Optional[TLSOptions]) -> None:
            self._tls = tls
            self.client = self._create_client(config, tls, db)
            self.client.ping()

        try:
            self.config = config
            connect_with_tls_fallback(config, attempt, self._release)
        except Exception as e:
            self._release()
            self.config = None
            message = error_message(e)
            logger.error(f"redis 连接建立失败: {message}")
            raise ConnectionError(
                message,
                "CONNECTION_FAILED",
                database_type=self.db_type.value,
                host=config.host,
                port=config.port,
                database=config.database,
            ) from e

        self.current_database = db
        self._connected = True
        logger.info(f"redis 连接成功: {config.host or 'localhost'}/db{db}")

    def _release(self) -> None:
        client = self.client
        self.client = None
        self._connected = False
        if client is not None:
            client.close()

    def disconnect(self) -> None:
        if self.client is None:
            self._connected = False
            logger.debug("数据库连接已断开，无需重复操作")
            return
        try:
            self._release()
            logger.info("redis 连接已断开")
        except Exception as e:
            logger.warning(f"关闭 Redis 客户端失败: {e}")
        finally:
            self.config = None

    def ping(self) -> bool:
        if not self._connected or self.client is None:
            return False
        try:
            return bool(self.client.ping())
        except RedisError as e:
            logger.warning(f"redis ping 失败: {e}")
            return False

    def _server_details(self) -> Tuple[Optional[str], Dict[str, str]]:
        server = self._require_client().info("server")
        info: Dict[str, str] = {}
        if server.get("os"):
            info["OS"] = str(server["os"])
        if server.get("tcp_port") is not None:
            info["Port"] = str(server["tcp_port"])
        uptime = format_uptime(server.get("uptime_in_seconds"))
        if uptime:
            info["Uptime"] = uptime
        if server.get("redis_mode"):
            info["Mode"] = str(server["redis_mode"])
        return f"Redis {server.get('redis_version', 'Unknown')}", info

    def _require_client(self) -> Redis:
        if self.client is None:
            raise ConnectionError(NOT_CONNECTED_MESSAGE, "NOT_CONNECTED", self.db_type.value)
        return self.client

    def select_database(self, database: Any) -> int:
        """
        切换当前库

        Args:
            database: "3"、"db3"、3 等形式，无法解析时为 0

        Returns:
            int: 切换后的库编号
        """
        db = parse_database_number(str(database))
        if db == self.current_database or self.config is None:
            return self.current_database
        client = self._create_client(self.config, self._tls, db)
        client.ping()
        previous = self.client
        self.client = client
        self.current_database = db
        if previous is not None:
            try:
                previous.close()
            except Exception as e:
                logger.warning(f"关闭旧的 Redis 客户端失败: {e}")
        logger.info(f"redis 已切换到 db{db}")
        return db

    # ==================== 命令执行 ====================

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        """
        执行 redis-cli 风格的命令行

        Args:
            sql: 例如 ``GET key``、``SET greeting 'hello world'``、``HGETALL user:1``
            params: 忽略

        Example:
            >>> driver.execute("SET greeting 'hello world'").rows
            [{'result': 'True'}]
        """
        if not self._connected or self.client is None:
            return QueryResult.failure(NOT_CONNECTED_MESSAGE)

        start = time.perf_counter()
        parts = tokenize_command(sql.strip())
        if not parts:
            return QueryResult.failure("Empty command", elapsed_ms(start))

        command = parts[0].upper()
        arguments = parts[1:]
        logger.debug(f"执行Redis命令: {' '.join(mask_acl_password(parts))}")
        try:
            if command == "SELECT" and len(arguments) == 1:
                result: Any = f"db{self.select_database(arguments[0])}"
            else:
                result = self._require_client().execute_command(command, *arguments)
            return format_command_result(command, result, elapsed_ms(start))
        except Exception as e:
            message = error_message(e)
            logger.error(f"Redis 命令执行失败: {message}")
            return QueryResult.failure(message, elapsed_ms(start))

    # ==================== 键扫描 ====================

    def scan_keys(self, pattern: str = "*", max_keys: int = SCAN_MAX_KEYS) -> List[str]:
        """
        以 SCAN 游标遍历匹配的键（不阻塞服务端），达到 max_keys 后停止

        SCAN 可能重复返回同一个键，结果已去重。
        """
        client = self._require_client()
        seen: Dict[str, None] = {}
        iterator = client.scan_iter(match=pattern, count=SCAN_BATCH_SIZE)
        for key in iterator:
            seen.setdefault(key, None)
            if len(seen) >= max_keys:
                break
        return list(seen)

    def _matching_keys(self, table: str) -> List[str]:
        if "*" in table:
            return self.scan_keys(table)
        return [table] if self._require_client().exists(table) else []

    def get_key_value(self, key: str) -> Any:
        """
        按类型读取键的值

        - string: 字符串
        - list / set: 前 100 个元素
        - zset: 前 100 个 {member, score}
        - hash: 全部字段
        - stream: 最近 100 条记录，每条带 _id
        - 其他类型: ``(类型名)``
        """
        client = self._require_client()
        key_type = client.type(key)
        limit = VALUE_PREVIEW_SIZE

        if key_type == "string":
            return client.get(key)
        if key_type == "list":
            return client.lrange(key, 0, limit - 1)
        if key_type == "set":
            return sorted(client.smembers(key))[:limit]
        if key_type == "zset":
            return [
                {"member": member, "score": score}
                for member, score in client.zrange(key, 0, limit - 1, withscores=True)
            ]
        if key_type == "hash":
            return client.hgetall(key)
        if key_type == "stream":
            try:
                entries = client.xrevrange(key, count=limit)
            except RedisError as e:
                logger.warning(f"读取 stream {key} 失败: {e}")
                return "(stream - unable to read)"
            return [{"_id": entry_id, **fields} for entry_id, fields in entries]
        return f"({key_type})"

    # ==================== 元数据 ====================

    def get_databases(self) -> List[DatabaseInfo]:
        """包含键的库（INFO keyspace），键数量记录在 charset 中；读取失败时返回空列表"""
        self.ensure_connected("get_databases")
        try:
            return keyspace_databases(self._require_client().info("keyspace"))
        except RedisError as e:
            logger.warning(f"读取 keyspace 失败: {e}")
            return []

    def get_tables(self, database: Optional[str] = None) -> List[TableInfo]:
        """
        列出键

        键数量不超过 200 时逐个列出，否则按第一个冒号前的前缀分组为 ``prefix:*``。
        指定 database 时先切换到该库。
        """
        self.ensure_connected("get_tables")
        if database:
            self.select_database(database)
        return group_keys(self.scan_keys("*"))

    def get_columns(self, table: str, database: Optional[str] = None) -> List[Column]:
        return [dataclasses.replace(column) for column in KEY_COLUMNS]

    def get_indexes(self, table: str, database: Optional[str] = None) -> List[Index]:
        return []

    def get_foreign_keys(self, table: str, database: Optional[str] = None) -> List[ForeignKey]:
        return []

    def get_table_ddl(self, table: str, database: Optional[str] = None) -> str:
        """以注释形式展示键的类型、TTL 与值"""
        self.ensure_connected("get_table_ddl")
        try:
            client = self._require_client()
            key_type = client.type(table)
            if key_type == "none":
                return f"-- Key '{table}' not found or inaccessible"
            ttl = client.ttl(table)
            value = self.get_key_value(table)
        except RedisError as e:
            logger.warning(f"读取键 {table} 失败: {e}")
            return f"-- Key '{table}' not found or inaccessible"

        lines = [
            f"-- Redis Key: {table}",
            f"-- Type: {key_type}",
            f"-- TTL: {'No expiry' if ttl < 0 else f'{ttl} seconds'}",
            "--",
            "-- Value:",
        ]
        body = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, indent=2, default=str)
        return "\n".join(lines) + "\n" + body

    def get_table_data(
        self, table: str, options: Optional[DataOptions] = None, database: Optional[str] = None
    ) -> DataResult:
        """
        浏览键数据

        键列表在内存中排序并分页（默认每页 50 个）；过滤条件不生效，
        仅支持按 key 列倒序。

        Raises:
            ValidationError: limit / offset 不是非负整数
        """
        self.ensure_connected("get_table_data")
        options = options or DataOptions()
        offset = non_negative_int(options.offset or 0, "offset")
        limit = non_negative_int(
            DEFAULT_DATA_LIMIT if options.limit is None else options.limit, "limit"
        )
        if database:
            self.select_database(database)

        client = self._require_client()
        keys = sorted(self._matching_keys(table))
        if options.order_by == KEY_COLUMN and options.order_direction == SortDirection.DESC:
            keys.reverse()

        rows: List[Dict[str, Any]] = []
        for key in keys[offset:offset + limit]:
            rows.append(
                {
                    "key": key,
                    "type": client.type(key),
                    "ttl": normalize_ttl(client.ttl(key)),
                    "value": render_value(self.get_key_value(key)),
                }
            )

        return DataResult(
            columns=[column.to_column_info() for column in KEY_COLUMNS],
            rows=rows,
            total_count=len(keys),
            offset=offset,
            limit=limit,
        )

    def get_data_types(self) -> List[DataTypeInfo]:
        return list(REDIS_DATA_TYPES)

    def get_primary_key_columns(self, table: str, database: Optional[str] = None) -> List[str]:
        return [KEY_COLUMN]

    # ==================== 键变更 ====================

    def _run(self, sql: str, action: Callable[[], Optional[int]]) -> SchemaOperationResult:
        logger.debug(f"执行Redis命令: {sql}")
        try:
            affected = action()
            return SchemaOperationResult(success=True, sql=sql, affected_rows=affected)
        except Exception as e:
            message = error_message(e)
            logger.error(f"Redis 命令执行失败: {message}")
            return failed(message, sql)

    @schema_operation
    def add_column(self, request: AddColumnRequest) -> SchemaOperationResult:
        return failed(COLUMNS_UNSUPPORTED)

    @schema_operation
    def modify_column(self, request: ModifyColumnRequest) -> SchemaOperationResult:
        return failed(COLUMNS_UNSUPPORTED)

    @schema_operation
    def drop_column(self, request: DropColumnRequest) -> SchemaOperationResult:
        return failed(COLUMNS_UNSUPPORTED)

    @schema_operation
    def rename_column(self, request: RenameColumnRequest) -> SchemaOperationResult:
        return failed(COLUMNS_UNSUPPORTED)

    @schema_operation
    def create_index(self, request: CreateIndexRequest) -> SchemaOperationResult:
        return failed(INDEXES_UNSUPPORTED)

    @schema_operation
    def drop_index(self, request: DropIndexRequest) -> SchemaOperationResult:
        return failed(INDEXES_UNSUPPORTED)

    @schema_operation
    def add_foreign_key(self, request: AddForeignKeyRequest) -> SchemaOperationResult:
        return failed(FOREIGN_KEYS_UNSUPPORTED)

    @schema_operation
    def drop_foreign_key(self, request: DropForeignKeyRequest) -> SchemaOperationResult:
        return failed(FOREIGN_KEYS_UNSUPPORTED)

    @schema_operation
    def create_table(self, request: CreateTableRequest) -> SchemaOperationResult:
        return failed(TABLES_UNSUPPORTED)

    @schema_operation
    def drop_table(self, request: DropTableRequest) -> SchemaOperationResult:
        """
        删除键

        ``prefix:*`` 形式的表名删除全部匹配的键。
        """
        client = self._require_client()
        keys = self._matching_keys(request.table) if "*" in request.table else [request.table]
        if not keys:
            return SchemaOperationResult(success=True, sql=f"DEL {request.table}", affected_rows=0)
        return self._run(
            "DEL " + " ".join(_display_arg(key) for key in keys),
            lambda: client.delete(*keys),
        )

    @schema_operation
    def rename_table(self, request: RenameTableRequest) -> SchemaOperationResult:
        client = self._require_client()

        def rename() -> None:
            client.rename(request.old_name, request.new_name)

        return self._run(
            f"RENAME {_display_arg(request.old_name)} {_display_arg(request.new_name)}", rename
        )

    @schema_operation
    def insert_row(self, request: InsertRowRequest) -> SchemaOperationResult:
        """以 SET 写入字符串键，values 中需包含 key，value 缺省为空字符串"""
        key = request.values.get(KEY_COLUMN)
        if not key:
            return failed("Key is required")
        value = request.values.get(VALUE_COLUMN)
        value = "" if value is None else str(value)
        client = self._require_client()

        def write() -> int:
            client.set(str(key), value)
            return 1

        return self._run(f"SET {_display_arg(key)} {_display_arg(value)}", write)

    @schema_operation
    def delete_row(self, request: DeleteRowRequest) -> SchemaOperationResult:
        key = request.primary_key_values.get(KEY_COLUMN)
        if not key:
            return failed("Key is required for deletion")
        client = self._require_client()
        return self._run(f"DEL {_display_arg(key)}", lambda: client.delete(str(key)))

    @schema_operation
    def update_row(self, request: UpdateRowRequest) -> SchemaOperationResult:
        """
        以 SET 覆盖键的值

        values 中的 ttl 为正整数时一并设置过期时间（SET ... EX）。
        """
        key = request.primary_key_values.get(KEY_COLUMN)
        if not key:
            return failed("Key is required for update")
        if VALUE_COLUMN not in request.values:
            return failed("No value to update")
        value = request.values[VALUE_COLUMN]
        value = "" if value is None else str(value)
        ttl = request.values.get("ttl")
        expire = int(ttl) if ttl not in (None, "") and int(ttl) > 0 else None
        client = self._require_client()

        def write() -> int:
            client.set(str(key), value, ex=expire)
            return 1

        sql = f"SET {_display_arg(key)} {_display_arg(value)}"
        if expire is not None:
            sql += f" EX {expire}"
        return self._run(sql, write)

    # ==================== 视图 / 例程 / 触发器 ====================

    @schema_operation
    def create_view(self, request: CreateViewRequest) -> SchemaOperationResult:
        return failed(VIEWS_UNSUPPORTED)

    @schema_operation
    def drop_view(self, request: DropViewRequest) -> SchemaOperationResult:
        return failed(VIEWS_UNSUPPORTED)

    @schema_operation
    def rename_view(self, request: RenameViewRequest) -> SchemaOperationResult:
        return failed(VIEWS_UNSUPPORTED)

    def get_view_ddl(self, view: str, database: Optional[str] = None) -> str:
        return f"-- {VIEWS_UNSUPPORTED}"

    def get_routines(self, database: Optional[str] = None) -> List[Routine]:
        return []

    def get_routine_definition(
        self, name: str, routine_type: str, database: Optional[str] = None
    ) -> str:
        return "-- Redis does not support stored procedures or functions"

    def get_triggers(self, database: Optional[str] = None, table: Optional[str] = None) -> List[Trigger]:
        return []

    def get_trigger_definition(
        self, name: str, table: Optional[str] = None, database: Optional[str] = None
    ) -> str:
        return f"-- {TRIGGERS_UNSUPPORTED}"

    @schema_operation
    def create_trigger(self, request: CreateTriggerRequest) -> SchemaOperationResult:
        return failed(TRIGGERS_UNSUPPORTED)

    @schema_operation
    def drop_trigger(self, request: DropTriggerRequest) -> SchemaOperationResult:
        return failed(TRIGGERS_UNSUPPORTED)

    # ==================== ACL 用户 ====================

    def get_users(self) -> List[DatabaseUser]:
        """
        ACL LIST 中的用户

        服务端不支持 ACL（6.0 以前）或没有权限时返回 default 用户。
        """
        self.ensure_connected("get_users")
        try:
            entries = self._require_client().execute_command("ACL", "LIST")
        except RedisError as e:
            logger.warning(f"读取 ACL 用户失败: {e}")
            return [DatabaseUser(name="default", login=True)]

        users: List[DatabaseUser] = []
        for entry in entries:
            parts = str(entry).split()
            users.append(
                DatabaseUser(
                    name=parts[1] if len(parts) > 1 else "default",
                    has_password="nopass" not in parts,
                    login="off" not in parts,
                    superuser="+@all" in parts or "allcommands" in parts,
                )
            )
        return users

    def get_user_privileges(self, username: str, host: Optional[str] = None) -> List[UserPrivilege]:
        """由 ACL GETUSER 的命令规则展开权限，对象为用户可访问的键模式"""
        self.ensure_connected("get_user_privileges")
        try:
            info = self._require_client().acl_getuser(username)
        except RedisError as e:
            logger.warning(f"读取用户 {username} 的 ACL 失败: {e}")
            return []
        if not info:
            return []

        keys = info.get("keys") or []
        key_patterns = " ".join(keys) if isinstance(keys, (list, tuple)) else str(keys)
        commands = info.get("commands") or []
        rules = commands.split() if isinstance(commands, str) else list(commands)
        return [
            UserPrivilege(
                privilege=rule,
                grantee=username,
                object_type="keys",
                object_name=key_patterns or None,
            )
            for rule in rules
        ]

    @schema_operation
    def create_user(self, request: CreateUserRequest) -> SchemaOperationResult:
        """
        ACL SETUSER 创建可访问全部键与命令的用户，返回的语句中密码以 **** 代替

        Example:
            >>> driver.create_user(CreateUserRequest(UserDefinition("app", "s3cret"))).sql
            'ACL SETUSER app on >**** ~* &* +@all'
        """
        user = request.user
        secret = f">{user.password}" if user.password else "nopass"
        arguments = ["ACL", "SETUSER", user.name, "on", secret, "~*", "&*", "+@all"]
        display = " ".join(mask_acl_password(arguments))
        client = self._require_client()
        logger.debug(f"执行Redis命令: {display}")
        try:
            client.execute_command(*arguments)
        except Exception as e:
            message = error_message(e)
            logger.error(f"创建 Redis 用户失败: {message}")
            return failed(message, display)
        return SchemaOperationResult(success=True, sql=display)

    @schema_operation
    def drop_user(self, request: DropUserRequest) -> SchemaOperationResult:
        client = self._require_client()
        return self._run(
            f"ACL DELUSER {request.name}",
            lambda: client.execute_command("ACL", "DELUSER", request.name),
        )

    def __repr__(self) -> str:
        status = "已连接" if self._connected else "未连接"
        return f"<RedisDriver database=db{self.current_database}, status={status}>"
