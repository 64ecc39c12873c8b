"""
MongoDB 驱动

基于 pymongo。集合映射为“表”，字段结构从样本文档推断；execute 接收
shell 风格命令（``db.<collection>.<method>(<args>)``），解析、类型推断、
序列化与过滤条件翻译见 core.documents。
"""

import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote_plus

from bson import json_util
from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from ..core.documents import (
    ID_FIELD,
    SAMPLE_SIZE,
    ShellCommand,
    build_document_filter,
    build_document_sort,
    documents_to_result,
    index_type,
    infer_columns,
    parse_shell_command,
    parse_view_definition,
    primary_key_filter,
    serialize_document,
    serialize_value,
    to_extended_json,
)
from ..core.exceptions import NOT_CONNECTED_MESSAGE, ConnectionError, ValidationError, error_message
from ..core.filters import non_negative_int
from ..core.requests import (
    MONGODB_DATA_TYPES,
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
from ..core.tls import TLSOptions, connect_with_tls_fallback, is_pem_content, pem_path
from ..core.types import (
    DEFAULT_PORTS,
    Column,
    ColumnInfo,
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
    TableInfo,
    TableObjectType,
    Trigger,
    UserPrivilege,
)
from ..utils.logging_utils import get_logger, mask_secrets
from .base import BaseDriver, elapsed_ms, failed, schema_operation

logger = get_logger(__name__)

DEFAULT_DATABASE = "admin"
DEFAULT_DATA_LIMIT = 50
FIND_LIMIT = 1000
TIMEOUT_MS = 5000

SCHEMA_LESS_ADD = (
    "MongoDB is schema-less. Fields are added automatically when documents are inserted or updated."
)
SCHEMA_LESS_MODIFY = "MongoDB is schema-less. Field types are not enforced at the database level."
FOREIGN_KEYS_UNSUPPORTED = "MongoDB does not support foreign key constraints."
RENAME_VIEW_UNSUPPORTED = (
    "MongoDB does not support renaming views directly. Drop and recreate the view instead."
)
TRIGGERS_UNSUPPORTED = "MongoDB does not support triggers."
SUPERUSER_ROLES = ("root", "userAdminAnyDatabase", "dbAdminAnyDatabase")
SPECIAL_INDEX_TYPES = ("text", "hashed", "2d", "2dsphere")

_URI_PREFIXES = ("mongodb://", "mongodb+srv://")

# shell 方法名 → 驱动内的处理方法
COMMAND_HANDLERS: Dict[str, str] = {
    "getCollectionNames": "_cmd_collection_names",
    "stats": "_cmd_stats",
    "find": "_cmd_find",
    "findOne": "_cmd_find_one",
    "aggregate": "_cmd_aggregate",
    "insertOne": "_cmd_insert_one",
    "insertMany": "_cmd_insert_many",
    "updateOne": "_cmd_update_one",
    "updateMany": "_cmd_update_many",
    "deleteOne": "_cmd_delete_one",
    "deleteMany": "_cmd_delete_many",
    "countDocuments": "_cmd_count_documents",
    "distinct": "_cmd_distinct",
    "createIndex": "_cmd_create_index",
    "dropIndex": "_cmd_drop_index",
    "drop": "_cmd_drop",
}


def is_connection_uri(value: Optional[str]) -> bool:
    return bool(value) and value.startswith(_URI_PREFIXES)


def build_connection_uri(config: ConnectionConfig) -> str:
    """
    构建连接 URI

    database 字段本身是完整的 mongodb:// 或 mongodb+srv:// URI 时原样使用。

    Example:
        >>> cfg = ConnectionConfig.from_dict(
        ...     {"type": "mongodb", "host": "db", "username": "u", "password": "p@ss", "database": "app"}
        ... )
        >>> build_connection_uri(cfg)
        'mongodb://u:p%40ss@db:27017/app'
    """
    if is_connection_uri(config.database):
        return config.database

    credentials = ""
    if config.username:
        credentials = quote_plus(config.username)
        if config.password:
            credentials += f":{quote_plus(config.password)}"
        credentials += "@"

    host = config.host or "localhost"
    port = config.port or DEFAULT_PORTS[DatabaseType.MONGODB]
    uri = f"mongodb://{credentials}{host}:{port}"
    if config.database and config.database != DEFAULT_DATABASE:
        uri += f"/{config.database}"
    return uri


def _read_pem(value: str) -> str:
    if is_pem_content(value):
        return value
    with open(value, "r", encoding="utf-8") as f:
        return f.read()


def certificate_key_file(tls: TLSOptions) -> Optional[str]:
    """pymongo 要求客户端证书与私钥位于同一个 PEM 文件中，分开提供时合并写入"""
    if not tls.cert:
        return None
    if not tls.key:
        return pem_path(tls.cert)
    return pem_path(_read_pem(tls.cert).rstrip("\n") + "\n" + _read_pem(tls.key))


def tls_client_options(tls: Optional[TLSOptions]) -> Dict[str, Any]:
    """将 TLSOptions 转换为 MongoClient 的 tls* 关键字参数"""
    if tls is None:
        return {}
    options: Dict[str, Any] = {
        "tls": True,
        "tlsAllowInvalidCertificates": not tls.verify,
    }
    if tls.verify:
        options["tlsAllowInvalidHostnames"] = not tls.check_hostname
    if tls.ca:
        options["tlsCAFile"] = pem_path(tls.ca)
    key_file = certificate_key_file(tls)
    if key_file:
        options["tlsCertificateKeyFile"] = key_file
    return options


def _single_row(row: Dict[str, Any], types: Dict[str, str], affected: Optional[int] = None) -> QueryResult:
    columns = [
        ColumnInfo(name=name, type=types.get(name, "String"), nullable=row[name] is None)
        for name in row
    ]
    return QueryResult(columns=columns, rows=[row], row_count=1, affected_rows=affected)


def _id_text(value: Any) -> Optional[str]:
    return None if value is None else str(serialize_value(value))


class MongoDBDriver(BaseDriver):
    """
    MongoDB 驱动

    Attributes:
        current_database (str): 当前数据库，get_tables 浏览其他数据库时随之切换
    """

    db_type = DatabaseType.MONGODB

    def __init__(self) -> None:
        super().__init__()
        self.client: Optional[MongoClient] = None
        self.db: Optional[Database] = None
        self.current_database = ""

    # ==================== 连接 ====================

    def connect(self, config: ConnectionConfig) -> None:
        """
        建立连接并以 ping 命令确认服务端可达

        Raises:
            ConnectionError: 服务端选择超时、认证失败或 TLS 握手失败
        """
        if self._connected:
            logger.warning("数据库连接已存在，无需重复连接")
            return

        uri = build_connection_uri(config)
        logger.debug(f"MongoDB 连接URI: {mask_secrets(uri)}")

        def attempt(tls: Optional[TLSOptions]) -> None:
            self.client = MongoClient(
                uri,
                serverSelectionTimeoutMS=TIMEOUT_MS,
                connectTimeoutMS=TIMEOUT_MS,
                **tls_client_options(tls),
            )
            self.client.admin.command("ping")

        try:
            self.config = config
            connect_with_tls_fallback(config, attempt, self._release)
            if is_connection_uri(config.database):
                self.db = self.client.get_default_database(default=DEFAULT_DATABASE)
            else:
                self.db = self.client[config.database or DEFAULT_DATABASE]
        except Exception as e:
            self._release()
            self.config = None
            message = error_message(e)
            logger.error(f"mongodb 连接建立失败: {message}")
            raise ConnectionError(
                message,
                "CONNECTION_FAILED",
                database_type=self.db_type.value,
                host=config.host,
                port=config.port,
            ) from e

        self.current_database = self.db.name
        self._connected = True
        logger.info(f"mongodb 连接成功: {config.host or 'uri'}/{self.current_database}")

    def _release(self) -> None:
        client = self.client
        self.client = None
        self.db = None
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
            logger.info("mongodb 连接已断开")
        except Exception as e:
            logger.warning(f"关闭 MongoClient 失败: {e}")
        finally:
            self.config = None

    def ping(self) -> bool:
        if not self._connected or self.db is None:
            return False
        try:
            self.db.command("ping")
            return True
        except PyMongoError as e:
            logger.warning(f"mongodb ping 失败: {e}")
            return False

    def _server_details(self) -> Tuple[Optional[str], Dict[str, str]]:
        build_info = self._database().command("buildInfo")
        info: Dict[str, str] = {}
        if build_info.get("gitVersion"):
            info["Git Version"] = build_info["gitVersion"]
        if build_info.get("javascriptEngine"):
            info["JS Engine"] = build_info["javascriptEngine"]
        if build_info.get("storageEngines"):
            info["Storage Engines"] = ", ".join(build_info["storageEngines"])
        return f"MongoDB {build_info.get('version', 'Unknown')}", info

    def _database(self, database: Optional[str] = None) -> Database:
        if self.client is None or self.db is None:
            raise ConnectionError(NOT_CONNECTED_MESSAGE, "NOT_CONNECTED", self.db_type.value)
        if database and database != self.db.name:
            return self.client[database]
        return self.db

    # ==================== 命令执行 ====================

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        """
        执行 shell 风格命令

        Args:
            sql: 例如 ``db.users.find({"age": {"$gt": 18}})``、``db.getCollectionNames()``
            params: 忽略

        Example:
            >>> driver.execute('db.users.countDocuments({})').rows
            [{'count': 3}]
        """
        if not self._connected:
            return QueryResult.failure(NOT_CONNECTED_MESSAGE)

        start = time.perf_counter()
        try:
            command = parse_shell_command(sql)
            logger.debug(f"执行MongoDB命令: {command.method} on {command.collection}")
            handler: Callable[[ShellCommand], QueryResult] = getattr(
                self, COMMAND_HANDLERS[command.method]
            )
            result = handler(command)
            result.execution_time = elapsed_ms(start)
            return result
        except Exception as e:
            message = error_message(e)
            logger.error(f"mongodb 命令执行失败: {message}")
            return QueryResult.failure(message, elapsed_ms(start))

    def _documents(self, documents: List[Dict[str, Any]]) -> QueryResult:
        columns, rows = documents_to_result(documents)
        return QueryResult(columns=columns, rows=rows, row_count=len(rows))

    def _cmd_collection_names(self, command: ShellCommand) -> QueryResult:
        names = sorted(self._database().list_collection_names())
        return QueryResult(
            columns=[ColumnInfo(name="name", type="String", nullable=False)],
            rows=[{"name": name} for name in names],
            row_count=len(names),
        )

    def _cmd_stats(self, command: ShellCommand) -> QueryResult:
        stats = serialize_document(self._database().command("dbstats"))
        return QueryResult(
            columns=[ColumnInfo(name=key, type="String") for key in stats],
            rows=[stats],
            row_count=1,
        )

    def _cmd_find(self, command: ShellCommand) -> QueryResult:
        cursor = self._database()[command.collection].find(command.arg(0, {}), command.arg(1))
        return self._documents(list(cursor.limit(FIND_LIMIT)))

    def _cmd_find_one(self, command: ShellCommand) -> QueryResult:
        document = self._database()[command.collection].find_one(command.arg(0, {}), command.arg(1))
        return self._documents([document] if document is not None else [])

    def _cmd_aggregate(self, command: ShellCommand) -> QueryResult:
        pipeline = command.arg(0, [])
        return self._documents(list(self._database()[command.collection].aggregate(pipeline)))

    def _cmd_insert_one(self, command: ShellCommand) -> QueryResult:
        result = self._database()[command.collection].insert_one(dict(command.arg(0, {})))
        return _single_row(
            {"acknowledged": result.acknowledged, "insertedId": _id_text(result.inserted_id)},
            {"acknowledged": "Boolean", "insertedId": "ObjectId"},
            affected=1 if result.acknowledged else 0,
        )

    def _cmd_insert_many(self, command: ShellCommand) -> QueryResult:
        documents = [dict(document) for document in command.arg(0, [])]
        result = self._database()[command.collection].insert_many(documents)
        inserted = {str(i): _id_text(value) for i, value in enumerate(result.inserted_ids)}
        return _single_row(
            {
                "acknowledged": result.acknowledged,
                "insertedCount": len(result.inserted_ids),
                "insertedIds": inserted,
            },
            {"acknowledged": "Boolean", "insertedCount": "Number", "insertedIds": "Object"},
            affected=len(result.inserted_ids),
        )

    def _update(self, command: ShellCommand, many: bool) -> QueryResult:
        collection = self._database()[command.collection]
        options = command.arg(2, {})
        update = collection.update_many if many else collection.update_one
        result = update(command.arg(0, {}), command.arg(1, {}), upsert=bool(options.get("upsert", False)))
        return _single_row(
            {
                "acknowledged": result.acknowledged,
                "matchedCount": result.matched_count,
                "modifiedCount": result.modified_count,
                "upsertedId": _id_text(result.upserted_id),
            },
            {
                "acknowledged": "Boolean",
                "matchedCount": "Number",
                "modifiedCount": "Number",
                "upsertedId": "String",
            },
            affected=result.modified_count,
        )

    def _cmd_update_one(self, command: ShellCommand) -> QueryResult:
        return self._update(command, many=False)

    def _cmd_update_many(self, command: ShellCommand) -> QueryResult:
        return self._update(command, many=True)

    def _delete(self, command: ShellCommand, many: bool) -> QueryResult:
        collection = self._database()[command.collection]
        delete = collection.delete_many if many else collection.delete_one
        result = delete(command.arg(0, {}))
        return _single_row(
            {"acknowledged": result.acknowledged, "deletedCount": result.deleted_count},
            {"acknowledged": "Boolean", "deletedCount": "Number"},
            affected=result.deleted_count,
        )

    def _cmd_delete_one(self, command: ShellCommand) -> QueryResult:
        return self._delete(command, many=False)

    def _cmd_delete_many(self, command: ShellCommand) -> QueryResult:
        return self._delete(command, many=True)

    def _cmd_count_documents(self, command: ShellCommand) -> QueryResult:
        count = self._database()[command.collection].count_documents(command.arg(0, {}))
        return _single_row({"count": count}, {"count": "Number"})

    def _cmd_distinct(self, command: ShellCommand) -> QueryResult:
        field = command.arg(0)
        if not isinstance(field, str):
            raise ValidationError("distinct requires a field name", "MONGO_INVALID_ARGUMENT")
        values = self._database()[command.collection].distinct(field, command.arg(1, {}))
        return QueryResult(
            columns=[ColumnInfo(name=field, type="String")],
            rows=[{field: serialize_value(value)} for value in values],
            row_count=len(values),
        )

    def _cmd_create_index(self, command: ShellCommand) -> QueryResult:
        keys = command.arg(0, {})
        options = command.arg(1, {})
        name = self._database()[command.collection].create_index(list(keys.items()), **options)
        return _single_row({"indexName": name}, {"indexName": "String"})

    def _cmd_drop_index(self, command: ShellCommand) -> QueryResult:
        index = command.arg(0)
        if isinstance(index, dict):
            index = list(index.items())
        self._database()[command.collection].drop_index(index)
        return _single_row({"result": f"Index '{command.arg(0)}' dropped"}, {"result": "String"})

    def _cmd_drop(self, command: ShellCommand) -> QueryResult:
        self._database()[command.collection].drop()
        return _single_row({"dropped": True}, {"dropped": "Boolean"})

    # ==================== 元数据 ====================

    def get_databases(self) -> List[DatabaseInfo]:
        """列出全部数据库，没有 listDatabases 权限时只返回当前数据库"""
        self.ensure_connected("get_databases")
        try:
            return [DatabaseInfo(name=name) for name in self.client.list_database_names()]
        except PyMongoError as e:
            logger.warning(f"列出数据库失败，仅返回当前数据库: {e}")
            return [DatabaseInfo(name=self.current_database)]

    def get_tables(self, database: Optional[str] = None) -> List[TableInfo]:
        """
        列出集合与视图，指定其他数据库时切换当前数据库

        行数为 estimatedDocumentCount，读取失败时为 None。
        """
        self.ensure_connected("get_tables")
        if database and database != self.current_database:
            self.db = self.client[database]
            self.current_database = database
            logger.info(f"mongodb 当前数据库切换为: {database}")

        db = self._database()
        tables: List[TableInfo] = []
        for info in db.list_collections():
            is_view = info.get("type") == "view"
            row_count: Optional[int] = None
            try:
                row_count = db[info["name"]].estimated_document_count()
            except PyMongoError as e:
                logger.debug(f"读取集合 {info['name']} 文档数失败: {e}")
            tables.append(
                TableInfo(
                    name=info["name"],
                    type=TableObjectType.VIEW if is_view else TableObjectType.TABLE,
                    schema=self.current_database,
                    row_count=row_count,
                    comment="MongoDB View" if is_view else "MongoDB Collection",
                )
            )
        return sorted(tables, key=lambda t: t.name)

    def get_columns(self, table: str, database: Optional[str] = None) -> List[Column]:
        """从前 100 个文档推断字段结构"""
        self.ensure_connected("get_columns")
        sample = list(self._database(database)[table].find().limit(SAMPLE_SIZE))
        return infer_columns(sample)

    def get_indexes(self, table: str, database: Optional[str] = None) -> List[Index]:
        self.ensure_connected("get_indexes")
        try:
            specs = list(self._database(database)[table].list_indexes())
        except PyMongoError as e:
            logger.warning(f"读取集合 {table} 的索引失败: {e}")
            return []
        return [
            Index(
                name=spec.get("name", "unknown"),
                columns=list(spec["key"].keys()),
                unique=bool(spec.get("unique", False)),
                primary=spec.get("name") == "_id_",
                type=index_type(dict(spec["key"])),
            )
            for spec in specs
        ]

    def get_foreign_keys(self, table: str, database: Optional[str] = None) -> List[ForeignKey]:
        return []

    def get_table_ddl(self, table: str, database: Optional[str] = None) -> str:
        """
        生成描述集合的伪 DDL：索引的 createIndex 语句、采样推断的结构和估算文档数
        """
        self.ensure_connected("get_table_ddl")
        collection = self._database(database)[table]
        lines = [
            f"// MongoDB Collection: {table}",
            f"// Database: {database or self.current_database}",
            "",
        ]

        try:
            specs = list(collection.list_indexes())
        except PyMongoError as e:
            logger.warning(f"读取集合 {table} 的索引失败: {e}")
            specs = []
        if specs:
            lines.append("// Indexes:")
            for spec in specs:
                options = {"name": spec.get("name"), "unique": bool(spec.get("unique", False))}
                lines.append(
                    f"db.{table}.createIndex({to_extended_json(dict(spec['key']))}, "
                    f"{to_extended_json(options)})"
                )
            lines.append("")

        columns = self.get_columns(table, database)
        lines.append("// Inferred schema (from sampling):")
        lines.append("// {")
        for column in columns:
            optional = " (optional)" if column.nullable else ""
            lines.append(f'//   "{column.name}": {column.type}{optional}')
        lines.append("// }")

        try:
            count = collection.estimated_document_count()
            lines.extend(["", f"// Estimated document count: {count}"])
        except PyMongoError as e:
            logger.debug(f"读取集合 {table} 文档数失败: {e}")
        return "\n".join(lines)

    def get_table_data(
        self, table: str, options: Optional[DataOptions] = None, database: Optional[str] = None
    ) -> DataResult:
        """
        分页浏览集合文档，未指定 limit 时每页 50 个

        过滤值按采样推断的字段类型转换（数值字段的数字字符串转为数值，
        ObjectId 字段的十六进制字符串转为 ObjectId）。

        Raises:
            NotConnectedError: 尚未连接
            ValidationError: 分页参数非法
        """
        self.ensure_connected("get_table_data")
        options = options or DataOptions()
        limit = non_negative_int(options.limit, "limit") if options.limit is not None else DEFAULT_DATA_LIMIT
        offset = non_negative_int(options.offset, "offset") if options.offset is not None else 0

        columns = self.get_columns(table, database)
        field_types = {column.name: column.type for column in columns}
        query = build_document_filter(options.filters, field_types)
        logger.debug(f"MongoDB 过滤条件: {to_extended_json(query)}")

        collection = self._database(database)[table]
        total = collection.count_documents(query)
        cursor = collection.find(query)
        sort = build_document_sort(options)
        if sort:
            cursor = cursor.sort(sort)
        documents = list(cursor.skip(offset).limit(limit))
        return DataResult(
            columns=[column.to_column_info() for column in columns],
            rows=[serialize_document(document) for document in documents],
            total_count=total,
            offset=offset,
            limit=limit,
        )

    def get_data_types(self) -> List[DataTypeInfo]:
        return list(MONGODB_DATA_TYPES)

    def get_primary_key_columns(self, table: str, database: Optional[str] = None) -> List[str]:
        return [ID_FIELD]

    # ==================== 结构变更 ====================

    def _run(self, sql: str, action: Callable[[], Optional[int]]) -> SchemaOperationResult:
        """执行一次 pymongo 调用，action 返回受影响的文档数（可为 None）"""
        logger.debug(f"执行MongoDB命令: {sql}")
        try:
            affected = action()
            return SchemaOperationResult(success=True, sql=sql, affected_rows=affected)
        except Exception as e:
            message = error_message(e)
            logger.error(f"MongoDB 命令执行失败: {message}")
            return failed(message, sql)

    @schema_operation
    def add_column(self, request: AddColumnRequest) -> SchemaOperationResult:
        return failed(SCHEMA_LESS_ADD)

    @schema_operation
    def modify_column(self, request: ModifyColumnRequest) -> SchemaOperationResult:
        return failed(SCHEMA_LESS_MODIFY)

    @schema_operation
    def drop_column(self, request: DropColumnRequest) -> SchemaOperationResult:
        """从集合的全部文档中 $unset 该字段"""
        update = {"$unset": {request.column_name: ""}}
        collection = self._database()[request.table]
        return self._run(
            f"db.{request.table}.updateMany({{}}, {to_extended_json(update)})",
            lambda: collection.update_many({}, update).modified_count,
        )

    @schema_operation
    def rename_column(self, request: RenameColumnRequest) -> SchemaOperationResult:
        update = {"$rename": {request.old_name: request.new_name}}
        collection = self._database()[request.table]
        return self._run(
            f"db.{request.table}.updateMany({{}}, {to_extended_json(update)})",
            lambda: collection.update_many({}, update).modified_count,
        )

    @schema_operation
    def create_index(self, request: CreateIndexRequest) -> SchemaOperationResult:
        """
        创建索引

        index.type 为 text / hashed / 2d / 2dsphere 时作为键的索引类型，否则升序。
        """
        index = request.index
        direction: Any = index.type if index.type in SPECIAL_INDEX_TYPES else 1
        keys = {column: direction for column in index.columns}
        options = {"name": index.name, "unique": index.unique}
        collection = self._database()[request.table]

        def create() -> None:
            collection.create_index(list(keys.items()), **options)

        return self._run(
            f"db.{request.table}.createIndex({to_extended_json(keys)}, {to_extended_json(options)})",
            create,
        )

    @schema_operation
    def drop_index(self, request: DropIndexRequest) -> SchemaOperationResult:
        collection = self._database()[request.table]
        return self._run(
            f'db.{request.table}.dropIndex("{request.index_name}")',
            lambda: collection.drop_index(request.index_name),
        )

    @schema_operation
    def add_foreign_key(self, request: AddForeignKeyRequest) -> SchemaOperationResult:
        return failed(FOREIGN_KEYS_UNSUPPORTED)

    @schema_operation
    def drop_foreign_key(self, request: DropForeignKeyRequest) -> SchemaOperationResult:
        return failed(FOREIGN_KEYS_UNSUPPORTED)

    @schema_operation
    def create_table(self, request: CreateTableRequest) -> SchemaOperationResult:
        """创建集合；列定义不生效，索引定义会一并创建"""
        db = self._database(request.schema)
        name = request.table.name

        def create() -> None:
            db.create_collection(name)

        result = self._run(f'db.createCollection("{name}")', create)
        if not result.success:
            return result
        for index in request.table.indexes:
            index_result = self.create_index(CreateIndexRequest(table=name, index=index))
            if not index_result.success:
                logger.warning(f"建集合后创建索引 {index.name} 失败: {index_result.error}")
        return result

    @schema_operation
    def drop_table(self, request: DropTableRequest) -> SchemaOperationResult:
        collection = self._database()[request.table]
        return self._run(f"db.{request.table}.drop()", lambda: collection.drop())

    @schema_operation
    def rename_table(self, request: RenameTableRequest) -> SchemaOperationResult:
        collection = self._database()[request.old_name]

        def rename() -> None:
            collection.rename(request.new_name)

        return self._run(f'db.{request.old_name}.renameCollection("{request.new_name}")', rename)

    # ==================== 文档 ====================

    @schema_operation
    def insert_row(self, request: InsertRowRequest) -> SchemaOperationResult:
        document = dict(request.values)
        collection = self._database()[request.table]
        return self._run(
            f"db.{request.table}.insertOne({to_extended_json(request.values)})",
            lambda: 1 if collection.insert_one(document).acknowledged else 0,
        )

    @schema_operation
    def delete_row(self, request: DeleteRowRequest) -> SchemaOperationResult:
        if not request.primary_key_values:
            return failed("Primary key values are required to delete a row")
        query = primary_key_filter(request.primary_key_values)
        collection = self._database()[request.table]
        return self._run(
            f"db.{request.table}.deleteOne({to_extended_json(query)})",
            lambda: collection.delete_one(query).deleted_count,
        )

    @schema_operation
    def update_row(self, request: UpdateRowRequest) -> SchemaOperationResult:
        """以 $set 更新主键值定位的文档，_id 不可修改"""
        if not request.primary_key_values:
            return failed("Primary key values are required to update a row")
        values = {key: value for key, value in request.values.items() if key != ID_FIELD}
        if not values:
            return failed("No values to update")
        query = primary_key_filter(request.primary_key_values)
        update = {"$set": values}
        collection = self._database()[request.table]
        return self._run(
            f"db.{request.table}.updateOne({to_extended_json(query)}, {to_extended_json(update)})",
            lambda: collection.update_one(query, update).modified_count,
        )

    # ==================== 视图 ====================

    @schema_operation
    def create_view(self, request: CreateViewRequest) -> SchemaOperationResult:
        """
        创建视图

        select_statement 为 ``{"source": "<collection>", "pipeline": [...]}`` 形式的 JSON。
        replace_if_exists 为 True 时先删除同名视图。
        """
        view = request.view
        try:
            source, pipeline = parse_view_definition(view.select_statement)
        except ValidationError as e:
            return failed(e)

        db = self._database()
        sql = f'db.createView("{view.name}", "{source}", {to_extended_json(pipeline)})'

        def create() -> None:
            if view.replace_if_exists and view.name in db.list_collection_names():
                db.drop_collection(view.name)
            db.create_collection(view.name, viewOn=source, pipeline=pipeline)

        return self._run(sql, create)

    @schema_operation
    def drop_view(self, request: DropViewRequest) -> SchemaOperationResult:
        collection = self._database()[request.view_name]
        return self._run(f"db.{request.view_name}.drop()", lambda: collection.drop())

    @schema_operation
    def rename_view(self, request: RenameViewRequest) -> SchemaOperationResult:
        return failed(RENAME_VIEW_UNSUPPORTED)

    def get_view_ddl(self, view: str, database: Optional[str] = None) -> str:
        """以 create_view 接受的 JSON 格式返回视图定义"""
        self.ensure_connected("get_view_ddl")
        try:
            infos = list(self._database(database).list_collections(filter={"name": view}))
        except PyMongoError as e:
            logger.warning(f"读取视图 {view} 定义失败: {e}")
            return f"// Error retrieving view definition for '{view}'"
        if not infos or infos[0].get("type") != "view":
            return f"// View '{view}' not found"
        options = infos[0].get("options", {})
        definition = {"source": options.get("viewOn"), "pipeline": options.get("pipeline", [])}
        return json_util.dumps(definition, indent=2)

    # ==================== 例程与触发器（不支持） ====================

    def get_routines(self, database: Optional[str] = None) -> List[Routine]:
        return []

    def get_routine_definition(
        self, name: str, routine_type: str, database: Optional[str] = None
    ) -> str:
        return "// MongoDB does not support stored procedures or functions."

    def get_triggers(self, database: Optional[str] = None, table: Optional[str] = None) -> List[Trigger]:
        return []

    def get_trigger_definition(
        self, name: str, table: Optional[str] = None, database: Optional[str] = None
    ) -> str:
        return (
            "// MongoDB does not support traditional triggers. "
            "Consider using Change Streams instead."
        )

    @schema_operation
    def create_trigger(self, request: CreateTriggerRequest) -> SchemaOperationResult:
        return failed(TRIGGERS_UNSUPPORTED)

    @schema_operation
    def drop_trigger(self, request: DropTriggerRequest) -> SchemaOperationResult:
        return failed(TRIGGERS_UNSUPPORTED)

    # ==================== 用户 ====================

    def get_users(self) -> List[DatabaseUser]:
        """admin 库中的用户，没有权限时返回空列表"""
        self.ensure_connected("get_users")
        try:
            result = self.client.admin.command("usersInfo", 1)
        except PyMongoError as e:
            logger.warning(f"读取用户列表失败: {e}")
            return []
        users: List[DatabaseUser] = []
        for user in result.get("users", []):
            roles = user.get("roles", [])
            users.append(
                DatabaseUser(
                    name=user["user"],
                    host=user.get("db"),
                    superuser=any(role.get("role") in SUPERUSER_ROLES for role in roles),
                    login=True,
                    roles=[f"{role.get('role')}@{role.get('db')}" for role in roles],
                )
            )
        return users

    def get_user_privileges(self, username: str, host: Optional[str] = None) -> List[UserPrivilege]:
        """由 usersInfo 的 inheritedPrivileges 展开权限，host 作为用户所在的认证库"""
        self.ensure_connected("get_user_privileges")
        try:
            result = self.client.admin.command(
                "usersInfo", {"user": username, "db": host or DEFAULT_DATABASE}, showPrivileges=True
            )
        except PyMongoError as e:
            logger.warning(f"读取用户 {username} 的权限失败: {e}")
            return []

        users = result.get("users", [])
        if not users:
            return []
        privileges: List[UserPrivilege] = []
        for entry in users[0].get("inheritedPrivileges", []):
            resource = entry.get("resource", {})
            db_name = resource.get("db")
            if db_name:
                collection = resource.get("collection")
                object_type = "database"
                object_name = f"{db_name}.{collection}" if collection else db_name
            else:
                object_type, object_name = "cluster", "cluster"
            for action in entry.get("actions", []):
                privileges.append(
                    UserPrivilege(
                        privilege=action,
                        grantee=username,
                        object_type=object_type,
                        object_name=object_name,
                    )
                )
        return privileges

    @schema_operation
    def create_user(self, request: CreateUserRequest) -> SchemaOperationResult:
        """在 admin 库创建用户，超级用户授予 root，否则授予 readWriteAnyDatabase"""
        user = request.user
        if not user.password:
            return failed("Password is required to create a MongoDB user")
        role = "root" if user.superuser else "readWriteAnyDatabase"
        roles = [{"role": role, "db": DEFAULT_DATABASE}]
        display = to_extended_json({"user": user.name, "pwd": "****", "roles": roles})
        admin = self.client.admin

        def create() -> None:
            admin.command("createUser", user.name, pwd=user.password, roles=roles)

        return self._run(f"db.createUser({display})", create)

    @schema_operation
    def drop_user(self, request: DropUserRequest) -> SchemaOperationResult:
        admin = self.client.admin

        def drop() -> None:
            admin.command("dropUser", request.name)

        return self._run(f'db.dropUser("{request.name}")', drop)

    def __repr__(self) -> str:
        status = "已连接" if self._connected else "未连接"
        return f"<MongoDBDriver database={self.current_database}, status={status}>"
