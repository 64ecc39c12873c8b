"""
文档数据库通用算法测试
"""

import datetime

import pytest
from bson import Binary, Decimal128, Int64, ObjectId, Timestamp

from db_driver_tool.core.documents import (
    build_document_filter,
    build_document_sort,
    coerce_filter_value,
    documents_to_result,
    index_type,
    infer_columns,
    infer_value_type,
    like_to_regex,
    parse_arguments,
    parse_shell_command,
    parse_view_definition,
    primary_key_filter,
    serialize_value,
)
from db_driver_tool.core.exceptions import ValidationError
from db_driver_tool.core.types import DataOptions, Filter, FilterOperator, SortDirection

OID = "507f1f77bcf86cd799439011"


class TestParseShellCommand:
    """shell 命令解析测试类"""

    def test_find_with_filter(self):
        """测试带过滤条件的 find"""
        command = parse_shell_command('db.users.find({"age": {"$gt": 18}})')
        assert command.collection == "users"
        assert command.method == "find"
        assert command.args == [{"age": {"$gt": 18}}]

    def test_multiple_arguments(self):
        """测试多个参数"""
        command = parse_shell_command('db.users.updateOne({"a": 1}, {"$set": {"b": 2}})')
        assert command.arg(0) == {"a": 1}
        assert command.arg(1) == {"$set": {"b": 2}}
        assert command.arg(2, "default") == "default"

    def test_no_arguments(self):
        """测试空参数"""
        command = parse_shell_command("  db.logs.drop()  ")
        assert command.args == []

    def test_extended_json(self):
        """测试扩展 JSON 参数"""
        command = parse_shell_command(f'db.users.findOne({{"_id": {{"$oid": "{OID}"}}}})')
        assert command.arg(0) == {"_id": ObjectId(OID)}

    def test_database_commands(self):
        """测试整库命令"""
        assert parse_shell_command("db.getCollectionNames()").collection is None
        stats = parse_shell_command("db.stats( )")
        assert stats.method == "stats"
        assert stats.collection is None

    def test_invalid_format(self):
        """测试格式无效的命令"""
        with pytest.raises(ValidationError) as exc_info:
            parse_shell_command("SELECT * FROM users")
        assert exc_info.value.error_code == "MONGO_INVALID_QUERY"

    def test_unsupported_method(self):
        """测试不支持的方法"""
        with pytest.raises(ValidationError) as exc_info:
            parse_shell_command("db.users.mapReduce()")
        assert exc_info.value.error_code == "MONGO_UNSUPPORTED_METHOD"

    def test_unparseable_arguments(self):
        """测试无法解析的参数"""
        with pytest.raises(ValidationError) as exc_info:
            parse_arguments("{age: }")
        assert exc_info.value.error_code == "MONGO_PARSE_ERROR"


class TestValueTypes:
    """类型推断与序列化测试类"""

    def test_infer_value_type(self):
        """测试 BSON 类型名"""
        assert infer_value_type(True) == "Boolean"
        assert infer_value_type(Int64(5)) == "Int64"
        assert infer_value_type(5) == "Number (Int)"
        assert infer_value_type(2.0) == "Number (Int)"
        assert infer_value_type(2.5) == "Number (Double)"
        assert infer_value_type("s") == "String"
        assert infer_value_type(ObjectId(OID)) == "ObjectId"
        assert infer_value_type(datetime.datetime(2024, 1, 1)) == "Date"
        assert infer_value_type(Binary(b"\x00")) == "Binary"
        assert infer_value_type(b"\x00") == "Binary"
        assert infer_value_type(Decimal128("1.5")) == "Decimal128"
        assert infer_value_type(Timestamp(1, 2)) == "Timestamp"
        assert infer_value_type([1]) == "Array"
        assert infer_value_type({"a": 1}) == "Object"
        assert infer_value_type(None) == "Null"

    def test_serialize_value(self):
        """测试值序列化"""
        assert serialize_value(ObjectId(OID)) == OID
        assert serialize_value(Int64(7)) == 7
        assert serialize_value(b"abc") == "<Binary: 3 bytes>"
        assert serialize_value(Binary(b"abc")) == "<Binary data>"
        assert serialize_value(Timestamp(10, 2)) == "Timestamp(10, 2)"
        assert serialize_value(Decimal128("1.5")) == "1.5"
        assert serialize_value({"ids": [ObjectId(OID)]}) == {"ids": [OID]}

    def test_serialize_datetime_as_utc(self):
        """测试日期转换为 UTC ISO-8601"""
        naive = datetime.datetime(2024, 1, 2, 3, 4, 5, 678000)
        assert serialize_value(naive) == "2024-01-02T03:04:05.678Z"
        aware = datetime.datetime(
            2024, 1, 2, 8, 0, tzinfo=datetime.timezone(datetime.timedelta(hours=8))
        )
        assert serialize_value(aware) == "2024-01-02T00:00:00.000Z"


class TestInferColumns:
    """字段结构推断测试类"""

    def test_empty_sample(self):
        """测试空集合只返回 _id"""
        columns = infer_columns([])
        assert len(columns) == 1
        assert columns[0].name == "_id"
        assert columns[0].type == "ObjectId"
        assert columns[0].primary_key is True

    def test_mixed_and_missing_fields(self):
        """测试混合类型与缺失字段"""
        documents = [
            {"_id": ObjectId(OID), "value": "x", "name": "a"},
            {"_id": ObjectId(OID), "value": 1},
            {"_id": ObjectId(OID), "value": None, "name": "b"},
        ]
        columns = {c.name: c for c in infer_columns(documents)}
        assert list(columns) == ["_id", "name", "value"]
        assert columns["value"].type == "Mixed (String, Number (Int), Null)"
        assert columns["value"].nullable is True
        assert columns["name"].comment == "Present in 2/3 sampled docs"
        assert columns["_id"].nullable is False
        assert columns["_id"].comment is None

    def test_string_and_null_field(self):
        """测试字符串与 None 混合的字段类型包含 Null"""
        columns = infer_columns([{"v": "x"}, {"v": None}])
        assert columns[0].type == "Mixed (String, Null)"
        assert columns[0].nullable is True

    def test_all_null_field(self):
        """测试全部为 None 的字段"""
        columns = infer_columns([{"a": None}])
        assert columns[0].type == "Null"

    def test_documents_to_result(self):
        """测试文档转换为结果集"""
        columns, rows = documents_to_result([{"b": None, "_id": ObjectId(OID)}, {"b": 3}])
        assert [c.name for c in columns] == ["_id", "b"]
        assert columns[1].type == "Number (Int)"
        assert rows[0] == {"b": None, "_id": OID}


class TestDocumentFilter:
    """过滤条件翻译测试类"""

    def test_single_condition(self):
        """测试单个条件直接返回"""
        assert build_document_filter([Filter("age", ">", "18")]) == {"age": {"$gt": 18}}

    def test_multiple_conditions(self):
        """测试多个条件以 $and 组合"""
        query = build_document_filter(
            [Filter("name", FilterOperator.EQ, "bob"), Filter("age", "<=", 30)]
        )
        assert query == {"$and": [{"name": "bob"}, {"age": {"$lte": 30}}]}

    def test_like(self):
        """测试 LIKE 转换为忽略大小写的正则"""
        assert build_document_filter([Filter("name", "LIKE", "a.b%")]) == {
            "name": {"$regex": "a\\.b.*", "$options": "i"}
        }
        assert build_document_filter([Filter("name", "NOT LIKE", "x_")]) == {
            "name": {"$not": {"$regex": "x.", "$options": "i"}}
        }

    def test_null_operators(self):
        """测试空值运算符"""
        assert build_document_filter([Filter("a", FilterOperator.IS_NULL)]) == {"a": {"$eq": None}}
        assert build_document_filter([Filter("a", FilterOperator.IS_NOT_NULL)]) == {"a": {"$ne": None}}

    def test_in_requires_list(self):
        """测试 IN 的值必须为列表"""
        assert build_document_filter([Filter("a", "IN", "1,2")]) == {}
        assert build_document_filter([Filter("a", "NOT IN", ["1", "x"])]) == {"a": {"$nin": [1, "x"]}}

    def test_field_type_coercion(self):
        """测试按字段类型转换过滤值"""
        query = build_document_filter(
            [Filter("code", "=", "42"), Filter("_id", "=", OID)],
            {"code": "String", "_id": "ObjectId"},
        )
        assert query == {"$and": [{"code": "42"}, {"_id": ObjectId(OID)}]}

    def test_coerce_filter_value(self):
        """测试过滤值转换"""
        assert coerce_filter_value("42", "String") == "42"
        assert coerce_filter_value("1.5", "Number (Double)") == 1.5
        assert coerce_filter_value("abc", "Number (Int)") == "abc"
        assert coerce_filter_value("2024-01-02T00:00:00", "Date") == datetime.datetime(2024, 1, 2)
        assert coerce_filter_value(OID) == ObjectId(OID)
        assert coerce_filter_value(None, "String") is None

    def test_like_to_regex(self):
        """测试 LIKE 模式转义"""
        assert like_to_regex("a.b%") == "a\\.b.*"
        assert like_to_regex("_x") == ".x"

    def test_sort(self):
        """测试排序规格"""
        assert build_document_sort(DataOptions()) == []
        options = DataOptions(order_by="age", order_direction=SortDirection.DESC)
        assert build_document_sort(options) == [("age", -1)]

    def test_primary_key_filter(self):
        """测试主键定位条件"""
        assert primary_key_filter({"_id": OID}) == {"_id": ObjectId(OID)}
        assert primary_key_filter({"_id": "custom"}) == {"_id": "custom"}


class TestMiscellaneous:
    """其他辅助函数测试类"""

    def test_index_type(self):
        """测试索引类型识别"""
        assert index_type({"loc": "2dsphere"}) == "2dsphere"
        assert index_type({"body": "text"}) == "text"
        assert index_type({"a": 1, "b": -1}) == "btree"

    def test_parse_view_definition(self):
        """测试视图定义解析"""
        source, pipeline = parse_view_definition(
            '{"source": "orders", "pipeline": [{"$match": {"paid": true}}]}'
        )
        assert source == "orders"
        assert pipeline == [{"$match": {"paid": True}}]

    def test_invalid_view_definition(self):
        """测试非法视图定义"""
        for text in ("not json", '{"pipeline": []}', '{"source": "a", "pipeline": {"$match": {}}}'):
            with pytest.raises(ValidationError) as exc_info:
                parse_view_definition(text)
            assert exc_info.value.error_code == "MONGO_VIEW_DEFINITION"


if __name__ == "__main__":
    pytest.main()
