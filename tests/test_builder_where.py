"""
Test 3: WHERE conditions (querykit/builder/conditions.py, query.py)

Condition shapes, connectors, grouping, IN/LIKE/BETWEEN/NULL helpers,
subqueries, raw fragments and their bindings.
"""

import pytest

from querykit import QueryBuilder
from querykit.builder import Equality, Grouped, MappingEquality, Raw, UNSET, parse_condition
from querykit.builder.conditions import count_placeholders, inline_placeholders, normalize_operator
from querykit.faults import ValidationFault


def where_sql(qb):
    sql = qb.get_compiled_select()
    return sql[sql.index(" WHERE ") + len(" WHERE "):]


# ============================================================================
# Condition parsing
# ============================================================================

class TestParseCondition:

    def test_equality(self):
        assert parse_condition("age", 18, ">") == Equality("age", 18, ">")

    def test_mapping(self):
        assert parse_condition({"a": 1}) == MappingEquality({"a": 1})

    def test_raw(self):
        assert parse_condition("deleted_at IS NULL") == Raw("deleted_at IS NULL")

    def test_callable(self):
        cb = lambda q: q  # noqa: E731
        assert parse_condition(cb) == Grouped(cb)

    def test_none_is_a_value(self):
        assert parse_condition("email", None) == Equality("email", None, "=")

    def test_unset_is_falsy(self):
        assert not UNSET

    @pytest.mark.parametrize("bad", [42, {}, "", ["a"]])
    def test_rejects(self, bad):
        with pytest.raises(ValidationFault):
            parse_condition(bad, 1)

    def test_operator_normalization(self):
        assert normalize_operator("not   like") == "NOT LIKE"
        with pytest.raises(ValidationFault):
            normalize_operator("LIKE2")
        with pytest.raises(ValidationFault):
            normalize_operator("; DROP TABLE users")


class TestPlaceholders:

    def test_count_skips_quotes(self):
        assert count_placeholders("a = ? AND b = '?' AND `c?` = ?") == 2

    def test_inline(self):
        rendered = inline_placeholders("a = ? AND b = '?'", [5], str)
        assert rendered == "a = 5 AND b = '?'"

    def test_inline_runs_out(self):
        with pytest.raises(ValidationFault):
            inline_placeholders("a = ? AND b = ?", [1], str)


# ============================================================================
# Basic conditions
# ============================================================================

class TestWhere:

    def test_and_chain(self, mysql_qb):
        mysql_qb.from_table("users").where("active", 1).where("age", 18, ">=")
        assert where_sql(mysql_qb) == "`active` = ? AND `age` >= ?"
        assert mysql_qb.params == [1, 18]

    def test_or_where(self, mysql_qb):
        mysql_qb.from_table("users").where("role", "admin").or_where("role", "owner")
        assert where_sql(mysql_qb) == "`role` = ? OR `role` = ?"

    def test_or_first_degrades_to_and(self, mysql_qb):
        mysql_qb.from_table("users").or_where("role", "admin")
        assert where_sql(mysql_qb) == "`role` = ?"

    def test_or_where_like_first(self, mysql_qb):
        mysql_qb.from_table("users").or_where_like("name", "%a%")
        assert where_sql(mysql_qb) == "`name` LIKE ?"

    def test_mapping(self, mysql_qb):
        mysql_qb.from_table("users").where({"a": 1, "b": 2})
        assert where_sql(mysql_qb) == "`a` = ? AND `b` = ?"
        assert mysql_qb.params == [1, 2]

    def test_or_mapping_is_grouped(self, mysql_qb):
        mysql_qb.from_table("t").where("a", 1).or_where({"b": 2, "c": 3})
        assert where_sql(mysql_qb) == "`a` = ? OR (`b` = ? AND `c` = ?)"
        assert mysql_qb.params == [1, 2, 3]

    def test_null_value(self, mysql_qb):
        mysql_qb.from_table("users").where("deleted_at", None).where("banned_at", None, "!=")
        assert where_sql(mysql_qb) == "`deleted_at` IS NULL AND `banned_at` IS NOT NULL"
        assert mysql_qb.params == []

    def test_null_with_ordering_operator(self, mysql_qb):
        with pytest.raises(ValidationFault):
            mysql_qb.where("age", None, ">")

    def test_operators(self, pg_qb):
        pg_qb.from_table("users").where("name", "a%", "ilike").where("age", 3, "<>")
        assert where_sql(pg_qb) == '"name" ILIKE ? AND "age" <> ?'

    def test_unsupported_operator(self, mysql_qb):
        with pytest.raises(ValidationFault):
            mysql_qb.where("a", 1, "LIKE2")

    def test_field_is_always_escaped(self, mysql_qb):
        mysql_qb.from_table("t").where("t.id", 1)
        assert where_sql(mysql_qb) == "`t`.`id` = ?"

    def test_where_ceiling(self, transport):
        qb = QueryBuilder(transport, "mysql", {"max_where_conditions": 2})
        qb.where("a", 1).where("b", 2)
        with pytest.raises(ValidationFault):
            qb.where("c", 3)


class TestGroupedConditions:

    def test_group(self, mysql_qb):
        mysql_qb.from_table("users").where("active", 1).where(
            lambda q: q.where("age", 18, ">=").or_where("verified", True)
        )
        assert mysql_qb.get_compiled_select() == (
            "SELECT * FROM `users` WHERE `active` = ? AND (`age` >= ? OR `verified` = ?)"
        )
        assert mysql_qb.params == [1, 18, True]

    def test_or_group(self, mysql_qb):
        mysql_qb.from_table("t").where("a", 1).or_where(lambda q: q.where("b", 2).where("c", 3))
        assert where_sql(mysql_qb) == "`a` = ? OR (`b` = ? AND `c` = ?)"

    def test_nested_groups(self, mysql_qb):
        mysql_qb.from_table("t").where(
            lambda q: q.where("a", 1).or_where(lambda r: r.where("b", 2).where("c", 3))
        )
        assert where_sql(mysql_qb) == "(`a` = ? OR (`b` = ? AND `c` = ?))"
        assert mysql_qb.params == [1, 2, 3]

    def test_empty_group_adds_nothing(self, mysql_qb):
        mysql_qb.from_table("t").where(lambda q: None)
        assert mysql_qb.get_compiled_select() == "SELECT * FROM `t`"

    def test_group_does_not_touch_outer_state(self, mysql_qb):
        mysql_qb.from_table("t").where(lambda q: q.from_table("other").where("x", 1))
        assert mysql_qb.state.from_table == "`t`"


class TestRawConditions:

    def test_where_raw(self, mysql_qb):
        mysql_qb.from_table("t").where("a", 1).where_raw("age > ? AND age < ?", [18, 65])
        assert where_sql(mysql_qb) == "`a` = ? AND age > ? AND age < ?"
        assert mysql_qb.params == [1, 18, 65]

    def test_or_where_raw(self, mysql_qb):
        mysql_qb.from_table("t").where("a", 1).or_where_raw("b IS NULL")
        assert where_sql(mysql_qb) == "`a` = ? OR b IS NULL"

    def test_plain_string_is_raw(self, mysql_qb):
        mysql_qb.from_table("t").where("deleted_at IS NULL")
        assert where_sql(mysql_qb) == "deleted_at IS NULL"

    def test_binding_count_mismatch(self, mysql_qb):
        with pytest.raises(ValidationFault):
            mysql_qb.where_raw("a = ? AND b = ?", [1])

    def test_quoted_marks_are_not_placeholders(self, mysql_qb):
        mysql_qb.from_table("t").where_raw("note = 'why?' AND id = ?", [4])
        assert mysql_qb.params == [4]


# ============================================================================
# Helpers
# ============================================================================

class TestWhereHelpers:

    def test_in(self, mysql_qb):
        mysql_qb.from_table("t").where_in("id", [1, 2, 3]).where_not_in("status", ("x",))
        assert where_sql(mysql_qb) == "`id` IN (?, ?, ?) AND `status` NOT IN (?)"
        assert mysql_qb.params == [1, 2, 3, "x"]

    def test_or_in(self, mysql_qb):
        mysql_qb.from_table("t").where("a", 1).or_where_in("b", [2]).or_where_not_in("c", [3])
        assert where_sql(mysql_qb) == "`a` = ? OR `b` IN (?) OR `c` NOT IN (?)"

    @pytest.mark.parametrize("values", [[], "abc", {"a": 1}, 5])
    def test_in_requires_sequence(self, mysql_qb, values):
        with pytest.raises(ValidationFault):
            mysql_qb.where_in("id", values)

    def test_in_subquery(self, mysql_qb):
        mysql_qb.from_table("users").where_in(
            "id", lambda q: q.select("user_id").from_table("orders").where("total", 50, ">")
        )
        assert where_sql(mysql_qb) == "`id` IN (SELECT `user_id` FROM `orders` WHERE `total` > ?)"
        assert mysql_qb.params == [50]

    def test_like(self, mysql_qb):
        mysql_qb.from_table("t").where_like("name", "a%").where_not_like("name", "%z")
        mysql_qb.or_where_not_like("email", "%@spam.com")
        assert where_sql(mysql_qb) == "`name` LIKE ? AND `name` NOT LIKE ? OR `email` NOT LIKE ?"

    def test_between(self, mysql_qb):
        mysql_qb.from_table("t").where_between("age", 18, 30).where_not_between("score", 0, 10)
        mysql_qb.or_where_between("age", 60, 70)
        assert where_sql(mysql_qb) == (
            "`age` BETWEEN ? AND ? AND `score` NOT BETWEEN ? AND ? OR `age` BETWEEN ? AND ?"
        )
        assert mysql_qb.params == [18, 30, 0, 10, 60, 70]

    def test_between_requires_bounds(self, mysql_qb):
        with pytest.raises(ValidationFault):
            mysql_qb.where_between("age", None, 30)

    def test_null_helpers(self, pg_qb):
        pg_qb.from_table("t").where_null("a").where_not_null("b").or_where_null("c").or_where_not_null("d")
        assert where_sql(pg_qb) == '"a" IS NULL AND "b" IS NOT NULL OR "c" IS NULL OR "d" IS NOT NULL'

    def test_where_subquery(self, mysql_qb):
        mysql_qb.from_table("products").where_subquery(
            "price", ">", lambda q: q.select_avg("price").from_table("products")
        )
        assert where_sql(mysql_qb) == "`price` > (SELECT AVG(`price`) FROM `products`)"

    def test_where_subquery_rejects_bad_operator(self, mysql_qb):
        with pytest.raises(ValidationFault):
            mysql_qb.where_subquery("price", "EXISTS", lambda q: q.from_table("t"))

    def test_exists(self, mysql_qb):
        mysql_qb.from_table("users", "u").where_exists(
            lambda q: q.select_raw("1").from_table("orders", "o").where_raw("o.user_id = u.id")
        )
        assert where_sql(mysql_qb) == "EXISTS (SELECT 1 FROM `orders` AS `o` WHERE o.user_id = u.id)"

    def test_not_exists_variants(self, mysql_qb):
        sub = mysql_qb.new_query(is_subquery=True).select_raw("1").from_table("bans")
        mysql_qb.from_table("users").where_not_exists(sub).or_where_exists(sub).or_where_not_exists(sub)
        assert where_sql(mysql_qb) == (
            "NOT EXISTS (SELECT 1 FROM `bans`) OR EXISTS (SELECT 1 FROM `bans`) "
            "OR NOT EXISTS (SELECT 1 FROM `bans`)"
        )

    def test_builder_value_becomes_subquery(self, mysql_qb):
        sub = mysql_qb.new_query(is_subquery=True).select_max("id").from_table("orders").where("paid", 1)
        mysql_qb.from_table("orders").where("id", sub)
        assert where_sql(mysql_qb) == "`id` = (SELECT MAX(`id`) FROM `orders` WHERE `paid` = ?)"
        assert mysql_qb.params == [1]

    def test_async_subquery_callback_rejected(self, mysql_qb):
        async def build(q):
            return q.from_table("t")

        with pytest.raises(ValidationFault):
            mysql_qb.where_in("id", build)
