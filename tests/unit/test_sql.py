"""Unit tests for named parameter parsing.

Tests the public API:
- parse_sql(sql, placeholder) - rewrite `:name` into positional markers
- ParsedStatement.expand(counts) - widen array parameters
- tokenize_sql(sql) - single pass tokenizer
"""
import pytest
from dbquery.sql import TokenType, parse_sql, tokenize_sql


class TestParseSql:
    """Placeholder rewriting and name to slot mapping."""

    def test_single_parameter(self):
        parsed = parse_sql('select * from person where id = :id')
        assert parsed.sql == 'select * from person where id = ?'
        assert dict(parsed.param_map) == {'id': (1,)}
        assert parsed.param_count == 1

    def test_repeated_name_keeps_textual_order(self):
        parsed = parse_sql('select :a, :b, :a, :c, :a')
        assert parsed.positions('a') == (1, 3, 5)
        assert parsed.positions('b') == (2,)
        assert parsed.positions('c') == (4,)
        assert parsed.names == ('a', 'b', 'a', 'c', 'a')

    def test_pyformat_marker(self):
        parsed = parse_sql('insert into t (a, b) values (:a, :b)', '%s')
        assert parsed.sql == 'insert into t (a, b) values (%s, %s)'

    def test_pyformat_doubles_literal_percent(self):
        parsed = parse_sql("select * from t where name like 'A%' and x = :x", '%s')
        assert parsed.sql == "select * from t where name like 'A%%' and x = %s"

    def test_question_marker_leaves_percent(self):
        parsed = parse_sql("select * from t where name like 'A%' and x = :x")
        assert parsed.sql == "select * from t where name like 'A%' and x = ?"

    def test_no_parameters(self):
        parsed = parse_sql('select 1')
        assert parsed.sql == 'select 1'
        assert parsed.param_count == 0
        assert dict(parsed.param_map) == {}

    def test_parse_is_cached(self):
        assert parse_sql('select :x') is parse_sql('select :x')
        assert parse_sql('select :x') is not parse_sql('select :x', '%s')


class TestSkippedText:
    """Text that only looks like a placeholder is left alone."""

    @pytest.mark.parametrize(('sql', 'expected'), [
        ("select ':fake' from t where a = :real",
         "select ':fake' from t where a = ?"),
        ("select 'it''s :fake' where a = :real",
         "select 'it''s :fake' where a = ?"),
        ('select "col:fake" from t where a = :real',
         'select "col:fake" from t where a = ?'),
        ('select a -- :fake\nfrom t where a = :real',
         'select a -- :fake\nfrom t where a = ?'),
        ('select a /* :fake\n :other */ from t where a = :real',
         'select a /* :fake\n :other */ from t where a = ?'),
        ('select a::text from t where a = :real',
         'select a::text from t where a = ?'),
        ('select :real::int',
         'select ?::int'),
        ("select '10:30' where a = :real",
         "select '10:30' where a = ?"),
    ], ids=['string', 'escaped_quote', 'quoted_ident', 'line_comment', 'block_comment',
            'cast', 'param_then_cast', 'time_literal'])
    def test_only_real_placeholder(self, sql, expected):
        parsed = parse_sql(sql)
        assert parsed.sql == expected
        assert list(parsed.param_map) == ['real']

    def test_unterminated_string_runs_to_end(self):
        parsed = parse_sql("select :a, 'open :b")
        assert list(parsed.param_map) == ['a']

    def test_unterminated_comment_runs_to_end(self):
        parsed = parse_sql('select :a /* :b')
        assert list(parsed.param_map) == ['a']


class TestExpand:
    """Array parameters widen into consecutive slots."""

    def test_three_values_used_twice_interleaved(self):
        parsed = parse_sql('select * from t where a in (:ids) and b = :b or c in (:ids) and d = :d')
        expanded = parsed.expand({'ids': 3})
        assert expanded.sql == 'select * from t where a in (?, ?, ?) and b = ? or c in (?, ?, ?) and d = ?'
        assert expanded.positions('ids') == (1, 2, 3, 5, 6, 7)
        assert expanded.positions('b') == (4,)
        assert expanded.positions('d') == (8,)
        assert expanded.param_count == 8

    def test_empty_array_keeps_one_slot(self):
        parsed = parse_sql('select * from t where a in (:ids)')
        expanded = parsed.expand({'ids': 0})
        assert expanded.sql == 'select * from t where a in (?)'
        assert expanded.positions('ids') == (1,)

    def test_expand_without_counts_returns_same(self):
        parsed = parse_sql('select :a')
        assert parsed.expand({}) is parsed

    def test_expand_does_not_mutate_original(self):
        parsed = parse_sql('select * from t where a in (:ids) and b = :b')
        parsed.expand({'ids': 4})
        assert parsed.sql == 'select * from t where a in (?) and b = ?'
        assert parsed.positions('b') == (2,)

    def test_expand_pyformat(self):
        parsed = parse_sql('select * from t where a in (:ids)', '%s')
        assert parsed.expand({'ids': 2}).sql == 'select * from t where a in (%s, %s)'


class TestTokenize:

    def test_token_types(self):
        tokens = tokenize_sql("select 'x', :p -- c")
        types = [t.type for t in tokens]
        assert TokenType.STRING_LITERAL in types
        assert TokenType.NAMED_PH in types
        assert TokenType.COMMENT in types
        named = [t for t in tokens if t.type is TokenType.NAMED_PH]
        assert named[0].name == 'p'

    def test_tokens_cover_text(self):
        sql = 'select a::int, "b" from t where c = :c /* x */'
        assert ''.join(t.text for t in tokenize_sql(sql)) == sql
