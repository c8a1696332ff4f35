"""Tests for the shell-grammar command parser."""

from shellquest.parser import (
    Command,
    EmptyCommand,
    ParseError,
    Pipeline,
    Redirect,
    UNEXPECTED_NEWLINE,
    UNEXPECTED_PIPE,
    UNMATCHED_QUOTE,
    parse,
    split_pipes,
    tokenize,
)


class TestTokenize:
    """Tests for quoting and escaping."""

    def test_plain_words(self):
        """Whitespace separates tokens."""
        assert tokenize("ls  -la   /tmp") == ["ls", "-la", "/tmp"]

    def test_double_quotes_group_words(self):
        """Double quotes keep spaces inside one token."""
        assert tokenize('echo "hello world"') == ["echo", "hello world"]

    def test_single_quotes_are_literal(self):
        """Backslash has no meaning inside single quotes."""
        assert tokenize(r"echo 'a\nb'") == ["echo", r"a\nb"]

    def test_backslash_escapes_space(self):
        """An escaped space does not split the token."""
        assert tokenize(r"cat my\ file.txt") == ["cat", "my file.txt"]

    def test_empty_quoted_string_is_kept(self):
        """'' produces an empty token."""
        assert tokenize("echo '' x") == ["echo", "", "x"]


class TestParse:
    """Tests for parse()."""

    def test_blank_line(self):
        """Whitespace-only input is an EmptyCommand."""
        assert isinstance(parse("   "), EmptyCommand)

    def test_simple_command(self):
        """Name and positional args are split out."""
        result = parse("cat notes.txt")
        assert isinstance(result, Command)
        assert result.name == "cat"
        assert result.args == ("notes.txt",)
        assert result.redirect is None

    def test_bundled_short_flags(self):
        """-la expands to individual flags."""
        result = parse("ls -la /home")
        assert result.flags == {"l": True, "a": True}
        assert result.args == ("/home",)

    def test_long_flags(self):
        """--name and --key=value are long flags."""
        result = parse("grep --ignore-case --color=never x")
        assert result.flags == {"ignore-case": True, "color": "never"}
        assert result.args == ("x",)

    def test_find_options_stay_positional(self):
        """Value-taking find options are not exploded into flags."""
        result = parse('find . -name "*.txt" -type f -mtime -3')
        assert result.args == (".", "-name", "*.txt", "-type", "f", "-mtime", "-3")
        assert result.flags == {}

    def test_negative_number_is_positional(self):
        """-5 stays an argument (head -5)."""
        result = parse("head -5 file")
        assert result.args == ("-5", "file")

    def test_dash_slash_is_positional(self):
        """A token starting with -/ is a path, not flags."""
        assert parse("ls -/weird").args == ("-/weird",)

    def test_double_dash_is_positional(self):
        """-- is kept as an argument."""
        assert parse("rm -- file").args == ("--", "file")

    def test_unmatched_quote(self):
        """An unterminated quote is a ParseError, not an exception."""
        result = parse('echo "oops')
        assert isinstance(result, ParseError)
        assert result.message == UNMATCHED_QUOTE

    def test_parse_is_deterministic(self):
        """Same input, equal result."""
        line = 'echo "a | b" | grep a > /tmp/out.txt'
        assert parse(line) == parse(line)


class TestRedirect:
    """Tests for output redirection."""

    def test_overwrite(self):
        """> sets an overwrite redirect and strips the target."""
        result = parse("echo hi > out.txt")
        assert result.redirect == Redirect("overwrite", "out.txt")
        assert result.args == ("hi",)

    def test_append(self):
        """>> sets an append redirect."""
        result = parse("echo hi >> log.txt")
        assert result.redirect.append is True
        assert result.redirect.target == "log.txt"

    def test_missing_target(self):
        """A redirect with no filename is a syntax error."""
        result = parse("echo hi >")
        assert isinstance(result, ParseError)
        assert result.message == UNEXPECTED_NEWLINE

    def test_quoted_gt_is_not_redirect(self):
        """> inside quotes is literal text."""
        result = parse('echo "a > b"')
        assert result.redirect is None
        assert result.args == ("a > b",)

    def test_last_redirect_wins(self):
        """With several operators the last one is used."""
        result = parse("echo hi > a.txt > b.txt")
        assert result.redirect.target == "b.txt"
        assert result.args == ("hi",)

    def test_words_after_target_stay_in_command(self):
        """echo a > f b writes 'a b'."""
        result = parse("echo a > f.txt b")
        assert result.redirect.target == "f.txt"
        assert result.args == ("a", "b")


class TestPipeline:
    """Tests for pipeline splitting."""

    def test_pipeline_with_redirect(self):
        """Redirect binds to the whole pipeline; quoted pipe stays literal."""
        result = parse('echo "a | b" | grep a > /tmp/out.txt')
        assert isinstance(result, Pipeline)
        assert [stage.name for stage in result.stages] == ["echo", "grep"]
        assert result.stages[0].args == ("a | b",)
        assert result.stages[1].args == ("a",)
        assert result.redirect == Redirect("overwrite", "/tmp/out.txt")

    def test_escaped_pipe_is_literal(self):
        """echo a\\|b is a single command."""
        result = parse(r"echo a\|b")
        assert isinstance(result, Command)
        assert result.args == ("a|b",)

    def test_trailing_pipe(self):
        """ls | is a syntax error."""
        result = parse("ls |")
        assert isinstance(result, ParseError)
        assert result.message == UNEXPECTED_PIPE

    def test_leading_pipe(self):
        """| ls is a syntax error."""
        assert parse("| ls").message == UNEXPECTED_PIPE

    def test_split_keeps_quotes(self):
        """Segments keep their quoting for per-stage tokenizing."""
        assert split_pipes("echo 'x|y' | cat") == ["echo 'x|y' ", " cat"]
