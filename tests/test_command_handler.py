"""Tests for shellquest.command_handler module."""

from shellquest.command_handler import (
    CommandRegistry,
    CommandResult,
    ExecutionContext,
    execute,
    get_registry,
    handle_command,
)
from shellquest.config import reload_config
from shellquest.errors import ErrorKind
from shellquest.parser import parse


class TestRegistry:
    """Tests for CommandRegistry."""

    def test_register_and_get(self):
        registry = CommandRegistry()
        registry.register("hello", lambda a, f, p, c: CommandResult("hi"), "Say hi")
        assert registry.get("hello").description == "Say hi"
        assert registry.names() == ["hello"]
        assert "hello" in registry

    def test_builtin_commands_registered(self):
        names = get_registry().names()
        for name in ("ls", "cd", "grep", "find", "sudo", "useradd", "whatis", "apropos"):
            assert name in names

    def test_custom_registry(self, fs):
        registry = CommandRegistry()

        @registry.command("shout", "Upper-case input")
        def shout(args, flags, piped_input, context):
            return CommandResult(" ".join(args).upper())

        assert handle_command("shout hey there", fs, registry=registry).output == "HEY THERE"
        assert handle_command("ls", fs, registry=registry).is_error


class TestDispatch:
    """Tests for parse -> dispatch."""

    def test_empty_line(self, run):
        result = run("   ")
        assert result.output == ""
        assert not result.is_error

    def test_unknown_command(self, run):
        result = run("frobnicate now")
        assert result.is_error
        assert result.output == "frobnicate: command not found"

    def test_syntax_error(self, run):
        result = run('echo "open')
        assert result.is_error
        assert result.kind == ErrorKind.SYNTAX
        assert "unmatched quote" in result.output

    def test_exit(self, run):
        assert run("exit").exit is True

    def test_handler_crash_is_contained(self, fs):
        registry = CommandRegistry()

        @registry.command("boom")
        def boom(args, flags, piped_input, context):
            raise RuntimeError("kaboom")

        result = handle_command("boom", fs, registry=registry)
        assert result.is_error
        assert result.output == "boom: unexpected error"

    def test_execute_parsed(self, fs):
        context = ExecutionContext(fs=fs, registry=get_registry())
        assert execute(parse("pwd"), context).output == "/home/user"


class TestNavigation:
    """Tests for pwd, cd and ls."""

    def test_pwd(self, run):
        assert run("pwd").output == "/home/user"

    def test_cd_and_pwd(self, run):
        assert not run("cd /var/log").is_error
        assert run("pwd").output == "/var/log"

    def test_cd_missing(self, run):
        result = run("cd nowhere")
        assert result.is_error
        assert result.output == "cd: nowhere: No such file or directory"

    def test_ls(self, run):
        assert run("ls").output == "documents  projets  telechargements"

    def test_ls_all(self, run):
        assert run("ls -a").output.startswith(".bashrc  .profile")

    def test_ls_long(self, run):
        lines = run("ls -l documents").output.splitlines()
        assert lines[0] == "total 16"
        assert lines[1].startswith("-rw-rw----")
        assert lines[1].endswith("bonuses.txt")

    def test_ls_missing(self, run):
        result = run("ls ghost")
        assert result.is_error
        assert result.output == "ls: cannot access 'ghost': No such file or directory"

    def test_ls_denied(self, run):
        result = run("ls /root")
        assert result.is_error
        assert "Permission denied" in result.output

    def test_ls_html_escapes_names(self, fs):
        """Hostile names are escaped when output is HTML."""
        blob = fs.snapshot()
        tmp = next(c for c in blob["tree"]["children"] if c["name"] == "tmp")
        tmp["children"].append(
            {
                "name": "<img src=x onerror=alert(1)>",
                "type": "file",
                "permissions": "rw-r--r--",
                "owner": "user",
                "group": "user",
                "content": "",
            }
        )
        assert fs.restore(blob).success
        result = handle_command("ls /tmp", fs, html_output=True)
        assert result.is_html
        assert "<img" not in result.output
        assert "&lt;img src=x onerror=alert(1)&gt;" in result.output

    def test_ls_plain_by_default(self, run):
        assert run("ls").is_html is False


class TestFileCommands:
    """Tests for content and mutation commands."""

    def test_cat(self, run):
        assert run("cat documents/notes.txt").output.startswith("Welcome to Linux Game!")

    def test_cat_missing(self, run):
        result = run("cat nope")
        assert result.is_error
        assert result.output == "cat: nope: No such file or directory"

    def test_echo_keeps_dash_words(self, run):
        assert run("echo -hello world").output == "-hello world"

    def test_echo_redirect(self, run, fs):
        result = run("echo hello > /tmp/out.txt")
        assert result.output == ""
        assert not result.is_error
        assert fs.read_file("/tmp/out.txt").value == "hello\n"

    def test_append_redirect(self, run, fs):
        run("echo one > /tmp/out.txt")
        run("echo two >> /tmp/out.txt")
        assert fs.read_file("/tmp/out.txt").value == "one\ntwo\n"

    def test_redirect_denied(self, run, fs):
        result = run("echo x > /etc/motd")
        assert result.is_error
        assert "Permission denied" in result.output
        assert "training system" in fs.read_file("/etc/motd").value

    def test_redirect_invalid_path(self, run):
        result = run('echo x > "a;b"')
        assert result.is_error
        assert result.kind == ErrorKind.INVALID_PATH

    def test_touch_mkdir_rm(self, run, fs):
        assert not run("touch a.txt b.txt").is_error
        assert not run("mkdir -p deep/er").is_error
        assert fs.get_node("~/deep/er").is_dir
        assert run("rm deep").is_error
        assert not run("rm -r deep a.txt").is_error
        assert fs.get_node("~/deep") is None
        assert fs.get_node("~/a.txt") is None

    def test_rm_force_ignores_missing(self, run):
        assert not run("rm -f ghost").is_error

    def test_rm_missing(self, run):
        assert run("rm ghost").output == "rm: cannot remove 'ghost': No such file or directory"

    def test_rmdir(self, run):
        run("mkdir empty")
        assert not run("rmdir empty").is_error
        assert "Directory not empty" in run("rmdir documents").output

    def test_mv_and_cp(self, run, fs):
        assert not run("cp documents/notes.txt /tmp/copy.txt").is_error
        assert not run("mv /tmp/copy.txt /tmp/moved.txt").is_error
        assert fs.get_node("/tmp/moved.txt") is not None
        assert fs.get_node("/tmp/copy.txt") is None

    def test_mv_many_into_file(self, run):
        result = run("mv documents/notes.txt documents/todo.txt documents/rapport.txt")
        assert result.output == "mv: target 'documents/rapport.txt' is not a directory"

    def test_mv_into_itself(self, run):
        result = run("mv documents documents/sub")
        assert "Cannot move a directory into itself" in result.output

    def test_cp_directory_needs_r(self, run):
        assert run("cp documents /tmp/d").is_error
        assert not run("cp -r documents /tmp/d").is_error

    def test_mv_missing(self, run):
        assert run("mv ghost x").output == "mv: cannot stat 'ghost': No such file or directory"


class TestAttributeCommands:
    """Tests for chmod and chown."""

    def test_chmod_symbolic(self, run, fs):
        assert not run("chmod u=r,g=r,o=r documents/notes.txt").is_error
        assert fs.get_node("~/documents/notes.txt").permissions == "r--r--r--"

    def test_chmod_dash_mode(self, run, fs):
        """-w is a mode, not a flag."""
        assert not run("chmod -w documents/notes.txt").is_error
        assert fs.get_node("~/documents/notes.txt").permissions == "r--r--r--"

    def test_chmod_invalid(self, run):
        result = run("chmod g?rw documents/notes.txt")
        assert result.output == "chmod: invalid mode: 'g?rw'"

    def test_chmod_not_owner(self, run):
        result = run("chmod 777 /etc/motd")
        assert result.output == "chmod: changing permissions of '/etc/motd': Operation not permitted"
        assert result.kind == ErrorKind.NOT_PERMITTED

    def test_chown_not_permitted(self, run):
        assert "Operation not permitted" in run("chown admin documents/notes.txt").output


class TestTextCommands:
    """Tests for head, tail, wc, sort and pipelines."""

    def test_head_n(self, run):
        assert run("head -n 2 /var/log/system.log").output.count("\n") == 1

    def test_head_dash_number(self, run):
        assert run("head -1 documents/notes.txt").output == "Welcome to Linux Game!"

    def test_tail(self, run):
        assert run("tail -n 1 /var/log/system.log").output.endswith("scheduled maintenance finished")

    def test_head_bad_count(self, run):
        assert run("head -n x documents/notes.txt").output == "head: invalid number of lines: 'x'"

    def test_wc_l(self, run):
        assert run("wc -l /var/log/system.log").output == "9 /var/log/system.log"

    def test_pipeline(self, run):
        assert run("cat /var/log/system.log | grep Error | wc -l").output == "2"

    def test_pipeline_sort(self, run):
        assert run("cat documents/todo.txt | sort -r").output.splitlines()[0] == "TODO"

    def test_pipeline_stops_on_error(self, run, fs):
        result = run("cat ghost | wc -l > /tmp/count")
        assert result.is_error
        assert fs.get_node("/tmp/count") is None

    def test_pipeline_redirect_final_stage(self, run, fs):
        run('echo "a | b" | grep a > /tmp/out.txt')
        assert fs.read_file("/tmp/out.txt").value == "a | b\n"


class TestSearchCommands:
    """Tests for find and grep."""

    def test_find(self, run):
        result = run('find ~/documents -name "*.txt" -mtime -1')
        assert result.output == "/home/user/documents/todo.txt"

    def test_find_bad_predicate(self, run):
        assert run("find . -size 10").output.startswith("find: ")

    def test_find_unknown_predicate_runs_nothing(self, run):
        """An unsupported predicate is rejected, not mistaken for a path."""
        result = run("find . -maxdepth 1")
        assert result.is_error
        assert result.kind == ErrorKind.INVALID_ARGUMENT
        assert "/home/user" not in result.output

    def test_grep_invalid_regex(self, run):
        result = run('grep "([" documents/notes.txt')
        assert result.output == "grep: invalid regular expression"
        assert result.kind == ErrorKind.INVALID_REGEX

    def test_grep_recursive(self, run):
        result = run("grep -r Error /var/log")
        assert not result.is_error
        assert "/var/log/system.log:" in result.output
        assert "grep: /var/log/auth.log: Permission denied" in result.output

    def test_grep_html_escapes(self, run):
        run("echo '<script>alert(1)</script>' > /tmp/x.html")
        result = run("grep script /tmp/x.html", html_output=True)
        assert result.is_html
        assert "<script>" not in result.output
        assert "&lt;" in result.output

    def test_grep_never_html_into_redirect(self, run, fs):
        run("echo '<b>' > /tmp/in.txt")
        run("grep b /tmp/in.txt > /tmp/out.txt", html_output=True)
        assert fs.read_file("/tmp/out.txt").value == "<b>\n"


class TestIdentityCommands:
    """Tests for whoami, id, groups, su and sudo."""

    def test_whoami(self, run):
        assert run("whoami").output == "user"

    def test_id(self, run):
        assert run("id").output == "uid=user gid=user groups=user,security"

    def test_groups(self, run):
        assert run("groups").output == "user security"

    def test_useradd_requires_sudo(self, run, fs):
        result = run("useradd alice")
        assert result.is_error
        assert "permission denied" in result.output
        assert fs.get_user("alice") is None

    def test_sudo_blocked(self, run, fs):
        result = run("sudo rm -rf /")
        assert result.is_error
        assert result.kind == ErrorKind.BLOCKED
        assert "blocked" in result.output
        assert fs.get_node("/bin") is not None

    def test_sudo_denylist_from_config(self, run, monkeypatch):
        monkeypatch.setenv("SHELLQUEST_SUDO_DENYLIST", "cat, ls")
        reload_config()
        assert run("sudo cat /etc/shadow").kind == ErrorKind.BLOCKED

    def test_sudo_runs_as_root_then_restores(self, run, fs):
        result = run("sudo cat /etc/shadow")
        assert not result.is_error
        assert result.output.startswith("root:")
        assert fs.username == "user"

    def test_sudo_restores_after_failure(self, run, fs):
        assert run("sudo cat /nope").is_error
        assert run("whoami").output == "user"

    def test_sudo_lifecycle(self, run, fs):
        assert not run("sudo useradd -G security,admin analyst1").is_error
        assert fs.get_user("analyst1").supplemental_groups == {"security", "admin"}
        assert fs.get_node("/home/analyst1") is not None

        assert not run("sudo usermod -a -G marketing analyst1").is_error
        assert "marketing" in fs.get_user("analyst1").supplemental_groups

        assert not run("sudo userdel -r analyst1").is_error
        assert fs.get_user("analyst1") is None
        assert fs.get_node("/home/analyst1") is None

    def test_sudo_usermod_bundled(self, run, fs):
        run("sudo useradd ops2")
        assert not run("sudo usermod -aG marketing,security ops2").is_error
        assert fs.get_user("ops2").supplemental_groups == {"marketing", "security"}

    def test_sudo_chown(self, run, fs):
        run("sudo useradd ops1")
        assert not run("sudo chown ops1:security /home/user/documents/notes.txt").is_error
        node = fs.get_node("/home/user/documents/notes.txt")
        assert (node.owner, node.group) == ("ops1", "security")

    def test_sudo_su_switches(self, run, fs):
        assert not run("sudo su admin").is_error
        assert fs.username == "admin"
        assert fs.cwd == "/home/admin"

    def test_sudo_su_becomes_root(self, run, fs):
        """sudo su leaves a root shell in /root, not the old user stranded there."""
        assert not run("sudo su").is_error
        assert fs.username == "root"
        assert fs.cwd == "/root"
        assert not run("ls").is_error

    def test_su_without_sudo(self, run):
        assert "Authentication failure" in run("su admin").output


class TestManual:
    """Tests for whatis / apropos."""

    def test_whatis(self, run):
        assert "grep - Search for patterns in files" in run("whatis grep").output

    def test_whatis_unknown(self, run):
        assert run("whatis nothing").output == "nothing: nothing appropriate."

    def test_apropos(self, run):
        assert "chmod - Change file permissions" in run("apropos permission").output


class TestOutputLimit:
    """Tests for max_output_chars."""

    def test_output_is_capped(self, run, monkeypatch):
        monkeypatch.setenv("SHELLQUEST_MAX_OUTPUT", "10")
        reload_config()
        result = run("cat /var/log/system.log")
        assert result.output.startswith("[2024-01-1")
        assert result.output.endswith("[output truncated]")

    def test_html_output_is_cut_between_lines(self, run, monkeypatch):
        """Truncated markup never ends inside a tag."""
        run("echo 'match one' > /tmp/m.txt")
        run("echo 'match two' >> /tmp/m.txt")
        run("echo 'match three' >> /tmp/m.txt")
        monkeypatch.setenv("SHELLQUEST_MAX_OUTPUT", "50")
        reload_config()
        result = run("grep match /tmp/m.txt", html_output=True)
        assert result.is_html
        body, _, _ = result.output.partition("\n[output truncated]")
        assert body == '<span class="grep-match">match</span> one'


class TestViewers:
    """Tests for less, nano and stat."""

    def test_less_file(self, run):
        assert "Linux Game" in run("less documents/notes.txt").output

    def test_less_piped(self, run):
        assert run("cat documents/todo.txt | less") == run("cat documents/todo.txt")

    def test_less_without_input(self, run):
        assert run("less").is_error

    def test_less_missing_file(self, run):
        assert run("less nope.txt").kind == ErrorKind.NOT_FOUND

    def test_nano_opens_file(self, run):
        result = run("nano documents/notes.txt")
        assert not result.is_error
        assert result.editor.action == "open"
        assert result.editor.path == "/home/user/documents/notes.txt"
        assert "Linux Game" in result.editor.content
        assert result.editor.new_file is False

    def test_nano_new_file(self, run):
        result = run("nano ideas.txt")
        assert result.editor.path == "/home/user/ideas.txt"
        assert result.editor.new_file
        assert result.editor.content == ""

    def test_nano_rejects_directory(self, run):
        result = run("nano documents")
        assert result.is_error
        assert "Is a directory" in result.output
        assert result.editor is None

    def test_nano_missing_parent(self, run):
        assert run("nano nowhere/file.txt").kind == ErrorKind.NOT_FOUND

    def test_nano_unreadable(self, run):
        assert run("nano /etc/shadow").kind == ErrorKind.PERMISSION_DENIED

    def test_stat(self, run):
        output = run("stat documents/notes.txt").output
        assert "  File: documents/notes.txt" in output
        assert "Access: (0644/-rw-r--r--)  Uid: user  Gid: user" in output

    def test_stat_missing(self, run):
        assert run("stat nope").output == "stat: cannot stat 'nope': No such file or directory"


class TestManualPages:
    """Tests for man."""

    def test_man_nano(self, run):
        page = run("man nano").output
        assert "nano - edit files in a simplified mode" in page
        assert "/save" in page
        assert "/exit" in page

    def test_man_whatis_and_apropos(self, run):
        assert "whatis - display one-line manual page descriptions" in run("man whatis").output
        assert "apropos - search command descriptions by keyword" in run("man apropos").output

    def test_man_falls_back_to_description(self, run):
        assert run("man pwd").output == "NAME\n    pwd - Print the current working directory"

    def test_man_unknown(self, run):
        result = run("man frobnicate")
        assert result.output == "No manual entry for frobnicate"
        assert result.kind == ErrorKind.NOT_FOUND
