"""Tests for side-effect extraction."""

import pytest

from agentic_gate.shell.config import GatePolicy
from agentic_gate.shell.models import PathOperation
from agentic_gate.shell.side_effects import SideEffectExtractor, is_likely_path, is_windows_flag


@pytest.fixture
def extractor() -> SideEffectExtractor:
    return SideEffectExtractor()


def paths_by_operation(effects, operation):
    return [p.path for p in effects.paths if p.operation is operation]


class TestPaths:
    """Path extraction with read/write intent."""

    def test_touch_writes_every_operand(self, extractor):
        effects = extractor.extract("touch a.txt b.txt")

        assert paths_by_operation(effects, PathOperation.WRITE) == ["a.txt", "b.txt"]

    def test_mkdir_operand_without_path_shape(self, extractor):
        assert paths_by_operation(extractor.extract("mkdir build"), PathOperation.WRITE) == ["build"]

    def test_copy_source_and_destination(self, extractor):
        effects = extractor.extract("cp src/app.py dist/app.py")

        assert paths_by_operation(effects, PathOperation.READ) == ["src/app.py"]
        assert paths_by_operation(effects, PathOperation.WRITE) == ["dist/app.py"]

    def test_cat_reads(self, extractor):
        effects = extractor.extract("cat README.md")

        assert paths_by_operation(effects, PathOperation.READ) == ["README.md"]
        assert effects.write_paths == ()

    def test_grep_pattern_is_not_a_path(self, extractor):
        effects = extractor.extract("grep TODO src/app.py")

        assert [p.path for p in effects.paths] == ["src/app.py"]
        assert effects.paths[0].operation is PathOperation.READ

    def test_output_redirection(self, extractor):
        effects = extractor.extract("echo hi > out.txt")

        assert len(effects.paths) == 1
        assert effects.paths[0].path == "out.txt"
        assert effects.paths[0].operation is PathOperation.WRITE
        assert effects.paths[0].position == -1

    def test_input_redirection(self, extractor):
        effects = extractor.extract("sort < names.txt")

        assert "names.txt" in paths_by_operation(effects, PathOperation.READ)
        assert effects.write_paths == ()

    def test_output_sinks_are_ignored(self, extractor):
        assert extractor.extract("ls > /dev/null 2>&1").paths == ()

    def test_sed_in_place_writes(self, extractor):
        effects = extractor.extract("sed -i s/a/b/ f.txt")

        assert paths_by_operation(effects, PathOperation.WRITE) == ["f.txt"]

    def test_chmod_mode_is_not_a_path(self, extractor):
        effects = extractor.extract("chmod 755 script.sh")

        assert [p.path for p in effects.paths] == ["script.sh"]
        assert effects.paths[0].operation is PathOperation.WRITE

    def test_dd_operands(self, extractor):
        effects = extractor.extract("dd if=disk.img of=copy.img")

        assert paths_by_operation(effects, PathOperation.READ) == ["disk.img"]
        assert paths_by_operation(effects, PathOperation.WRITE) == ["copy.img"]

    def test_unknown_program_path_is_a_write(self, extractor):
        effects = extractor.extract("frobnicate data/input.csv")

        assert paths_by_operation(effects, PathOperation.WRITE) == ["data/input.csv"]

    def test_wrapper_script_is_inspected(self, extractor):
        effects = extractor.extract("bash -c 'echo hi > out.txt'")

        assert paths_by_operation(effects, PathOperation.WRITE) == ["out.txt"]

    def test_substitution_is_inspected(self, extractor):
        effects = extractor.extract("echo $(touch x.txt)")

        assert "x.txt" in paths_by_operation(effects, PathOperation.WRITE)

    def test_windows_flags_are_not_paths(self, extractor):
        assert extractor.extract("dir /b").paths == ()

    def test_compound_command_collects_all(self, extractor):
        effects = extractor.extract("mkdir out && cp a.txt out/a.txt")

        assert set(paths_by_operation(effects, PathOperation.WRITE)) == {"out", "out/a.txt"}
        assert paths_by_operation(effects, PathOperation.READ) == ["a.txt"]

    @pytest.mark.parametrize("command", ["echo hi >& ../outside.txt", "echo hi >| ../outside.txt"])
    def test_combined_and_clobber_redirections_write(self, extractor, command):
        effects = extractor.extract(command)

        assert paths_by_operation(effects, PathOperation.WRITE) == ["../outside.txt"]
        assert paths_by_operation(effects, PathOperation.READ) == []

    @pytest.mark.parametrize("action", ["-fprint", "-fprint0", "-fls"])
    def test_find_output_actions_write(self, extractor, action):
        effects = extractor.extract(f"find . -name '*.py' {action} ../outside.txt")

        assert paths_by_operation(effects, PathOperation.WRITE) == ["../outside.txt"]
        assert "../outside.txt" not in paths_by_operation(effects, PathOperation.READ)

    def test_find_fprintf_format_is_not_the_output(self, extractor):
        effects = extractor.extract("find . -fprintf list.txt '%p\\n'")

        assert paths_by_operation(effects, PathOperation.WRITE) == ["list.txt"]


class TestDirectoryChanges:
    """Paths after cd/pushd are expressed relative to the starting directory."""

    def test_cd_parent_then_redirect(self, extractor):
        effects = extractor.extract("cd .. && echo pwned > outside.txt")

        assert paths_by_operation(effects, PathOperation.WRITE) == ["../outside.txt"]

    def test_cd_into_subdirectory(self, extractor):
        effects = extractor.extract("cd src && touch a.txt")

        assert paths_by_operation(effects, PathOperation.WRITE) == ["src/a.txt"]

    def test_successive_changes_accumulate(self, extractor):
        effects = extractor.extract("cd src; cd ../..; touch a.txt")

        assert paths_by_operation(effects, PathOperation.WRITE) == ["src/../../a.txt"]

    def test_absolute_paths_are_not_rebased(self, extractor):
        effects = extractor.extract("cd .. && touch /tmp/a.txt")

        assert paths_by_operation(effects, PathOperation.WRITE) == ["/tmp/a.txt"]

    @pytest.mark.parametrize("command", ["cd - && touch a.txt", "popd; touch a.txt", "pushd +1; touch a.txt"])
    def test_unknown_target(self, extractor, command):
        effects = extractor.extract(command)

        assert paths_by_operation(effects, PathOperation.WRITE) == ["$(pwd)/a.txt"]

    def test_bare_cd_goes_home(self, extractor):
        assert paths_by_operation(extractor.extract("cd; touch a.txt"), PathOperation.WRITE) == ["~/a.txt"]

    def test_subshell_change_does_not_leak(self, extractor):
        effects = extractor.extract("(cd .. && ls); touch a.txt")

        assert paths_by_operation(effects, PathOperation.WRITE) == ["a.txt"]

    @pytest.mark.parametrize(
        "command,directory",
        [("cd ..", ".."), ("pushd /tmp", "/tmp"), ("ls", None), ("cd -", "$(pwd)"), ("env FOO=1 cd src", "src")],
    )
    def test_directory_after(self, extractor, command, directory):
        assert extractor.directory_after(command, None) == directory


class TestDomains:
    """Domain extraction from URLs, remotes and implied registries."""

    def test_url_host(self, extractor):
        assert extractor.extract("curl https://example.com/page").domains == ("example.com",)

    def test_output_file_is_not_a_domain(self, extractor):
        effects = extractor.extract("curl -o out.html https://example.com/page")

        assert effects.domains == ("example.com",)
        assert paths_by_operation(effects, PathOperation.WRITE) == ["out.html"]

    def test_npm_install_implies_registry(self, extractor):
        assert "registry.npmjs.org" in extractor.extract("npm install lodash").domains

    def test_npm_test_implies_nothing(self, extractor):
        assert extractor.extract("npm test").domains == ()

    def test_pip_install_implies_pypi(self, extractor):
        domains = extractor.extract("pip install requests").domains

        assert "pypi.org" in domains
        assert "files.pythonhosted.org" in domains

    def test_scp_style_git_remote(self, extractor):
        assert "github.com" in extractor.extract("git clone git@github.com:org/repo.git").domains

    def test_bare_ssh_host(self, extractor):
        assert extractor.extract("ssh user@example.com").domains == ("example.com",)

    def test_policy_overrides_implied_domains(self):
        policy = GatePolicy.from_dict({"implied_domains": {"npm": {"domains": ["npm.internal.example"], "subcommands": None}}})
        extractor = SideEffectExtractor(policy)

        assert extractor.extract("npm test").domains == ("npm.internal.example",)


class TestPorts:
    """Port extraction."""

    def test_long_option(self, extractor):
        assert extractor.extract("python -m http.server --port 8080").ports == (8080,)

    def test_docker_publish(self, extractor):
        assert extractor.extract("docker run -p 3000:3000 app").ports == (3000,)

    def test_url_port(self, extractor):
        assert extractor.extract("curl http://localhost:8080/api").ports == (8080,)

    def test_no_ports(self, extractor):
        assert extractor.extract("ls -la").ports == ()


class TestHeuristics:
    """Tests for the path and flag heuristics."""

    @pytest.mark.parametrize("token", ["./a", "../b", "~/c", "/etc/hosts", "src/app.py", "C:\\Users", "notes.md", "$HOME"])
    def test_likely_paths(self, token):
        assert is_likely_path(token)

    @pytest.mark.parametrize("token", ["", "-v", "hello", "https://example.com/x", "/b"])
    def test_not_paths(self, token):
        assert not is_likely_path(token)

    def test_windows_flags(self):
        assert is_windows_flag("/s")
        assert is_windows_flag("/a:h")
        assert not is_windows_flag("/usr/bin")
