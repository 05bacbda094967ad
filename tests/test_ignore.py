"""Tests for .exflowignore and .gitignore handling."""

from exflow.ignore import (
    DEFAULT_TEMPLATE,
    IGNORE_FILENAME,
    IgnoreRules,
    ensure_exflowignore,
    iter_source_files,
)


EXTENSIONS = {".py": "python", ".java": "java"}


def write(path, text=""):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)


class TestEnsureExflowignore:
    def test_creates_default_file(self, tmp_path):
        created, message = ensure_exflowignore(tmp_path)
        assert created
        assert (tmp_path / IGNORE_FILENAME).read_text() == DEFAULT_TEMPLATE
        assert "Created" in message

    def test_existing_file_is_kept(self, tmp_path):
        (tmp_path / IGNORE_FILENAME).write_text("custom/\n")
        created, message = ensure_exflowignore(tmp_path)
        assert not created
        assert "already exists" in message
        assert (tmp_path / IGNORE_FILENAME).read_text() == "custom/\n"

    def test_missing_directory(self, tmp_path):
        created, message = ensure_exflowignore(tmp_path / "nope")
        assert not created
        assert "does not exist" in message


class TestIgnoreRules:
    def test_default_patterns(self, tmp_path):
        rules = IgnoreRules(tmp_path, use_gitignore=False)
        assert rules.ignores("build/")
        assert rules.ignores("pkg/api_pb2.py")
        assert not rules.ignores("src/main.py")

    def test_negation_wins(self, tmp_path):
        (tmp_path / IGNORE_FILENAME).write_text("*.java\n!Keep.java\n")
        rules = IgnoreRules(tmp_path, use_gitignore=False)
        assert rules.ignores("Drop.java")
        assert not rules.ignores("Keep.java")

    def test_deeper_gitignore_overrides(self, tmp_path):
        write(tmp_path / ".gitignore", "*.gen.py\n")
        write(tmp_path / "keep" / ".gitignore", "!*.gen.py\n")
        rules = IgnoreRules(tmp_path)
        rules.add_gitignore("keep")
        assert rules.ignores("a.gen.py")
        assert not rules.ignores("keep/b.gen.py")


def test_iter_source_files(tmp_path):
    write(tmp_path / "src" / "a.py", "def a():\n    pass\n")
    write(tmp_path / "src" / "B.java", "class B {}\n")
    write(tmp_path / "src" / "notes.txt", "x")
    write(tmp_path / "build" / "gen.py")

    files = iter_source_files(tmp_path, EXTENSIONS, use_gitignore=False)
    assert files == [tmp_path / "src" / "B.java", tmp_path / "src" / "a.py"]

    everything = iter_source_files(tmp_path, EXTENSIONS, respect_ignore=False)
    assert tmp_path / "build" / "gen.py" in everything


def test_gitignore_files_are_honoured(tmp_path):
    write(tmp_path / ".gitignore", "legacy/\n")
    write(tmp_path / "src" / ".gitignore", "gen_*.py\n")
    write(tmp_path / "src" / "a.py")
    write(tmp_path / "src" / "gen_b.py")
    write(tmp_path / "legacy" / "old.py")

    assert iter_source_files(tmp_path, EXTENSIONS) == [tmp_path / "src" / "a.py"]
    assert tmp_path / "src" / "gen_b.py" in iter_source_files(tmp_path, EXTENSIONS, use_gitignore=False)

    # .exflowignore re-includes what .gitignore drops
    (tmp_path / IGNORE_FILENAME).write_text("!legacy/\n")
    assert iter_source_files(tmp_path, EXTENSIONS) == [
        tmp_path / "legacy" / "old.py",
        tmp_path / "src" / "a.py",
    ]
