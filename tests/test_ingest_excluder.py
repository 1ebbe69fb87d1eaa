import os

import pytest

from codesync.ingest.exclusions import (
    IgnoreRules,
    is_ignore_file,
    normalize_rel,
    should_index,
    walk,
    within_size_limit,
)
from codesync.logger import ScanError

pytestmark = pytest.mark.unit


def _touch(root, rel, text="x\n"):
    p = root / rel
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text)
    return p


def _walked(root, rules=None):
    rules = rules or IgnoreRules.load(root)
    return [f.rel for f in walk(root, rules)]


def test_defaults_prune_vendor_and_build_dirs(tmp_path):
    _touch(tmp_path, "src/app.ts")
    _touch(tmp_path, "node_modules/pkg/index.js")
    _touch(tmp_path, ".git/config")
    _touch(tmp_path, "dist/bundle.js")
    _touch(tmp_path, "pkg/__pycache__/m.py")
    _touch(tmp_path, ".venv/lib/site.py")

    assert _walked(tmp_path) == ["src/app.ts"]


def test_ragignore_and_gitignore_are_both_applied(tmp_path):
    (tmp_path / ".ragignore").write_text("secret/\n")
    (tmp_path / ".gitignore").write_text("*.log\n")
    _touch(tmp_path, "secret/keys.py")
    _touch(tmp_path, "app.log")
    _touch(tmp_path, "main.py")

    rules = IgnoreRules.load(tmp_path)
    assert rules.sources == [".ragignore", ".gitignore"]
    assert sorted(_walked(tmp_path, rules)) == [".gitignore", ".ragignore", "main.py"]


def test_user_negation_cannot_reinclude_defaults(tmp_path):
    (tmp_path / ".gitignore").write_text("!node_modules/\n!node_modules/**\n")
    rules = IgnoreRules.load(tmp_path)
    assert rules.ignores("node_modules", is_dir=True)
    assert rules.ignores("node_modules/pkg/index.js")


def test_user_negation_reincludes_user_pattern(tmp_path):
    (tmp_path / ".gitignore").write_text("*.md\n!README.md\n")
    rules = IgnoreRules.load(tmp_path)
    assert rules.ignores("docs/guide.md")
    assert not rules.ignores("README.md")


def test_missing_rule_files_are_not_errors(tmp_path):
    rules = IgnoreRules.load(tmp_path)
    assert rules.sources == []
    assert not rules.ignores("src/a.py")


def test_directory_pattern_prunes_whole_subtree(tmp_path):
    (tmp_path / ".ragignore").write_text("generated/\n")
    _touch(tmp_path, "generated/deep/a/b.py")
    _touch(tmp_path, "keep/generated.py")
    assert "generated/deep/a/b.py" not in _walked(tmp_path)
    assert "keep/generated.py" in _walked(tmp_path)


def test_walk_handles_deep_trees(tmp_path):
    rel = "/".join(f"d{i}" for i in range(60)) + "/leaf.py"
    _touch(tmp_path, rel)
    assert _walked(tmp_path) == [rel]


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
def test_walk_does_not_follow_directory_symlinks(tmp_path):
    _touch(tmp_path, "real/a.py")
    try:
        os.symlink(tmp_path / "real", tmp_path / "link", target_is_directory=True)
    except OSError:
        pytest.skip("cannot create symlinks here")
    walked = _walked(tmp_path)
    assert "real/a.py" in walked
    assert not any(p.startswith("link/") for p in walked)


@pytest.mark.parametrize(
    "rel,expected",
    [
        ("src/a.py", True),
        ("src/A.TS", True),
        ("docs/readme.md", True),
        ("Makefile", False),
        ("image.png", False),
        ("archive.tar.gz", False),
        ("noext.", False),
    ],
)
def test_should_index_by_extension(rel, expected):
    assert should_index(rel) is expected


def test_within_size_limit(tmp_path):
    small = _touch(tmp_path, "small.py", "x" * 10)
    big = _touch(tmp_path, "big.py", "x" * 100)
    assert within_size_limit(small, 50)
    assert not within_size_limit(big, 50)
    assert not within_size_limit(tmp_path / "gone.py", 50)


def test_is_ignore_file_only_at_root():
    assert is_ignore_file(".gitignore")
    assert is_ignore_file("./.ragignore")
    assert not is_ignore_file("sub/.gitignore")


def test_normalize_rel():
    assert normalize_rel("./a/b.py") == "a/b.py"
    assert normalize_rel(os.path.join("a", "b.py")) == "a/b.py"


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
def test_within_size_limit_raises_scan_error_on_stat_failure(tmp_path):
    try:
        os.symlink("loop.py", tmp_path / "loop.py")
    except OSError:
        pytest.skip("cannot create symlinks here")
    with pytest.raises(ScanError):
        within_size_limit(tmp_path / "loop.py", 50)
