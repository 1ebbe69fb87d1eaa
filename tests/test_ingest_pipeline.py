import os
import sys

import pytest

from codesync.ingest.pipeline import Indexer
from codesync.logger import EmbeddingError

from conftest import FakeEmbedder

pytestmark = pytest.mark.unit


def _write(root, rel, text):
    p = root / rel
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text)
    return p


def _lines(n, tag="L"):
    return "\n".join(f"{tag}{i}" for i in range(1, n + 1))


@pytest.mark.asyncio
async def test_rebuild_indexes_eligible_files(tmp_path, make_config, fake_embedder, store, stored_documents):
    _write(tmp_path, "src/a.py", _lines(10))
    _write(tmp_path, "src/b.ts", _lines(3))
    _write(tmp_path, "image.png", "binary-ish")
    _write(tmp_path, "node_modules/dep/index.js", _lines(2))

    indexer = Indexer(make_config(), fake_embedder, store)
    summary = await indexer.rebuild()

    assert summary.files_indexed == 2
    assert summary.chunks_indexed == 4  # (1,4),(4,7),(7,10) + (1,3)
    assert summary.files_failed == 0
    docs = await stored_documents(store)
    spans = sorted((d["filePath"], d["startLine"], d["endLine"]) for d in docs.values())
    assert spans == [("src/a.py", 1, 4), ("src/a.py", 4, 7), ("src/a.py", 7, 10), ("src/b.ts", 1, 3)]


@pytest.mark.asyncio
async def test_rebuild_twice_converges_to_same_ids(tmp_path, make_config, fake_embedder, store, stored_documents):
    _write(tmp_path, "a.py", _lines(9))
    _write(tmp_path, "b.md", "# title\n")
    indexer = Indexer(make_config(), fake_embedder, store)

    await indexer.rebuild()
    first = set(await stored_documents(store))
    await indexer.rebuild()
    second = set(await stored_documents(store))
    assert first == second


@pytest.mark.asyncio
async def test_edit_replaces_all_documents_of_file(tmp_path, make_config, fake_embedder, store, stored_documents):
    path = _write(tmp_path, "a.py", _lines(6))
    indexer = Indexer(make_config(), fake_embedder, store)
    await indexer.rebuild()
    before = set(await stored_documents(store))

    path.write_text(_lines(6, tag="M"))
    assert await indexer.reindex_file("a.py") == 2
    after = await stored_documents(store)
    assert before.isdisjoint(after)
    assert all(d["content"].startswith("M") for d in after.values())


@pytest.mark.asyncio
async def test_oversized_file_is_removed(tmp_path, make_config, fake_embedder, store):
    path = _write(tmp_path, "a.py", "x = 1\n")
    indexer = Indexer(make_config(max_file_bytes=64), fake_embedder, store)
    await indexer.rebuild()
    assert await store.count_for_path("a.py") == 1

    path.write_text("x = 1\n" * 50)
    assert await indexer.reindex_file("a.py") == 0
    assert await store.count_for_path("a.py") == 0

    summary = await indexer.rebuild()
    assert summary.files_indexed == 0
    assert await store.count_for_path("a.py") == 0


@pytest.mark.asyncio
async def test_vanished_file_ends_with_no_documents(tmp_path, make_config, fake_embedder, store):
    path = _write(tmp_path, "a.py", _lines(3))
    indexer = Indexer(make_config(), fake_embedder, store)
    await indexer.rebuild()
    path.unlink()
    assert await indexer.reindex_file("a.py") == 0
    assert await store.count_for_path("a.py") == 0


@pytest.mark.asyncio
async def test_one_failing_file_does_not_abort_rebuild(tmp_path, make_config, store):
    _write(tmp_path, "a.py", _lines(3))
    _write(tmp_path, "b.py", "FAIL here\n")
    _write(tmp_path, "c.py", _lines(2))
    embedder = FakeEmbedder(fail_marker="FAIL")

    summary = await Indexer(make_config(), embedder, store).rebuild()
    assert summary.files_indexed == 2
    assert summary.files_failed == 1
    assert await store.indexed_file_paths() == {"a.py", "c.py"}


@pytest.mark.asyncio
async def test_failing_embed_keeps_previous_documents_on_rebuild(tmp_path, make_config, store):
    path = _write(tmp_path, "a.py", _lines(3))
    embedder = FakeEmbedder(fail_marker="FAIL")
    indexer = Indexer(make_config(), embedder, store)
    await indexer.rebuild()

    path.write_text("FAIL\n")
    summary = await indexer.rebuild()
    assert summary.files_failed == 1
    assert await store.count_for_path("a.py") == 1


@pytest.mark.asyncio
async def test_reindex_propagates_embedding_errors(tmp_path, make_config, store):
    path = _write(tmp_path, "a.py", "ok\n")
    indexer = Indexer(make_config(), FakeEmbedder(fail_marker="FAIL"), store)
    await indexer.rebuild()
    path.write_text("FAIL\n")
    with pytest.raises(EmbeddingError):
        await indexer.reindex_file("a.py")


@pytest.mark.asyncio
async def test_rebuild_removes_stale_and_newly_ignored_paths(tmp_path, make_config, fake_embedder, store):
    _write(tmp_path, "keep.py", "k\n")
    gone = _write(tmp_path, "gone.py", "g\n")
    _write(tmp_path, "secret/key.py", "s\n")
    indexer = Indexer(make_config(), fake_embedder, store)
    await indexer.rebuild()
    assert await store.indexed_file_paths() == {"keep.py", "gone.py", "secret/key.py"}

    gone.unlink()
    (tmp_path / ".ragignore").write_text("secret/\n")
    await indexer.reload_rules()
    summary = await indexer.rebuild()
    assert summary.files_removed == 2
    assert await store.indexed_file_paths() == {"keep.py"}


@pytest.mark.asyncio
async def test_empty_file_stores_single_empty_chunk(tmp_path, make_config, fake_embedder, store, stored_documents):
    _write(tmp_path, "empty.py", "")
    await Indexer(make_config(), fake_embedder, store).rebuild()
    docs = list((await stored_documents(store)).values())
    assert [(d["startLine"], d["endLine"], d["content"]) for d in docs] == [(1, 1, "")]


@pytest.mark.asyncio
async def test_delete_tree_removes_files_under_directory(tmp_path, make_config, fake_embedder, store):
    _write(tmp_path, "pkg/a.py", "a\n")
    _write(tmp_path, "pkg/sub/b.py", "b\n")
    _write(tmp_path, "pkg2/c.py", "c\n")
    indexer = Indexer(make_config(), fake_embedder, store)
    await indexer.rebuild()

    assert await indexer.delete_tree("pkg") == 2
    assert await store.indexed_file_paths() == {"pkg2/c.py"}


@pytest.mark.asyncio
async def test_rebuild_uses_probed_dimension(tmp_path, make_config, store):
    _write(tmp_path, "a.py", "a\n")
    embedder = FakeEmbedder(dim=6)
    await Indexer(make_config(), embedder, store).rebuild()
    info = await store.client.get_collection(store.collection)
    assert info.config.params.vectors["code"].size == 6


def _symlink_loop(root, name):
    try:
        os.symlink(name, root / name)
    except (OSError, NotImplementedError):
        pytest.skip("cannot create symlinks here")


@pytest.mark.asyncio
async def test_unstatable_file_is_counted_as_failed(tmp_path, make_config, fake_embedder, store):
    _write(tmp_path, "a.py", "a\n")
    _write(tmp_path, "z.py", "z\n")
    _symlink_loop(tmp_path, "loop.py")

    summary = await Indexer(make_config(), fake_embedder, store).rebuild()
    assert summary.files_indexed == 2
    assert summary.files_failed == 1
    assert await store.indexed_file_paths() == {"a.py", "z.py"}


@pytest.mark.skipif(sys.platform in ("darwin", "win32"), reason="filesystem requires valid UTF-8 names")
@pytest.mark.asyncio
async def test_undecodable_filename_is_indexed(tmp_path, make_config, fake_embedder, store):
    _write(tmp_path, "a.py", "a\n")
    raw = os.path.join(os.fsencode(tmp_path), b"caf\xe9.py")
    try:
        with open(raw, "wb") as fh:
            fh.write(b"print('cafe')\n")
    except OSError:
        pytest.skip("filesystem rejects non-UTF-8 names")

    summary = await Indexer(make_config(), fake_embedder, store).rebuild()
    assert summary.files_indexed == 2
    assert summary.files_failed == 0
    assert os.fsdecode(b"caf\xe9.py") in await store.indexed_file_paths()


class _BrokenEmbedder(FakeEmbedder):
    async def _embed_many(self, texts):
        if any("BOOM" in t for t in texts):
            raise ValueError("unexpected tokenizer state")
        return await super()._embed_many(texts)


@pytest.mark.asyncio
async def test_unexpected_per_file_error_does_not_abort_rebuild(tmp_path, make_config, store):
    _write(tmp_path, "a.py", "a\n")
    _write(tmp_path, "b.py", "BOOM\n")
    _write(tmp_path, "c.py", "c\n")

    summary = await Indexer(make_config(), _BrokenEmbedder(), store).rebuild()
    assert (summary.files_indexed, summary.files_failed) == (2, 1)


@pytest.mark.asyncio
async def test_oversized_file_counted_removed_only_when_documents_existed(
    tmp_path, make_config, fake_embedder, store
):
    _write(tmp_path, "big.py", "x" * 200)
    path = _write(tmp_path, "grows.py", "g\n")
    indexer = Indexer(make_config(max_file_bytes=64), fake_embedder, store)

    assert (await indexer.rebuild()).files_removed == 0
    assert (await indexer.rebuild()).files_removed == 0

    path.write_text("g" * 200)
    assert (await indexer.rebuild()).files_removed == 1
    assert (await indexer.rebuild()).files_removed == 0


@pytest.mark.asyncio
async def test_reindex_of_newly_ignored_file_deletes_it(tmp_path, make_config, fake_embedder, store):
    _write(tmp_path, "secret.py", "token = 1\n")
    indexer = Indexer(make_config(), fake_embedder, store)
    await indexer.rebuild()
    assert await store.count_for_path("secret.py") == 1

    (tmp_path / ".gitignore").write_text("secret.py\n")
    await indexer.reload_rules()
    assert await indexer.reindex_file("secret.py") == 0
    assert await store.count_for_path("secret.py") == 0
