import pytest
from conftest import FakeRepositoryClient, entry

from repo_preview.config import PreviewConfig
from repo_preview.converter import to_manifest
from repo_preview.exceptions import FetchError, RateLimitError
from repo_preview.fetcher import TreeFetcher
from repo_preview.models.tree import iter_nodes


@pytest.mark.asyncio
async def test_fetch_tree_preserves_listing_order(sample_client: FakeRepositoryClient, config: PreviewConfig) -> None:
    fetcher = TreeFetcher(sample_client, config)
    tree = await fetcher.fetch_tree("acme", "demo")

    assert [n.path for n in tree] == ["package.json", "src", ".gitignore"]
    src = tree[1]
    assert src.kind == "directory"
    assert [c.path for c in src.children or []] == ["src/index.js", "src/components"]
    assert tree[0].content == '{"name": "demo", "scripts": {"dev": "next dev"}}'
    assert fetcher.failures == []
    assert not fetcher.rate_limited


@pytest.mark.asyncio
async def test_failed_file_keeps_siblings(config: PreviewConfig) -> None:
    client = FakeRepositoryClient(
        listings={".": [entry("a.js"), entry("b.js"), entry("c.js")]},
        files={"a.js": b"a", "b.js": FetchError("boom", path="b.js"), "c.js": b"c"},
    )
    fetcher = TreeFetcher(client, config)
    tree = await fetcher.fetch_tree("acme", "demo")

    assert [n.path for n in tree] == ["a.js", "b.js", "c.js"]
    assert tree[1].content is None
    assert tree[0].content == "a"
    assert tree[2].content == "c"
    assert [f.path for f in fetcher.failures] == ["b.js"]


@pytest.mark.asyncio
async def test_failed_directory_is_emitted_empty(config: PreviewConfig) -> None:
    client = FakeRepositoryClient(
        listings={".": [entry("lib", "dir"), entry("index.js")], "lib": FetchError("server error")},
        files={"index.js": b"i"},
    )
    fetcher = TreeFetcher(client, config)
    tree = await fetcher.fetch_tree("acme", "demo")

    assert tree[0].kind == "directory"
    assert tree[0].children == []
    assert tree[1].content == "i"
    assert fetcher.failures[0].path == "lib"


@pytest.mark.asyncio
async def test_root_failure_returns_empty_tree(config: PreviewConfig) -> None:
    fetcher = TreeFetcher(FakeRepositoryClient(), config)
    tree = await fetcher.fetch_tree("acme", "missing")

    assert tree == []
    assert fetcher.failures[0].path == "."


@pytest.mark.asyncio
async def test_max_depth_stops_descent() -> None:
    client = FakeRepositoryClient(
        listings={
            ".": [entry("a", "dir")],
            "a": [entry("a/b", "dir")],
            "a/b": [entry("a/b/c.js")],
        },
        files={"a/b/c.js": b"c"},
    )
    fetcher = TreeFetcher(client, PreviewConfig(max_tree_depth=2))
    tree = await fetcher.fetch_tree("acme", "demo")

    b = tree[0].children[0]  # type: ignore[index]
    assert b.path == "a/b"
    assert b.children == []
    assert ("list", "a/b") not in client.calls
    assert "Maximum tree depth" in fetcher.failures[0].reason


@pytest.mark.asyncio
async def test_large_file_is_not_downloaded() -> None:
    client = FakeRepositoryClient(listings={".": [entry("big.bin", size=5000)]}, files={"big.bin": b"x"})
    fetcher = TreeFetcher(client, PreviewConfig(max_file_size=1000))
    tree = await fetcher.fetch_tree("acme", "demo")

    assert tree[0].content is None
    assert ("raw", "big.bin") not in client.calls
    assert "too large" in fetcher.failures[0].reason


@pytest.mark.asyncio
async def test_rate_limit_stops_further_requests() -> None:
    client = FakeRepositoryClient(
        listings={".": [entry("a.js"), entry("b.js"), entry("c.js")]},
        files={"a.js": RateLimitError("limit"), "b.js": b"b", "c.js": b"c"},
    )
    # One request at a time so a.js is requested first.
    fetcher = TreeFetcher(client, PreviewConfig(fetch_concurrency=1))
    tree = await fetcher.fetch_tree("acme", "demo")

    assert fetcher.rate_limited
    assert [n.path for n in tree] == ["a.js", "b.js", "c.js"]
    assert all(n.content is None for n in tree)
    assert [c for c in client.calls if c[0] == "raw"] == [("raw", "a.js")]
    assert len(fetcher.failures) == 3


@pytest.mark.asyncio
async def test_single_file_path(config: PreviewConfig) -> None:
    client = FakeRepositoryClient(listings={"README.md": entry("README.md")}, files={"README.md": b"# hi"})
    fetcher = TreeFetcher(client, config)
    tree = await fetcher.fetch_tree("acme", "demo", "README.md")

    assert len(tree) == 1
    assert tree[0].kind == "file"
    assert tree[0].content == "# hi"


@pytest.mark.asyncio
async def test_duplicate_paths_are_skipped(config: PreviewConfig) -> None:
    client = FakeRepositoryClient(
        listings={".": [entry("a.js"), entry("a.js")]},
        files={"a.js": b"a"},
    )
    fetcher = TreeFetcher(client, config)
    tree = await fetcher.fetch_tree("acme", "demo")

    assert [n.path for n in tree] == ["a.js"]
    assert fetcher.failures[0].reason == "Duplicate path in listing"


@pytest.mark.asyncio
async def test_state_is_reset_between_walks(config: PreviewConfig) -> None:
    client = FakeRepositoryClient(listings={".": [entry("a.js")]}, files={"a.js": FetchError("boom")})
    fetcher = TreeFetcher(client, config)
    await fetcher.fetch_tree("acme", "demo")
    assert len(fetcher.failures) == 1

    client.files["a.js"] = b"ok"
    tree = await fetcher.fetch_tree("acme", "demo")

    assert fetcher.failures == []
    assert tree[0].content == "ok"


@pytest.mark.asyncio
async def test_binary_file_is_base64(config: PreviewConfig) -> None:
    client = FakeRepositoryClient(listings={".": [entry("logo.png")]}, files={"logo.png": b"\xff\xd8\xff"})
    tree = await TreeFetcher(client, config).fetch_tree("acme", "demo")

    assert tree[0].encoding == "base64"
    assert tree[0].raw_content() == b"\xff\xd8\xff"
    assert len(list(iter_nodes(tree))) == 1


@pytest.mark.asyncio
async def test_fetch_and_convert_twice_gives_equal_manifests(
    sample_client: FakeRepositoryClient, config: PreviewConfig
) -> None:
    first = to_manifest(await TreeFetcher(sample_client, config).fetch_tree("acme", "demo"))
    second = to_manifest(await TreeFetcher(sample_client, config).fetch_tree("acme", "demo"))

    assert first == second
    assert list(first) == list(second)
    assert "src/components/Button.js" in first
