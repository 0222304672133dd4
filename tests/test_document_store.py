import asyncio

from repo_analyzer.executor.document_store import DRAFT, SqlDocumentStore

PROJECT = "github.com/acme/orders"


def test_drafts_are_hidden_until_published(database) -> None:
    async def scenario():
        store = SqlDocumentStore(database)
        await store.save_doc(PROJECT, "Overview", "# v1", "en-US")
        await store.save_doc(PROJECT, "Overview", "# v2", "en-US")
        assert await store.get_doc(PROJECT, "Overview", "en-US") is None
        draft = await store.get_doc(PROJECT, "Overview", "en-US", status=DRAFT)
        listed_before = await store.list_docs(PROJECT, "en-US")
        published = await store.publish(PROJECT)
        listed_after = await store.list_docs(PROJECT, "en-US")
        return draft, listed_before, published, listed_after

    draft, listed_before, published, listed_after = asyncio.run(scenario())
    assert draft == "# v2"
    assert listed_before == []
    assert published == 1
    assert listed_after == ["Overview"]


def test_publish_replaces_previous_published_set(database) -> None:
    async def scenario():
        store = SqlDocumentStore(database)
        await store.save_doc(PROJECT, "Old", "old", "en-US")
        await store.publish(PROJECT)
        await store.save_doc(PROJECT, "New", "new", "en-US")
        await store.save_doc(PROJECT, "New", "nouveau", "zh-CN")
        # Draft of a new run does not hide the published version
        during = await store.get_doc(PROJECT, "Old", "en-US")
        await store.publish(PROJECT)
        return (
            during,
            await store.list_docs(PROJECT, "en-US"),
            await store.get_doc(PROJECT, "Old", "en-US"),
            await store.get_doc(PROJECT, "New", "zh-CN"),
        )

    during, names, old, translated = asyncio.run(scenario())
    assert during == "old"
    assert names == ["New"]
    assert old is None
    assert translated == "nouveau"


def test_publish_without_drafts_keeps_published_set(database) -> None:
    async def scenario():
        store = SqlDocumentStore(database)
        await store.save_doc(PROJECT, "Doc", "x", "en-US")
        await store.publish(PROJECT)
        count = await store.publish(PROJECT)
        return count, await store.list_docs(PROJECT, "en-US")

    assert asyncio.run(scenario()) == (0, ["Doc"])


def test_projects_are_isolated(database) -> None:
    async def scenario():
        store = SqlDocumentStore(database)
        await store.save_doc("a", "Doc", "A", "en-US")
        await store.save_doc("b", "Doc", "B", "en-US")
        await store.publish("a")
        await store.publish("b")
        return await store.get_doc("a", "Doc", "en-US"), await store.get_doc("c", "Doc", "en-US")

    assert asyncio.run(scenario()) == ("A", None)


def test_discard_drafts_keeps_published_set(database) -> None:
    async def scenario():
        store = SqlDocumentStore(database)
        await store.save_doc(PROJECT, "Overview", "# live", "en-US")
        await store.publish(PROJECT)
        await store.save_doc(PROJECT, "Overview", "# next", "en-US")
        await store.save_doc(PROJECT, "Billing", "# billing", "en-US")
        await store.save_doc(PROJECT, "Billing", "# zh billing", "zh-CN")
        await store.save_doc("other", "Billing", "# other", "en-US")

        one = await store.discard_drafts(PROJECT, "Billing")
        remaining = await store.list_docs(PROJECT, "en-US", status=DRAFT)
        rest = await store.discard_drafts(PROJECT)
        return (
            one,
            remaining,
            rest,
            await store.publish(PROJECT),
            await store.get_doc(PROJECT, "Overview", "en-US"),
            await store.get_doc("other", "Billing", "en-US", status=DRAFT),
        )

    one, remaining, rest, published, live, other = asyncio.run(scenario())
    assert one == 2
    assert remaining == ["Overview"]
    assert rest == 1
    assert published == 0
    assert live == "# live"
    assert other == "# other"
