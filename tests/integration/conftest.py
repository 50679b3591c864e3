import datetime
from typing import Any

from querycore.service import QueryService

AUDIO_ROWS: "list[tuple[Any, ...]]" = [
    ("Cell Biology Basics", "Intro to cells", "Ada Lovelace", "biology", "published", datetime.date(2023, 3, 1)),
    ("Cellular Respiration", "Energy in cells", "Ada Lovelace", "biology", "published", datetime.date(2024, 1, 15)),
    ("Genetics 101", "Inheritance", "Gregor Mendel", "biology", "published", datetime.date(2024, 2, 10)),
    ("Organic Chemistry", "Carbon compounds", "Marie Curie", "chemistry", "published", datetime.date(2024, 3, 5)),
    ("Photosynthesis", "How plants eat", "", "biology", "draft", datetime.date(2024, 4, 20)),
    ("Evolution", "Natural selection", "Charles Darwin", "biology", "published", datetime.date(2024, 5, 2)),
]

INSERT_AUDIO = (
    "INSERT INTO audios (title, description, speaker, category, status, upload_date) VALUES (?, ?, ?, ?, ?, ?)"
)


async def seed_audios(service: QueryService, create_table: str) -> None:
    await service.execute("DROP TABLE IF EXISTS audios")
    await service.execute(create_table)
    for row in AUDIO_ROWS:
        await service.execute(INSERT_AUDIO, list(row))


async def exercise_service(service: QueryService) -> None:
    """Scenario run against every backend once ``audios`` is seeded."""
    page = await service.paginate(
        "SELECT id, title FROM audios WHERE category = ? ORDER BY upload_date", ["biology"], {"page": 1, "limit": 2}
    )
    assert [item["title"] for item in page.items] == ["Cell Biology Basics", "Cellular Respiration"]
    assert (page.total, page.has_more) == (5, True)

    last = await service.paginate(
        "SELECT id, title FROM audios WHERE category = ? ORDER BY upload_date", ["biology"], {"page": 3, "limit": 2}
    )
    assert [item["title"] for item in last.items] == ["Evolution"]
    assert not last.has_more

    found = await service.search({"query": "cell", "status": "published"})
    assert [item["title"] for item in found.items] == ["Cellular Respiration", "Cell Biology Basics"]
    assert found.total == 2

    by_title = await service.search({"category": "biology"}, {"sortBy": "title", "sortOrder": "asc"}, {"limit": 3})
    assert [item["title"] for item in by_title.items] == ["Cell Biology Basics", "Cellular Respiration", "Evolution"]
    assert by_title.total == 5

    categories = await service.facets({"status": "published"}, "category")
    assert [(row["name"], int(row["count"])) for row in categories] == [("biology", 4), ("chemistry", 1)]

    speakers = await service.facets(None, "speaker", limit=1)
    assert [(row["name"], int(row["count"])) for row in speakers] == [("Ada Lovelace", 2)]

    years = await service.facets(None, "year")
    assert [(int(row["year"]), int(row["count"])) for row in years] == [(2024, 5), (2023, 1)]

    assert await service.suggestions("cell") == ["Cell Biology Basics", "Cellular Respiration"]
    assert await service.suggestions("ada", "speaker") == ["Ada Lovelace"]

    before = await service.paginate("SELECT id FROM audios WHERE category = ?", ["chemistry"])
    assert before.total == 1
    await service.execute(
        INSERT_AUDIO, ["Acids", "pH", "Marie Curie", "chemistry", "published", datetime.date(2024, 6, 1)]
    )
    after = await service.paginate("SELECT id FROM audios WHERE category = ?", ["chemistry"])
    assert after.total == 2

    updated = await service.execute("UPDATE audios SET status = ? WHERE category = ?", ["archived", "chemistry"])
    assert updated.row_count == 2
    row = await service.query_one("SELECT COUNT(*) AS n FROM audios WHERE status = ?", ["archived"])
    assert row is not None
    assert int(row["n"]) == 2
