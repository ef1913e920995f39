import pytest
import pytest_asyncio

from errors import ValidationError
from services.search_service import DEFAULT_TOP_K


@pytest_asyncio.fixture
async def seeded(vector_db, vector_for):
    items = [
        ("question", f"q-{index}", vector_for(f"question {index}"), {"subject_id": "s-1" if index < 4 else "s-2"})
        for index in range(8)
    ]
    items.append(("topic", "t-0", vector_for("question 0"), {"subject_id": "s-1"}))
    await vector_db.upsert_vectors(items)
    return vector_db


@pytest.mark.asyncio
async def test_exact_record_ranks_first(search_service, seeded):
    results = await search_service.search("question 3", top_k=3)

    assert results[0].ref_id == "q-3"
    assert results[0].rank == 1
    assert results[0].score == pytest.approx(1.0, abs=1e-5)


@pytest.mark.asyncio
async def test_results_are_bounded_and_ordered(search_service, seeded):
    results = await search_service.search("question 5", top_k=3)

    assert len(results) == 3
    assert [result.rank for result in results] == [1, 2, 3]
    scores = [result.score for result in results]
    assert scores == sorted(scores, reverse=True)


@pytest.mark.asyncio
async def test_default_top_k(search_service, seeded):
    results = await search_service.search("question 1", top_k=None)

    assert len(results) == DEFAULT_TOP_K


@pytest.mark.asyncio
async def test_kind_restricts_results(search_service, seeded):
    questions = await search_service.search("question 0", top_k=10)
    topics = await search_service.search("question 0", top_k=10, kind="topic")

    assert all(result.kind == "question" for result in questions)
    assert [result.ref_id for result in topics] == ["t-0"]


@pytest.mark.asyncio
async def test_payload_filters(search_service, seeded):
    results = await search_service.search("question 6", top_k=10, filters={"subject_id": "s-1"})

    assert {result.ref_id for result in results} == {"q-0", "q-1", "q-2", "q-3"}


@pytest.mark.asyncio
async def test_equal_scores_are_ordered_by_ref_id(search_service, vector_db, vector_for):
    shared = vector_for("same content")
    await vector_db.upsert_vectors(
        [
            ("question", "ref-b", shared, None),
            ("question", "ref-a", shared, None),
        ]
    )

    results = await search_service.search("same content", top_k=2)

    assert [result.ref_id for result in results] == ["ref-a", "ref-b"]


@pytest.mark.asyncio
@pytest.mark.parametrize("top_k", [0, -3, True, 2.5])
async def test_invalid_top_k_is_rejected(search_service, embedding_server, top_k):
    with pytest.raises(ValidationError):
        await search_service.search("question 1", top_k=top_k)
    assert embedding_server.calls == []


@pytest.mark.asyncio
async def test_blank_query_is_rejected(search_service):
    with pytest.raises(ValidationError):
        await search_service.search("   ")
