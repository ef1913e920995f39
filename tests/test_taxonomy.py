import pytest
from bson import ObjectId

from errors import NotFound, ValidationError
from services.taxonomy_service import resolve_chapter, resolve_topic
from utils.schema import ExtractedMetadata


def chapter(name_en, name_bn="", chapter_no=1, english=(), bangla=(), banglish=()):
    return {
        "_id": ObjectId(),
        "chapterNo": chapter_no,
        "name": {"en": name_en, "bn": name_bn},
        "aliases": {
            "english": list(english),
            "bangla": list(bangla),
            "banglish": list(banglish),
        },
    }


def test_english_name_matches_case_insensitively():
    vector = chapter("Vector", chapter_no=1)
    optics = chapter("Optics", chapter_no=2)

    assert resolve_chapter("vector", [vector, optics]) == str(vector["_id"])
    assert resolve_chapter("  OPTICS ", [vector, optics]) == str(optics["_id"])


def test_unknown_name_is_unassigned():
    chapters = [chapter("Vector"), chapter("Optics", chapter_no=2)]

    assert resolve_chapter("Thermodynamics", chapters) is None


@pytest.mark.parametrize("query", [None, "", "   "])
def test_empty_query_is_unassigned(query):
    assert resolve_chapter(query, [chapter("Vector")]) is None


def test_bangla_name_matches_exactly():
    vector = chapter("Vector", "ভেক্টর")

    assert resolve_chapter("ভেক্টর", [vector]) == str(vector["_id"])


def test_aliases_match_after_names():
    vector = chapter("Vector", english=["Vectors"], banglish=["vektor"], bangla=["ভেক্টর রাশি"])

    assert resolve_chapter("vectors", [vector]) == str(vector["_id"])
    assert resolve_chapter("VEKTOR", [vector]) == str(vector["_id"])
    assert resolve_chapter("ভেক্টর রাশি", [vector]) == str(vector["_id"])


def test_name_match_beats_earlier_alias_match():
    aliased = chapter("Newtonian Mechanics", chapter_no=1, english=["Dynamics"])
    named = chapter("Dynamics", chapter_no=5)

    assert resolve_chapter("dynamics", [aliased, named]) == str(named["_id"])


def test_duplicate_names_resolve_to_lowest_chapter_number():
    later = chapter("Waves", chapter_no=8)
    earlier = chapter("Waves", chapter_no=7)

    assert resolve_chapter("waves", [later, earlier]) == str(earlier["_id"])
    assert resolve_chapter("waves", [earlier, later]) == str(earlier["_id"])


def test_topics_are_ordered_by_order_field():
    second = {"_id": ObjectId(), "order": 2, "name": {"en": "Work", "bn": ""}}
    first = {"_id": ObjectId(), "order": 1, "name": {"en": "Work", "bn": ""}}

    assert resolve_topic("work", [second, first]) == str(first["_id"])


@pytest.mark.asyncio
async def test_list_chapters_is_sorted_by_chapter_number(taxonomy, taxonomy_ids):
    chapters = await taxonomy.list_chapters(taxonomy_ids["physics"])

    assert [doc["chapterNo"] for doc in chapters] == [1, 2, 3]


@pytest.mark.asyncio
async def test_list_topics_filters_on_subject_and_chapter(taxonomy, taxonomy_ids):
    topics = await taxonomy.list_topics(taxonomy_ids["physics"], taxonomy_ids["vector"])
    assert [doc["name"]["en"] for doc in topics] == ["Vector addition", "Scalar product"]

    assert await taxonomy.list_topics(taxonomy_ids["chemistry"], taxonomy_ids["vector"]) == []


@pytest.mark.asyncio
async def test_get_subject_errors(taxonomy):
    with pytest.raises(NotFound):
        await taxonomy.get_subject(str(ObjectId()))
    with pytest.raises(ValidationError):
        await taxonomy.get_subject("not-an-id")


@pytest.mark.asyncio
async def test_resolve_extracted_metadata(taxonomy, taxonomy_ids):
    extracted = ExtractedMetadata(
        mainChapter="vector",
        partChapters={"a": "Vectors", "b": "Thermodynamics", "c": "dynamics"},
        partTopics={"a": ["Dot product", "Unknown topic"], "b": ["vector addition"]},
    )

    resolved = await taxonomy.resolve_extracted_metadata(taxonomy_ids["physics"], extracted)

    assert resolved.main_chapter == taxonomy_ids["vector"]
    assert resolved.part_chapters == {
        "a": taxonomy_ids["vector"],
        "b": None,
        "c": taxonomy_ids["dynamics"],
        "d": None,
    }
    assert resolved.part_topics["a"] == [taxonomy_ids["scalar_product"]]
    # b has no chapter of its own, so its topics come from the main chapter
    assert resolved.part_topics["b"] == [taxonomy_ids["vector_addition"]]
    assert resolved.part_topics["d"] == []
