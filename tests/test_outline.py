import pytest

from bitbybit.schemas.outline import OutlineNode, parse_outline
from bitbybit.services.structure.outline import normalize_outline


def node(title, page=None, *children):
    return {"title": title, "pageNumber": page, "children": list(children)}


def flatten(groups):
    return [entry.title for group in groups for entry in group.sections]


def leaf_titles(nodes):
    titles = []
    stack = list(reversed(nodes))
    while stack:
        current = stack.pop()
        if current.is_leaf:
            titles.append(current.title)
        else:
            stack.extend(reversed(current.children))
    return titles


def test_leaf_becomes_standalone_chapter():
    groups = normalize_outline(parse_outline([node("Preface", 1), node("Chapter 1", 3)]))

    assert [g.chapter_title for g in groups] == ["Preface", "Chapter 1"]
    assert [[e.title for e in g.sections] for g in groups] == [["Preface"], ["Chapter 1"]]
    assert groups[1].sections[0].page_number == 3


def test_node_with_leaf_children_is_chapter():
    outline = parse_outline([node("Ch1", 1, node("S1", 1), node("S2", 5))])
    groups = normalize_outline(outline)

    assert len(groups) == 1
    assert groups[0].chapter_title == "Ch1"
    assert [(e.title, e.page_number) for e in groups[0].sections] == [("S1", 1), ("S2", 5)]


def test_grouping_levels_become_title_prefixes():
    outline = parse_outline(
        [
            node(
                "Part I",
                1,
                node("Intro", 1),
                node("Chapter 1", 2, node("1.1", 2), node("1.2", 4)),
                node("Chapter 2", 6, node("2.1", 6)),
            ),
            node("Part II", 10, node("Chapter 3", 10, node("Deep", 10, node("3.1.1", 10)))),
        ]
    )
    groups = normalize_outline(outline)

    assert [g.chapter_title for g in groups] == [
        "Part I",
        "Part I > Chapter 1",
        "Part I > Chapter 2",
        "Part II > Chapter 3 > Deep",
    ]
    assert flatten(groups) == ["Intro", "1.1", "1.2", "2.1", "3.1.1"]


def test_interleaved_leaves_keep_document_order():
    outline = parse_outline(
        [
            node(
                "Part",
                None,
                node("Chapter A", 1, node("A.1", 1)),
                node("Interlude", 5),
                node("Chapter B", 6, node("B.1", 6)),
                node("Coda", 9),
            )
        ]
    )
    groups = normalize_outline(outline)

    assert flatten(groups) == leaf_titles(outline) == ["A.1", "Interlude", "B.1", "Coda"]
    assert [g.chapter_title for g in groups] == ["Part > Chapter A", "Part", "Part > Chapter B", "Part"]


@pytest.mark.parametrize(
    "outline",
    [
        [node("Only", 1)],
        [node("A", 1, node("a1", 1), node("a2", 2)), node("B", 3), node("C", 4, node("c", 4, node("c1", 4)))],
        [node("P", None, node("Q", None, node("R", None, node("S", None, node("leaf", 7)))))],
        [node("X", 1, node("x1", 1), node("Y", 2, node("y1", 2)), node("x2", 3)), node("Z", 4)],
    ],
)
def test_every_leaf_appears_once_in_document_order(outline):
    parsed = parse_outline(outline)

    assert flatten(normalize_outline(parsed)) == leaf_titles(parsed)


def test_normalize_does_not_mutate_input():
    parsed = parse_outline([node("Ch", 1, node("S", 1))])
    before = parsed[0].model_dump()

    normalize_outline(parsed)

    assert parsed[0].model_dump() == before


def test_missing_or_empty_outline_is_none():
    assert parse_outline(None) is None
    assert parse_outline([]) is None


@pytest.mark.parametrize("raw, expected", [(3, 3), ("7", 7), (2.0, 2), (0, None), (-4, None), ("abc", None), (1.5, None), (True, None), (None, None)])
def test_page_anchor_normalization(raw, expected):
    assert OutlineNode.model_validate({"title": "x", "pageNumber": raw}).page_number == expected


def test_titles_are_cleaned():
    parsed = parse_outline([{"title": "  Chapter\n  One ", "children": None}, {"title": "   "}])

    assert parsed[0].title == "Chapter One"
    assert parsed[0].children == []
    assert parsed[1].title == "Untitled"


def test_depth_guard_rejects_runaway_nesting():
    deep = node("leaf", 1)
    for level in range(10):
        deep = node(f"level {level}", 1, deep)

    assert parse_outline([deep], max_depth=11) is not None
    with pytest.raises(ValueError):
        parse_outline([deep], max_depth=10)


def test_non_list_outline_rejected():
    with pytest.raises(ValueError):
        parse_outline({"title": "not a list"})
