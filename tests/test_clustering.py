"""Tests for heuristic clustering and batched LLM preprocessing."""

import pytest

from alteris_briefing.clustering.heuristic import (
    UNCLUSTERED_TOPIC_ID,
    TopicClusterer,
    build_heuristic_topics,
    keyword_similarity,
    normalize_subject,
)
from alteris_briefing.clustering.preprocess import (
    FALLBACK_LABEL,
    BatchPreprocessor,
    batch_to_topics,
    build_batch_prompt,
    format_age,
    parse_batch_response,
    presort_items,
    split_batches,
)

from conftest import NOW, clusters_reply, make_item


# ── Heuristic ────────────────────────────────────────────────────

@pytest.mark.parametrize("raw,expected", [
    ("Re: Budget", "Budget"),
    ("RE: Fwd: [ext] Budget  review", "Budget review"),
    ("FW: re: Budget", "Budget"),
    ("Budget", "Budget"),
])
def test_normalize_subject(raw, expected):
    assert normalize_subject(raw) == expected


def test_keyword_similarity_empty_sets():
    assert keyword_similarity(set(), set()) == 1.0
    assert keyword_similarity({"a"}, set()) == 0.0


def test_thread_ids_cluster_first():
    items = [
        make_item("1", subject="Kickoff", thread_id="th"),
        make_item("2", subject="Different words entirely", thread_id="th"),
        make_item("3", subject="Unrelated lunch order"),
    ]
    result = TopicClusterer().cluster(items)
    assert result.cluster_count == 1
    assert set(result.clusters[0].email_ids) == {"1", "2"}
    assert result.clusters[0].thread_ids == ["th"]
    assert result.unclustered_ids == ["3"]


def test_reply_prefixes_group_by_subject():
    items = [
        make_item("1", subject="Budget review"),
        make_item("2", subject="Re: Budget review"),
        make_item("3", subject="Fwd: Budget review"),
    ]
    result = TopicClusterer().cluster(items)
    assert result.cluster_count == 1
    assert result.clusters[0].topic == "Budget review"
    assert result.cluster_for("2") is result.clusters[0]


def test_similar_subjects_merge():
    items = [
        make_item("1", subject="Budget review meeting"),
        make_item("2", subject="Budget review notes"),
    ]
    # {budget, review, meeting} vs {budget, review, notes}: 2/4 = 0.5
    assert TopicClusterer(similarity_threshold=0.5).cluster(items).cluster_count == 1
    assert TopicClusterer(similarity_threshold=0.6).cluster(items).cluster_count == 0


def test_build_heuristic_topics_orders_flagged_first():
    items = [
        make_item("1", subject="Lunch menu"),
        make_item("2", subject="Re: Lunch menu"),
        make_item("3", subject="URGENT outage in prod"),
        make_item("4", subject="Re: URGENT outage in prod"),
    ]
    topics, scores = build_heuristic_topics(items)
    assert len(topics) == 2
    assert {r.email_id for r in topics[0].items} == {"3", "4"}
    assert topics[0].flagged_count == 2
    assert set(scores) == {"1", "2", "3", "4"}


def test_build_heuristic_topics_puts_singletons_in_other_messages():
    items = [make_item("1", subject="Alpha"), make_item("2", subject="Bravo charlie")]
    topics, _ = build_heuristic_topics(items)
    assert [t.id for t in topics] == [UNCLUSTERED_TOPIC_ID]
    assert topics[0].size == 2


def test_build_heuristic_topics_respects_flag_threshold():
    items = [make_item("1", subject="Quick question")]
    _, strict = build_heuristic_topics(items, flag_threshold=0.0)
    assert strict["1"].is_flagged is True
    _, default = build_heuristic_topics(items)
    assert default["1"].is_flagged is False


def test_build_heuristic_topics_caps_topic_count():
    items = []
    for n, word in enumerate(["alpha", "bravo", "charlie"]):
        items.append(make_item(f"{n}a", subject=f"{word} plan"))
        items.append(make_item(f"{n}b", subject=f"Re: {word} plan"))
    topics, _ = build_heuristic_topics(items, max_topics=2)
    assert len(topics) == 2
    everything, _ = build_heuristic_topics(items, max_topics=None)
    assert len(everything) == 3


def test_build_heuristic_topics_empty():
    assert build_heuristic_topics([]) == ([], {})


# ── Presort / batching ───────────────────────────────────────────

def test_presort_vip_then_replied_then_newest():
    items = [
        make_item("old", minutes_ago=300),
        make_item("new", minutes_ago=5),
        make_item("replied", minutes_ago=600, has_been_replied_to=True),
        make_item("vip", sender="boss@example.com", minutes_ago=900),
    ]
    ordered = presort_items(items, ["BOSS@example.com"])
    assert [i.id for i in ordered] == ["vip", "replied", "new", "old"]


def test_split_batches():
    items = [make_item(str(i)) for i in range(30)]
    batches = split_batches(items, 25)
    assert [len(b) for b in batches] == [25, 5]
    with pytest.raises(ValueError):
        split_batches(items, 0)


@pytest.mark.parametrize("minutes,label", [(5, "5m ago"), (125, "2h ago"), (60 * 50, "2d ago")])
def test_format_age(minutes, label):
    assert format_age(make_item("1", minutes_ago=minutes).received_at, NOW) == label


def test_batch_prompt_mentions_vips_and_knowledge():
    batch = [make_item("m1", subject="Board deck", snippet="x" * 300)]
    system, user = build_batch_prompt(
        batch, vip_emails=["ceo@example.com"], knowledge_entries=["Phoenix is the Q3 launch"], now=NOW,
    )
    assert "ceo@example.com" in system
    assert "- Phoenix is the Q3 launch" in system
    assert "Process these 1 emails" in system
    assert "id:m1" in user
    assert "x" * 101 not in user


# ── Parsing ──────────────────────────────────────────────────────

def test_parse_fenced_reply():
    batch = [make_item("a"), make_item("b")]
    raw = "```json\n" + clusters_reply(["a", "b"]) + "\n```"
    result = parse_batch_response(raw, batch)
    assert not result.is_fallback
    assert [e.email_id for e in result.emails] == ["a", "b"]
    assert result.clusters[0].label == "Project Phoenix"


def test_parse_strips_thinking_block():
    batch = [make_item("a")]
    raw = "<think>let me see</think>" + clusters_reply(["a"])
    assert not parse_batch_response(raw, batch).is_fallback


def test_parse_repairs_trailing_garbage():
    batch = [make_item("a")]
    raw = clusters_reply(["a"])[:-3]
    result = parse_batch_response(raw, batch)
    assert not result.is_fallback
    assert result.emails[0].email_id == "a"


@pytest.mark.parametrize("raw", ["", "   ", "I cannot help with that", '{"topics": []}'])
def test_unusable_reply_falls_back_to_inbox(raw):
    batch = [make_item("a"), make_item("v", sender="vip@example.com")]
    result = parse_batch_response(raw, batch, vip_emails=["vip@example.com"])
    assert result.is_fallback
    assert result.clusters[0].label == FALLBACK_LABEL
    assert {e.email_id: e.priority for e in result.emails} == {"a": "medium", "v": "high"}


def test_invalid_priority_becomes_medium():
    raw = '{"clusters": [{"label": "", "priority": "URGENT!!", "emails": [{"emailId": 7, "priority": "High"}]}]}'
    result = parse_batch_response(raw, [make_item("7")])
    cluster = result.clusters[0]
    assert cluster.label == FALLBACK_LABEL
    assert cluster.priority == "medium"
    assert cluster.emails[0].email_id == "7"
    assert cluster.emails[0].priority == "high"


# ── Conversion ───────────────────────────────────────────────────

def test_batch_to_topics_covers_every_item_once():
    batch = [make_item("a"), make_item("b"), make_item("c")]
    raw = """{"clusters": [
        {"label": "Launch", "priority": "low", "emails": [{"emailId": "a", "priority": "low"}]},
        {"label": "Legal", "priority": "high", "emails": [
            {"emailId": "b", "priority": "high", "summary": "Contract needs signing"},
            {"emailId": "a", "priority": "high"},
            {"emailId": "ghost", "priority": "high"}
        ]}
    ]}"""
    topics, scores = batch_to_topics(parse_batch_response(raw, batch), batch)

    ids = [r.email_id for t in topics for r in t.items]
    assert sorted(ids) == ["a", "b", "c"]
    assert "ghost" not in scores
    assert [t.label for t in topics] == ["Legal", FALLBACK_LABEL, "Launch"]
    assert topics[0].items[0].summary == "Contract needs signing"
    assert topics[0].items[0].is_flagged
    assert scores["b"].score == pytest.approx(0.9)
    assert topics[1].items[0].email_id == "c"
    assert topics[1].id == "llm-cluster-2"


def test_missing_summary_uses_subject_and_sender():
    batch = [make_item("a", subject="Hello", sender="x@example.com")]
    raw = '{"clusters": [{"label": "L", "emails": [{"emailId": "a"}]}]}'
    topics, _ = batch_to_topics(parse_batch_response(raw, batch), batch)
    assert topics[0].items[0].summary == "Hello from x@example.com"


def test_preprocessor_resolves_only_first_batch(fake_reasoner):
    items = [make_item(f"m{i:02d}", minutes_ago=i) for i in range(30)]
    first_ids = [f"m{i:02d}" for i in range(25)]
    fake_reasoner.complete.return_value = clusters_reply(first_ids)

    result = BatchPreprocessor(fake_reasoner, batch_size=25, clock=lambda: NOW).preprocess(items)

    assert fake_reasoner.complete.call_count == 1
    assert len(result.batches) == 1
    assert len(result.first_batch) == 25
    assert [len(b) for b in result.remaining_batches] == [5]
    assert result.total_fetched == 30


def test_preprocessor_propagates_reasoner_errors(fake_reasoner):
    fake_reasoner.complete.side_effect = RuntimeError("boom")
    with pytest.raises(RuntimeError):
        BatchPreprocessor(fake_reasoner).preprocess_batch([make_item("a")])


def test_preprocessor_empty_batch_skips_reasoner(fake_reasoner):
    result = BatchPreprocessor(fake_reasoner).preprocess_batch([])
    assert result.emails == []
    fake_reasoner.complete.assert_not_called()
