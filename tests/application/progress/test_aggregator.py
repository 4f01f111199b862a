from datetime import datetime, timedelta, timezone

from flashsync.application.progress import aggregator
from flashsync.domain.models import CardSetProgress, RecallState


def _reviewed(now, **overrides):
    fields = dict(
        total_reviews=1,
        repetitions=1,
        interval=1,
        last_review_date=now.replace(hour=0),
        next_review_date=now.replace(hour=0) + timedelta(days=1),
        average_quality=4.0,
    )
    fields.update(overrides)
    return RecallState(**fields)


def test_fold_two_of_three_reviewed(make_card, now):
    yesterday = now.replace(hour=0) - timedelta(days=1)
    cards = [
        make_card("c1", total_reviews=1, last_review_date=yesterday),
        make_card("c2"),
        make_card("c3"),
    ]
    progress = aggregator.fold({"c2": _reviewed(now)}, cards, "set-1", now=now)

    assert progress.total_cards == 3
    assert progress.reviewed_cards == 2
    assert progress.progress_percentage == 67
    assert progress.reviewed_today == 1
    assert progress.card_set_id == "set-1"


def test_fold_with_empty_pending_reflects_prior_state(make_card, now):
    cards = [make_card("c1", total_reviews=2), make_card("c2")]
    progress = aggregator.fold({}, cards, "set-1", now=now)
    assert progress.reviewed_cards == 1
    assert progress.progress_percentage == 50


def test_fold_counts_mastered_and_need_practice(make_card, now):
    cards = [make_card("c1"), make_card("c2"), make_card("c3")]
    pending = {
        "c1": _reviewed(now, easiness_factor=2.5, interval=21),
        "c2": _reviewed(now, easiness_factor=2.5, interval=15),
        "c3": _reviewed(now, easiness_factor=2.4, interval=30),
    }
    progress = aggregator.fold(pending, cards, "set-1", now=now)
    assert progress.mastered_cards == 1
    assert progress.need_practice_cards == 2


def test_fold_ignores_unknown_card_ids(make_card, now):
    cards = [make_card("c1")]
    progress = aggregator.fold({"ghost": _reviewed(now)}, cards, "set-1", now=now)
    assert progress.reviewed_cards == 0
    assert progress.total_cards == 1


def test_fold_rounds_half_up(make_card, now):
    cards = [make_card(f"c{i}") for i in range(8)]
    progress = aggregator.fold({"c0": _reviewed(now)}, cards, "set-1", now=now)
    # 12.5% rounds to 13, not to the even 12
    assert progress.progress_percentage == 13


def test_fold_with_no_cards(now):
    progress = aggregator.fold({}, [], "set-1", now=now)
    assert progress.total_cards == 0
    assert progress.progress_percentage == 0


def test_fold_keeps_previous_created_at(make_card, now):
    created = datetime(2025, 1, 1, tzinfo=timezone.utc)
    previous = CardSetProgress(card_set_id="set-1", total_cards=1, created_at=created)
    progress = aggregator.fold({}, [make_card("c1")], "set-1", previous=previous, now=now)
    assert progress.created_at == created
    assert progress.updated_at == now


def test_apply_pending_keeps_card_content(make_card, now):
    card = make_card("c1")
    (updated,) = aggregator.apply_pending([card], {"c1": _reviewed(now)})
    assert updated.front == card.front
    assert updated.is_new is False
    assert updated.recall.total_reviews == 1


def test_create_progress_summary(now):
    before = CardSetProgress(card_set_id="s", total_cards=4, reviewed_cards=1, progress_percentage=25)
    after = CardSetProgress(card_set_id="s", total_cards=4, reviewed_cards=3, progress_percentage=75)
    summary = aggregator.create_progress_summary(before, after, {"a": None, "b": None})
    assert "2 cards reviewed" in summary
    assert "2 new cards learned" in summary
    assert "50%" in summary
