from datetime import datetime, timedelta, timezone

import pytest

from flashsync.application import scheduler
from flashsync.domain.models import FlashcardContent, FlashcardData, Quality, RecallState


def test_easiness_factor_stays_in_bounds():
    for start in (1.3, 1.5, 2.0, 2.36, 2.5):
        for quality in Quality:
            result = scheduler.compute(RecallState(easiness_factor=start), quality)
            assert 1.3 <= result.easiness_factor <= 2.5


def test_repeated_hard_clamps_at_minimum(now):
    state = RecallState()
    for _ in range(10):
        state = scheduler.compute(state, Quality.HARD, now).to_recall_state()
    assert state.easiness_factor == 1.3


def test_hard_lowers_easiness_factor(now):
    result = scheduler.compute(RecallState(), Quality.HARD, now)
    assert result.easiness_factor == pytest.approx(2.18)


def test_good_keeps_easiness_factor(now):
    result = scheduler.compute(RecallState(), Quality.GOOD, now)
    assert result.easiness_factor == pytest.approx(2.5)


@pytest.mark.parametrize("quality", [Quality.SKIP, Quality.HARD])
def test_incorrect_resets_repetitions_and_interval(quality, now):
    current = RecallState(repetitions=4, interval=38, correct_streak=4, total_reviews=4)
    result = scheduler.compute(current, quality, now)
    assert result.repetitions == 0
    assert result.interval == 1
    assert result.correct_streak == 0
    assert result.should_repeat_today is True


def test_interval_sequence_for_consecutive_correct_answers(now):
    state = RecallState()
    assert state.interval == 1
    intervals = []
    for _ in range(4):
        result = scheduler.compute(state, Quality.EASY, now)
        intervals.append(result.interval)
        state = result.to_recall_state()
    assert intervals == [6, 15, 38, 95]
    assert state.repetitions == 4
    assert state.correct_streak == 4


def test_interval_for_uses_half_up_rounding():
    assert scheduler.interval_for(0, 2.5) == 1
    assert scheduler.interval_for(1, 2.5) == 6
    assert scheduler.interval_for(2, 2.5) == 15
    # 15 * 2.5 = 37.5 rounds up, not to even
    assert scheduler.interval_for(3, 2.5) == 38


def test_average_quality(now):
    first = scheduler.compute(RecallState(), Quality.GOOD, now)
    assert first.average_quality == 4.0
    second = scheduler.compute(first.to_recall_state(), Quality.EASY, now)
    assert second.average_quality == 4.5
    assert second.total_reviews == 2


def test_dates_are_normalized_to_day(now):
    result = scheduler.compute(RecallState(repetitions=1), Quality.GOOD, now)
    midnight = datetime(2026, 3, 10, tzinfo=timezone.utc)
    assert result.last_review_date == midnight
    assert result.next_review_date == midnight + timedelta(days=15)


def test_invalid_quality_rejected():
    with pytest.raises(ValueError):
        scheduler.compute(RecallState(), 3)


def test_review_card_marks_card_seen(make_card, now):
    card = make_card("c1")
    updated = scheduler.review_card(card, Quality.GOOD, now)
    assert updated.is_new is False
    assert updated.recall.total_reviews == 1
    assert card.recall.total_reviews == 0


def test_initial_recall_state_is_due_but_not_reviewed_today(now):
    state = scheduler.initial_recall_state(now)
    assert state.next_review_date == now.replace(hour=0)
    assert state.last_review_date == now.replace(hour=0) - timedelta(days=1)
    assert state.total_reviews == 0


def test_cards_from_seed(now):
    data = [
        FlashcardData(id="a", front=FlashcardContent(title="A"), back=FlashcardContent(title="1")),
        FlashcardData(id="b", front=FlashcardContent(title="B"), back=FlashcardContent(title="2")),
    ]
    cards = scheduler.cards_from_seed(data, "set-x", now)
    assert [c.id for c in cards] == ["a", "b"]
    assert all(c.card_set_id == "set-x" and c.is_new for c in cards)
    assert all(scheduler.is_due(c, now) for c in cards)


def test_due_cards_and_priority(make_card, now):
    today = now.replace(hour=0)
    overdue = make_card("overdue", next_review_date=today - timedelta(days=3))
    due_hard = make_card("due-hard", next_review_date=today, easiness_factor=1.5)
    due_easy = make_card("due-easy", next_review_date=today, easiness_factor=2.5)
    later = make_card("later", next_review_date=today + timedelta(days=2))

    due = scheduler.get_due_cards([later, due_easy, overdue, due_hard], now)
    assert {c.id for c in due} == {"overdue", "due-hard", "due-easy"}

    ordered = scheduler.sort_by_priority(due, now)
    assert [c.id for c in ordered] == ["overdue", "due-hard", "due-easy"]


def test_calculate_review_stats(make_card, now):
    today = now.replace(hour=0)
    cards = [
        make_card("a", next_review_date=today - timedelta(days=1), easiness_factor=1.5),
        make_card("b", repetitions=3, easiness_factor=2.5, total_reviews=3, average_quality=4.0,
                  next_review_date=today + timedelta(days=10)),
        make_card("c"),
    ]
    stats = scheduler.calculate_review_stats(cards, now)
    assert stats.total_cards == 3
    assert stats.due_cards == 2
    assert stats.overdue_cards == 1
    assert stats.mastered_cards == 1
    assert stats.difficult_cards == 1
    assert stats.total_reviews == 3
    assert stats.average_quality == 4.0


def test_calculate_review_stats_empty():
    assert scheduler.calculate_review_stats([]).total_cards == 0


def test_first_correct_answer_schedules_six_days(now):
    result = scheduler.compute(RecallState(), Quality.GOOD, now)
    assert (result.repetitions, result.interval) == (1, 6)
    assert result.next_review_date == now.replace(hour=0) + timedelta(days=6)
