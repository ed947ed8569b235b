"""Unit tests for rating aggregation and the public listing."""
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from common.config import get_settings
from common.errors import NotFoundError, ValidationError
from common.models import ProviderRatingSummary, Review, ReviewCategory, RoleEnum
from services.reviews import aggregator


@pytest.fixture()
def provider(make_user):
    return make_user(RoleEnum.PROVIDER)


@pytest.fixture()
def add_review(db_session, make_user, make_booking, provider):
    """Insert a review row directly, bypassing the manager's side effects."""
    base_time = datetime(2026, 1, 1, 12, 0)
    counter = iter(range(1000))

    def factory(rating, visible=True, reported=False, **categories):
        n = next(counter)
        booking = make_booking(make_user(), provider)
        review = Review(
            booking_id=booking.id,
            client_id=booking.client_id,
            provider_id=provider.id,
            profile_id=booking.profile_id,
            rating=rating,
            is_verified=True,
            is_visible=visible,
            reported=reported,
            report_reason="Spam" if reported else None,
            created_at=base_time + timedelta(minutes=n),
            **categories,
        )
        db_session.add(review)
        db_session.commit()
        db_session.refresh(review)
        return review

    return factory


class TestRecompute:
    """Test rebuilding the stored provider summary."""

    def test_no_reviews_gives_null_average(self, db_session, provider):
        summary = aggregator.recompute_provider_rating(db_session, provider.id)

        assert summary.average_rating is None
        assert summary.review_count == 0
        assert summary.category_averages == {}

    def test_average_is_rounded_half_up(self, db_session, provider, add_review):
        for rating in (5, 4, 4, 4):
            add_review(rating)

        summary = aggregator.recompute_provider_rating(db_session, provider.id)

        # 17 / 4 = 4.25
        assert summary.average_rating == 4.3
        assert summary.review_count == 4

    def test_hidden_reviews_are_excluded(self, db_session, provider, add_review):
        add_review(5)
        add_review(1, visible=False)

        summary = aggregator.recompute_provider_rating(db_session, provider.id)

        assert summary.average_rating == 5.0
        assert summary.review_count == 1

    def test_reported_but_visible_reviews_still_count(self, db_session, provider, add_review):
        add_review(4)
        add_review(2, reported=True)

        summary = aggregator.recompute_provider_rating(db_session, provider.id)

        assert summary.review_count == 2
        assert summary.average_rating == 3.0

    def test_category_averages_skip_unrated(self, db_session, provider, add_review):
        add_review(5, punctuality=5, communication=4)
        add_review(3, punctuality=2)
        add_review(4)

        summary = aggregator.recompute_provider_rating(db_session, provider.id)

        assert summary.category_averages == {
            ReviewCategory.PUNCTUALITY: 3.5,
            ReviewCategory.COMMUNICATION: 4.0,
        }
        assert summary.average_rating == 4.0

    def test_recompute_is_idempotent(self, db_session, provider, add_review):
        add_review(5, overall=4)
        add_review(2, overall=3)

        first = aggregator.recompute_provider_rating(db_session, provider.id)
        second = aggregator.recompute_provider_rating(db_session, provider.id)

        assert first == second
        assert db_session.query(ProviderRatingSummary).count() == 1

    def test_stored_row_matches_summary(self, db_session, provider, add_review):
        add_review(4, professionalism=5)

        aggregator.recompute_provider_rating(db_session, provider.id)

        row = db_session.get(ProviderRatingSummary, provider.id)
        assert row.average_rating == 4.0
        assert row.review_count == 1
        assert row.category_averages == {ReviewCategory.PROFESSIONALISM: 5.0}
        assert row.punctuality_average is None

    def test_failed_refresh_keeps_previous_summary(self, db_session, provider, add_review, monkeypatch):
        add_review(5)
        aggregator.recompute_provider_rating(db_session, provider.id)
        add_review(1)

        def broken_store(db, summary):
            raise OperationalError("UPDATE provider_rating_summaries", {}, Exception("database is locked"))

        monkeypatch.setattr(aggregator, "_store", broken_store)

        assert aggregator.refresh_provider_rating(db_session, provider.id) is None
        db_session.expire_all()
        row = db_session.get(ProviderRatingSummary, provider.id)
        assert row.average_rating == 5.0
        assert row.review_count == 1


class TestRatingSummaryLookup:
    """Test reading the summary."""

    def test_missing_row_is_computed_on_demand(self, db_session, provider, add_review):
        add_review(3)

        summary = aggregator.get_provider_rating_summary(db_session, provider.id)

        assert summary.average_rating == 3.0
        assert db_session.get(ProviderRatingSummary, provider.id) is not None

    def test_recompute_invalidates_cached_summary(self, db_session, provider, add_review):
        add_review(3)
        assert aggregator.get_provider_rating_summary(db_session, provider.id).review_count == 1

        add_review(5)
        aggregator.recompute_provider_rating(db_session, provider.id)

        summary = aggregator.get_provider_rating_summary(db_session, provider.id)
        assert summary.review_count == 2
        assert summary.average_rating == 4.0

    def test_unknown_provider(self, db_session):
        with pytest.raises(NotFoundError):
            aggregator.get_provider_rating_summary(db_session, 404)

    def test_client_is_not_a_provider(self, db_session, make_user):
        client = make_user()

        with pytest.raises(NotFoundError):
            aggregator.get_provider_rating_summary(db_session, client.id)


class TestVisibleReviews:
    """Test the paged public listing."""

    def test_most_recent_first(self, db_session, provider, add_review):
        older = add_review(4)
        newer = add_review(5)

        items, total = aggregator.get_visible_reviews(db_session, provider.id)

        assert [review.id for review in items] == [newer.id, older.id]
        assert total == 2

    def test_hidden_reviews_are_not_listed(self, db_session, provider, add_review):
        shown = add_review(4)
        add_review(1, visible=False)

        items, total = aggregator.get_visible_reviews(db_session, provider.id)

        assert [review.id for review in items] == [shown.id]
        assert total == 1

    def test_reported_reviews_listed_by_default(self, db_session, provider, add_review):
        add_review(4, reported=True)

        items, _ = aggregator.get_visible_reviews(db_session, provider.id)

        assert len(items) == 1

    def test_reported_reviews_hidden_when_configured(self, db_session, provider, add_review, monkeypatch):
        monkeypatch.setattr(get_settings(), "hide_reported_reviews", True)
        add_review(4, reported=True)
        kept = add_review(5)

        items, total = aggregator.get_visible_reviews(db_session, provider.id)

        assert [review.id for review in items] == [kept.id]
        assert total == 1

    def test_pagination(self, db_session, provider, add_review):
        reviews = [add_review(4) for _ in range(5)]

        first_page, total = aggregator.get_visible_reviews(db_session, provider.id, page=1, limit=2)
        last_page, _ = aggregator.get_visible_reviews(db_session, provider.id, page=3, limit=2)

        assert total == 5
        assert [review.id for review in first_page] == [reviews[4].id, reviews[3].id]
        assert [review.id for review in last_page] == [reviews[0].id]

    def test_page_size_is_capped(self):
        settings = get_settings()

        assert aggregator.page_size() == settings.default_page_size
        assert aggregator.page_size(10_000) == settings.max_page_size

    @pytest.mark.parametrize("page, limit", [(0, None), (1, 0), (-2, 5)])
    def test_invalid_paging(self, db_session, provider, page, limit):
        with pytest.raises(ValidationError):
            aggregator.get_visible_reviews(db_session, provider.id, page=page, limit=limit)

    def test_unknown_provider(self, db_session):
        with pytest.raises(NotFoundError):
            aggregator.get_visible_reviews(db_session, 404)
