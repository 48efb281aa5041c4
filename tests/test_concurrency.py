"""Id assignment and aggregate consistency under concurrent writers."""

from concurrent.futures import ThreadPoolExecutor

from tchouf.domain import NewBusiness, NewReview, NewUser

WORKERS = 8


def test_concurrent_user_creates_get_distinct_ids(repository):
    def create(n):
        return repository.create_user(NewUser(uid=f"u{n}", email=f"u{n}@example.com")).id

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        ids = list(pool.map(create, range(40)))

    assert len(set(ids)) == 40
    assert sorted(ids) == list(range(min(ids), min(ids) + 40))


def test_concurrent_business_creates_get_distinct_ids(repository, make_user):
    owner = make_user()

    def create(n):
        return repository.create_business(
            NewBusiness(name=f"Shop {n}", category="shop", city="Oran", address="x", created_by=owner.id)
        ).id

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        ids = list(pool.map(create, range(30)))

    assert len(set(ids)) == 30


def test_concurrent_reviews_keep_aggregate_exact(app, repository, make_user, make_business):
    business = make_business()
    users = [make_user() for _ in range(20)]
    ratings = [(i % 5) + 1 for i in range(20)]

    def review(pair):
        user, rating = pair
        return app.reviews.create_review(
            NewReview(business_id=business.id, user_id=user.id, rating=rating)
        )

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        list(pool.map(review, zip(users, ratings)))

    stored = repository.get_business(business.id)
    assert stored.review_count == 20
    assert stored.avg_rating == sum(ratings) / 20
