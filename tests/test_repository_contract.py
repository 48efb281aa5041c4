"""Behaviour every Repository backend must share."""

import pytest

from tchouf.domain import (
    ClaimStatus,
    ConstraintViolationError,
    NewClaim,
    NewReview,
    NewUser,
    NotFoundError,
)
from tchouf.infrastructure.persistence import ClaimTransition


# --- Create / get ---

def test_create_business_fills_server_defaults(make_business):
    business = make_business()

    assert business.id > 0
    assert business.slug == "cafe-aroma"
    assert business.avg_rating == 0
    assert business.review_count == 0
    assert business.claimed_by is None
    assert business.verified is False
    assert business.photos == ()
    assert business.created_at.tzinfo is not None


def test_get_returns_stored_entity(repository, make_business):
    business = make_business(photos=["a.jpg", "b.jpg"])

    stored = repository.get_business(business.id)

    assert stored == business
    assert stored.photos == ("a.jpg", "b.jpg")


def test_ids_increase_per_collection(repository, make_user):
    first, second, third = make_user(), make_user(), make_user()
    assert first.id < second.id < third.id


def test_get_missing_business_raises_not_found(repository):
    with pytest.raises(NotFoundError) as excinfo:
        repository.get_business(999)
    assert excinfo.value.kind == "not_found"


@pytest.mark.parametrize("getter", ["get_user", "get_review", "get_claim"])
def test_get_missing_entity_raises_not_found(repository, getter):
    with pytest.raises(NotFoundError):
        getattr(repository, getter)(42)


def test_find_returns_none_when_absent(repository):
    assert repository.find_user_by_uid("nobody") is None
    assert repository.find_user_by_email("nobody@example.com") is None
    assert repository.find_business_by_slug("nowhere") is None
    assert repository.find_user_review(1, 1) is None
    assert repository.find_user_claim(1, 1) is None


# --- Constraints ---

def test_duplicate_uid_is_rejected(repository, make_user):
    make_user(uid="same")
    with pytest.raises(ConstraintViolationError):
        repository.create_user(NewUser(uid="same", email="other@example.com"))


def test_duplicate_email_is_rejected(repository, make_user):
    make_user(email="taken@example.com")
    with pytest.raises(ConstraintViolationError):
        repository.create_user(NewUser(uid="fresh", email="taken@example.com"))


def test_business_with_unknown_creator_is_rejected(make_business):
    with pytest.raises(ConstraintViolationError):
        make_business(created_by=404)


def test_review_for_unknown_business_is_rejected(repository, make_user):
    user = make_user()
    with pytest.raises(ConstraintViolationError):
        repository.create_review(NewReview(business_id=77, user_id=user.id, rating=4))
    assert repository.reviews_for_user(user.id) == []


def test_second_review_by_same_user_is_rejected(repository, make_user, make_business):
    user, business = make_user(), make_business()
    repository.create_review(NewReview(business_id=business.id, user_id=user.id, rating=4))

    with pytest.raises(ConstraintViolationError):
        repository.create_review(NewReview(business_id=business.id, user_id=user.id, rating=2))


def test_second_claim_by_same_user_is_rejected(repository, make_user, make_business):
    user, business = make_user(), make_business()
    repository.create_claim(NewClaim(business_id=business.id, user_id=user.id))

    with pytest.raises(ConstraintViolationError):
        repository.create_claim(NewClaim(business_id=business.id, user_id=user.id))


def test_claims_from_different_users_may_coexist(repository, make_user, make_business):
    business = make_business()
    repository.create_claim(NewClaim(business_id=business.id, user_id=make_user().id))
    repository.create_claim(NewClaim(business_id=business.id, user_id=make_user().id))

    assert len(repository.pending_claims()) == 2


# --- Updates ---

def test_update_merges_fields(repository, make_business):
    business = make_business()

    updated = repository.update_business(business.id, phone="+213555000000", photos=["x.jpg"])

    assert updated.phone == "+213555000000"
    assert updated.photos == ("x.jpg",)
    assert updated.name == business.name
    assert repository.get_business(business.id) == updated


def test_update_missing_entity_raises_not_found(repository):
    with pytest.raises(NotFoundError):
        repository.update_business(123, phone="0")


@pytest.mark.parametrize("field", ["id", "created_at", "no_such_field"])
def test_update_rejects_immutable_and_unknown_fields(repository, make_business, field):
    business = make_business()
    with pytest.raises(ConstraintViolationError):
        repository.update_business(business.id, **{field: 1})


def test_user_identity_fields_are_immutable(repository, make_user):
    user = make_user()
    with pytest.raises(ConstraintViolationError):
        repository.update_user(user.id, email="new@example.com")


def test_update_review_stamps_updated_at(repository, make_user, make_business):
    review = repository.create_review(
        NewReview(business_id=make_business().id, user_id=make_user().id, rating=3)
    )
    assert review.updated_at is None

    updated = repository.update_review(review.id, comment="Better now")

    assert updated.comment == "Better now"
    assert updated.updated_at is not None
    assert updated.updated_at >= review.created_at


def test_delete_review_returns_removed_review(repository, make_user, make_business):
    review = repository.create_review(
        NewReview(business_id=make_business().id, user_id=make_user().id, rating=3)
    )

    deleted = repository.delete_review(review.id)

    assert deleted.id == review.id
    with pytest.raises(NotFoundError):
        repository.get_review(review.id)
    with pytest.raises(NotFoundError):
        repository.delete_review(review.id)


# --- Queries ---

def test_list_businesses_newest_first_with_pagination(repository, make_user, make_business):
    owner = make_user()
    created = [make_business(created_by=owner.id, name=f"Shop {i}") for i in range(5)]

    page = repository.list_businesses(limit=2, offset=1)

    assert [b.id for b in page] == [created[3].id, created[2].id]
    assert len(repository.list_businesses(limit=20)) == 5


def test_search_matches_name_description_city_and_category(repository, make_user, make_business):
    owner = make_user()
    cafe = make_business(created_by=owner.id)
    pizza = make_business(
        created_by=owner.id, name="Pizza Palace", description="The best pizza in town"
    )
    salon = make_business(
        created_by=owner.id, name="Salon de Thé Zohra", category="cafe",
        description="Traditional Algerian tea and sweets", city="Oran",
        address="789 Oak Street, Oran",
    )

    assert [b.id for b in repository.search_businesses("PIZZA")] == [pizza.id]
    assert [b.id for b in repository.search_businesses("coffee")] == [cafe.id]
    assert [b.id for b in repository.search_businesses(city="oran")] == [salon.id]
    assert {b.id for b in repository.search_businesses(category="Restaurant")} == {cafe.id, pizza.id}
    assert repository.search_businesses("tea", city="Algiers") == []
    assert [b.id for b in repository.businesses_by_category("cafe")] == [salon.id]


def test_featured_orders_by_rating_then_review_count(repository, make_user, make_business):
    owner = make_user()
    low = make_business(created_by=owner.id, name="Low")
    high = make_business(created_by=owner.id, name="High")
    busy = make_business(created_by=owner.id, name="Busy")
    repository.update_business(low.id, avg_rating=3.0, review_count=10)
    repository.update_business(high.id, avg_rating=4.5, review_count=2)
    repository.update_business(busy.id, avg_rating=4.5, review_count=8)

    featured = repository.featured_businesses(limit=2)

    assert [b.id for b in featured] == [busy.id, high.id]


def test_businesses_for_user_includes_created_and_claimed(repository, make_user, make_business):
    alice, bob = make_user(), make_user()
    created = make_business(created_by=alice.id, name="Alice's")
    claimed = make_business(created_by=bob.id, name="Bob's")
    repository.update_business(claimed.id, claimed_by=alice.id, verified=True)
    make_business(created_by=bob.id, name="Other")

    assert {b.id for b in repository.businesses_for_user(alice.id)} == {created.id, claimed.id}


def test_find_business_by_slug(repository, make_business):
    business = make_business(name="Salon de Thé Zohra")
    assert repository.find_business_by_slug("salon-de-the-zohra") == business


def test_review_queries(repository, make_user, make_business):
    alice, bob = make_user(), make_user()
    cafe, pizza = make_business(), make_business(name="Pizza Palace")
    first = repository.create_review(NewReview(business_id=cafe.id, user_id=alice.id, rating=5))
    second = repository.create_review(NewReview(business_id=cafe.id, user_id=bob.id, rating=4))
    third = repository.create_review(NewReview(business_id=pizza.id, user_id=alice.id, rating=2))

    assert [r.id for r in repository.reviews_for_business(cafe.id)] == [second.id, first.id]
    assert [r.id for r in repository.reviews_for_user(alice.id)] == [third.id, first.id]
    assert [r.id for r in repository.recent_reviews(limit=2)] == [third.id, second.id]
    assert repository.find_user_review(bob.id, cafe.id) == second


def test_claim_queries(repository, make_user, make_business):
    alice, bob = make_user(), make_user()
    business = make_business()
    claim_a = repository.create_claim(NewClaim(business_id=business.id, user_id=alice.id))
    claim_b = repository.create_claim(
        NewClaim(business_id=business.id, user_id=bob.id, proof_url="proof.pdf")
    )

    assert claim_a.status is ClaimStatus.PENDING
    assert claim_b.proof_url == "proof.pdf"
    assert [c.id for c in repository.claims_for_business(business.id)] == [claim_b.id, claim_a.id]
    assert [c.id for c in repository.claims_for_user(alice.id)] == [claim_a.id]
    assert repository.find_user_claim(bob.id, business.id) == claim_b


# --- Compound operations ---

def test_refresh_business_from_reviews_writes_derived_fields(repository, make_user, make_business):
    business = make_business()
    repository.create_review(NewReview(business_id=business.id, user_id=make_user().id, rating=2))
    seen = []

    def derive(reviews):
        seen.extend(r.rating for r in reviews)
        return {"avg_rating": 2.0, "review_count": len(reviews)}

    refreshed = repository.refresh_business_from_reviews(business.id, derive)

    assert seen == [2]
    assert refreshed.review_count == 1
    assert repository.get_business(business.id).avg_rating == 2.0


def test_transition_claim_applies_both_writes(repository, make_user, make_business):
    user, business = make_user(), make_business()
    claim = repository.create_claim(NewClaim(business_id=business.id, user_id=user.id))

    claim, updated = repository.transition_claim(
        claim.id,
        lambda c, b: ClaimTransition(
            {"status": ClaimStatus.APPROVED}, {"claimed_by": c.user_id, "verified": True}
        ),
    )

    assert claim.status is ClaimStatus.APPROVED
    assert updated.claimed_by == user.id
    assert repository.get_claim(claim.id).status is ClaimStatus.APPROVED
    assert repository.get_business(business.id).verified is True


def test_transition_claim_aborts_when_decide_raises(repository, make_user, make_business):
    user, business = make_user(), make_business()
    claim = repository.create_claim(NewClaim(business_id=business.id, user_id=user.id))

    def decide(claim, business):
        raise ConstraintViolationError("nope")

    with pytest.raises(ConstraintViolationError):
        repository.transition_claim(claim.id, decide)

    assert repository.get_claim(claim.id).status is ClaimStatus.PENDING
    assert repository.get_business(business.id).claimed_by is None


def test_transition_missing_claim_raises_not_found(repository):
    with pytest.raises(NotFoundError):
        repository.transition_claim(5, lambda c, b: ClaimTransition({}))


def test_verified_business_requires_an_owner(repository, make_business):
    business = make_business()

    with pytest.raises(ConstraintViolationError):
        repository.update_business(business.id, verified=True)

    assert repository.get_business(business.id).verified is False


def test_owner_cannot_be_cleared_on_a_verified_business(repository, make_user, make_business):
    owner, business = make_user(), make_business()
    repository.update_business(business.id, claimed_by=owner.id, verified=True)

    with pytest.raises(ConstraintViolationError):
        repository.update_business(business.id, claimed_by=None)

    assert repository.get_business(business.id).claimed_by == owner.id


def test_refresh_cannot_store_an_invalid_business(repository, make_business):
    business = make_business()

    with pytest.raises(ConstraintViolationError):
        repository.refresh_business_from_reviews(business.id, lambda reviews: {"verified": True})

    assert repository.get_business(business.id).verified is False


def test_transition_cannot_verify_without_owner(repository, make_user, make_business):
    user, business = make_user(), make_business()
    claim = repository.create_claim(NewClaim(business_id=business.id, user_id=user.id))

    with pytest.raises(ConstraintViolationError):
        repository.transition_claim(
            claim.id,
            lambda c, b: ClaimTransition({"status": ClaimStatus.APPROVED}, {"verified": True}),
        )

    assert repository.get_claim(claim.id).status is ClaimStatus.PENDING
    assert repository.get_business(business.id).verified is False


# --- Review writes with a derived refresh ---

def _count_reviews(reviews):
    return {"review_count": len(reviews)}


def _failing_derive(reviews):
    raise ConstraintViolationError("refresh failed")


def test_create_review_refreshes_business_in_same_write(repository, make_user, make_business):
    business = make_business()

    repository.create_review(
        NewReview(business_id=business.id, user_id=make_user().id, rating=4),
        derive=_count_reviews,
    )

    assert repository.get_business(business.id).review_count == 1


def test_failed_refresh_rolls_back_review_create(repository, make_user, make_business):
    user, business = make_user(), make_business()

    with pytest.raises(ConstraintViolationError):
        repository.create_review(
            NewReview(business_id=business.id, user_id=user.id, rating=4),
            derive=_failing_derive,
        )

    assert repository.reviews_for_business(business.id) == []
    assert repository.find_user_review(user.id, business.id) is None
    assert repository.get_business(business.id).review_count == 0


def test_failed_refresh_rolls_back_review_update(repository, make_user, make_business):
    business = make_business()
    review = repository.create_review(
        NewReview(business_id=business.id, user_id=make_user().id, rating=2)
    )

    with pytest.raises(ConstraintViolationError):
        repository.update_review(review.id, rating=5, derive=_failing_derive)

    assert repository.get_review(review.id).rating == 2


def test_failed_refresh_rolls_back_review_delete(repository, make_user, make_business):
    business = make_business()
    review = repository.create_review(
        NewReview(business_id=business.id, user_id=make_user().id, rating=2),
        derive=_count_reviews,
    )

    with pytest.raises(ConstraintViolationError):
        repository.delete_review(review.id, derive=_failing_derive)

    assert repository.get_review(review.id) == review
    assert repository.get_business(business.id).review_count == 1


def test_derive_sees_the_review_set_after_the_write(repository, make_user, make_business):
    business = make_business()
    first = repository.create_review(
        NewReview(business_id=business.id, user_id=make_user().id, rating=1)
    )
    second = repository.create_review(
        NewReview(business_id=business.id, user_id=make_user().id, rating=3)
    )
    seen = []

    def derive(reviews):
        seen.append(sorted((r.id, r.rating) for r in reviews))
        return {}

    repository.update_review(first.id, rating=5, derive=derive)
    repository.delete_review(second.id, derive=derive)

    assert seen == [[(first.id, 5), (second.id, 3)], [(first.id, 5)]]


# --- Deletes ---

def test_delete_business_cascades_to_reviews_and_claims(repository, make_user, make_business):
    user, business, other = make_user(), make_business(), make_business()
    review = repository.create_review(NewReview(business_id=business.id, user_id=user.id, rating=4))
    claim = repository.create_claim(NewClaim(business_id=business.id, user_id=user.id))
    kept = repository.create_review(NewReview(business_id=other.id, user_id=user.id, rating=2))

    deleted = repository.delete_business(business.id)

    assert deleted.id == business.id
    with pytest.raises(NotFoundError):
        repository.get_business(business.id)
    with pytest.raises(NotFoundError):
        repository.get_review(review.id)
    with pytest.raises(NotFoundError):
        repository.get_claim(claim.id)
    assert repository.get_review(kept.id) == kept
    assert repository.find_user_claim(user.id, business.id) is None


def test_delete_missing_business_raises_not_found(repository):
    with pytest.raises(NotFoundError):
        repository.delete_business(404)


def test_deleted_ids_are_not_reused(repository, make_business):
    business = make_business()
    repository.delete_business(business.id)
    assert make_business().id > business.id


def test_delete_claim_runs_check_before_deleting(repository, make_user, make_business):
    user, business = make_user(), make_business()
    claim = repository.create_claim(NewClaim(business_id=business.id, user_id=user.id))

    def refuse(stored):
        raise ConstraintViolationError("keep it")

    with pytest.raises(ConstraintViolationError):
        repository.delete_claim(claim.id, check=refuse)
    assert repository.get_claim(claim.id) == claim

    assert repository.delete_claim(claim.id) == claim
    assert repository.find_user_claim(user.id, business.id) is None


def test_delete_missing_claim_raises_not_found(repository):
    with pytest.raises(NotFoundError):
        repository.delete_claim(404)
