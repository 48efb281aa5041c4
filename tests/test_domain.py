"""Tests for domain records, schemas and the error taxonomy."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from tchouf.domain import (
    BackendUnavailableError,
    Business,
    ClaimStatus,
    ConstraintViolationError,
    InvalidTransitionError,
    NewBusiness,
    NewReview,
    NotFoundError,
    TchoufError,
    slugify,
)

NOW = datetime(2026, 1, 15, tzinfo=timezone.utc)


# --- slugify ---

@pytest.mark.parametrize("name, expected", [
    ("Café Aroma", "cafe-aroma"),
    ("Salon de Thé Zohra", "salon-de-the-zohra"),
    ("  Pizza -- Palace!! ", "pizza-palace"),
    ("L'Étoile d'Oran", "letoile-doran"),
    ("مطعم", ""),
])
def test_slugify(name, expected):
    assert slugify(name) == expected


# --- Entities ---

def test_business_new_fills_server_owned_fields():
    data = NewBusiness(
        name="Café Aroma", category="restaurant", city="Algiers",
        address="123 Main Street", created_by=1, photos=["a.jpg"],
    )

    business = Business.new(7, data, NOW)

    assert business.id == 7
    assert business.slug == "cafe-aroma"
    assert business.photos == ("a.jpg",)
    assert (business.avg_rating, business.review_count) == (0.0, 0)
    assert business.verified is False
    assert business.is_claimed is False
    assert business.created_at == NOW


def test_claim_status_terminal_states():
    assert not ClaimStatus.PENDING.is_terminal
    assert ClaimStatus.APPROVED.is_terminal
    assert ClaimStatus.REJECTED.is_terminal


# --- Schemas ---

@pytest.mark.parametrize("rating", [0, 6, -1])
def test_review_rating_out_of_range_is_rejected(rating):
    with pytest.raises(ValidationError):
        NewReview(business_id=1, user_id=1, rating=rating)


def test_business_email_must_be_well_formed():
    with pytest.raises(ValidationError):
        NewBusiness(
            name="x", category="x", city="x", address="x", created_by=1, email="nope"
        )


# --- Errors ---

def test_errors_carry_kind_for_the_route_layer():
    kinds = {
        NotFoundError("Business", 3).kind,
        InvalidTransitionError("done").kind,
        ConstraintViolationError("dup").kind,
        BackendUnavailableError("get_business").kind,
    }
    assert kinds == {"not_found", "invalid_transition", "constraint_violation", "backend_unavailable"}


def test_not_found_to_dict():
    error = NotFoundError("Business", 3)

    assert isinstance(error, TchoufError)
    assert error.to_dict() == {
        "kind": "not_found",
        "message": "Business 3 not found",
        "details": {"entity": "Business", "identifier": 3},
    }


def test_backend_unavailable_message_includes_reason():
    error = BackendUnavailableError("list_businesses", "deadline exceeded")
    assert error.operation == "list_businesses"
    assert str(error) == "Storage backend failed during list_businesses: deadline exceeded"


def test_error_without_details_omits_key():
    assert ConstraintViolationError("dup").to_dict() == {
        "kind": "constraint_violation", "message": "dup"
    }
