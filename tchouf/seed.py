"""
Seed Script - Sample Directory Data for Development
===================================================

Loads a few Algiers/Oran listings with reviews and a pending claim into
the configured backend, going through the services so ratings are
computed the normal way. Re-running it leaves existing listings alone.

USAGE:
    TCHOUF_STORAGE_BACKEND=sqlite python -m tchouf.seed
"""

import logging
import sys
from typing import Dict, List

from tchouf.bootstrap import TchoufApp, create_app
from tchouf.domain import NewBusiness, NewClaim, NewReview, NewUser, slugify
from tchouf.domain.errors import TchoufError
from tchouf.infrastructure.config import get_settings

logger = logging.getLogger(__name__)

# ── Sample Data ────────────────────────────────────────────────

SAMPLE_USERS = [
    {"uid": "sample-uid-1", "email": "user1@example.com", "display_name": "John Doe"},
    {"uid": "sample-uid-2", "email": "user2@example.com", "display_name": "Amina B."},
]

SAMPLE_BUSINESSES = [
    {
        "name": "Café Aroma",
        "category": "restaurant",
        "description": "A cozy coffee shop with delicious pastries",
        "city": "Algiers",
        "address": "123 Main Street, Algiers",
        "phone": "+213555123456",
        "email": "contact@cafearoma.dz",
        "website": "https://cafearoma.dz",
        "photos": ["https://images.unsplash.com/photo-1554118811-1e0d58224f24"],
    },
    {
        "name": "Pizza Palace",
        "category": "restaurant",
        "description": "The best pizza in town",
        "city": "Algiers",
        "address": "456 Elm Street, Algiers",
        "phone": "+213555654321",
        "email": "info@pizzapalace.dz",
        "website": "https://pizzapalace.dz",
        "photos": ["https://images.unsplash.com/photo-1565007458633-89dbf8a87491"],
    },
    {
        "name": "Salon de Thé Zohra",
        "category": "cafe",
        "description": "Traditional Algerian tea and sweets",
        "city": "Oran",
        "address": "789 Oak Street, Oran",
        "phone": "+213555112233",
        "email": "zohra@salondethe.dz",
        "website": "https://salondethe.dz",
        "photos": ["https://images.unsplash.com/photo-1617922154574-cd56c2e18e84"],
    },
]

# (user index, business slug, rating, comment)
SAMPLE_REVIEWS = [
    (0, "cafe-aroma", 5, "Great coffee and pastries!"),
    (1, "cafe-aroma", 4, "Nice atmosphere."),
    (1, "salon-de-the-zohra", 5, "Best mint tea in Oran."),
]

# (user index, business slug)
SAMPLE_CLAIMS = [
    (0, "pizza-palace"),
]


def seed(app: TchoufApp) -> Dict[str, int]:
    """Insert the sample data; returns how many rows of each kind were added."""
    added = {"users": 0, "businesses": 0, "reviews": 0, "claims": 0}

    users = []
    for data in SAMPLE_USERS:
        existed = app.users.find_by_uid(data["uid"]) is not None
        users.append(app.users.resolve_user(NewUser(**data)))
        added["users"] += 0 if existed else 1

    businesses = {}
    for data in SAMPLE_BUSINESSES:
        payload = NewBusiness(created_by=users[0].id, **data)
        existing = app.repository.find_business_by_slug(slugify(payload.name))
        if existing is None:
            existing = app.directory.create_business(payload)
            added["businesses"] += 1
        businesses[existing.slug] = existing

    for user_index, slug, rating, comment in SAMPLE_REVIEWS:
        user, business = users[user_index], businesses[slug]
        if app.reviews.user_review_for_business(user.id, business.id) is None:
            app.reviews.create_review(
                NewReview(business_id=business.id, user_id=user.id, rating=rating, comment=comment)
            )
            added["reviews"] += 1

    for user_index, slug in SAMPLE_CLAIMS:
        user, business = users[user_index], businesses[slug]
        if app.claims.user_claim_for_business(user.id, business.id) is None:
            app.claims.submit(NewClaim(business_id=business.id, user_id=user.id))
            added["claims"] += 1

    return added


def main() -> int:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    print("\n" + "=" * 60)
    print("   Tchouf - Sample Data Seeder")
    print("=" * 60 + "\n")

    try:
        with create_app(settings) as app:
            added = seed(app)
    except TchoufError as e:
        logger.error(f"Seeding failed: {e}")
        return 1

    print(f"   Backend:    {settings.storage.backend}")
    for kind, count in added.items():
        print(f"   {kind.capitalize() + ':':<11} {count} added")
    print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
