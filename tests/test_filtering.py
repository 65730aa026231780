from extraction.filtering import (
    build_filter_instructions,
    build_search_url,
    filter_listings_by_constraints,
    resolve_location_slug,
)
from extraction.types import Bedrooms, NormalizedListing


def _listing(title: str, price: int) -> NormalizedListing:
    return NormalizedListing(title=title, price=price, price_raw=f"${price:,}" if price else "Call for Pricing")


def test_filter_rejects_only_known_prices_over_max():
    listings = [
        _listing("A", 1800),
        _listing("B", 2500),
        _listing("C", 0),
        _listing("D", 2000),
    ]

    filtered, rejected = filter_listings_by_constraints(listings, max_price=2000)

    assert [item.title for item in filtered] == ["A", "C", "D"]
    assert len(rejected) == 1
    assert rejected[0].listing.title == "B"
    assert rejected[0].reasons[0].type == "price"
    assert rejected[0].reasons[0].detail == "Listing price $2,500 exceeds max $2,000"


def test_filter_without_max_price_keeps_everything():
    listings = [_listing("A", 9000), _listing("B", 100)]
    filtered, rejected = filter_listings_by_constraints(listings)
    assert filtered == listings
    assert rejected == []


def test_filter_instructions_for_studio_and_pets():
    steps = build_filter_instructions(Bedrooms.studio(), True)

    assert len(steps) == 3
    assert "Beds/Baths" in steps[0]
    assert '"Studio+"' in steps[1]
    assert "pets" in steps[2].lower()


def test_filter_instructions_for_bedroom_count():
    steps = build_filter_instructions(Bedrooms(2), False)
    assert len(steps) == 2
    assert '"2+"' in steps[1]
    assert build_filter_instructions(None, None) == []


def test_build_search_url_rounds_price_down():
    assert build_search_url("jersey-city-nj", 2050) == "https://www.apartments.com/jersey-city-nj/under-2000/"
    assert build_search_url("jersey-city-nj", 2000) == "https://www.apartments.com/jersey-city-nj/under-2000/"
    assert build_search_url("jersey-city-nj", 50) == "https://www.apartments.com/jersey-city-nj/"
    assert build_search_url("hoboken-nj") == "https://www.apartments.com/hoboken-nj/"
    assert build_search_url("") == "https://www.apartments.com/jersey-city-nj/"


def test_resolve_location_slug_prefers_explicit_slug():
    assert resolve_location_slug("Manhattan-NY", "ignored") == "manhattan-ny"
    assert resolve_location_slug(None, "Jersey City NJ") == "jersey-city-nj"
    assert resolve_location_slug(None, None) == "jersey-city-nj"
