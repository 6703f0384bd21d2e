"""
Tests for the GET /search endpoint.

Tests cover:
- Case-insensitive exact city match
- No substring matching
- Missing or blank city parameter (400)
- Empty results message
- Escaping of the search term
"""

import re

from adboard.storage import create_ad


def phones(html: str) -> set:
    return set(re.findall(r"<strong>Phone:</strong> (\S+)</p>", html))


class TestCityMatch:
    """Test which ads a city search returns."""

    def seed(self, db):
        create_ad(db, phone="+12015550101", city="Paris", category="food", address="Rue A")
        create_ad(db, phone="+12015550102", city="paris", category="sports")
        create_ad(db, phone="+12015550103", city="Parisville", category="food")
        create_ad(db, phone="+12015550104", city="Lyon", category="food")

    def test_exact_match(self, client, db):
        self.seed(db)

        response = client.get("/search", params={"city": "Paris"})

        assert response.status_code == 200
        assert phones(response.text) == {"+12015550101", "+12015550102"}

    def test_case_insensitive(self, client, db):
        self.seed(db)

        lower = client.get("/search", params={"city": "Paris"}).text
        upper = client.get("/search", params={"city": "PARIS"}).text

        assert phones(lower) == phones(upper)

    def test_case_insensitive_beyond_ascii(self, client, db):
        create_ad(db, phone="+12015550101", city="München", category="food")
        create_ad(db, phone="+12015550102", city="Straße", category="food")
        create_ad(db, phone="+12015550103", city="Munchen", category="food")

        for city in ("München", "MÜNCHEN", "münchen"):
            html = client.get("/search", params={"city": city}).text
            assert phones(html) == {"+12015550101"}

        assert phones(client.get("/search", params={"city": "STRASSE"}).text) == {"+12015550102"}

    def test_not_substring(self, client, db):
        self.seed(db)

        html = client.get("/search", params={"city": "Par"}).text

        assert phones(html) == set()
        assert "Sorry, there are no ads from this city." in html

    def test_results_show_all_fields(self, client, db):
        self.seed(db)

        html = client.get("/search", params={"city": "lyon"}).text

        assert 'Results for "lyon"' in html
        assert "<strong>City:</strong> Lyon" in html
        assert "<strong>Group:</strong> food" in html

    def test_unknown_category_included(self, client, db):
        """Search filters by city only."""
        create_ad(db, phone="+12015550109", city="Oslo", category="furniture")

        html = client.get("/search", params={"city": "Oslo"}).text

        assert phones(html) == {"+12015550109"}

    def test_regex_characters_are_literal(self, client, db):
        create_ad(db, phone="+12015550101", city="Paris", category="food")

        html = client.get("/search", params={"city": ".*"}).text

        assert phones(html) == set()


class TestSearchErrors:
    """Test bad search requests."""

    def test_missing_city(self, client):
        response = client.get("/search")

        assert response.status_code == 400
        assert "Missing required query parameter: city" in response.text

    def test_blank_city(self, client):
        response = client.get("/search", params={"city": "   "})

        assert response.status_code == 400

    def test_search_term_escaped(self, client):
        response = client.get("/search", params={"city": "<script>alert(1)</script>"})

        assert response.status_code == 200
        assert "<script>" not in response.text
        assert 'Results for "&lt;script&gt;alert(1)&lt;/script&gt;"' in response.text
