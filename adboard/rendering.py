"""
Listing renderer.

Pages are Jinja2 templates with autoescaping on, so every user-sourced
field (phone, city, address, category, search term) is HTML-escaped when
it is rendered. Per-ad cards are rendered once into Markup fragments and
then placed into the page, one fragment per category.
"""

import logging
from typing import Dict, Iterable, Optional

from jinja2 import Environment, PackageLoader, select_autoescape
from markupsafe import Markup
from sqlalchemy.orm import Session

from adboard.errors import BadRequestError
from adboard.schemas import CATEGORIES
from adboard.storage import get_ads_by_city, get_ads_sorted
from adboard.utils import group_by_category

logger = logging.getLogger(__name__)


def build_template_environment() -> Environment:
    return Environment(
        loader=PackageLoader("adboard", "templates"),
        autoescape=select_autoescape(["html"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )


class ListingRenderer:
    """Renders the listing, search and message pages."""

    def __init__(self, db: Optional[Session], templates: Environment):
        self.db = db
        self.templates = templates

    def render_ad(self, ad, show_category: bool) -> Markup:
        template = self.templates.get_template("ad_card.html")
        return Markup(template.render(ad=ad, show_category=show_category))

    def render_fragments(self, ads: Iterable, show_category: bool) -> Dict[str, Markup]:
        """
        Render one fragment per known category.

        Categories with no ads map to an empty fragment. Ads in unknown
        categories appear in no fragment.
        """
        grouped = group_by_category(ads)
        return {
            category: Markup("\n").join(self.render_ad(ad, show_category) for ad in grouped[category])
            for category in CATEGORIES
        }

    def render_all_grouped(self, ascending: bool = False, show_category: bool = False) -> str:
        """Full page of every ad grouped by category, sorted by created_at."""
        ads = get_ads_sorted(self.db, ascending=ascending)
        fragments = self.render_fragments(ads, show_category)
        logger.debug(f"Rendering {len(ads)} ads (ascending={ascending}, show_category={show_category})")
        return self.templates.get_template("index.html").render(
            categories=CATEGORIES,
            fragments=fragments,
        )

    def render_by_city(self, city: Optional[str]) -> str:
        """
        Page of ads whose city matches `city` exactly, ignoring case.

        Raises:
            BadRequestError: if `city` is missing or blank.
        """
        city = (city or "").strip()
        if not city:
            raise BadRequestError("Missing required query parameter: city")

        ads = get_ads_by_city(self.db, city)
        logger.info(f"Search for city {city!r}: {len(ads)} ads")
        cards = [self.render_ad(ad, show_category=True) for ad in ads]
        return self.templates.get_template("search.html").render(
            city=city,
            categories=CATEGORIES,
            cards=cards,
        )

    def render_message(self, title: str, message: Optional[str] = None) -> str:
        """Confirmation or error page with a link back to the form."""
        return self.templates.get_template("message.html").render(
            title=title,
            message=message,
            categories=CATEGORIES,
        )
