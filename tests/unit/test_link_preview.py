"""Tests for link preview extraction and the fetch_meta operation."""

import httpx
import pytest
import respx

from app.config import (
    CHROME_DESKTOP_UA,
    FACEBOOK_UA,
    LINK_PREVIEW_PROFILES,
    SAFARI_MOBILE_UA,
)
from app.models import InvalidInputError
from app.services.fallback import AttemptOutcome, AttemptProfile
from app.services.link_preview import (
    LinkPreviewService,
    booking_fallback,
    classify_page,
    clean_title,
    extract_address,
    filter_description,
    generic_fallback,
    parse_preview,
    salvage_image,
    validate_url,
)
from app.services.link_preview.service import MAX_REDIRECTS

HOTEL_URL = "https://www.booking.com/hotel/se/stf-abisko-turiststation.nl.html"

HOTEL_PAGE = """
<html><head>
<title>STF Abisko Turiststation - Booking.com</title>
<meta property="og:site_name" content="Booking.com">
<meta property="og:title" content="★★★ STF Abisko Turiststation, Abisko, Zweden">
<meta property="og:description" content="Mountain station by Lake Torneträsk with sauna and restaurant.">
<meta property="og:image" content="/images/hotel/abisko.jpg">
<meta name="geo.position" content="68.3581;18.7834">
<script type="application/ld+json">
{"@context": "https://schema.org", "@type": "Hotel",
 "address": {"@type": "PostalAddress", "streetAddress": "Abisko Turiststation",
             "addressLocality": "Abisko", "postalCode": "981 07",
             "addressCountry": {"@type": "Country", "name": "Sweden"}}}
</script>
</head><body><p>Welcome</p></body></html>
"""


def padded(page: str, size: int) -> str:
    return page + "<!--" + "x" * size + "-->"


class TestCleanTitle:
    """Tests for title cleanup."""

    def test_booking_title(self) -> None:
        assert (
            clean_title("★★★ STF Abisko Turiststation, Abisko, Zweden", "Booking.com")
            == "STF Abisko Turiststation"
        )

    def test_site_name_suffix(self) -> None:
        assert clean_title("Nuolja Hike | Visit Abisko", "Visit Abisko") == "Nuolja Hike"

    def test_trailing_stars(self) -> None:
        assert clean_title("Lapland Lodge - 4 stars", None) == "Lapland Lodge"
        assert clean_title("Lapland Lodge (3.5 stars)", None) == "Lapland Lodge"

    def test_empty(self) -> None:
        assert clean_title(None, None) is None
        assert clean_title("★★", None) is None


class TestFilterDescription:
    """Tests for description filtering."""

    def test_keeps_normal_text(self) -> None:
        text = "A cosy mountain hut at the foot of Nuolja."
        assert filter_description(f"  {text} ") == text

    @pytest.mark.parametrize(
        "description",
        [
            "Too short",
            "★★★★★ ★★★★★ ★★★★★ ★★★★★",
            "Let op: deze accommodatie vraagt een borg",
            "Please note that the reception closes at 22:00",
            "Read our terms and conditions before booking a room",
        ],
    )
    def test_drops_unhelpful_text(self, description) -> None:
        assert filter_description(description) is None


class TestParsePreview:
    """Tests for whole-page extraction."""

    def test_hotel_page(self) -> None:
        preview = parse_preview(HOTEL_PAGE, HOTEL_URL)
        assert preview["title"] == "STF Abisko Turiststation"
        assert preview["description"].startswith("Mountain station")
        assert preview["image"] == "https://www.booking.com/images/hotel/abisko.jpg"
        assert preview["site_name"] == "Booking.com"
        assert (preview["latitude"], preview["longitude"]) == (68.3581, 18.7834)
        assert preview["address"]["formatted"] == "Abisko Turiststation, Abisko, 981 07, Sweden"

    def test_json_ld_geo_wins(self) -> None:
        page = """
        <script type="application/ld+json">
        {"@graph": [{"@type": "LodgingBusiness", "name": "Kiruna Camp",
                     "geo": {"latitude": "67.85", "longitude": "20.22"}}]}
        </script>
        <meta name="ICBM" content="1.0, 2.0">
        """
        preview = parse_preview(page, "https://example.com/")
        assert preview["title"] == "Kiruna Camp"
        assert (preview["latitude"], preview["longitude"]) == (67.85, 20.22)

    def test_icbm_and_title_element(self) -> None:
        page = '<title>Tarfala &amp; Kebnekaise</title><meta name="ICBM" content="67.9, 18.6">'
        preview = parse_preview(page, "https://example.com/")
        assert preview["title"] == "Tarfala & Kebnekaise"
        assert (preview["latitude"], preview["longitude"]) == (67.9, 18.6)

    def test_out_of_range_coordinates_dropped(self) -> None:
        page = '<meta name="geo.position" content="123.0;18.6">'
        preview = parse_preview(page, "https://example.com/")
        assert preview["latitude"] is None
        assert preview["longitude"] is None

    def test_malformed_json_ld_ignored(self) -> None:
        page = '<script type="application/ld+json">{oops</script><meta property="og:title" content="Fine">'
        assert parse_preview(page, "https://example.com/")["title"] == "Fine"


class TestExtractAddress:
    """Tests for postal address normalization."""

    def test_plain_string(self) -> None:
        assert extract_address("Abisko 981 07")["formatted"] == "Abisko 981 07"

    def test_empty_object(self) -> None:
        assert extract_address({"@type": "PostalAddress"}) is None


class TestUrlFallbacks:
    """Tests for URL-derived titles."""

    def test_booking_slug(self) -> None:
        assert booking_fallback(HOTEL_URL) == {
            "site_name": "Booking.com",
            "title": "STF Abisko Turiststation",
        }

    def test_booking_not_matching(self) -> None:
        assert booking_fallback("https://example.com/hotel/x.html") == {}

    def test_generic_path_segment(self) -> None:
        assert generic_fallback("https://www.visitabisko.com/en/aurora-sky-station.html") == {
            "title": "Aurora Sky Station",
            "description": "Link from visitabisko.com",
            "site_name": "visitabisko.com",
        }

    def test_generic_host_only(self) -> None:
        assert generic_fallback("https://www.visitabisko.com/")["title"] == "visitabisko.com"


class TestSalvageImage:
    """Tests for og:image recovery from blocked pages."""

    def test_either_attribute_order(self) -> None:
        a = '<meta property="og:image" content="/a.jpg">'
        b = "<meta content='https://cdn.example.com/b.jpg' property='og:image'>"
        assert salvage_image(a, "https://example.com/page") == {"image": "https://example.com/a.jpg"}
        assert salvage_image(b, "https://example.com/page") == {"image": "https://cdn.example.com/b.jpg"}

    def test_nothing_found(self) -> None:
        assert salvage_image("<html></html>", "https://example.com/") == {}


class TestValidateUrl:
    """Tests for URL validation."""

    def test_accepts_public_url(self) -> None:
        assert validate_url("  https://example.com/a  ") == "https://example.com/a"

    @pytest.mark.parametrize(
        "url",
        [
            None,
            "",
            "ftp://example.com/file",
            "example.com/page",
            "http://localhost:8000/admin",
            "http://127.0.0.1/",
            "http://10.0.0.5/internal",
            "http://169.254.169.254/latest/meta-data",
        ],
    )
    def test_rejects(self, url) -> None:
        with pytest.raises(InvalidInputError):
            validate_url(url)


class TestClassifyPage:
    """Tests for page classification per profile."""

    def setup_method(self) -> None:
        self.desktop = LINK_PREVIEW_PROFILES[0]
        self.crawler = AttemptProfile("crawler", options={"min_length": 10})

    def test_server_error_is_transport_failure(self) -> None:
        assert classify_page(httpx.Response(503), self.crawler) == AttemptOutcome.TRANSPORT_FAILURE

    def test_block_status(self) -> None:
        response = httpx.Response(202, text="x" * 6000)
        assert classify_page(response, self.desktop) == AttemptOutcome.SOFT_BLOCK
        assert classify_page(response, self.crawler) == AttemptOutcome.USABLE

    def test_short_page(self) -> None:
        response = httpx.Response(200, text="x" * 1000)
        assert classify_page(response, self.desktop) == AttemptOutcome.SOFT_BLOCK
        assert classify_page(response, self.crawler) == AttemptOutcome.USABLE

    def test_client_error(self) -> None:
        assert classify_page(httpx.Response(404, text="x" * 100), self.crawler) == AttemptOutcome.SOFT_BLOCK


class TestLinkPreviewService:
    """Tests for fetch_meta across client profiles."""

    @pytest.fixture
    def service(self, limiter, caches) -> LinkPreviewService:
        return LinkPreviewService(LINK_PREVIEW_PROFILES, limiter, caches)

    @pytest.mark.asyncio
    @respx.mock
    async def test_salvaged_image_then_crawler_title(self, service) -> None:
        blocked = padded('<meta property="og:image" content="https://cdn.example.com/sky.jpg">', 200)
        crawler_page = padded(
            '<meta property="og:title" content="Aurora Sky Station">'
            '<meta property="og:image" content="https://cdn.example.com/other.jpg">',
            600,
        )
        seen = []

        def respond(request: httpx.Request) -> httpx.Response:
            agent = request.headers["User-Agent"]
            seen.append(agent)
            if agent == CHROME_DESKTOP_UA:
                return httpx.Response(403, text=blocked)
            if agent == SAFARI_MOBILE_UA:
                return httpx.Response(200, text="<html>captcha</html>")
            return httpx.Response(200, text=crawler_page)

        route = respx.get("https://visitabisko.example/sky").mock(side_effect=respond)

        result = await service.fetch_meta("user-1", "https://visitabisko.example/sky")

        assert seen == [CHROME_DESKTOP_UA, SAFARI_MOBILE_UA, FACEBOOK_UA]
        assert result["title"] == "Aurora Sky Station"
        assert result["image"] == "https://cdn.example.com/sky.jpg"
        assert result["source"] == "facebook"

        await service.fetch_meta("user-2", "https://visitabisko.example/sky")
        assert route.call_count == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_full_page_from_first_profile(self, service) -> None:
        route = respx.get(HOTEL_URL).mock(
            return_value=httpx.Response(200, text=padded(HOTEL_PAGE, 6000))
        )
        result = await service.fetch_meta("user-1", HOTEL_URL)
        assert route.call_count == 1
        assert result["title"] == "STF Abisko Turiststation"
        assert result["latitude"] == 68.3581
        assert result["source"] == "desktop_chrome"

    @pytest.mark.asyncio
    @respx.mock
    async def test_url_fallback_when_every_profile_fails(self, service) -> None:
        route = respx.get(HOTEL_URL).mock(side_effect=httpx.ConnectError("refused"))

        result = await service.fetch_meta("user-1", HOTEL_URL)

        assert result["title"] == "STF Abisko Turiststation"
        assert result["site_name"] == "Booking.com"
        assert result["image"] is None
        assert result["source"] == "url"
        assert route.call_count == len(LINK_PREVIEW_PROFILES)

        # URL-only answers are not cached
        await service.fetch_meta("user-1", HOTEL_URL)
        assert route.call_count == 2 * len(LINK_PREVIEW_PROFILES)

    @pytest.mark.asyncio
    @respx.mock
    async def test_generic_fallback_title(self, service) -> None:
        respx.get("https://www.visitabisko.com/en/aurora-sky-station.html").mock(
            return_value=httpx.Response(200, text="<html></html>")
        )
        result = await service.fetch_meta(
            "user-1", "https://www.visitabisko.com/en/aurora-sky-station.html"
        )
        assert result["title"] == "Aurora Sky Station"
        assert result["description"] == "Link from visitabisko.com"

    @pytest.mark.asyncio
    @respx.mock
    async def test_redirect_to_public_host_is_followed(self, service) -> None:
        respx.get("https://visitabisko.example/go").mock(
            return_value=httpx.Response(301, headers={"Location": HOTEL_URL})
        )
        target = respx.get(HOTEL_URL).mock(return_value=httpx.Response(200, text=padded(HOTEL_PAGE, 6000)))

        result = await service.fetch_meta("user-1", "https://visitabisko.example/go")

        assert target.call_count == 1
        assert result["title"] == "STF Abisko Turiststation"

    @pytest.mark.asyncio
    @respx.mock
    async def test_redirect_to_link_local_host_is_not_followed(self, service) -> None:
        respx.get("https://visitabisko.example/x").mock(
            return_value=httpx.Response(
                302, headers={"Location": "http://169.254.169.254/latest/meta-data/"}
            )
        )
        metadata = respx.get("http://169.254.169.254/latest/meta-data/").mock(
            return_value=httpx.Response(200, text="<title>instance-metadata</title>" + "x" * 600)
        )

        result = await service.fetch_meta("user-1", "https://visitabisko.example/x")

        assert not metadata.called
        assert result["title"] != "instance-metadata"
        assert result["source"] == "url"

    @pytest.mark.asyncio
    @respx.mock
    async def test_redirect_loop_is_cut_off(self, service) -> None:
        route = respx.get("https://visitabisko.example/loop").mock(
            return_value=httpx.Response(302, headers={"Location": "/loop"})
        )
        result = await service.fetch_meta("user-1", "https://visitabisko.example/loop")
        assert result["source"] == "url"
        assert route.call_count == (MAX_REDIRECTS + 1) * len(LINK_PREVIEW_PROFILES)

    @pytest.mark.asyncio
    async def test_invalid_url(self, service) -> None:
        with pytest.raises(InvalidInputError):
            await service.fetch_meta("user-1", "file:///etc/passwd")
