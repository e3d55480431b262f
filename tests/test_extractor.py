"""Tests for HTML extraction and link filtering."""

import pytest

from indexer.models import MAX_CONTENT_LENGTH
from pipelines.extractor import extract, extract_text, origin_of, should_follow

BASE = "https://example.com"


class TestExtract:
    """Title, description, keywords and content."""

    def test_basic_fields(self):
        html = """
        <html><head>
          <title>  About   Us </title>
          <meta name="description" content="Who we are">
          <meta name="keywords" content="team, , history ,mission">
        </head><body><p>Hello   world</p></body></html>
        """
        page = extract(html, f"{BASE}/about", BASE)

        assert page.title == "About Us"
        assert page.description == "Who we are"
        assert page.keywords == ["team", "history", "mission"]
        assert page.content == "Hello world"

    def test_title_falls_back_to_url(self):
        page = extract("<html><body>text</body></html>", f"{BASE}/untitled", BASE)
        assert page.title == f"{BASE}/untitled"
        assert page.description == ""

    def test_keywords_fall_back_to_headings(self):
        html = "<html><body><h1>Donate</h1><h2>Mailing address</h2><h4>ignored</h4></body></html>"
        page = extract(html, BASE, BASE)
        assert page.keywords == ["Donate", "Mailing address"]

    def test_noise_elements_are_removed(self):
        html = """
        <html><body>
          <header>Site header</header><nav>Menu</nav>
          <script>var x = 1;</script><style>p {}</style>
          <p>Real content</p>
          <aside>Sidebar</aside><footer>Footer</footer>
        </body></html>
        """
        page = extract(html, BASE, BASE)
        assert page.content == "Real content"

    def test_content_is_capped(self):
        html = f"<html><body><p>{'word ' * 5000}</p></body></html>"
        page = extract(html, BASE, BASE)
        assert len(page.content) == MAX_CONTENT_LENGTH

    @pytest.mark.parametrize("html", ["", "<<<>>>", "<html><body><div><p>unclosed", None])
    def test_malformed_input_never_raises(self, html):
        page = extract(html, BASE, BASE)
        assert page.title == BASE
        assert page.links == []


class TestLinks:
    """Same-origin and skip-list filtering."""

    def test_only_same_origin_links(self):
        html = """
        <a href="/a">a</a>
        <a href="https://example.com/b">b</a>
        <a href="https://other.com/c">c</a>
        <a href="https://example.com.evil.com/d">d</a>
        <a href="http://example.com/e">e</a>
        """
        page = extract(html, f"{BASE}/", BASE)
        assert page.links == [f"{BASE}/a", f"{BASE}/b"]

    def test_skip_list(self):
        hrefs = [
            "/doc.pdf", "/img.JPG", "/pic.jpeg", "/p.png", "/a.gif", "/site.css",
            "/app.js", "/logo.svg", "/clip.mp4", "/photo.webp",
            "#top", "/page#section", "mailto:hi@example.com", "tel:123",
            "javascript:void(0)", "data:text/plain,hi",
        ]
        html = "".join(f'<a href="{h}">x</a>' for h in hrefs) + '<a href="/keep">k</a>'
        page = extract(html, BASE, BASE)
        assert page.links == [f"{BASE}/keep"]

    def test_links_are_deduplicated_in_document_order(self):
        html = '<a href="/b">1</a><a href="/a">2</a><a href="/b">3</a><a href="b">4</a>'
        page = extract(html, f"{BASE}/", BASE)
        assert page.links == [f"{BASE}/b", f"{BASE}/a"]

    def test_relative_links_resolve_against_page(self):
        page = extract('<a href="child">c</a>', f"{BASE}/docs/", BASE)
        assert page.links == [f"{BASE}/docs/child"]

    def test_helpers(self):
        assert origin_of("https://example.com/x/y?q=1") == BASE
        assert should_follow(f"{BASE}/about", BASE)
        assert not should_follow("https://other.com/about", BASE)
        assert not should_follow(f"{BASE}/file.pdf", BASE)

    def test_origin_ignores_host_case_and_default_ports(self):
        assert origin_of("https://Example.COM:443/about") == BASE
        assert origin_of("http://example.com:80/") == "http://example.com"
        assert origin_of("http://example.com:8080/") == "http://example.com:8080"
        assert origin_of("https://example.com:80/") == "https://example.com:80"
        assert should_follow("https://EXAMPLE.com:443/about", BASE)

    def test_equivalent_links_canonicalize_alike(self):
        html = '<a href="https://Example.com:443/a">1</a><a href="/a">2</a>'
        page = extract(html, f"{BASE}/", BASE)
        assert page.links == [f"{BASE}/a"]


class TestExtractText:
    """Main-content text used by the page cache."""

    def test_prefers_main(self):
        html = "<body><p>outside</p><main><p>inside main</p></main></body>"
        assert extract_text(html) == "inside main"

    def test_then_article(self):
        html = "<body><p>outside</p><article>the article</article></body>"
        assert extract_text(html) == "the article"

    def test_then_body(self):
        html = "<body><nav>menu</nav><p>body text</p></body>"
        assert extract_text(html) == "body text"
