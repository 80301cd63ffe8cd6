from __future__ import annotations

from mentor.tools import content_extractor

ARTICLE_BODY = " ".join(["Condition Overload multiplies melee damage per status type."] * 20)


def test_extract_main_content_uses_trafilatura_path(monkeypatch):
    monkeypatch.setattr(content_extractor, "_extract_with_trafilatura", lambda *_args: ARTICLE_BODY)

    result = content_extractor.extract_main_content(
        "<html><head><title>Melee guide</title></head><body>Body</body></html>",
        max_chars=5000,
    )

    assert result.method == "trafilatura"
    assert result.title == "Melee guide"
    assert "Condition Overload" in result.text


def test_extract_main_content_falls_back_to_soup(monkeypatch):
    monkeypatch.setattr(content_extractor, "_extract_with_trafilatura", lambda *_args: "")
    html = f"""
    <html><head><title>Guide</title></head>
    <body>
      <nav>Main menu Sign in</nav>
      <div class="share-buttons">Share on X</div>
      <article><h1>Melee</h1><p>{ARTICLE_BODY}</p></article>
      <footer>Copyright</footer>
    </body></html>
    """

    result = content_extractor.extract_main_content(html, max_chars=5000)

    assert result.method == "soup"
    assert "Condition Overload" in result.text
    assert "Main menu" not in result.text
    assert "Share on X" not in result.text
    assert "Copyright" not in result.text


def test_low_quality_trafilatura_output_is_not_trusted(monkeypatch):
    monkeypatch.setattr(content_extractor, "_extract_with_trafilatura", lambda *_args: "Sign in")

    result = content_extractor.extract_main_content(f"<html><body><main><p>{ARTICLE_BODY}</p></main></body></html>")

    assert result.method == "soup"
    assert result.text.startswith("Condition Overload")


def test_extract_main_content_truncates(monkeypatch):
    monkeypatch.setattr(content_extractor, "_extract_with_trafilatura", lambda *_args: ARTICLE_BODY)

    result = content_extractor.extract_main_content("<html><body>x</body></html>", max_chars=100)

    assert len(result.text) == 103
    assert result.text.endswith("...")
    assert result.extracted_length == 103


def test_fragment_without_html_wrapper_is_accepted(monkeypatch):
    monkeypatch.setattr(content_extractor, "_extract_with_trafilatura", lambda *_args: "")

    text = content_extractor.normalize(f"<p>{ARTICLE_BODY}</p>")

    assert "Condition Overload" in text


def test_normalize_blank_markup_is_empty():
    assert content_extractor.normalize("   ") == ""


def test_normalize_text_collapses_whitespace():
    assert content_extractor._normalize_text("a\xa0 b\r\n\n\n\nc  ") == "a b\n\nc"
