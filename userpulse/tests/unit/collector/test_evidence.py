from userpulse.collector.evidence import extract_evidence_urls, extract_urls

PATTERNS = ["github.com", "/blog/", "/docs/", "/changelog"]


def test_extract_urls_strips_trailing_punctuation():
    text = "See https://acme.io/docs/setup. Also (https://github.com/acme/cli)!"

    assert extract_urls(text) == ["https://acme.io/docs/setup", "https://github.com/acme/cli"]


def test_extract_urls_from_markdown_link():
    assert extract_urls("[release](https://acme.io/changelog)") == ["https://acme.io/changelog"]


def test_evidence_keeps_only_matching_urls_in_order():
    text = (
        "Moved from https://example.com/pricing after reading https://acme.io/blog/v2 "
        "and https://GitHub.com/acme/acme"
    )

    assert extract_evidence_urls(text, PATTERNS) == ["https://acme.io/blog/v2", "https://GitHub.com/acme/acme"]


def test_evidence_has_no_duplicates():
    text = "https://github.com/acme/acme and again https://github.com/acme/acme."

    assert extract_evidence_urls(text, PATTERNS) == ["https://github.com/acme/acme"]


def test_empty_inputs():
    assert extract_urls("") == []
    assert extract_evidence_urls("no links here", PATTERNS) == []
    assert extract_evidence_urls("https://github.com/x", []) == []
