import asyncio
import json

import pytest

from transport import HttpResponse

RSS_SAMPLE = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"
     xmlns:content="http://purl.org/rss/1.0/modules/content/"
     xmlns:dc="http://purl.org/dc/elements/1.1/"
     xmlns:media="http://search.yahoo.com/mrss/">
  <channel>
    <title>Example Feed</title>
    <link>https://example.com/</link>
    <description>An example feed</description>
    <language>en-us</language>
    <copyright>2025 Example</copyright>
    <managingEditor>editor@example.com (Editor)</managingEditor>
    <webMaster>web@example.com (Web)</webMaster>
    <pubDate>Mon, 06 Jan 2025 10:00:00 GMT</pubDate>
    <lastBuildDate>Tue, 07 Jan 2025 12:30:00 GMT</lastBuildDate>
    <image>
      <url>https://example.com/logo.png</url>
      <title>Example Feed</title>
      <link>https://example.com/</link>
      <width>88</width>
      <height>31</height>
    </image>
    <item>
      <title>First post</title>
      <link>https://example.com/first</link>
      <description>&lt;p&gt;Hello &lt;b&gt;world&lt;/b&gt;&lt;/p&gt;&lt;img src="https://example.com/first.jpg"/&gt;</description>
      <pubDate>Mon, 06 Jan 2025 09:00:00 GMT</pubDate>
      <guid isPermaLink="false">post-1</guid>
      <dc:creator>Alice</dc:creator>
      <category>news</category>
      <category>tech</category>
      <category>news</category>
      <enclosure url="https://example.com/first.mp3" type="audio/mpeg" length="12345"/>
    </item>
    <item>
      <title>Second post</title>
      <link>https://example.com/second</link>
      <description>Plain summary</description>
      <content:encoded><![CDATA[<p>Full <em>content</em></p>]]></content:encoded>
      <media:thumbnail url="https://example.com/thumb.jpg"/>
      <pubDate>Sun, 05 Jan 2025 09:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Undated post</title>
      <link>https://example.com/third</link>
      <description>No date here</description>
    </item>
  </channel>
</rss>
"""

ATOM_SAMPLE = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Example</title>
  <link href="https://example.org/"/>
  <link rel="self" href="https://example.org/atom.xml"/>
  <id>urn:uuid:60a76c80-d399-11d9-b93C-0003939e0af6</id>
  <updated>2025-01-07T12:30:00Z</updated>
  <entry>
    <title>Atom entry</title>
    <link href="https://example.org/entry"/>
    <id>urn:uuid:1225c695-cfb8-4ebb-aaaa-80da344efa6a</id>
    <updated>2025-01-06T09:00:00Z</updated>
    <summary>Short summary</summary>
  </entry>
</feed>
"""

JSON_FEED_SAMPLE = {
    "version": "https://jsonfeed.org/version/1.1",
    "title": "JSON Example",
    "home_page_url": "https://example.net/",
    "feed_url": "https://example.net/feed.json",
    "description": "A JSON feed",
    "icon": "https://example.net/icon.png",
    "language": "en",
    "items": [
        {
            "id": "1",
            "url": "https://example.net/one",
            "title": "One",
            "summary": "First item",
            "content_html": "<p>First</p>",
            "date_published": "2025-01-06T09:00:00Z",
            "authors": [{"name": "Bob"}],
            "tags": ["a", "b"],
            "image": "https://example.net/one.png",
            "attachments": [
                {"url": "https://example.net/one.mp3", "mime_type": "audio/mpeg", "size_in_bytes": 2048}
            ],
        },
        {
            "id": "2",
            "external_url": "https://elsewhere.example/two",
            "content_text": "Second, plain text",
            "date_published": "not a date",
        },
    ],
}


def rss_with_items(count: int, content: str = "") -> str:
    """Build a minimal RSS 2.0 document with `count` items."""
    items = "".join(
        f"<item><title>Item {i}</title><link>https://example.com/{i}</link>"
        f"<description>{content}</description></item>"
        for i in range(count)
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?><rss version="2.0"><channel>'
        f"<title>Bulk</title><link>https://example.com/</link>{items}</channel></rss>"
    )


def make_response(body, status: int = 200, content_type: str = "application/rss+xml; charset=utf-8",
                  status_text: str = "OK") -> HttpResponse:
    if isinstance(body, dict):
        body = json.dumps(body)
    if isinstance(body, str):
        body = body.encode("utf-8")
    return HttpResponse(
        status=status,
        status_text=status_text,
        headers={"content-type": content_type},
        body=body,
        ok=200 <= status < 300,
    )


class FakeTransport:
    """Stands in for HttpTransport, routing on the Accept header.

    `xml` answers the first (RSS/Atom) request, `json` the JSON Feed
    fallback. Either may be an HttpResponse or an exception to raise.
    """

    def __init__(self, xml=None, json=None, delay: float = 0.0):
        self.xml = xml
        self.json = json
        self.delay = delay
        self.calls = []
        self.closed = False

    async def fetch_with_timeout(self, url, method="GET", headers=None, timeout=None):
        accept = (headers or {}).get("Accept", "")
        kind = "json" if accept == "application/json" else "xml"
        self.calls.append((url, kind))
        await asyncio.sleep(self.delay)
        answer = self.json if kind == "json" else self.xml
        if isinstance(answer, BaseException):
            raise answer
        if answer is None:
            return make_response(b"", status=404, status_text="Not Found")
        return answer

    async def close(self):
        self.closed = True


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
