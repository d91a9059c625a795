import asyncio

from conftest import FakePersister, FakeTransport

from page_archiver.allocator import SavePathAllocator
from page_archiver.errors import FetchError
from page_archiver.processor import ProcessingEngine, is_text_like, write_text
from page_archiver.references import ExtractionContext, OriginScope, ResourceReference
from page_archiver.scheduler import DownloadRecord

PAGE = "http://example.com/a/p.html"
SHEET = "http://example.com/a/s.css"


def ref(raw, context=ExtractionContext.ATTRIBUTE, scope=OriginScope.BASE, base=PAGE):
    return ResourceReference.create(raw, base, context, scope)


def record(r, content="", content_type="", charset="UTF-8"):
    return DownloadRecord(r, content, content_type, charset)


def engine(tmp_path, refs, records, persister=None, **kwargs):
    return ProcessingEngine(
        refs,
        records,
        SavePathAllocator(tmp_path / "p_files"),
        tmp_path / "p.html",
        persister or FakePersister(),
        page_url=PAGE,
        **kwargs,
    )


def test_is_text_like():
    assert is_text_like("text/plain")
    assert is_text_like("application/x-javascript")
    assert not is_text_like("image/png")


def test_write_text_replaces_unencodable(tmp_path):
    p = tmp_path / "out.txt"
    write_text(p, "a☃b", "ISO-8859-1")
    assert p.read_bytes() == b"a?b"


def test_index_is_marked_and_rewritten(tmp_path):
    index = ref(PAGE, ExtractionContext.INDEX)
    img = ref("b.png")
    refs = [index, img]
    page = '<html><head><base href="http://cdn/"></head><body><img src="b.png"><a href="q.html">q</a></body></html>'
    records = [record(index, page, "text/html"), record(img, content_type="image/png")]
    persister = FakePersister({"http://example.com/a/b.png": b"PNG"})
    errors = asyncio.run(engine(tmp_path, refs, records, persister, rewrite_links=True).run())
    assert errors == []
    out = (tmp_path / "p.html").read_text()
    assert out.startswith("<html><!-- Source is http://example.com/a/p.html -->")
    assert '<!--<base href="http://cdn/">-->' in out
    assert '<img src="p_files/b.png">' in out
    assert '<a href="http://example.com/a/q.html">' in out
    assert (tmp_path / "p_files" / "b.png").read_bytes() == b"PNG"


def test_css_payload_uses_sheet_scope(tmp_path):
    sheet = ref("s.css")
    bg = ref("bg.png", ExtractionContext.CSS, OriginScope.EXTCSS, SHEET)
    page_bg = ref("bg.png", ExtractionContext.CSS, OriginScope.BASE)
    refs = [sheet, bg, page_bg]
    css = ".x{background:url(bg.png)}"
    errors = asyncio.run(engine(tmp_path, refs, [record(sheet, css, "text/css")]).run())
    assert errors == []
    assert (tmp_path / "p_files" / "s.css").read_text() == css


def test_html_payload_uses_page_scope_and_folder_relative_paths(tmp_path):
    frame = ref("f.html")
    img = ref("/a/img/i.png")
    refs = [frame, img]
    body = '<html><body><img src="/a/img/i.png"></body></html>'
    asyncio.run(engine(tmp_path, refs, [record(frame, body, "text/html")]).run())
    assert (tmp_path / "p_files" / "f.html").read_text() == '<html><body><img src="i.png"></body></html>'


def test_text_saved_verbatim_in_its_charset(tmp_path):
    js = ref("x.js")
    asyncio.run(
        engine(tmp_path, [js], [record(js, "var s = 'é';", "application/javascript", "ISO-8859-1")]).run()
    )
    assert (tmp_path / "p_files" / "x.js").read_bytes() == "var s = 'é';".encode("latin-1")


def test_errors_are_collected_per_record(tmp_path):
    gone = ref("gone.png")
    broken = ref("broken.png")
    untyped = ref("what")
    ok = ref("ok.txt")
    failed = record(gone)
    failed.fail(FetchError("http://example.com/a/gone.png", "HTTP 404"))
    records = [failed, record(broken, content_type="image/png"), record(untyped), record(ok, "hi", "text/plain")]
    errors = asyncio.run(engine(tmp_path, [gone, broken, untyped, ok], records).run())
    assert errors == [
        "Download failed for uri: http://example.com/a/gone.png (HTTP 404)",
        "Error persisting URI: http://example.com/a/broken.png\nconnection reset",
        "Missing contentType: http://example.com/a/what",
    ]
    assert (tmp_path / "p_files" / "ok.txt").read_text() == "hi"


def test_records_are_released(tmp_path):
    ok = ref("ok.txt")
    rec = record(ok, "hi", "text/plain")
    asyncio.run(engine(tmp_path, [ok], [rec]).run())
    assert rec.content == ""


def test_stops_when_cancelled(tmp_path):
    a, b = ref("a.txt"), ref("b.txt")
    seen = []

    def cancelled():
        seen.append(1)
        return len(seen) > 1

    eng = engine(tmp_path, [a, b], [record(a, "a", "text/plain"), record(b, "b", "text/plain")], is_cancelled=cancelled)
    asyncio.run(eng.run())
    assert (tmp_path / "p_files" / "a.txt").exists()
    assert not (tmp_path / "p_files" / "b.txt").exists()


class RefusingAllocator(SavePathAllocator):
    def _claim(self, candidate):
        if candidate.startswith("bad"):
            raise OSError(36, "File name too long", candidate)
        return super()._claim(candidate)


def test_unclaimable_name_does_not_lose_the_index(tmp_path):
    index = ref(PAGE, ExtractionContext.INDEX)
    bad, good = ref("bad.png"), ref("b.png")
    page = '<html><body><img src="bad.png"><img src="b.png"></body></html>'
    records = [
        record(index, page, "text/html"),
        record(bad, content_type="image/png"),
        record(good, content_type="image/png"),
    ]
    persister = FakePersister({"http://example.com/a/b.png": b"PNG", "http://example.com/a/bad.png": b"X"})
    eng = ProcessingEngine(
        [index, bad, good],
        records,
        RefusingAllocator(tmp_path / "p_files"),
        tmp_path / "p.html",
        persister,
        page_url=PAGE,
    )
    errors = asyncio.run(eng.run())
    assert len(errors) == 1
    assert errors[0].startswith("Couldn't save http://example.com/a/bad.png\n")
    out = (tmp_path / "p.html").read_text()
    assert '<img src="bad.png">' in out
    assert '<img src="p_files/b.png">' in out
    assert [url for url, _ in persister.calls] == ["http://example.com/a/b.png"]


def test_cached_bodies_are_forgotten_after_processing(tmp_path):
    index = ref(PAGE, ExtractionContext.INDEX)
    js = ref("x.js")
    transport = FakeTransport()
    records = [record(index, "<html></html>", "text/html"), record(js, "1;", "application/javascript")]
    asyncio.run(engine(tmp_path, [index, js], records, transport=transport).run())
    assert transport.forgotten == [PAGE, "http://example.com/a/x.js"]


def test_links_to_saved_files_stay_local(tmp_path):
    index = ref(PAGE, ExtractionContext.INDEX)
    img = ref("b.png")
    page = '<html><body><a href="b.png">full size</a><a href="q.html">q</a></body></html>'
    records = [record(index, page, "text/html"), record(img, content_type="image/png")]
    persister = FakePersister({"http://example.com/a/b.png": b"PNG"})
    asyncio.run(engine(tmp_path, [index, img], records, persister, rewrite_links=True).run())
    out = (tmp_path / "p.html").read_text()
    assert '<a href="p_files/b.png">' in out
    assert '<a href="http://example.com/a/q.html">' in out
