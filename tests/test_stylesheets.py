from page_archiver.stylesheets import ImportRule, MediaRule, StyleRule, parse_stylesheet


def test_rule_kinds_are_converted():
    sheet = parse_stylesheet(
        "@import 'a.css';\n"
        ".x { background: url(b.png) }\n"
        "@media print { .y { color: red } }\n"
        "@font-face { font-family: F; src: url(f.woff) }\n",
        "http://example.com/s.css",
        {"http://example.com/a.css": ".z{}"}.get,
    )
    kinds = [type(r) for r in sheet.rules]
    assert kinds == [ImportRule, StyleRule, MediaRule, StyleRule]
    assert "b.png" in sheet.rules[1].css_text
    assert isinstance(sheet.rules[2].rules[0], StyleRule)
    assert "f.woff" in sheet.rules[3].css_text


def test_import_loads_nested_sheet_relative_to_importer():
    styles = {
        "http://example.com/css/a.css": "@import url(deep/b.css);",
        "http://example.com/css/deep/b.css": ".q { background: url(q.png) }",
    }
    sheet = parse_stylesheet("@import 'css/a.css';", "http://example.com/", styles.get)
    outer = sheet.rules[0]
    assert outer.href == "css/a.css"
    inner = outer.sheet.rules[0]
    assert isinstance(inner, ImportRule)
    assert inner.sheet.href == "http://example.com/css/deep/b.css"
    assert isinstance(inner.sheet.rules[0], StyleRule)


def test_import_cycle_terminates():
    styles = {
        "http://example.com/a.css": "@import 'b.css';",
        "http://example.com/b.css": "@import 'a.css';",
    }
    sheet = parse_stylesheet(styles["http://example.com/a.css"], "http://example.com/a.css", styles.get)
    b = sheet.rules[0].sheet
    back_to_a = b.rules[0].sheet
    assert back_to_a.rules == []


def test_unreachable_import_is_empty():
    sheet = parse_stylesheet("@import 'gone.css';", "http://example.com/", lambda u: None)
    assert sheet.rules[0].sheet.rules == []


def test_inline_flag_follows_owner():
    assert parse_stylesheet(".a{}", "http://example.com/").inline
    assert not parse_stylesheet(".a{}", "http://example.com/s.css", owner_href="s.css").inline
