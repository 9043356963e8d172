import io
import zipfile

from epub_importer.epub_reader import read_archive
from epub_importer.text_extraction import combine_documents, extract_book_text, strip_markup


def test_strip_markup_removes_script_and_style_blocks_across_lines():
    html = (
        "<html><head><style type='text/css'>\n"
        "p { color: red; }\n"
        "</style></head><body>\n"
        "<script>\nvar secret = '<p>hidden</p>';\n</script>\n"
        "<p>Visible text</p></body></html>"
    )

    text = strip_markup(html)

    assert text == "Visible text"
    assert "secret" not in text
    assert "color" not in text


def test_strip_markup_turns_block_closers_into_newlines():
    html = "<h1>Title</h1><p>First paragraph.</p><p>Second paragraph.</p><div>Block</div>"

    assert strip_markup(html) == "Title\nFirst paragraph.\nSecond paragraph.\nBlock"


def test_strip_markup_converts_line_breaks():
    assert strip_markup("one<br/>two<br>three<BR />four") == "one\ntwo\nthree\nfour"


def test_strip_markup_removes_inline_tags_and_collapses_spaces():
    html = '<p>Hello   <em class="x">brave</em>\t<a href="#">new</a> world</p>'

    assert strip_markup(html) == "Hello brave new world"


def test_strip_markup_decodes_common_entities():
    html = "<p>Tom&nbsp;&amp;&#160;Jerry &lt;3 &quot;cats&quot; &apos;n&#39; &gt; dogs</p>"

    assert strip_markup(html) == "Tom & Jerry <3 \"cats\" 'n' > dogs"


def test_strip_markup_does_not_double_decode_ampersands():
    assert strip_markup("<p>&amp;lt;p&amp;gt;</p>") == "&lt;p&gt;"


def test_strip_markup_caps_blank_lines_at_one():
    html = "<p>One</p>\n\n\n<p></p><div>   </div>\n<p>Two</p>"

    assert strip_markup(html) == "One\n\nTwo"


def test_strip_markup_never_returns_tags():
    html = "<section><p class='a'>Text <span>inside</span></p><img src='x.png'/></section>"

    text = strip_markup(html)

    assert "<" not in text and ">" not in text
    assert text == "Text inside"


def test_strip_markup_removes_tags_spelled_with_entities():
    text = strip_markup("<p>Use &lt;b&gt;bold&lt;/b&gt; here &#60;br/&#62;now</p>")

    assert "<" not in text and ">" not in text
    assert text == "Use bold here now"


def test_combine_documents_separates_with_paragraph_break():
    assert combine_documents(["One", "Two"]) == "One\n\nTwo"


def test_extract_book_text_follows_reading_order_and_skips_empty_documents():
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("a.xhtml", "<p>Alpha</p>")
        archive.writestr("b.xhtml", "<p>Beta café</p>".encode("utf-8"))
        archive.writestr("empty.xhtml", "<script>only()</script>")

    book = extract_book_text(read_archive(buffer.getvalue()), ["b.xhtml", "empty.xhtml", "a.xhtml"])

    assert book.text == "Beta café\n\nAlpha"
    assert book.empty_documents == ["empty.xhtml"]
    assert book.word_count == 3
