from app.domain.chatrooms.sanitize import sanitize_html, sanitize_plain_text


def test_basic_formatting_survives():
    assert sanitize_html("<p><strong>bold</strong> and <em>soft</em></p>") == "<p><strong>bold</strong> and <em>soft</em></p>"


def test_script_elements_are_dropped_with_their_body():
    assert sanitize_html("hi<script>alert('x')</script> there") == "hi there"
    assert sanitize_html("<iframe src='https://evil'>inner</iframe>ok") == "ok"


def test_unknown_tags_keep_escaped_text():
    assert sanitize_html("<marquee>wheee</marquee>") == "wheee"
    assert sanitize_html("<div>1 < 2 & 3</div>") == "1 &lt; 2 &amp; 3"


def test_links_are_forced_to_open_in_new_tab():
    result = sanitize_html('<a href="https://example.com" target="_self" onclick="steal()">site</a>')
    assert result == '<a href="https://example.com" target="_blank" rel="noopener noreferrer">site</a>'


def test_javascript_urls_are_removed():
    result = sanitize_html('<a href="javascript:alert(1)">x</a><img src=" JavaScript:alert(1)" alt="pic">')
    assert "javascript" not in result.lower()
    assert '<img alt="pic">' in result


def test_entity_encoded_whitespace_cannot_hide_a_scheme():
    link = sanitize_html('<a href="java&#9;script:alert(1)">x</a>')
    assert link == '<a target="_blank" rel="noopener noreferrer">x</a>'

    image = sanitize_html('<img src="jav&#x0A;ascript:alert(1)" alt="pic">')
    assert image == '<img alt="pic">'

    assert "href" not in sanitize_html('<a href="&#1;vbscript:msgbox(1)">x</a>')


def test_only_listed_schemes_and_relative_urls_are_kept():
    assert "href" not in sanitize_html('<a href="data:text/html;base64,PHNjcmlwdD4=">x</a>')
    assert 'href="mailto:team@example.com"' in sanitize_html('<a href="mailto:team@example.com">mail</a>')
    assert 'href="/rooms/general"' in sanitize_html('<a href=" /rooms/general ">room</a>')
    assert 'href="#top"' in sanitize_html('<a href="#top">top</a>')

def test_span_styles_are_filtered():
    result = sanitize_html('<span style="color: red; position: fixed; background-color: url(x)">t</span>')
    assert result == '<span style="color: red">t</span>'


def test_void_tags_do_not_emit_closing_tags():
    assert sanitize_html("line<br/>next<br>") == "line<br>next<br>"


def test_plain_text_removes_all_markup():
    assert sanitize_plain_text("<b>Team</b> <i>room</i><script>x</script>") == "Team room"
