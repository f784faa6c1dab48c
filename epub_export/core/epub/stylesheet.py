"""Embedded stylesheet shared by every document of the exported book."""

STYLESHEET_HREF = 'styles/stylesheet.css'


def create_stylesheet(with_images: bool = True) -> str:
    """Create simple, readable CSS with optional illustration styling."""
    base_css = '''body {
    font-family: Georgia, serif;
    line-height: 1.6;
    margin: 0 auto;
    padding: 1.5em;
    max-width: 42em;
    color: #333;
}

h1 {
    font-size: 1.8em;
    margin-top: 1.5em;
    margin-bottom: 1em;
    padding-bottom: 0.5em;
    border-bottom: 2px solid #3498db;
}

h2 {
    margin-top: 2em;
    margin-bottom: 1em;
}

p {
    margin: 1em 0;
    text-align: justify;
    text-indent: 1.5em;
}

p:first-of-type {
    text-indent: 0;
}

hr {
    border: none;
    border-top: 1px solid #ccc;
    margin: 2em auto;
    width: 50%;
}

table {
    width: 100%;
    border-collapse: collapse;
    margin: 1em 0;
    font-size: 0.9em;
}

th, td {
    border: 1px solid #ddd;
    padding: 0.75em;
    text-align: left;
}

th {
    background-color: #f8f9fa;
}

.footnotes {
    margin-top: 3em;
    padding-top: 2em;
    border-top: 1px solid #ddd;
    font-size: 0.9em;
}

.footnotes li {
    margin-bottom: 0.75em;
}

.footnote-back {
    margin-left: 0.5em;
    text-decoration: none;
}

.title-page {
    text-align: center;
    margin-top: 20%;
}

.title-page .subtitle {
    font-style: italic;
    color: #666;
}

.title-page .author {
    font-size: 1.2em;
    margin: 1em 0 2em;
}

.title-page .metadata p {
    text-indent: 0;
    text-align: center;
}

.stat-grid p {
    text-indent: 0;
}

.gratitude-section {
    margin: 3em 0;
    padding: 2em;
    border-radius: 12px;
    background: #f3f0ff;
}

.gratitude-section p {
    text-indent: 0;
}'''

    if with_images:
        base_css += '''

.illustration {
    text-align: center;
    margin: 2em 0;
    page-break-inside: avoid;
}

.illustration img {
    max-width: 100%;
    height: auto;
    display: block;
    margin: 0 auto;
}

.illustration figcaption {
    font-size: 0.9em;
    color: #666;
    font-style: italic;
    margin-top: 0.5em;
    text-align: center;
    text-indent: 0;
}'''

    return base_css + '\n'
