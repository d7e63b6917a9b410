from __future__ import annotations

import html
import json
import re

BEGIN_MARKER = "<!-- torrust-ops:tracker-urls:begin -->"
END_MARKER = "<!-- torrust-ops:tracker-urls:end -->"

# The upload form's file picker; the snippet goes right after it.
UPLOAD_ANCHOR = re.compile(r"^(?P<indent>[ \t]*)<UploadFile\b[^\n]*?/>[ \t]*$", re.MULTILINE)

_LABEL_CLASS = {
    "udp": "text-primary",
    "http": "text-secondary",
    "https": "text-secondary",
}


class PatchError(RuntimeError):
    pass


def _scheme(url: str) -> str:
    return url.split("://", 1)[0].lower()


def render_tracker_urls_snippet(urls: list[str], indent: str = "      ") -> str:
    rows: list[str] = []
    for url in urls:
        scheme = _scheme(url)
        label_class = _LABEL_CLASS.get(scheme, "text-primary")
        rows += [
            '    <div class="flex items-center gap-3">',
            f'      <span class="text-xs font-medium {label_class} uppercase tracking-wide">{scheme.upper()}:</span>',
            '      <code class="flex-1 p-2 bg-base-100 rounded-lg text-sm font-mono text-neutral-content'
            f' border border-base-content/20">{html.escape(url)}</code>',
            "    </div>",
        ]
    body = [
        BEGIN_MARKER,
        '<div class="p-4 bg-base-200/50 rounded-2xl border border-base-content/10">',
        '  <h3 class="text-lg font-semibold text-neutral-content mb-3">Tracker URLs</h3>',
        '  <p class="text-sm text-neutral-content/70 mb-3">Your torrent will use these tracker URLs:</p>',
        '  <div class="space-y-2">',
        *rows,
        "  </div>",
        '  <p class="text-xs text-neutral-content/50 mt-2">'
        "These URLs will be embedded in your torrent file for peer discovery.</p>",
        "</div>",
        END_MARKER,
    ]
    return "\n".join(f"{indent}{line}" for line in body)


def is_patched(text: str) -> bool:
    return BEGIN_MARKER in text


def apply_snippet(text: str, snippet: str) -> str:
    match = UPLOAD_ANCHOR.search(text)
    if match is None:
        raise PatchError("upload page has no <UploadFile .../> element to anchor the tracker URLs")
    pos = match.end()
    return text[:pos] + "\n\n" + snippet + text[pos:]


def strip_snippet(text: str) -> str:
    pattern = re.compile(
        r"\n*[ \t]*" + re.escape(BEGIN_MARKER) + r".*?" + re.escape(END_MARKER) + r"[ \t]*",
        re.DOTALL,
    )
    return pattern.sub("", text, count=1)


TRACKER_CSS = """/* torrust-ops tracker URLs */
.tracker-urls-info {
    background: rgba(0, 0, 0, 0.1);
    border: 1px solid rgba(255, 255, 255, 0.1);
    border-radius: 16px;
    padding: 16px;
    margin: 16px 0;
}
.tracker-urls-title { font-size: 18px; font-weight: 600; color: #ffffff; margin-bottom: 12px; }
.tracker-urls-description { font-size: 14px; color: rgba(255, 255, 255, 0.7); margin-bottom: 12px; }
.tracker-urls-list { display: flex; flex-direction: column; gap: 8px; }
.tracker-url-item { display: flex; align-items: center; gap: 12px; }
.tracker-url-label {
    font-size: 12px;
    font-weight: 500;
    text-transform: uppercase;
    letter-spacing: 0.05em;
    min-width: 60px;
}
.tracker-url-label.udp { color: #3b82f6; }
.tracker-url-label.http { color: #10b981; }
.tracker-url-code {
    flex: 1;
    padding: 8px 12px;
    background: rgba(0, 0, 0, 0.2);
    border: 1px solid rgba(255, 255, 255, 0.1);
    border-radius: 8px;
    font-family: "Monaco", "Menlo", "Ubuntu Mono", monospace;
    font-size: 14px;
    color: #ffffff;
}
.tracker-url-note { font-size: 12px; color: rgba(255, 255, 255, 0.5); margin-top: 8px; }
"""

TRACKER_JS_TEMPLATE = """// torrust-ops tracker URLs
(function () {
  var urls = __URLS__;
  function render(form) {
    if (document.querySelector(".tracker-urls-info")) return;
    var box = document.createElement("div");
    box.className = "tracker-urls-info";
    var rows = urls.map(function (u) {
      var scheme = u.split("://")[0];
      return '<div class="tracker-url-item"><span class="tracker-url-label ' + scheme + '">' +
        scheme.toUpperCase() + ':</span><code class="tracker-url-code">' + u + '</code></div>';
    }).join("");
    box.innerHTML = '<div class="tracker-urls-title">Tracker URLs</div>' +
      '<div class="tracker-urls-description">Your torrent will use these tracker URLs:</div>' +
      '<div class="tracker-urls-list">' + rows + '</div>' +
      '<div class="tracker-url-note">These URLs will be embedded in your torrent file for peer discovery.</div>';
    var agree = document.querySelector('input[name="agree-to-terms"]');
    var anchor = agree ? agree.closest("div") : null;
    if (anchor && anchor.parentNode) {
      anchor.parentNode.insertBefore(box, anchor);
    } else {
      form.appendChild(box);
    }
  }
  var tries = 0;
  var timer = setInterval(function () {
    tries += 1;
    var form = document.querySelector("form");
    if (form && location.pathname.indexOf("/upload") === 0) {
      clearInterval(timer);
      render(form);
    } else if (tries >= 10) {
      clearInterval(timer);
    }
  }, 1000);
})();
"""


def render_injection_assets(urls: list[str]) -> dict[str, str]:
    """CSS/JS pair for compiled GUI builds that ship no .vue sources."""
    return {
        "tracker-urls.css": TRACKER_CSS,
        "tracker-urls.js": TRACKER_JS_TEMPLATE.replace("__URLS__", json.dumps(urls)),
    }
