# Power Switch Proxy
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""HTML and plain-text bodies produced by proxy sessions."""

from html import escape
from urllib.parse import quote

from .pdu_model import ChannelStatus
from .registry import Registry

_HEAD = """<!DOCTYPE html>
<html>
    <head>
        <title>power switch</title>
        <style>
.on {
  background-color: Chartreuse;
}
.state {
  text-align: center;
}
table, th, td {
  border: 1px solid;
  border-collapse: collapse;
}
#overlay.dim {
  display: inline;
}
#overlay {
  background-color: rgba(0,0,0,0.2);
  display: none;
  position: fixed;
  left: 0;
  top: 0;
  width: 100%;
  height: 100%;
}
        </style>
        <script>
function set_switch(request)
{
  // dim the page while the PDU is busy
  document.getElementById('overlay').classList.add('dim');

  const xhr = new XMLHttpRequest();
  xhr.open("GET", "/" + request, true);
  xhr.onload = () => {
    if (xhr.status !== 200)
      console.error(xhr.statusText);
    location.reload();
  };
  xhr.onerror = () => {
    console.error(xhr.statusText);
    location.reload();
  };
  xhr.send(null);
}
        </script>
    </head>
    <body>
        <h1>power switch</h1>
"""

_TAIL = """        </table>
        <div id='overlay'></div>
    </body>
</html>
"""


def _button(target: str, label: str) -> str:
    # target ends up inside a JS string inside an HTML attribute
    return (f"<button onclick='set_switch(\"{escape(quote(target, safe='/?'))}\")'>"
            f"{escape(label)}</button>")


def render_root_document(registry: Registry, statuses: list[ChannelStatus]) -> str:
    """Control panel: one button per scene, one row per channel."""
    parts = [_HEAD, "        <h2>Scenes:</h2>\n        <ul>\n"]
    for scene in registry.scenes():
        parts.append(f"<li>{_button('set/' + scene.name, scene.name)}</li>\n")
    parts.append(
        "        </ul>\n\n"
        "        <h2>Channels:</h2>\n"
        "        <table>\n"
        "            <tr><th>channel</th><th>state</th>"
        "<th colspan='2'>command</th></tr>\n"
    )
    for status in statuses:
        name = escape(status.name, quote=True)
        state = status.state_text
        parts.append(
            f"<tr class='{name}'>"
            f"<td class='channel'>{name}</td>"
            f"<td class='state {state}'>{state}</td>"
            f"<td class='off_button'>{_button(status.name + '?off', 'off')}</td>"
            f"<td class='on_button'>{_button(status.name + '?on', 'on')}</td>"
            "</tr>\n"
        )
    parts.append(_TAIL)
    return "".join(parts)


def render_status_text(statuses: list[ChannelStatus]) -> str:
    return "".join(f"{s.name}: {s.state_text}\n" for s in statuses)


def render_internal_error(operation: str, message: str = "") -> str:
    text = f"{operation} failed: {message}" if message else operation
    return ("<html><head><title>internal server error</title></head>"
            "<body><h1>internal server error</h1>"
            f"<p>{escape(text)}</p></body></html>")
