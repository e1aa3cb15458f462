"""Index page for the key share server.

Rendered once at startup and staged alongside the key files.
"""

import html
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from urllib.parse import quote

PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>SSH Key Download</title>
    <style>
        body {{ font-family: Arial, sans-serif; max-width: 800px; margin: 0 auto; padding: 20px; }}
        .key-info {{ background: #f5f5f5; padding: 15px; margin: 10px 0; border-radius: 5px; }}
        .download-link {{ display: inline-block; padding: 10px 20px; background: #007bff; color: white; text-decoration: none; border-radius: 5px; margin: 5px; }}
        .download-link:hover {{ background: #0056b3; }}
        .warning {{ background: #fff3cd; border: 1px solid #ffeaa7; padding: 10px; border-radius: 5px; margin: 10px 0; }}
        .command {{ background: #f8f9fa; padding: 10px; border-left: 4px solid #007bff; margin: 10px 0; font-family: monospace; }}
    </style>
</head>
<body>
    <h1>SSH Key Download</h1>

    <div class="warning">
        <strong>Security Warning:</strong>
        <ul>
            <li>Never share your private key with others</li>
            <li>Anyone who can reach this port can download the key while the server runs</li>
            <li>Shut down this server immediately after downloading</li>
            <li>Set private key file permissions to 600</li>
        </ul>
    </div>

    <div class="key-info">
        <h3>Generated Key Information</h3>
        <p><strong>Key Name:</strong> {key_name}</p>
        <p><strong>Generated:</strong> {generated}</p>
        <p><strong>Host:</strong> {identity}</p>
    </div>

    <h3>Download</h3>
    <a href="/{private_href}" class="download-link" download>Download Private Key ({key_name})</a>
    <a href="/{public_href}" class="download-link" download>Download Public Key ({key_name}.pub)</a>

    <h3>Usage Instructions</h3>
    <div class="command">
        # Download keys (from another machine)<br>
        wget {base_url}/{private_href}<br>
        wget {base_url}/{public_href}<br><br>

        # Or use curl<br>
        curl -O {base_url}/{private_href}<br>
        curl -O {base_url}/{public_href}<br><br>

        # Set permissions<br>
        chmod 600 {key_name}<br>
        chmod 644 {key_name}.pub<br><br>

        # SSH connection<br>
        ssh -i {key_name} {user}@{local_ip}
    </div>

    <p><small>This server will automatically shut down after {timeout} seconds.</small></p>
</body>
</html>
"""


@dataclass
class IndexInfo:
    """Values embedded in the index page."""
    key_name: str
    local_ip: str
    port: int
    user: str
    hostname: str
    timeout: int
    generated_at: Optional[datetime] = None

    @property
    def identity(self) -> str:
        return f"{self.user}@{self.hostname}"

    @property
    def base_url(self) -> str:
        return f"http://{self.local_ip}:{self.port}"


def render_index(info: IndexInfo) -> str:
    """Render the index page.

    All interpolated values are HTML-escaped; link targets are also
    percent-encoded.
    """
    generated_at = info.generated_at or datetime.now().astimezone()
    esc = html.escape

    return PAGE_TEMPLATE.format(
        key_name=esc(info.key_name),
        generated=esc(generated_at.strftime("%Y-%m-%d %H:%M:%S %Z").strip()),
        identity=esc(info.identity),
        user=esc(info.user),
        local_ip=esc(info.local_ip),
        base_url=esc(info.base_url),
        private_href=esc(quote(info.key_name)),
        public_href=esc(quote(f"{info.key_name}.pub")),
        timeout=int(info.timeout),
    )
