from __future__ import annotations

from typing import Any

PROXY_HEADERS = [
    "proxy_set_header Host $host;",
    "proxy_set_header X-Real-IP $remote_addr;",
    "proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;",
    "proxy_set_header X-Forwarded-Proto $scheme;",
]

WEBSOCKET_HEADERS = [
    "proxy_http_version 1.1;",
    "proxy_set_header Upgrade $http_upgrade;",
    'proxy_set_header Connection "upgrade";',
]

TLS_SETTINGS = [
    "ssl_protocols TLSv1.2 TLSv1.3;",
    "ssl_ciphers ECDHE-RSA-AES256-GCM-SHA512:DHE-RSA-AES256-GCM-SHA512:"
    "ECDHE-RSA-AES256-GCM-SHA384:DHE-RSA-AES256-GCM-SHA384;",
    "ssl_prefer_server_ciphers off;",
    "ssl_session_cache shared:SSL:10m;",
    "ssl_session_timeout 10m;",
]

SECURITY_HEADERS = [
    'add_header X-Frame-Options "SAMEORIGIN" always;',
    'add_header X-Content-Type-Options "nosniff" always;',
    'add_header X-XSS-Protection "1; mode=block" always;',
    'add_header Referrer-Policy "strict-origin-when-cross-origin" always;',
    'add_header Strict-Transport-Security "max-age=31536000; includeSubDomains" always;',
]

# Loads the tracker-urls assets copied into the GUI's _nuxt dir on SSR builds.
ASSET_INJECTION = [
    'proxy_set_header Accept-Encoding "";',
    "sub_filter_once on;",
    "sub_filter '</head>' '<link rel=\"stylesheet\" href=\"/_nuxt/tracker-urls.css\">"
    "<script src=\"/_nuxt/tracker-urls.js\" defer></script></head>';",
]

CORS_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
CORS_HEADERS = "Authorization, Content-Type"


def server_names(cfg: dict[str, Any]) -> str:
    domain = cfg["domain"]
    if cfg.get("include_www", True):
        return f"{domain} www.{domain}"
    return domain


def cert_paths(cfg: dict[str, Any], letsencrypt_dir: str | None = None) -> dict[str, str]:
    base = letsencrypt_dir or cfg["ssl"]["letsencrypt_dir"]
    live = f"{base.rstrip('/')}/live/{cfg['domain']}"
    return {
        "fullchain": f"{live}/fullchain.pem",
        "privkey": f"{live}/privkey.pem",
        "chain": f"{live}/chain.pem",
    }


def upstreams(cfg: dict[str, Any], container: bool) -> dict[str, str]:
    ports = cfg["ports"]
    if container:
        return {
            "gui": f"gui:{int(ports['gui'])}",
            "index": f"index:{int(ports['index_api'])}",
            "tracker": f"tracker:{int(ports['tracker_api'])}",
        }
    return {
        "gui": f"127.0.0.1:{int(ports['gui'])}",
        "index": f"127.0.0.1:{int(ports['index_api'])}",
        "tracker": f"127.0.0.1:{int(ports['tracker_api'])}",
    }


def _block(header: str, body: list[str]) -> list[str]:
    lines = [f"{header} {{"]
    for line in body:
        lines.append(f"    {line}" if line else "")
    lines.append("}")
    return lines


def _cors(origin: str) -> list[str]:
    return [
        f'add_header Access-Control-Allow-Origin "{origin}" always;',
        f'add_header Access-Control-Allow-Methods "{CORS_METHODS}" always;',
        f'add_header Access-Control-Allow-Headers "{CORS_HEADERS}" always;',
        'add_header Access-Control-Allow-Credentials "true" always;',
    ]


def _preflight(origin: str) -> list[str]:
    return _block(
        "if ($request_method = 'OPTIONS')",
        [
            f'add_header Access-Control-Allow-Origin "{origin}";',
            f'add_header Access-Control-Allow-Methods "{CORS_METHODS}";',
            f'add_header Access-Control-Allow-Headers "{CORS_HEADERS}";',
            'add_header Access-Control-Allow-Credentials "true";',
            "add_header Content-Length 0;",
            "add_header Content-Type text/plain;",
            "return 204;",
        ],
    )


def _locations(cfg: dict[str, Any], targets: dict[str, str], origin: str) -> list[str]:
    cors = bool(cfg["nginx"].get("cors", True))

    api = [f"proxy_pass http://{targets['index']}/;", *PROXY_HEADERS]
    if cors:
        api += ["", *_cors(origin), "", *_preflight(origin)]

    tracker_api = [f"proxy_pass http://{targets['tracker']}/;", *PROXY_HEADERS]
    if cors:
        tracker_api += ["", *_cors(origin)]

    gui = [f"proxy_pass http://{targets['gui']};", *PROXY_HEADERS, "", *WEBSOCKET_HEADERS]
    if cfg["nginx"].get("inject_tracker_urls", False):
        gui += ["", *ASSET_INJECTION]

    health = [
        "access_log off;",
        'return 200 "healthy\\n";',
        "add_header Content-Type text/plain;",
    ]

    lines: list[str] = []
    lines += _block("location /api/", api)
    lines.append("")
    lines += _block("location /tracker-api/", tracker_api)
    lines.append("")
    lines += _block("location /", gui)
    lines.append("")
    lines += _block("location /health", health)
    return lines


def _acme_location(root: str) -> list[str]:
    return _block("location /.well-known/acme-challenge/", [f"root {root};"])


def _servers(
    cfg: dict[str, Any],
    targets: dict[str, str],
    acme_root: str,
    letsencrypt_dir: str | None = None,
) -> list[str]:
    names = server_names(cfg)
    ssl_enabled = bool(cfg["ssl"]["enabled"])
    scheme = "https" if ssl_enabled else "http"
    origin = f"{scheme}://{cfg['domain']}"

    if not ssl_enabled:
        plain = [
            "listen 80;",
            f"server_name {names};",
            "",
            *_acme_location(acme_root),
            "",
            *_locations(cfg, targets, origin),
        ]
        return _block("server", plain)

    redirect = [
        "listen 80;",
        f"server_name {names};",
        "",
        *_acme_location(acme_root),
        "",
        *_block("location /", ["return 301 https://$server_name$request_uri;"]),
    ]
    certs = cert_paths(cfg, letsencrypt_dir)
    secure = [
        "listen 443 ssl http2;",
        f"server_name {names};",
        "",
        f"ssl_certificate {certs['fullchain']};",
        f"ssl_certificate_key {certs['privkey']};",
        f"ssl_trusted_certificate {certs['chain']};",
        "",
        *TLS_SETTINGS,
        "",
        *SECURITY_HEADERS,
        "",
        *_locations(cfg, targets, origin),
    ]
    return [*_block("server", redirect), "", *_block("server", secure)]


def render_site(cfg: dict[str, Any]) -> str:
    """Site file for a host nginx (sites-available) proxying to published ports."""
    lines = _servers(cfg, upstreams(cfg, container=False), cfg["ssl"]["webroot"])
    return "\n".join(lines) + "\n"


def render_container_conf(cfg: dict[str, Any]) -> str:
    """Complete nginx.conf for the nginx service running inside the compose network."""
    targets = upstreams(cfg, container=True)
    http_body = [
        "include       /etc/nginx/mime.types;",
        "default_type  application/octet-stream;",
        "",
        *_block("upstream gui_backend", [f"server {targets['gui']};"]),
        "",
        *_block("upstream index_backend", [f"server {targets['index']};"]),
        "",
        *_block("upstream tracker_backend", [f"server {targets['tracker']};"]),
        "",
        *_servers(
            cfg,
            {"gui": "gui_backend", "index": "index_backend", "tracker": "tracker_backend"},
            "/var/www/certbot",
            "/etc/letsencrypt",
        ),
    ]
    lines = [
        *_block("events", ["worker_connections 1024;"]),
        "",
        *_block("http", http_body),
    ]
    return "\n".join(lines) + "\n"
