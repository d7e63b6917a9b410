from __future__ import annotations

from render.nginx import render_container_conf, render_site


def _balanced(text: str) -> bool:
    depth = 0
    for ch in text:
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


def test_host_site_with_ssl(cfg):
    text = render_site(cfg)
    assert _balanced(text)
    assert "server_name tracker.example.com www.tracker.example.com;" in text
    assert "return 301 https://$server_name$request_uri;" in text
    assert "listen 443 ssl http2;" in text
    assert f"ssl_certificate {cfg['ssl']['letsencrypt_dir']}/live/tracker.example.com/fullchain.pem;" in text
    assert "location /.well-known/acme-challenge/" in text
    assert f"root {cfg['ssl']['webroot']};" in text
    assert "proxy_pass http://127.0.0.1:3001/;" in text
    assert "proxy_pass http://127.0.0.1:1212/;" in text
    assert "proxy_pass http://127.0.0.1:3000;" in text
    assert "proxy_set_header Upgrade $http_upgrade;" in text
    assert 'add_header Access-Control-Allow-Origin "https://tracker.example.com" always;' in text
    assert "return 204;" in text
    assert 'return 200 "healthy\\n";' in text
    assert "Strict-Transport-Security" in text
    assert "sub_filter" not in text


def test_host_site_without_ssl(cfg):
    cfg["ssl"]["enabled"] = False
    cfg["include_www"] = False
    text = render_site(cfg)
    assert _balanced(text)
    assert "listen 443" not in text
    assert "return 301" not in text
    assert text.count("server {") == 1
    assert "server_name tracker.example.com;" in text
    assert 'Access-Control-Allow-Origin "http://tracker.example.com"' in text


def test_cors_can_be_disabled(cfg):
    cfg["nginx"]["cors"] = False
    text = render_site(cfg)
    assert "Access-Control-Allow-Origin" not in text
    assert "return 204;" not in text


def test_asset_injection(cfg):
    cfg["nginx"]["inject_tracker_urls"] = True
    text = render_site(cfg)
    assert "sub_filter_once on;" in text
    assert "/_nuxt/tracker-urls.js" in text
    assert 'proxy_set_header Accept-Encoding "";' in text


def test_container_conf(cfg):
    text = render_container_conf(cfg)
    assert _balanced(text)
    assert text.startswith("events {")
    assert "upstream gui_backend {" in text
    assert "server gui:3000;" in text
    assert "server index:3001;" in text
    assert "server tracker:1212;" in text
    assert "proxy_pass http://index_backend/;" in text
    assert "root /var/www/certbot;" in text
    assert "ssl_certificate /etc/letsencrypt/live/tracker.example.com/fullchain.pem;" in text
